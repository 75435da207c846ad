"""
cardledger/cli/commands.py

Ledger commands: key management, the three owner operations and the
open reads.

Exit codes:
    0  operation accepted / read succeeded
    1  operation rejected (Unauthorized, AlreadyRegistered, NotRegistered)
    2  error (missing key or journal, corrupt journal, I/O failure)

Mutations run as the principal holding the --key file: its public key is
the caller identity handed to the ledger. Reads never need a key; they
replay the journal directly.
"""

import json
import sys
from pathlib import Path
from typing import Optional

import click

from cardledger.config import LedgerConfig
from cardledger.core.crypto import PrincipalKey
from cardledger.core.exceptions import (
    AuthorizationError,
    CardLedgerError,
    RegistrationError,
)
from cardledger.core.models import NotificationType
from cardledger.core.replay import ReplayEngine, ReplaySummary
from cardledger.ledger import Ledger


# ── Helpers ───────────────────────────────────────────────────────────────────

def _fail(msg: str, code: int = 2) -> None:
    click.echo(f"ERROR: {msg}", err=True)
    sys.exit(code)


def _load_key(path: Path) -> PrincipalKey:
    try:
        return PrincipalKey.from_file(path)
    except FileNotFoundError:
        _fail(f"Key not found: {path}. Create one with 'cardledger keygen {path}'.")
    except ValueError as exc:
        _fail(str(exc))


def _replay(journal: Path) -> ReplaySummary:
    """Verified replay of journal, or exit 2."""
    engine = ReplayEngine(silent=True)
    try:
        engine.load(journal)
    except FileNotFoundError:
        _fail(f"Journal not found: {journal}")
    except ValueError as exc:
        _fail(str(exc))

    summary = engine.verify()
    if summary.violations:
        _fail(
            f"Journal {journal} failed verification with "
            f"{len(summary.violations)} violation(s). Run 'cardledger verify {journal}'."
        )
    return summary


def _mutate(config: LedgerConfig, operation: str, participant: str) -> None:
    key = _load_key(config.key)

    if not config.journal.exists():
        _fail(f"Journal not found: {config.journal}. Run 'cardledger init' first.")

    try:
        ledger = Ledger.open(config.journal, key)
        notification = getattr(ledger, operation)(key.identity, participant)
    except (AuthorizationError, RegistrationError) as exc:
        _fail(f"Rejected: {exc}", code=1)
    except CardLedgerError as exc:
        _fail(str(exc))

    line = f"{notification.kind}  {notification.participant}"
    if notification.total is not None:
        line += f"  total={notification.total}"
    click.echo(line)


# ── Key commands ──────────────────────────────────────────────────────────────

@click.command(name="keygen")
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing key file.")
def keygen_command(path: Path, force: bool) -> None:
    """Create a new Ed25519 key at PATH and print its identity."""
    if path.exists() and not force:
        _fail(f"Refusing to overwrite existing key {path} (use --force).")
    key = PrincipalKey.generate()
    key.save(path)
    click.echo(key.identity)


@click.command(name="whoami")
@click.pass_obj
def whoami_command(config: LedgerConfig) -> None:
    """Print the identity of the configured key."""
    click.echo(_load_key(config.key).identity)


# ── Ledger lifecycle ──────────────────────────────────────────────────────────

@click.command(name="init")
@click.pass_obj
def init_command(config: LedgerConfig) -> None:
    """
    Create a new ledger owned by the configured key.

    Generates the key first if it does not exist yet.
    """
    if config.journal.exists() and config.journal.stat().st_size > 0:
        _fail(f"Journal already exists: {config.journal}")

    if config.key.exists():
        key = _load_key(config.key)
    else:
        key = PrincipalKey.generate()
        key.save(config.key)
        click.echo(f"Created key {config.key}")

    try:
        ledger = Ledger.open(config.journal, key)
    except CardLedgerError as exc:
        _fail(str(exc))

    click.echo(f"Created ledger {config.journal}")
    click.echo(f"Owner {ledger.owner}")


# ── Owner operations ──────────────────────────────────────────────────────────

@click.command(name="register")
@click.argument("participant")
@click.pass_obj
def register_command(config: LedgerConfig, participant: str) -> None:
    """Register PARTICIPANT with a clean record."""
    _mutate(config, "register_participant", participant)


@click.command(name="caution")
@click.argument("participant")
@click.pass_obj
def caution_command(config: LedgerConfig, participant: str) -> None:
    """Issue one caution to PARTICIPANT."""
    _mutate(config, "issue_caution", participant)


@click.command(name="dismiss")
@click.argument("participant")
@click.pass_obj
def dismiss_command(config: LedgerConfig, participant: str) -> None:
    """Issue one dismissal to PARTICIPANT."""
    _mutate(config, "issue_dismissal", participant)


# ── Open reads ────────────────────────────────────────────────────────────────

@click.command(name="record")
@click.argument("participant")
@click.option(
    "--format", "fmt",
    type=click.Choice(["human", "json"], case_sensitive=False),
    default="human",
    show_default=True,
)
@click.pass_obj
def record_command(config: LedgerConfig, participant: str, fmt: str) -> None:
    """Show PARTICIPANT's caution and dismissal counts."""
    summary = _replay(config.journal)
    record  = summary.records.get(participant)
    if record is None:
        _fail(f"Rejected: Participant is not registered (participant={participant})", code=1)

    if fmt == "json":
        click.echo(json.dumps(record.to_dict(), indent=2))
    else:
        click.echo(f"{participant}  cautions={record.caution_count}  dismissals={record.dismissal_count}")


@click.command(name="log")
@click.option("--participant", default=None, help="Only notifications about this participant.")
@click.option(
    "--format", "fmt",
    type=click.Choice(["human", "json"], case_sensitive=False),
    default="human",
    show_default=True,
)
@click.pass_obj
def log_command(config: LedgerConfig, participant: Optional[str], fmt: str) -> None:
    """Print the notification stream, oldest first."""
    summary       = _replay(config.journal)
    notifications = [
        n for n in summary.notifications
        if participant is None or n.participant == participant
    ]

    if fmt == "json":
        click.echo(json.dumps(
            [
                {"sequence": n.sequence, "kind": n.kind, **n.to_payload()}
                for n in notifications
            ],
            indent=2,
        ))
        return

    for n in notifications:
        total = "" if n.kind == NotificationType.PARTICIPANT_REGISTERED else f"  total={n.total}"
        click.echo(f"[{n.sequence:04d}] {n.kind:<24} {n.participant}{total}")
