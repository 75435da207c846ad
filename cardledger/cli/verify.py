"""
cardledger/cli/verify.py

cardledger verify: independent journal verification.
=====================================================

Usable by the owner, participants, auditors and CI. Needs nothing but the
journal file: no key, no running ledger.

Usage:
    cardledger verify <journal>                       Human output (default)
    cardledger verify <journal> --format json         Machine-readable JSON
    cardledger verify <journal> --format compact      One-line pipeline output
    cardledger verify <journal> --export report.json  Export full audit report
    cardledger verify <journal> --quiet               Exit code only
    cardledger verify <journal> --no-color            Disable ANSI

Exit codes:
    0  Journal fully valid (chain, signatures, schema, owner, transitions)
    1  Journal has violations
    2  Error (file missing, malformed JSON, parse failure)
"""

import json
import sys
import time
from pathlib import Path
from typing import Optional

import click

from cardledger.core.replay import ReplayEngine, ReplaySummary


# ── ANSI color ────────────────────────────────────────────────────────────────

class _Color:
    """Auto-disables when stdout is not a TTY or --no-color is passed."""
    _on: bool = True

    @classmethod
    def configure(cls, enabled: bool) -> None:
        cls._on = enabled and sys.stdout.isatty()

    @classmethod
    def _wrap(cls, code: str, s: str) -> str:
        return f"\033[{code}m{s}\033[0m" if cls._on else s

    @classmethod
    def green(cls, s: str) -> str:
        return cls._wrap("32", s)

    @classmethod
    def red(cls, s: str) -> str:
        return cls._wrap("31", s)

    @classmethod
    def yellow(cls, s: str) -> str:
        return cls._wrap("33", s)

    @classmethod
    def cyan(cls, s: str) -> str:
        return cls._wrap("36", s)

    @classmethod
    def bold(cls, s: str) -> str:
        return cls._wrap("1", s)

    @classmethod
    def dim(cls, s: str) -> str:
        return cls._wrap("2", s)


def _row_ok(label: str, value: str) -> str:
    return f"  {_Color.dim(f'{label:<16}')}  {_Color.green('OK  ')}  {value}"

def _row_fail(label: str, value: str) -> str:
    return f"  {_Color.dim(f'{label:<16}')}  {_Color.red('FAIL')}  {value}"

def _row_info(label: str, value: str) -> str:
    return f"  {_Color.dim(f'{label:<16}')}        {value}"


# Violation types grouped under one status row each
_CHECKS = [
    ("Sequence",    "sequence_gap",        "0 → {last:,}  (no gaps)"),
    ("Chain",       "chain_break",         "intact, all causal hashes valid"),
    ("Schema",      "schema",              "all entries conform"),
    ("Genesis",     "genesis",             "single ledger_created entry at sequence 0"),
    ("Owner",       "unauthorized_signer", "every entry signed by the owner"),
    ("Transitions", "state_transition",    "every notification is an accepted transition"),
]


# ── CLI command ───────────────────────────────────────────────────────────────

@click.command(name="verify")
@click.argument("journal", type=click.Path(path_type=Path))
@click.option(
    "--format", "fmt",
    type=click.Choice(["human", "json", "compact"], case_sensitive=False),
    default="human",
    show_default=True,
    help="Output format: human, json (CI/automation), compact (pipelines).",
)
@click.option(
    "--export", "export_path",
    type=click.Path(path_type=Path),
    default=None,
    metavar="PATH",
    help="Export the full audit report to a JSON file.",
)
@click.option(
    "--quiet",
    is_flag=True,
    default=False,
    help="Suppress all output. Exit code only (0=valid, 1=invalid, 2=error).",
)
@click.option("--no-color", is_flag=True, default=False, help="Disable ANSI color output.")
def verify_command(
    journal:     Path,
    fmt:         str,
    export_path: Optional[Path],
    quiet:       bool,
    no_color:    bool,
) -> None:
    """
    Verify a journal: chain, signatures, schema, owner and transitions.

    JOURNAL is the path to a .jsonl journal file.
    """
    _Color.configure(not no_color)

    engine  = ReplayEngine(silent=True)
    t_start = time.perf_counter()

    try:
        engine.load(journal)
    except (FileNotFoundError, ValueError) as e:
        _emit_error(str(e), fmt, quiet)
        sys.exit(2)

    summary   = engine.verify()
    t_elapsed = time.perf_counter() - t_start
    valid     = len(summary.violations) == 0

    if export_path and summary.total_entries:
        try:
            engine.export_json(export_path)
        except OSError as e:
            if not quiet and fmt == "human":
                click.echo(_Color.yellow(f"\n  Export failed: {e}"), err=True)

    if quiet:
        sys.exit(0 if valid else 1)

    if fmt == "json":
        _output_json(summary, journal, t_elapsed, export_path, valid)
    elif fmt == "compact":
        _output_compact(summary, journal, t_elapsed, valid)
    else:
        _output_human(summary, journal, t_elapsed, export_path, valid)

    sys.exit(0 if valid else 1)


# ── Human output ──────────────────────────────────────────────────────────────

def _output_human(
    summary:     ReplaySummary,
    journal:     Path,
    elapsed:     float,
    export_path: Optional[Path],
    valid:       bool,
) -> None:
    BAR_HEAVY = "═" * 68
    BAR_LIGHT = "─" * 68

    click.echo()
    click.echo(_Color.bold(f"  {BAR_HEAVY}"))
    click.echo(_Color.bold("  cardledger  ·  Journal Verification"))
    click.echo(_Color.bold(f"  {BAR_HEAVY}"))
    click.echo()

    click.echo(_row_info("Journal", str(journal)))
    click.echo(_row_info("Entries", f"{summary.total_entries:,}"))
    click.echo(_row_info("Owner",   summary.owner or "-"))
    click.echo(_row_info("Participants", f"{len(summary.records):,}"))
    click.echo()

    last = max(summary.total_entries - 1, 0)
    for label, violation_type, ok_text in _CHECKS:
        found = [v for v in summary.violations if v.violation_type == violation_type]
        if found:
            click.echo(_row_fail(label, _Color.red(f"{len(found)} violation(s)")))
        else:
            click.echo(_row_ok(label, ok_text.format(last=last)))

    if summary.invalid_signatures == 0:
        click.echo(_row_ok("Signatures",
            f"{summary.valid_signatures:,} / {summary.total_entries:,} valid"))
    else:
        click.echo(_row_fail("Signatures",
            f"{summary.valid_signatures:,} valid  "
            + _Color.red(f"{summary.invalid_signatures:,} INVALID")))
    click.echo()

    if summary.head_hash:
        click.echo(_row_info("Chain head",
            _Color.cyan(summary.head_hash[:16] + "..." + summary.head_hash[-8:])
            + _Color.dim(f"  [seq {last}]")))
    if summary.entry_type_counts:
        click.echo(_row_info("Entry types", "  ".join(
            f"{_Color.cyan(k)}: {v:,}"
            for k, v in sorted(summary.entry_type_counts.items())
        )))
    click.echo(_row_info("Verified", f"{elapsed:.3f}s"))
    if export_path:
        click.echo(_row_info("Exported", str(export_path)))
    click.echo()

    if summary.violations:
        click.echo(f"  {BAR_LIGHT}")
        for v in summary.violations:
            click.echo(
                f"  {_Color.red(str(v.at_sequence)):>6}  "
                f"{_Color.yellow(f'{v.violation_type:<20}')}  {v.detail}"
            )
        click.echo(f"  {BAR_LIGHT}")
        click.echo()

    click.echo(f"  {BAR_LIGHT}")
    if valid:
        click.echo(_Color.green(_Color.bold(
            "  VALID  ·  0 violations  ·  journal integrity confirmed"
        )))
    else:
        click.echo(_Color.red(_Color.bold(
            f"  INVALID  ·  {len(summary.violations)} violation(s)  ·  journal integrity compromised"
        )))
    click.echo(f"  {BAR_LIGHT}")
    click.echo()


# ── JSON output ───────────────────────────────────────────────────────────────

def _output_json(
    summary:     ReplaySummary,
    journal:     Path,
    elapsed:     float,
    export_path: Optional[Path],
    valid:       bool,
) -> None:
    out = {
        "cardledger_verify": {
            "journal":            str(journal),
            "journal_valid":      valid,
            "owner":              summary.owner,
            "total_entries":      summary.total_entries,
            "participants":       len(summary.records),
            "notifications":      len(summary.notifications),
            "chain_head_hash":    summary.head_hash,
            "valid_signatures":   summary.valid_signatures,
            "invalid_signatures": summary.invalid_signatures,
            "violation_count":    len(summary.violations),
            "entry_type_counts":  summary.entry_type_counts,
            "first_timestamp":    summary.first_timestamp,
            "last_timestamp":     summary.last_timestamp,
            "elapsed_seconds":    round(elapsed, 3),
            "export_path":        str(export_path) if export_path else None,
            "violations": [
                {
                    "at_sequence":    v.at_sequence,
                    "entry_id":       v.entry_id,
                    "violation_type": v.violation_type,
                    "detail":         v.detail,
                }
                for v in summary.violations
            ],
        }
    }
    click.echo(json.dumps(out, indent=2))


# ── Compact output ────────────────────────────────────────────────────────────

def _output_compact(
    summary: ReplaySummary,
    journal: Path,
    elapsed: float,
    valid:   bool,
) -> None:
    """
    VALID    journal.jsonl   42 entries  0 violations  0.011s
    INVALID  journal.jsonl   42 entries  3 violation(s)  0.012s
    """
    status = "VALID" if valid else "INVALID"
    color  = _Color.green if valid else _Color.red
    click.echo(
        color(f"{status:<8}")
        + f"  {journal.name:<30}  {summary.total_entries:>8,} entries  "
        + f"{len(summary.violations)} violation(s)  {elapsed:.3f}s"
    )


# ── Error output ──────────────────────────────────────────────────────────────

def _emit_error(msg: str, fmt: str, quiet: bool) -> None:
    if quiet:
        return
    if fmt == "json":
        click.echo(json.dumps({
            "cardledger_verify": {"error": msg, "journal_valid": False}
        }))
    else:
        click.echo(_Color.red(f"\n  ERROR: {msg}\n"), err=True)
