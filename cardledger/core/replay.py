"""
cardledger/core/replay.py

Journal replay: independent verification and state reconstruction.

A watcher holding nothing but the journal file can answer two questions:
is the file intact, and what does the participant table look like? The
engine checks, per entry:

    1. sequence      the entry on line i carries sequence i; entries are
                     checked in file order, never re-sorted
    2. chain         causal_hash matches the previous entry
    3. nonce         no two entries share a nonce
    4. genesis       entry 0, and only entry 0, is ledger_created
    5. signer        every entry is signed by the owner named in genesis
    6. signature     Ed25519 over the canonical signing dict
    7. transition    each notification is an acceptable ledger transition
                     (register once, mutate only after registration,
                     counters advance by exactly one)

Checks 1 to 6 come from the substrate; check 7 replays the ledger's own
state machine through advance_record().
"""

import json
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set

from cardledger.core.exceptions import RegistrationError
from cardledger.core.models import (
    EntryType,
    JournalEntry,
    Notification,
    NOTIFICATION_TYPES,
    ParticipantRecord,
    advance_record,
    counter_for,
)


# ─────────────────────────────────────────────────────────────
# Result / Summary Types
# ─────────────────────────────────────────────────────────────

@dataclass
class ChainViolation:
    """A single detected violation in the journal."""
    at_sequence:    int
    entry_id:       str
    violation_type: str   # sequence_gap | chain_break | schema | genesis |
                          # unauthorized_signer | invalid_signature | state_transition
    detail:         str


@dataclass
class ReplaySummary:
    """Aggregate result of a full journal verification pass."""
    total_entries:      int
    chain_valid:        bool
    violations:         List[ChainViolation]
    valid_signatures:   int
    invalid_signatures: int
    entry_type_counts:  Dict[str, int]
    owner:              Optional[str]
    first_timestamp:    Optional[str]
    last_timestamp:     Optional[str]
    records:            Dict[str, ParticipantRecord] = field(default_factory=dict)
    notifications:      List[Notification]           = field(default_factory=list)
    head_hash:          Optional[str]                = None


# ─────────────────────────────────────────────────────────────
# Replay Engine
# ─────────────────────────────────────────────────────────────

class ReplayEngine:
    """
    Usage:
        engine = ReplayEngine()
        engine.load(Path(".cardledger/journal.jsonl"))
        summary = engine.verify()
        engine.print_timeline()
        engine.export_json(Path("report.json"))

    silent=True suppresses the load confirmation line (used by the CLI).
    """

    def __init__(self, silent: bool = False):
        self.entries:      List[JournalEntry]   = []
        self.violations:   List[ChainViolation] = []
        self._journal_path: Optional[Path]      = None
        self._silent:       bool                = silent

    # ── Load ──────────────────────────────────────────────────

    def load(self, journal_path: Path) -> None:
        """
        Load a journal JSONL file.

        Raises:
            FileNotFoundError  journal does not exist
            ValueError         malformed JSON, missing field or schema violation
        """
        journal_path       = Path(journal_path)
        self._journal_path = journal_path
        self.entries       = []
        self.violations    = []

        if not journal_path.exists():
            raise FileNotFoundError(f"Journal not found: {journal_path}")

        with open(journal_path, "r", encoding="utf-8") as f:
            for line_num, raw in enumerate(f, 1):
                raw = raw.strip()
                if not raw:
                    continue

                try:
                    data = json.loads(raw)
                except json.JSONDecodeError as e:
                    raise ValueError(
                        f"Malformed JSON at journal line {line_num}: {e}"
                    ) from e
                if not isinstance(data, dict):
                    raise ValueError(
                        f"Journal line {line_num} is not a JSON object"
                    )

                try:
                    entry = JournalEntry.from_dict(data)
                except KeyError as e:
                    raise ValueError(
                        f"Missing required field at journal line {line_num}: {e}"
                    ) from e

                schema = entry.validate_schema()
                if not schema:
                    raise ValueError(
                        f"Schema violation at journal line {line_num} "
                        f"(entry_id={data.get('entry_id', '?')}): {schema.errors}"
                    )

                self.entries.append(entry)

        if not self._silent:
            print(
                f"Loaded {len(self.entries)} journal entries "
                f"from '{journal_path.name}'"
            )

    def load_entries(self, entries: List[JournalEntry]) -> None:
        """
        Use entries already in memory (e.g. from Journal.entries()).
        Raises ValueError on the first schema violation, like load().
        """
        for entry in entries:
            schema = entry.validate_schema()
            if not schema:
                raise ValueError(
                    f"Schema violation at sequence {entry.sequence!r} "
                    f"(entry_id={entry.entry_id!r}): {schema.errors}"
                )
        self.entries    = list(entries)
        self.violations = []

    # ── Verify ────────────────────────────────────────────────

    def verify(self) -> ReplaySummary:
        self.violations = []

        if not self.entries:
            return self._empty_summary()

        violations:    List[ChainViolation]          = []
        seen_nonces:   Set[str]                      = set()
        records:       Dict[str, ParticipantRecord]  = {}
        notifications: List[Notification]            = []
        valid_sigs   = 0
        invalid_sigs = 0

        def flag(entry: JournalEntry, kind: str, detail: str) -> None:
            violations.append(ChainViolation(
                at_sequence=    entry.sequence,
                entry_id=       entry.entry_id,
                violation_type= kind,
                detail=         detail,
            ))

        genesis = self.entries[0]
        owner: Optional[str] = None
        if genesis.entry_type == EntryType.LEDGER_CREATED:
            owner = genesis.payload.get("owner")
        else:
            flag(genesis, "genesis",
                 f"First entry is '{genesis.entry_type}', expected 'ledger_created'")

        for i, entry in enumerate(self.entries):
            prev = self.entries[i - 1] if i > 0 else None

            if entry.sequence != i:
                flag(entry, "sequence_gap", f"Expected sequence {i}, got {entry.sequence}")

            if not entry.verify_chain(prev):
                expected = entry.expected_causal_hash_from(prev)
                flag(entry, "chain_break",
                     f"causal_hash mismatch: expected ...{expected[-12:]}, "
                     f"got ...{entry.causal_hash[-12:]}")

            if entry.nonce in seen_nonces:
                flag(entry, "schema", f"Duplicate nonce '{entry.nonce}'")
            seen_nonces.add(entry.nonce)

            if i > 0 and entry.entry_type == EntryType.LEDGER_CREATED:
                flag(entry, "genesis", "ledger_created may only appear as the first entry")

            if owner is not None and entry.signer_public_key != owner:
                flag(entry, "unauthorized_signer",
                     f"Signed by {entry.signer_public_key[:16]}..., "
                     f"owner is {owner[:16]}...")

            if entry.verify_signature():
                valid_sigs += 1
            else:
                invalid_sigs += 1
                flag(entry, "invalid_signature",
                     f"Signature invalid (signer: {entry.signer_public_key[:16]}...)")

            if entry.entry_type in NOTIFICATION_TYPES:
                notification = Notification.from_payload(
                    entry.entry_type, entry.payload, len(notifications)
                )
                detail = self._apply(records, notification)
                if detail:
                    flag(entry, "state_transition", detail)
                else:
                    notifications.append(notification)

        self.violations = violations

        counts: Dict[str, int] = defaultdict(int)
        for entry in self.entries:
            counts[entry.entry_type] += 1

        return ReplaySummary(
            total_entries=      len(self.entries),
            chain_valid=        len(violations) == 0,
            violations=         list(violations),
            valid_signatures=   valid_sigs,
            invalid_signatures= invalid_sigs,
            entry_type_counts=  dict(counts),
            owner=              owner,
            first_timestamp=    self.entries[0].timestamp,
            last_timestamp=     self.entries[-1].timestamp,
            records=            records,
            notifications=      notifications,
            head_hash=          self.entries[-1].chain_hash(),
        )

    @staticmethod
    def _apply(
        records:      Dict[str, ParticipantRecord],
        notification: Notification,
    ) -> Optional[str]:
        """Advance records by one notification. Returns a violation detail or None."""
        try:
            updated = advance_record(
                records.get(notification.participant),
                notification.kind,
                notification.participant,
            )
        except RegistrationError as exc:
            return f"{notification.kind} rejected: {exc}"

        expected = counter_for(updated, notification.kind)
        if expected != notification.total:
            return (
                f"{notification.kind} for {notification.participant} reports "
                f"total {notification.total}, expected {expected}"
            )
        records[notification.participant] = updated
        return None

    # ── Print Timeline ────────────────────────────────────────

    def print_timeline(self, max_entries: Optional[int] = None) -> None:
        if not self.entries:
            print("No journal entries loaded.")
            return

        summary = self.verify()
        bar     = "=" * 80

        print(f"\n{bar}")
        print("cardledger journal timeline")
        print(bar)
        print(f"  Journal     : {self._journal_path or 'in-memory'}")
        print(f"  Owner       : {summary.owner}")
        print(f"  Entries     : {summary.total_entries:,}")
        print(f"  Valid       : {'yes' if summary.chain_valid else 'NO'}")
        print(f"  Participants: {len(summary.records):,}")
        print()

        to_show = self.entries[:max_entries] if max_entries else self.entries
        for entry in to_show:
            print(f"  [{entry.sequence:04d}] {entry.timestamp}  {entry.entry_type}")
            for key, value in sorted(entry.payload.items()):
                print(f"         {key:<16}: {value}")

        if max_entries and len(self.entries) > max_entries:
            print(f"  ... and {len(self.entries) - max_entries:,} more entries not shown")

        if summary.violations:
            print(f"{'-' * 80}")
            print(f"{len(summary.violations)} VIOLATION(S) DETECTED:")
            for v in summary.violations:
                print(
                    f"  [seq {v.at_sequence:04d}] "
                    f"{v.violation_type.upper():20s} | {v.detail}"
                )
        print()

    # ── Export JSON ───────────────────────────────────────────

    def export_json(self, output_path: Path) -> None:
        """
        Write the full replay summary as a JSON audit report.
        Raises RuntimeError if nothing has been loaded.
        """
        if not self.entries:
            raise RuntimeError("No entries loaded. Call load() before export_json().")

        summary     = self.verify()
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        report = {
            "cardledger_replay_report": {
                "version":            "1.0",
                "journal":            str(self._journal_path or "in-memory"),
                "owner":              summary.owner,
                "total_entries":      summary.total_entries,
                "chain_valid":        summary.chain_valid,
                "head_hash":          summary.head_hash,
                "valid_signatures":   summary.valid_signatures,
                "invalid_signatures": summary.invalid_signatures,
                "first_timestamp":    summary.first_timestamp,
                "last_timestamp":     summary.last_timestamp,
                "entry_type_counts":  summary.entry_type_counts,
                "records": [
                    record.to_dict() for record in summary.records.values()
                ],
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

        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(report, f, indent=2)

        if not self._silent:
            print(f"Replay report exported to: {output_path}")

    # ── Internal ──────────────────────────────────────────────

    def _empty_summary(self) -> ReplaySummary:
        return ReplaySummary(
            total_entries=      0,
            chain_valid=        True,
            violations=         [],
            valid_signatures=   0,
            invalid_signatures= 0,
            entry_type_counts=  {},
            owner=              None,
            first_timestamp=    None,
            last_timestamp=     None,
        )
