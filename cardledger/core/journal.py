"""
cardledger/core/journal.py

Signed, hash-chained, append-only journal.

append() MUST, in this exact order:
  1. Acquire lock
  2. JournalEntry.create(entry_type, signer, sequence, payload, prev=last)
  3. entry.sign(key)
  4. Assert chain invariants (sequence, causal_hash)
  5. Append one JSON line to the file
  6. Advance internal state, only after the write succeeded
  7. Return the signed entry

The journal knows nothing about participants or owners. It persists
whatever the ledger hands it and guarantees order and tamper evidence.
"""

import json
import logging
import os
import threading
import warnings
from pathlib import Path
from typing import Any, Dict, List, Optional

from cardledger.core.crypto import PrincipalKey
from cardledger.core.exceptions import JournalError
from cardledger.core.models import GENESIS_HASH, JournalEntry

logger = logging.getLogger(__name__)


class Journal:
    """
    Synchronous JSONL journal bound to one signing key.

    Chain state:
        _sequence    next sequence number (0, 1, 2, ...)
        _last_entry  last entry appended or restored (or None)

    Thread-safe within a single process.
    """

    def __init__(self, path: Path, key: PrincipalKey) -> None:
        self.path = Path(path)
        self.key  = key

        self._lock:       threading.Lock         = threading.Lock()
        self._sequence:   int                    = 0
        self._last_entry: Optional[JournalEntry] = None

        self._restore_state()

    # ── Public API ────────────────────────────────────────────

    @property
    def signer(self) -> str:
        """Identity whose key signs every entry appended from now on."""
        return self.key.identity

    @property
    def next_sequence(self) -> int:
        return self._sequence

    def is_empty(self) -> bool:
        return self._last_entry is None

    def append(self, entry_type: str, payload: Dict[str, Any]) -> JournalEntry:
        """
        Append one signed entry. Raises JournalError if the write fails;
        chain state is unchanged in that case.
        """
        with self._lock:
            entry = JournalEntry.create(
                entry_type=        entry_type,
                signer_public_key= self.key.identity,
                sequence=          self._sequence,
                payload=           payload,
                prev=              self._last_entry,
            ).sign(self.key)

            self._assert_chain_invariants(entry)
            self._write(entry)

            self._sequence   += 1
            self._last_entry  = entry

            logger.debug(
                "Journal %s: appended %s at sequence %d",
                self.path.name, entry_type, entry.sequence,
            )
            return entry

    def entries(self) -> List[JournalEntry]:
        """
        Load every entry from disk, in file order.
        Raises JournalError on unreadable files or malformed lines.
        """
        if not self.path.exists():
            return []

        loaded: List[JournalEntry] = []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, 1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        loaded.append(JournalEntry.from_dict(json.loads(line)))
                    except (json.JSONDecodeError, KeyError, TypeError) as exc:
                        raise JournalError(
                            f"Malformed journal line {line_num}",
                            {"path": self.path, "error": exc},
                        ) from exc
        except OSError as exc:
            raise JournalError(
                "Failed to read journal", {"path": self.path, "error": exc}
            ) from exc
        return loaded

    def verify_chain(self) -> bool:
        """True if every entry on disk is in sequence, chained and signed."""
        try:
            loaded = self.entries()
        except JournalError:
            return False

        prev = None
        for i, entry in enumerate(loaded):
            if entry.sequence != i or not entry.verify_chain(prev):
                return False
            if not entry.verify_signature():
                return False
            prev = entry
        return True

    def get_stats(self) -> Dict[str, Any]:
        return {
            "path":             str(self.path),
            "signer":           self.key.identity,
            "next_sequence":    self._sequence,
            "last_entry_id":    self._last_entry.entry_id if self._last_entry else None,
            "last_causal_hash": (
                self._last_entry.chain_hash() if self._last_entry else GENESIS_HASH
            ),
        }

    # ── Internal ──────────────────────────────────────────────

    def _restore_state(self) -> None:
        """
        Pick up sequence and last entry from an existing file. A corrupt
        last line leaves genesis defaults and issues a RuntimeWarning.
        """
        if not self.path.exists():
            return

        last_line = None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                for line in f:
                    stripped = line.strip()
                    if stripped:
                        last_line = stripped
        except OSError as exc:
            raise JournalError(
                "Failed to read journal", {"path": self.path, "error": exc}
            ) from exc

        if not last_line:
            return

        try:
            entry  = JournalEntry.from_dict(json.loads(last_line))
            schema = entry.validate_schema()
            if not schema:
                raise ValueError(f"schema violation in last line: {schema.errors}")
        except (ValueError, KeyError, TypeError) as exc:
            warnings.warn(
                f"Journal: could not restore state from {self.path}: {exc}. "
                "Last line may be corrupted. Call verify_chain() before appending.",
                RuntimeWarning,
                stacklevel=3,
            )
            return

        self._sequence   = entry.sequence + 1
        self._last_entry = entry

    def _assert_chain_invariants(self, entry: JournalEntry) -> None:
        if entry.sequence != self._sequence:
            raise JournalError(
                "Chain invariant violated: sequence mismatch",
                {"expected": self._sequence, "got": entry.sequence},
            )
        if not entry.verify_chain(self._last_entry):
            expected = entry.expected_causal_hash_from(self._last_entry)
            raise JournalError(
                "Chain invariant violated: causal_hash mismatch",
                {"expected": f"...{expected[-12:]}", "got": f"...{entry.causal_hash[-12:]}"},
            )

    def _write(self, entry: JournalEntry) -> None:
        """
        One newline-terminated JSON line, flushed before returning.
        A failed write truncates the file back to its previous size.
        """
        line = json.dumps(entry.to_dict()) + "\n"
        try:
            size = self.path.stat().st_size if self.path.exists() else 0
        except OSError as exc:
            raise JournalError(
                "Failed to read journal", {"path": self.path, "error": exc}
            ) from exc

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line)
                f.flush()
        except OSError as exc:
            self._truncate(size)
            raise JournalError(
                "Journal write failed", {"path": self.path, "error": exc}
            ) from exc

    def _truncate(self, size: int) -> None:
        if not self.path.exists():
            return
        try:
            os.truncate(self.path, size)
        except OSError:
            logger.exception(
                "Journal %s: could not remove partial line after failed write", self.path
            )
