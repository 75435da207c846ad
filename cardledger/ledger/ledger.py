"""
cardledger/ledger/ledger.py

The disciplinary ledger: one owner, a participant table and an
append-only notification stream.

Every mutating call runs, under one lock, in this exact order:
  1. Authorization   caller == owner, else Unauthorized
  2. Existence       registration state allows the call, else
                     AlreadyRegistered / NotRegistered
  3. Journal         signed entry appended (journaled ledgers only)
  4. State           record table updated
  5. Notification    appended to the stream, then delivered to watchers
                     in sequence order (nested calls queue behind it)

A failure at any step before 4 leaves the ledger exactly as it was: no
record change, no journal line, no notification.
"""

import logging
import threading
from collections import deque
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from cardledger.core.crypto import PrincipalKey
from cardledger.core.exceptions import (
    JournalError,
    LedgerIntegrityError,
    NotRegistered,
    RegistrationError,
    Unauthorized,
    ValidationError,
)
from cardledger.core.journal import Journal
from cardledger.core.models import (
    EntryType,
    Notification,
    NotificationType,
    ParticipantRecord,
    advance_record,
    counter_for,
    validate_identity,
)
from cardledger.core.replay import ReplayEngine

logger = logging.getLogger(__name__)

Watcher = Callable[[Notification], None]


class Ledger:
    """
    Access-controlled, append-only record of cautions and dismissals.

    The owner is fixed at construction. Reads (get_record and friends)
    are open to anyone; register/caution/dismiss are owner-only.

    Without a journal the ledger lives in memory. With one (see open())
    every accepted transition is persisted as a signed, chained entry
    before the in-memory state advances.
    """

    def __init__(self, owner: str, journal: Optional[Journal] = None) -> None:
        self._owner: str = validate_identity(owner, "owner")

        # Reentrant so watchers may read the ledger while being notified
        self._lock:          threading.RLock               = threading.RLock()
        self._records:       Dict[str, ParticipantRecord]  = {}
        self._order:         List[str]                     = []
        self._notifications: List[Notification]            = []
        self._watchers:      List[Watcher]                 = []
        self._journal:       Optional[Journal]             = None
        self._pending:       Deque[Notification]           = deque()
        self._delivering:    bool                          = False

        if journal is not None:
            if not journal.is_empty():
                raise ValidationError(
                    "Journal already holds entries; use Ledger.open() to restore it",
                    {"path": journal.path},
                )
            if journal.signer != self._owner:
                raise ValidationError(
                    "A new journal must be signed by the ledger owner",
                    {"owner": self._owner, "signer": journal.signer},
                )
            journal.append(EntryType.LEDGER_CREATED, {"owner": self._owner})
            self._journal = journal

        logger.info("Ledger created for owner %s", self._owner)

    # ── Construction from a journal ───────────────────────────

    @classmethod
    def open(cls, journal_path: Path, key: PrincipalKey) -> "Ledger":
        """
        Open the ledger persisted at journal_path, signing with key.

        A missing or empty journal starts a new ledger owned by
        key.identity. An existing journal is fully verified and replayed;
        any violation raises LedgerIntegrityError. key need not belong to
        the owner: a non-owner can open a ledger to read it, but every
        mutation it attempts is rejected.
        """
        journal = Journal(journal_path, key)
        try:
            entries = journal.entries()
        except JournalError as exc:
            raise LedgerIntegrityError(
                "Journal could not be parsed", {"path": journal.path, "error": exc}
            ) from exc

        if not entries:
            return cls(key.identity, journal=journal)

        engine = ReplayEngine(silent=True)
        try:
            engine.load_entries(entries)
        except ValueError as exc:
            raise LedgerIntegrityError(
                "Journal failed schema validation", {"path": journal.path, "error": exc}
            ) from exc

        summary = engine.verify()
        if summary.violations:
            first = summary.violations[0]
            raise LedgerIntegrityError(
                "Journal failed verification",
                {
                    "path":       journal.path,
                    "violations": len(summary.violations),
                    "first":      f"{first.violation_type} at {first.at_sequence}",
                },
                violations=summary.violations,
            )

        ledger = cls(summary.owner)
        ledger._journal       = journal
        ledger._records       = dict(summary.records)
        ledger._order         = [n.participant for n in summary.notifications
                                 if n.kind == NotificationType.PARTICIPANT_REGISTERED]
        ledger._notifications = list(summary.notifications)

        logger.info(
            "Ledger restored from %s: %d participants, %d notifications",
            journal.path, len(ledger._records), len(ledger._notifications),
        )
        return ledger

    # ── Identity ──────────────────────────────────────────────

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def journal(self) -> Optional[Journal]:
        return self._journal

    # ── Mutations (owner only) ────────────────────────────────

    def register_participant(self, caller: str, participant: str) -> Notification:
        """Create a (0, 0) record for participant. Emits participant_registered."""
        return self._transition(caller, participant, NotificationType.PARTICIPANT_REGISTERED)

    def issue_caution(self, caller: str, participant: str) -> Notification:
        """Add one caution. Emits caution_issued with the new total."""
        return self._transition(caller, participant, NotificationType.CAUTION_ISSUED)

    def issue_dismissal(self, caller: str, participant: str) -> Notification:
        """Add one dismissal. Emits dismissal_issued with the new total."""
        return self._transition(caller, participant, NotificationType.DISMISSAL_ISSUED)

    # ── Reads (open) ──────────────────────────────────────────

    def get_record(self, participant: str) -> Tuple[int, int]:
        """(caution_count, dismissal_count). Raises NotRegistered."""
        return self.get_participant(participant).as_tuple()

    def get_participant(self, participant: str) -> ParticipantRecord:
        validate_identity(participant, "participant")
        with self._lock:
            record = self._records.get(participant)
        if record is None:
            raise NotRegistered("Participant is not registered", {"participant": participant})
        return record

    def is_registered(self, participant: str) -> bool:
        with self._lock:
            return participant in self._records

    def participants(self) -> List[str]:
        """Registered identities, in registration order."""
        with self._lock:
            return list(self._order)

    def notifications(self) -> List[Notification]:
        """Snapshot of every notification emitted so far, oldest first."""
        with self._lock:
            return list(self._notifications)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "owner":           self._owner,
                "participants":    len(self._records),
                "notifications":   len(self._notifications),
                "total_cautions":  sum(r.caution_count for r in self._records.values()),
                "total_dismissals": sum(r.dismissal_count for r in self._records.values()),
                "journal":         str(self._journal.path) if self._journal else None,
            }

    # ── Watchers ──────────────────────────────────────────────

    def subscribe(self, watcher: Watcher) -> Callable[[], None]:
        """
        Deliver every future notification to watcher, in order.
        Returns a callable that unsubscribes it.
        """
        with self._lock:
            self._watchers.append(watcher)

        def unsubscribe() -> None:
            with self._lock:
                if watcher in self._watchers:
                    self._watchers.remove(watcher)

        return unsubscribe

    # ── Internal ──────────────────────────────────────────────

    def _transition(self, caller: str, participant: str, kind: str) -> Notification:
        with self._lock:
            self._authorize(caller, kind, participant)
            validate_identity(participant, "participant")

            try:
                updated = advance_record(self._records.get(participant), kind, participant)
            except RegistrationError as exc:
                logger.warning("Rejected %s: %s", kind, exc)
                raise

            notification = Notification(
                kind=        kind,
                participant= participant,
                total=       counter_for(updated, kind),
                sequence=    len(self._notifications),
            )

            if self._journal is not None:
                self._journal.append(kind, notification.to_payload())

            if participant not in self._records:
                self._order.append(participant)
            self._records[participant] = updated
            self._notifications.append(notification)

            logger.info(
                "Accepted %s for %s (total=%s)",
                kind, participant, notification.total,
            )
            self._publish(notification)
            return notification

    def _authorize(self, caller: str, kind: str, participant: str) -> None:
        if caller != self._owner:
            logger.warning("Rejected %s for %s: caller %r is not the owner",
                           kind, participant, caller)
            raise Unauthorized(
                "Caller is not the ledger owner",
                {"caller": caller, "operation": kind},
            )
        if self._journal is not None and self._journal.signer != self._owner:
            logger.warning("Rejected %s for %s: journal key does not belong to the owner",
                           kind, participant)
            raise Unauthorized(
                "Journal key does not belong to the ledger owner",
                {"signer": self._journal.signer, "operation": kind},
            )

    def _publish(self, notification: Notification) -> None:
        """
        Queue notification and, unless a delivery is already running
        further up the stack, drain the queue in sequence order. A watcher
        that mutates the ledger only queues; its notification reaches every
        watcher after the notification being delivered.
        """
        self._pending.append(notification)
        if self._delivering:
            return

        self._delivering = True
        try:
            while self._pending:
                current = self._pending.popleft()
                for watcher in list(self._watchers):
                    try:
                        watcher(current)
                    except Exception:
                        logger.exception(
                            "Watcher %r failed on %s #%d",
                            watcher, current.kind, current.sequence,
                        )
        finally:
            self._delivering = False

    def __repr__(self) -> str:
        return (
            f"Ledger(owner={self._owner[:16]!r}, "
            f"participants={len(self._records)}, "
            f"notifications={len(self._notifications)})"
        )
