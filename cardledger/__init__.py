"""
cardledger/__init__.py

cardledger: tamper-evident disciplinary ledger.

A single owner registers participants and issues cautions and
dismissals; anyone may read a participant's record. Every accepted
transition becomes a notification, optionally persisted to a signed,
hash-chained JSONL journal that any watcher can verify offline.
"""

__version__         = "0.1.0"
__journal_version__ = "1.0"

from cardledger.core.crypto import PrincipalKey
from cardledger.core.exceptions import (
    AlreadyRegistered,
    AuthorizationError,
    CardLedgerError,
    ConfigError,
    JournalError,
    LedgerIntegrityError,
    NotRegistered,
    RegistrationError,
    Unauthorized,
    ValidationError,
)
from cardledger.core.journal import Journal
from cardledger.core.models import (
    GENESIS_HASH,
    JOURNAL_VERSION,
    EntryType,
    JournalEntry,
    Notification,
    NotificationType,
    ParticipantRecord,
)
from cardledger.core.replay import ReplayEngine, ReplaySummary
from cardledger.ledger import Ledger

__all__ = [
    # Core types
    "Ledger",
    "Journal",
    "JournalEntry",
    "Notification",
    "NotificationType",
    "EntryType",
    "ParticipantRecord",
    "PrincipalKey",
    "ReplayEngine",
    "ReplaySummary",
    # Errors
    "CardLedgerError",
    "AuthorizationError",
    "Unauthorized",
    "RegistrationError",
    "AlreadyRegistered",
    "NotRegistered",
    "ValidationError",
    "JournalError",
    "LedgerIntegrityError",
    "ConfigError",
    # Constants
    "GENESIS_HASH",
    "JOURNAL_VERSION",
]
