"""
cardledger/core/models.py

Data model for the disciplinary ledger and its journal.

═══════════════════════════════════════════════════════════════════
JOURNAL CONTRACTS
═══════════════════════════════════════════════════════════════════

CONTRACT 1: Signing
    bytes_signed = canonicalize(entry.to_signing_dict())
    algorithm    = Ed25519, base64url without padding

CONTRACT 2: Chain
    causal_hash  = SHA-256(canonicalize(prev.to_signing_dict()))
    first entry  = GENESIS_HASH ("0" * 64)

CONTRACT 3: Genesis
    entry 0 is always EntryType.LEDGER_CREATED with payload {"owner": O}.
    every later entry is a notification signed by O.

CONTRACT 4: Notification payloads
    participant_registered  {"participant": P}
    caution_issued          {"participant": P, "total_cautions": n}
    dismissal_issued        {"participant": P, "total_dismissals": n}
═══════════════════════════════════════════════════════════════════
"""

import secrets
import uuid
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Tuple

from cardledger.core.canonical import canonical_hash, canonicalize
from cardledger.core.crypto import PrincipalKey, is_identity_hex
from cardledger.core.exceptions import AlreadyRegistered, NotRegistered, ValidationError
from cardledger.core.time import is_journal_timestamp, journal_timestamp


JOURNAL_VERSION = "1.0"
GENESIS_HASH    = "0" * 64

# 16 random bytes per entry
_NONCE_HEX_LENGTH = 32


# ─────────────────────────────────────────────────────────────
# Vocabulary
# ─────────────────────────────────────────────────────────────

class NotificationType:
    """Kinds of accepted state transition a watcher can observe."""
    PARTICIPANT_REGISTERED = "participant_registered"
    CAUTION_ISSUED         = "caution_issued"
    DISMISSAL_ISSUED       = "dismissal_issued"


class EntryType(NotificationType):
    """Journal entry types: the genesis entry plus every notification kind."""
    LEDGER_CREATED = "ledger_created"


NOTIFICATION_TYPES = frozenset({
    NotificationType.PARTICIPANT_REGISTERED,
    NotificationType.CAUTION_ISSUED,
    NotificationType.DISMISSAL_ISSUED,
})

ENTRY_TYPES = NOTIFICATION_TYPES | {EntryType.LEDGER_CREATED}

# Payload key carrying the updated counter, per notification kind.
_TOTAL_KEYS: Dict[str, str] = {
    NotificationType.CAUTION_ISSUED:   "total_cautions",
    NotificationType.DISMISSAL_ISSUED: "total_dismissals",
}


def validate_identity(value: Any, role: str = "identity") -> str:
    """Return value if it is a usable identity string, else raise ValidationError."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(
            f"{role} must be a non-empty string",
            {"got": repr(value)},
        )
    return value


# ─────────────────────────────────────────────────────────────
# Ledger state
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ParticipantRecord:
    """Disciplinary record of one registered participant."""
    participant:     str
    caution_count:   int  = 0
    dismissal_count: int  = 0
    registered:      bool = True

    def as_tuple(self) -> Tuple[int, int]:
        return (self.caution_count, self.dismissal_count)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "participant":     self.participant,
            "caution_count":   self.caution_count,
            "dismissal_count": self.dismissal_count,
            "registered":      self.registered,
        }


def advance_record(
    current:     Optional[ParticipantRecord],
    kind:        str,
    participant: str,
) -> ParticipantRecord:
    """
    The record that results from applying one accepted transition.

    Raises AlreadyRegistered when registering an existing participant and
    NotRegistered when cautioning or dismissing an unknown one.
    """
    if kind == NotificationType.PARTICIPANT_REGISTERED:
        if current is not None:
            raise AlreadyRegistered(
                "Participant is already registered", {"participant": participant}
            )
        return ParticipantRecord(participant=participant)

    if kind not in _TOTAL_KEYS:
        raise ValueError(f"Unknown notification kind '{kind}'")
    if current is None:
        raise NotRegistered(
            "Participant is not registered", {"participant": participant}
        )
    if kind == NotificationType.CAUTION_ISSUED:
        return replace(current, caution_count=current.caution_count + 1)
    return replace(current, dismissal_count=current.dismissal_count + 1)


def counter_for(record: ParticipantRecord, kind: str) -> Optional[int]:
    """The counter a notification of this kind reports, None for registrations."""
    if kind == NotificationType.CAUTION_ISSUED:
        return record.caution_count
    if kind == NotificationType.DISMISSAL_ISSUED:
        return record.dismissal_count
    return None


@dataclass(frozen=True)
class Notification:
    """
    One accepted state transition, as seen by an external watcher.

    total is the counter value after the transition (None for
    registrations). sequence is the position in the ledger's
    notification stream, starting at 0.
    """
    kind:        str
    participant: str
    total:       Optional[int]
    sequence:    int

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"participant": self.participant}
        if self.kind in _TOTAL_KEYS:
            payload[_TOTAL_KEYS[self.kind]] = self.total
        return payload

    @classmethod
    def from_payload(
        cls,
        kind:     str,
        payload:  Dict[str, Any],
        sequence: int,
    ) -> "Notification":
        """Rebuild a notification from a journal payload. Raises ValidationError."""
        errors = notification_payload_errors(kind, payload)
        if errors:
            raise ValidationError(
                f"Malformed {kind} payload",
                {"errors": "; ".join(errors)},
            )
        total_key = _TOTAL_KEYS.get(kind)
        return cls(
            kind=        kind,
            participant= payload["participant"],
            total=       payload[total_key] if total_key else None,
            sequence=    sequence,
        )


def notification_payload_errors(kind: str, payload: Any) -> List[str]:
    """List every way payload fails CONTRACT 4 for the given kind."""
    if kind not in NOTIFICATION_TYPES:
        return [f"unknown notification kind '{kind}'"]
    if not isinstance(payload, dict):
        return [f"payload must be dict, got {type(payload).__name__}"]

    errors: List[str] = []
    participant = payload.get("participant")
    if not isinstance(participant, str) or not participant.strip():
        errors.append("participant must be a non-empty string")

    total_key = _TOTAL_KEYS.get(kind)
    expected  = {"participant", total_key} if total_key else {"participant"}
    extra     = set(payload) - expected
    if extra:
        errors.append(f"unexpected payload keys: {sorted(extra)}")

    if total_key:
        total = payload.get(total_key)
        # bool is an int subclass; a counter is never a bool
        if isinstance(total, bool) or not isinstance(total, int) or total < 1:
            errors.append(f"{total_key} must be a positive int, got {total!r}")
    return errors


# ─────────────────────────────────────────────────────────────
# SchemaValidationResult
# ─────────────────────────────────────────────────────────────

@dataclass
class SchemaValidationResult:
    """bool(result) is True iff valid. Returned, not raised."""
    valid:  bool
    errors: List[str]

    def __bool__(self) -> bool:
        return self.valid

    def __repr__(self) -> str:
        if self.valid:
            return "SchemaValidationResult(VALID)"
        return f"SchemaValidationResult(INVALID, errors={self.errors})"


# ─────────────────────────────────────────────────────────────
# JournalEntry
# ─────────────────────────────────────────────────────────────

@dataclass
class JournalEntry:
    """One signed, chained line of the journal."""

    journal_version:   str
    entry_id:          str
    entry_type:        str
    signer_public_key: str
    sequence:          int
    nonce:             str
    timestamp:         str
    causal_hash:       str
    payload:           Dict[str, Any]
    signature:         Optional[str] = None

    @classmethod
    def create(
        cls,
        entry_type:        str,
        signer_public_key: str,
        sequence:          int,
        payload:           Dict[str, Any],
        prev:              Optional["JournalEntry"] = None,
    ) -> "JournalEntry":
        """
        Create an unsigned entry chained onto prev.

            entry = JournalEntry.create(...).sign(key)
        """
        if entry_type not in ENTRY_TYPES:
            raise ValueError(
                f"Invalid entry_type '{entry_type}'. Valid: {sorted(ENTRY_TYPES)}"
            )
        if not isinstance(payload, dict):
            raise TypeError(f"payload must be dict, got {type(payload).__name__}")
        if not isinstance(sequence, int) or sequence < 0:
            raise ValueError(f"sequence must be non-negative int, got {sequence!r}")
        if not is_identity_hex(signer_public_key):
            raise ValueError(
                f"signer_public_key must be 64-char lowercase hex, got {signer_public_key!r}"
            )

        return cls(
            journal_version=   JOURNAL_VERSION,
            entry_id=          f"cl-{uuid.uuid4()}",
            entry_type=        entry_type,
            signer_public_key= signer_public_key,
            sequence=          sequence,
            nonce=             secrets.token_hex(_NONCE_HEX_LENGTH // 2),
            timestamp=         journal_timestamp(),
            causal_hash=       cls.expected_causal_hash_from(prev),
            payload=           payload,
            signature=         None,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JournalEntry":
        """
        Deserialize a JSONL line. Trusts the data: call validate_schema()
        before relying on any field. Raises KeyError on a missing field.
        """
        return cls(
            journal_version=   data["journal_version"],
            entry_id=          data["entry_id"],
            entry_type=        data["entry_type"],
            signer_public_key= data["signer_public_key"],
            sequence=          data["sequence"],
            nonce=             data["nonce"],
            timestamp=         data["timestamp"],
            causal_hash=       data["causal_hash"],
            payload=           data.get("payload", {}),
            signature=         data.get("signature"),
        )

    # ── Schema ────────────────────────────────────────────────

    def validate_schema(self) -> SchemaValidationResult:
        errors: List[str] = []

        if self.journal_version != JOURNAL_VERSION:
            errors.append(
                f"journal_version: expected '{JOURNAL_VERSION}', got '{self.journal_version}'"
            )

        if not isinstance(self.entry_id, str) or not self.entry_id.startswith("cl-"):
            errors.append(f"entry_id must start with 'cl-', got {self.entry_id!r}")

        if not is_identity_hex(self.signer_public_key):
            errors.append(
                f"signer_public_key must be 64-char lowercase hex, got {self.signer_public_key!r}"
            )

        if isinstance(self.sequence, bool) or not isinstance(self.sequence, int) or self.sequence < 0:
            errors.append(f"sequence must be non-negative int, got {self.sequence!r}")

        if not isinstance(self.nonce, str) or len(self.nonce) != _NONCE_HEX_LENGTH:
            errors.append(f"nonce must be exactly {_NONCE_HEX_LENGTH} hex chars")
        else:
            try:
                bytes.fromhex(self.nonce)
            except ValueError:
                errors.append(f"nonce is not valid hex: {self.nonce!r}")

        if not is_journal_timestamp(self.timestamp):
            errors.append(
                f"timestamp {self.timestamp!r} is not YYYY-MM-DDTHH:MM:SS.mmmZ"
            )

        if not is_identity_hex(self.causal_hash):
            errors.append("causal_hash must be 64 lowercase hex chars")

        if self.entry_type == EntryType.LEDGER_CREATED:
            if not isinstance(self.payload, dict) or set(self.payload) != {"owner"}:
                errors.append("ledger_created payload must be exactly {'owner': ...}")
            elif not isinstance(self.payload["owner"], str) or not self.payload["owner"].strip():
                errors.append("ledger_created owner must be a non-empty string")
        elif self.entry_type in NOTIFICATION_TYPES:
            errors.extend(notification_payload_errors(self.entry_type, self.payload))
        else:
            errors.append(
                f"entry_type '{self.entry_type}' not in {sorted(ENTRY_TYPES)}"
            )

        return SchemaValidationResult(valid=len(errors) == 0, errors=errors)

    # ── Canonical forms ───────────────────────────────────────

    def to_signing_dict(self) -> Dict[str, Any]:
        """Every field except signature. Signed, and hashed into the next entry."""
        return {
            "causal_hash":       self.causal_hash,
            "entry_id":          self.entry_id,
            "entry_type":        self.entry_type,
            "journal_version":   self.journal_version,
            "nonce":             self.nonce,
            "payload":           self.payload,
            "sequence":          self.sequence,
            "signer_public_key": self.signer_public_key,
            "timestamp":         self.timestamp,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Full serialization for JSONL persistence."""
        d = self.to_signing_dict()
        d["signature"] = self.signature
        return d

    def canonical_bytes_for_signing(self) -> bytes:
        return canonicalize(self.to_signing_dict())

    def chain_hash(self) -> str:
        """The causal_hash the entry after this one must carry."""
        return canonical_hash(self.to_signing_dict())

    @staticmethod
    def expected_causal_hash_from(prev: Optional["JournalEntry"]) -> str:
        if prev is None:
            return GENESIS_HASH
        return prev.chain_hash()

    # ── Signing and verification ──────────────────────────────

    def sign(self, key: PrincipalKey) -> "JournalEntry":
        """Sign in place and return self."""
        self.signature = key.sign(self.canonical_bytes_for_signing())
        return self

    def verify_signature(self) -> bool:
        """True iff the signature is valid for signer_public_key. Never raises."""
        if not self.signature:
            return False
        try:
            data = self.canonical_bytes_for_signing()
        except (TypeError, ValueError):
            return False
        return PrincipalKey.verify_detached(data, self.signature, self.signer_public_key)

    def verify_chain(self, prev: Optional["JournalEntry"]) -> bool:
        return self.causal_hash == self.expected_causal_hash_from(prev)

    def is_signed(self) -> bool:
        return bool(self.signature)
