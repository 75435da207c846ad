"""
cardledger/core/crypto.py

Principal identities and Ed25519 signing.

A principal is whoever holds an Ed25519 private key. Its identity is the
raw public key rendered as 64 lowercase hex characters. The ledger never
authenticates anyone itself: it compares identities. Possession of the
key is what lets the CLI and the journal speak for an identity.

Key contracts:
    key.identity                : @property, 64-char lowercase hex
    key.sign(data)              : bytes -> base64url str, no padding
    PrincipalKey.verify_detached: @staticmethod, needs only the identity hex
"""

import base64
import re
from pathlib import Path

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
    load_pem_private_key,
)

_IDENTITY_RE = re.compile(r"^[0-9a-f]{64}$")


def is_identity_hex(value: object) -> bool:
    """True if value looks like a raw Ed25519 public key in lowercase hex."""
    return isinstance(value, str) and bool(_IDENTITY_RE.match(value))


class PrincipalKey:
    """
    Ed25519 key pair for one principal.

    Construction:
        PrincipalKey.generate()             new random key
        PrincipalKey.from_file(path)        load PEM (PKCS8, unencrypted)
        PrincipalKey.from_private_bytes(b)  load raw 32-byte seed
    """

    def __init__(self, private_key: Ed25519PrivateKey) -> None:
        self._private_key: Ed25519PrivateKey = private_key
        self._public_key:  Ed25519PublicKey  = private_key.public_key()
        self._identity:    str               = (
            self._public_key
            .public_bytes(Encoding.Raw, PublicFormat.Raw)
            .hex()
        )

    # ── Construction ──────────────────────────────────────────

    @classmethod
    def generate(cls) -> "PrincipalKey":
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_file(cls, path: Path) -> "PrincipalKey":
        """
        Load an Ed25519 private key from a PEM file.
        Raises FileNotFoundError if path does not exist.
        Raises ValueError if the file is not an Ed25519 PEM key.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Key file not found: {path}")
        try:
            private_key = load_pem_private_key(path.read_bytes(), password=None)
        except (TypeError, ValueError) as exc:
            raise ValueError(
                f"Failed to load Ed25519 key from {path}: {exc}"
            ) from exc
        if not isinstance(private_key, Ed25519PrivateKey):
            raise ValueError(f"Key file {path} does not contain an Ed25519 private key")
        return cls(private_key)

    @classmethod
    def from_private_bytes(cls, seed: bytes) -> "PrincipalKey":
        if len(seed) != 32:
            raise ValueError(f"Ed25519 seed must be 32 bytes, got {len(seed)}")
        return cls(Ed25519PrivateKey.from_private_bytes(seed))

    # ── Identity ──────────────────────────────────────────────

    @property
    def identity(self) -> str:
        """64-char lowercase hex public key. A @property, no parentheses."""
        return self._identity

    # ── Signing ───────────────────────────────────────────────

    def sign(self, data: bytes) -> str:
        """Sign raw bytes. Returns base64url without '=' padding (86 chars)."""
        raw_sig = self._private_key.sign(data)
        return base64.urlsafe_b64encode(raw_sig).rstrip(b"=").decode("ascii")

    @staticmethod
    def verify_detached(data: bytes, signature_b64: str, identity: str) -> bool:
        """
        Verify a signature using only the signer's identity hex.

        Returns False for any failure (bad key, bad encoding, wrong length,
        tampered data). Never raises.
        """
        if not is_identity_hex(identity) or not isinstance(signature_b64, str):
            return False
        try:
            pub        = Ed25519PublicKey.from_public_bytes(bytes.fromhex(identity))
            padded_sig = signature_b64 + "=" * (-len(signature_b64) % 4)
            raw_sig    = base64.urlsafe_b64decode(padded_sig)
        except ValueError:
            return False

        if len(raw_sig) != 64:
            return False

        try:
            pub.verify(raw_sig, data)
        except InvalidSignature:
            return False
        return True

    # ── Persistence ───────────────────────────────────────────

    def save(self, path: Path) -> None:
        """Write the private key as PKCS8 PEM. Creates parent directories."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        pem = self._private_key.private_bytes(
            encoding=             Encoding.PEM,
            format=               PrivateFormat.PKCS8,
            encryption_algorithm= NoEncryption(),
        )
        path.write_bytes(pem)

    def __repr__(self) -> str:
        return f"PrincipalKey(identity={self._identity[:16]}...)"


