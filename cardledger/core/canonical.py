"""
cardledger/core/canonical.py

Canonical JSON encoding, RFC 8785 (JCS).

Every byte string that is signed or hashed in cardledger comes out of
this module. Journal entries, chain hashes and the chain head all depend
on the encoding being identical across processes and machines.

RFC 8785: https://www.rfc-editor.org/rfc/rfc8785
"""

import hashlib
from typing import Any, Dict

try:
    import jcs as _jcs
except ImportError as exc:
    raise ImportError(
        "cardledger requires the 'jcs' package for RFC 8785 canonical JSON.\n"
        "Install with: pip install jcs\n"
        f"Original error: {exc}"
    ) from exc


def canonicalize(obj: Dict[str, Any]) -> bytes:
    """
    Encode a dict to RFC 8785 canonical JSON bytes.

    Key order of the input is irrelevant. Values must already be JSON
    primitives; timestamps travel as strings, never datetime objects.
    """
    return _jcs.canonicalize(obj)


def canonical_hash(obj: Dict[str, Any]) -> str:
    """Lowercase hex SHA-256 of the canonical form (64 characters)."""
    return hashlib.sha256(canonicalize(obj)).hexdigest()
