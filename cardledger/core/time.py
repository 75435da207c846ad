"""
cardledger/core/time.py

The single timestamp source for journal entries.

Wire format: YYYY-MM-DDTHH:MM:SS.mmmZ
             (UTC, exactly 3 fractional digits, Z suffix)
"""

import re
from datetime import datetime, timezone

TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")


def journal_timestamp() -> str:
    """Current UTC time in journal wire format."""
    now = datetime.now(timezone.utc)
    ms  = now.microsecond // 1000
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ms:03d}Z"


def is_journal_timestamp(value: object) -> bool:
    """True if value is a string in journal wire format."""
    return isinstance(value, str) and bool(TIMESTAMP_RE.match(value))
