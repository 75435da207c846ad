"""
Shared fixtures for the cardledger test suite.
"""

from pathlib import Path

import pytest

from cardledger import Ledger, PrincipalKey

from journal_helpers import OWNER


@pytest.fixture
def ledger() -> Ledger:
    """A fresh in-memory ledger owned by OWNER."""
    return Ledger(OWNER)


@pytest.fixture
def owner_key() -> PrincipalKey:
    return PrincipalKey.generate()


@pytest.fixture
def other_key() -> PrincipalKey:
    """A second independent principal, never the owner."""
    return PrincipalKey.generate()


@pytest.fixture
def journal_path(tmp_path: Path) -> Path:
    return tmp_path / "ledger" / "journal.jsonl"
