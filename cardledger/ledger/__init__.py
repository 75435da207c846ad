"""
cardledger Ledger - owner-gated record of cautions and dismissals

The ledger decides which transitions are accepted; the journal makes
them durable.
"""

from cardledger.ledger.ledger import Ledger

__all__ = ["Ledger"]
