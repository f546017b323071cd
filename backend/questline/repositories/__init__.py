"""Repositories over the ledger store."""

from .ledger import LedgerRepository, ledger

__all__ = ["LedgerRepository", "ledger"]
