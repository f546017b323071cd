"""Error taxonomy surfaced by the progression core.

Rejected submissions and lost unlock races are outcomes, not exceptions; see
``validators.Rejected`` and ``unlock_engine.UnlockStatus``.
"""

from __future__ import annotations


class QuestlineError(Exception):
    """Base class for errors raised by the progression core."""


class NotFoundError(QuestlineError):
    def __init__(self, entity: str, identifier: object) -> None:
        super().__init__(f"{entity} '{identifier}' not found")
        self.entity = entity
        self.identifier = identifier


class ForbiddenError(QuestlineError):
    pass


class ReviewConflictError(QuestlineError):
    pass


class InvalidWindowError(QuestlineError):
    pass


class CatalogError(QuestlineError):
    pass


class StoreUnavailableError(QuestlineError):
    """The ledger store failed mid-transaction; nothing was persisted."""


__all__ = [
    "CatalogError",
    "ForbiddenError",
    "InvalidWindowError",
    "NotFoundError",
    "QuestlineError",
    "ReviewConflictError",
    "StoreUnavailableError",
]
