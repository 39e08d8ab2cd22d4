"""
Stock Rewards Ledger

This package provides:
- Idempotent reward recording with balanced double-entry ledger postings
- Retroactive corporate actions (split, merger, delist) applied atomically
- An append-only price store with latest and as-of lookups
- Read-only portfolio, stats and historical valuation reports
"""

from .corporate_actions import CorporateActionService
from .errors import (
    DuplicateRequestError,
    PersistenceError,
    PriceNotFoundError,
    StockyError,
    UnsupportedActionError,
    ValidationError,
)
from .models import Account, AccountKind, CorporateActionType, EntryType
from .prices import PriceStore
from .reporting import ReportingService
from .service import RewardLedgerService

__all__ = [
    "Account",
    "AccountKind",
    "CorporateActionType",
    "EntryType",
    "RewardLedgerService",
    "CorporateActionService",
    "PriceStore",
    "ReportingService",
    "StockyError",
    "ValidationError",
    "UnsupportedActionError",
    "DuplicateRequestError",
    "PriceNotFoundError",
    "PersistenceError",
]
