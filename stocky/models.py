from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .errors import UnbalancedTransactionError, ValidationError


def normalize_symbol(value: Optional[str], field: str = "stock_symbol") -> str:
    """Trimmed, upper-cased ticker. Every stored symbol goes through here."""
    symbol = (value or "").strip().upper()
    if not symbol:
        raise ValidationError(f"{field} is required")
    return symbol


class EntryType(str, Enum):
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


class CorporateActionType(str, Enum):
    SPLIT = "SPLIT"
    MERGER = "MERGER"
    DELIST = "DELIST"


class AccountKind(str, Enum):
    STOCK = "stock"
    CASH = "cash"
    FEES = "fees"
    CORPORATE_ACTION = "corporate_action"


@dataclass(frozen=True)
class Account:
    """A ledger account: a closed kind plus a qualifier such as the stock symbol."""

    kind: AccountKind
    name: str

    @classmethod
    def stock(cls, symbol: str) -> "Account":
        return cls(AccountKind.STOCK, symbol)

    @classmethod
    def cash(cls) -> "Account":
        return cls(AccountKind.CASH, "exchange")

    @classmethod
    def fees(cls) -> "Account":
        return cls(AccountKind.FEES, "brokerage_stt_gst")

    @classmethod
    def corporate_action(cls, action_type: CorporateActionType) -> "Account":
        return cls(AccountKind.CORPORATE_ACTION, action_type.value.lower())

    @property
    def code(self) -> str:
        return f"{self.kind.value}:{self.name}"

    @classmethod
    def parse(cls, code: str) -> "Account":
        kind, sep, name = code.partition(":")
        if not sep or not name:
            raise ValueError(f"Malformed account code: {code!r}")
        return cls(AccountKind(kind), name)

    def __str__(self) -> str:
        return self.code


@dataclass(frozen=True)
class Posting:
    account: Account
    entry_type: EntryType
    amount: Optional[Decimal] = None
    stock_symbol: Optional[str] = None
    stock_quantity: Optional[Decimal] = None


def ensure_balanced(postings: list[Posting]) -> Decimal:
    """Check that debits equal credits, counting absent amounts as zero.

    Returns the balanced total.
    """
    debits = sum((p.amount or Decimal("0") for p in postings if p.entry_type == EntryType.DEBIT), Decimal("0"))
    credits = sum((p.amount or Decimal("0") for p in postings if p.entry_type == EntryType.CREDIT), Decimal("0"))
    if debits != credits:
        raise UnbalancedTransactionError(f"Debits {debits} do not equal credits {credits}")
    return debits


class RewardRequest(BaseModel):
    user_id: UUID
    stock_symbol: str = Field(..., min_length=1)
    quantity: Decimal = Field(..., gt=0, description="Number of shares granted, may be fractional")
    idempotency_key: Optional[str] = Field(None, description="Unique key to prevent duplicates")
    notes: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "user_id": "550e8400-e29b-41d4-a716-446655440000",
            "stock_symbol": "RELIANCE",
            "quantity": "2.5",
            "idempotency_key": "onboarding-bonus-550e8400",
        }
    })


class CorporateActionRequest(BaseModel):
    action: str = Field(..., description="SPLIT, MERGER or DELIST")
    symbol: str = Field(..., min_length=1)
    ratio: Optional[Decimal] = None
    new_symbol: Optional[str] = None
    effective_date: Optional[datetime] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {"action": "SPLIT", "symbol": "RELIANCE", "ratio": "2"}
    })


class RewardResult(BaseModel):
    reward_id: UUID
    tx_id: UUID
    stock_symbol: str
    quantity: Decimal
    estimated_cost_inr: str


class CorporateActionResult(BaseModel):
    action_type: CorporateActionType
    symbol: str
    ratio: Optional[Decimal] = None
    new_symbol: Optional[str] = None
    effective_date: datetime
    rewards_updated: int = 0
    prices_updated: int = 0
    message: str = "Corporate action applied successfully"


class LedgerEntryView(BaseModel):
    id: UUID
    tx_id: UUID
    account: str
    entry_type: EntryType
    amount_inr: Optional[Decimal] = None
    stock_symbol: Optional[str] = None
    stock_quantity: Optional[Decimal] = None
    ref_id: Optional[UUID] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SymbolTotal(BaseModel):
    stock_symbol: str
    quantity: Decimal


class TodayStock(SymbolTotal):
    rewarded_at: datetime


class HoldingValue(BaseModel):
    stock: str
    quantity: Decimal
    price_inr: str
    value_inr: str


class PortfolioResponse(BaseModel):
    total_value_inr: str
    holdings: list[HoldingValue]


class StatsResponse(BaseModel):
    today_totals: list[SymbolTotal]
    portfolio_value_inr: str
    per_stock: list[HoldingValue]


class HistoricalValue(BaseModel):
    day: date
    inr_value: str
