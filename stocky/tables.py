"""
SQLAlchemy ORM models for the rewards ledger.

Database Schema:
- rewards: fractional share grants per user
- price_ticks: append-only price observations per symbol
- ledger_entries: double-entry postings, grouped by tx_id
- corporate_actions: audit record of every applied split, merger or delist

Ledger entries and corporate actions are never updated or deleted.
"""
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import (
    JSON, Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, TypeDecorator, Uuid,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalise to aware UTC; naive values (as read back from SQLite) are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ExactDecimal(TypeDecorator):
    """
    Decimal column that round-trips exactly on every backend.

    SQLite has no decimal storage and would coerce Numeric to a binary float,
    so there the value is kept as its decimal text. Arithmetic and sums over
    these columns happen in Python, never in SQL.
    """

    impl = Numeric
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(64))
        return dialect.type_descriptor(Numeric(asdecimal=True))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        return str(value) if dialect.name == "sqlite" else value

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, Decimal):
            return value
        return Decimal(str(value))


class Reward(Base):
    __tablename__ = "rewards"

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_id = Column(Uuid, nullable=False, index=True)
    stock_symbol = Column(String(32), nullable=False, index=True)
    quantity = Column(ExactDecimal, nullable=False)
    rewarded_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    idempotency_key = Column(String(255), unique=True, nullable=True)
    notes = Column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Reward(user_id='{self.user_id}', symbol='{self.stock_symbol}', quantity={self.quantity})>"


class PriceTick(Base):
    __tablename__ = "price_ticks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    stock_symbol = Column(String(32), nullable=False)
    price_inr = Column(ExactDecimal, nullable=False)
    fetched_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Latest-tick lookups: WHERE stock_symbol = ? ORDER BY fetched_at DESC
    __table_args__ = (
        Index("ix_price_ticks_symbol_fetched_at", "stock_symbol", "fetched_at"),
    )

    def __repr__(self) -> str:
        return f"<PriceTick(symbol='{self.stock_symbol}', price={self.price_inr}, at='{self.fetched_at}')>"


class LedgerEntry(Base):
    __tablename__ = "ledger_entries"

    id = Column(Uuid, primary_key=True, default=uuid4)
    tx_id = Column(Uuid, nullable=False, index=True)
    account = Column(String(64), nullable=False)
    entry_type = Column(String(6), nullable=False)
    amount_inr = Column(ExactDecimal, nullable=True)
    stock_symbol = Column(String(32), nullable=True)
    stock_quantity = Column(ExactDecimal, nullable=True)
    ref_id = Column(Uuid, ForeignKey("rewards.id"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<LedgerEntry(tx_id='{self.tx_id}', account='{self.account}', {self.entry_type} {self.amount_inr})>"


class CorporateActionRecord(Base):
    __tablename__ = "corporate_actions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    stock_symbol = Column(String(32), nullable=False, index=True)
    action_type = Column(String(16), nullable=False)
    parameter = Column(JSON, nullable=False)
    effective_date = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<CorporateAction(symbol='{self.stock_symbol}', type='{self.action_type}', parameter={self.parameter})>"
