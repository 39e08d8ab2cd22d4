"""
Read-only reporting queries over rewards, prices and the ledger.

Nothing here mutates state; every method reads committed data through the
session it is given.
"""
from bisect import bisect_left, bisect_right
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from itertools import accumulate
from typing import Optional
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from .corporate_actions import DELISTED_NOTE
from .errors import PriceNotFoundError
from .models import (
    EntryType, HistoricalValue, HoldingValue, LedgerEntryView, PortfolioResponse,
    StatsResponse, SymbolTotal, TodayStock,
)
from .prices import DEFAULT_TIMEZONE, PriceStore
from .service import format_inr
from .tables import LedgerEntry, PriceTick, Reward, as_utc, utcnow

ZERO = Decimal("0")


class _Position:
    """Cumulative quantity of one symbol by local grant day."""

    def __init__(self, per_day: dict[date, Decimal]):
        self.days = sorted(per_day)
        self.cumulative = list(accumulate(per_day[d] for d in self.days))

    def held_on(self, day: date) -> Decimal:
        i = bisect_right(self.days, day)
        return self.cumulative[i - 1] if i else ZERO


class _PriceSeries:
    """Ticks of one symbol in fetch order; answers "last price before" by bisection."""

    def __init__(self):
        self.times: list[datetime] = []
        self.prices: list[Decimal] = []

    def add(self, fetched_at: datetime, price: Decimal) -> None:
        self.times.append(fetched_at)
        self.prices.append(price)

    def price_before(self, cutoff: datetime) -> Decimal:
        i = bisect_left(self.times, cutoff)
        return self.prices[i - 1] if i else ZERO


class ReportingService:
    def __init__(self, db: Session, tz_name: str = DEFAULT_TIMEZONE):
        self.db = db
        self.tz = ZoneInfo(tz_name)
        self.prices = PriceStore(db, tz_name)

    # === Activity ===

    def today_rewards(self, user_id: UUID, now: Optional[datetime] = None) -> list[TodayStock]:
        """Per-symbol totals of rewards granted since UTC midnight."""
        start, end = self._utc_day_bounds(now)
        rows = self.db.execute(
            select(Reward.stock_symbol, Reward.quantity, Reward.rewarded_at)
            .where(Reward.user_id == user_id, Reward.rewarded_at >= start, Reward.rewarded_at < end)
        ).all()

        totals = defaultdict(lambda: ZERO)
        first_at = {}
        for r in rows:
            rewarded_at = as_utc(r.rewarded_at)
            totals[r.stock_symbol] += r.quantity
            if r.stock_symbol not in first_at or rewarded_at < first_at[r.stock_symbol]:
                first_at[r.stock_symbol] = rewarded_at
        return [
            TodayStock(stock_symbol=symbol, quantity=totals[symbol], rewarded_at=first_at[symbol])
            for symbol in sorted(totals)
        ]

    # === Holdings & valuation ===

    def holdings(self, user_id: UUID) -> list[SymbolTotal]:
        """Quantity per symbol across all non-delisted rewards."""
        rows = self.db.execute(
            select(Reward.stock_symbol, Reward.quantity)
            .where(Reward.user_id == user_id)
            .where(or_(Reward.notes.is_(None), Reward.notes != DELISTED_NOTE))
        ).all()

        totals = defaultdict(lambda: ZERO)
        for r in rows:
            totals[r.stock_symbol] += r.quantity
        return [SymbolTotal(stock_symbol=symbol, quantity=totals[symbol]) for symbol in sorted(totals)]

    def portfolio(self, user_id: UUID) -> PortfolioResponse:
        holdings, total = self._valued_holdings(user_id)
        return PortfolioResponse(total_value_inr=format_inr(total), holdings=holdings)

    def stats(self, user_id: UUID, now: Optional[datetime] = None) -> StatsResponse:
        today = [
            SymbolTotal(stock_symbol=t.stock_symbol, quantity=t.quantity)
            for t in self.today_rewards(user_id, now)
        ]
        holdings, total = self._valued_holdings(user_id)
        return StatsResponse(today_totals=today, portfolio_value_inr=format_inr(total), per_stock=holdings)

    def historical_inr(self, user_id: UUID, days: int = 365, today: Optional[date] = None) -> list[HistoricalValue]:
        """
        Portfolio value for each past day (newest first).

        Covers ``today - days`` up to yesterday in the reporting timezone. A
        reward counts from the local day it was granted; days before the first
        reward are omitted. Missing prices value a position at zero.
        """
        today = today or utcnow().astimezone(self.tz).date()
        rows = self.db.execute(
            select(Reward.stock_symbol, Reward.quantity, Reward.rewarded_at).where(Reward.user_id == user_id)
        ).all()
        if not rows:
            return []

        # symbol -> quantity granted per local day
        granted = defaultdict(lambda: defaultdict(lambda: ZERO))
        for r in rows:
            granted[r.stock_symbol][as_utc(r.rewarded_at).astimezone(self.tz).date()] += r.quantity
        positions = {symbol: _Position(per_day) for symbol, per_day in granted.items()}
        series = self._price_series(set(positions))
        first_day = min(p.days[0] for p in positions.values())

        out = []
        for offset in range(1, days + 1):
            day = today - timedelta(days=offset)
            if day < first_day:
                break
            cutoff = datetime.combine(day + timedelta(days=1), time.min, tzinfo=self.tz)
            value = ZERO
            for symbol, position in positions.items():
                held = position.held_on(day)
                if held:
                    value += held * series[symbol].price_before(cutoff)
            out.append(HistoricalValue(day=day, inr_value=format_inr(value)))
        return out

    # === Ledger ===

    def ledger_entries(self, tx_id: UUID) -> list[LedgerEntryView]:
        entries = self.db.scalars(
            select(LedgerEntry).where(LedgerEntry.tx_id == tx_id).order_by(LedgerEntry.created_at)
        ).all()
        return [LedgerEntryView.model_validate(e) for e in entries]

    def transaction_balance(self, tx_id: UUID) -> tuple[Decimal, Decimal]:
        """Return (debits, credits) for a transaction, absent amounts counted as zero."""
        totals = {EntryType.DEBIT: ZERO, EntryType.CREDIT: ZERO}
        for entry in self.ledger_entries(tx_id):
            totals[entry.entry_type] += entry.amount_inr or ZERO
        return totals[EntryType.DEBIT], totals[EntryType.CREDIT]

    # === Helpers ===

    def _valued_holdings(self, user_id: UUID) -> tuple[list[HoldingValue], Decimal]:
        total = ZERO
        out = []
        for h in self.holdings(user_id):
            try:
                price = self.prices.latest_price(h.stock_symbol)
            except PriceNotFoundError:
                price = ZERO
            value = price * h.quantity
            total += value
            out.append(HoldingValue(
                stock=h.stock_symbol,
                quantity=h.quantity,
                price_inr=format_inr(price),
                value_inr=format_inr(value),
            ))
        return out, total

    def _price_series(self, symbols: set[str]) -> dict[str, _PriceSeries]:
        rows = self.db.execute(
            select(PriceTick.stock_symbol, PriceTick.fetched_at, PriceTick.price_inr)
            .where(PriceTick.stock_symbol.in_(symbols))
            .order_by(PriceTick.fetched_at, PriceTick.id)
        )
        series = {symbol: _PriceSeries() for symbol in symbols}
        for r in rows:
            series[r.stock_symbol].add(as_utc(r.fetched_at), r.price_inr)
        return series

    @staticmethod
    def _utc_day_bounds(now: Optional[datetime] = None) -> tuple[datetime, datetime]:
        now = as_utc(now) if now else utcnow()
        start = datetime.combine(now.date(), time.min, tzinfo=timezone.utc)
        return start, start + timedelta(days=1)
