"""
Price store: append-only time series of price observations per symbol.

The latest tick per symbol (by fetched_at) is the canonical current price.
Historical ticks are only ever touched by the corporate action bulk
operations ``rescale`` (SPLIT) and ``purge`` (DELIST).
"""
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import delete, desc, select
from sqlalchemy.orm import Session

from .errors import PriceNotFoundError, ValidationError
from .models import normalize_symbol
from .tables import PriceTick, as_utc, utcnow

DEFAULT_TIMEZONE = "Asia/Kolkata"


def end_of_day_utc(day: date, tz: ZoneInfo) -> datetime:
    """First instant after ``day`` in ``tz``, expressed in UTC."""
    return datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz).astimezone(timezone.utc)


class PriceStore:
    """Price ticks bound to one session. Symbols are normalised on the way in and on lookup."""

    def __init__(self, db: Session, tz_name: str = DEFAULT_TIMEZONE):
        self.db = db
        self.tz = ZoneInfo(tz_name)

    def latest_price(self, symbol: str) -> Decimal:
        symbol = normalize_symbol(symbol)
        tick = self._latest_tick(symbol)
        if tick is None:
            raise PriceNotFoundError(symbol)
        return tick.price_inr

    def latest_price_as_of(self, symbol: str, day: date) -> Decimal:
        """Latest price fetched on or before ``day`` (reporting timezone)."""
        symbol = normalize_symbol(symbol)
        tick = self._latest_tick(symbol, before=end_of_day_utc(day, self.tz))
        if tick is None:
            raise PriceNotFoundError(symbol, f"No price available for {symbol} as of {day.isoformat()}")
        return tick.price_inr

    def history(self, symbol: str) -> list[PriceTick]:
        return list(
            self.db.scalars(
                select(PriceTick)
                .where(PriceTick.stock_symbol == normalize_symbol(symbol))
                .order_by(PriceTick.fetched_at, PriceTick.id)
            )
        )

    def append(self, symbol: str, price: Decimal, fetched_at: Optional[datetime] = None) -> PriceTick:
        symbol = normalize_symbol(symbol)
        if price is None or price <= 0:
            raise ValidationError(f"Price for {symbol} must be positive, got {price}")
        tick = PriceTick(stock_symbol=symbol, price_inr=price, fetched_at=as_utc(fetched_at) if fetched_at else utcnow())
        self.db.add(tick)
        self.db.flush()
        return tick

    def rescale(self, symbol: str, ratio: Decimal) -> int:
        """Divide every historical price of ``symbol`` by ``ratio``."""
        ticks = self.history(symbol)
        for tick in ticks:
            tick.price_inr = tick.price_inr / ratio
        self.db.flush()
        return len(ticks)

    def purge(self, symbol: str) -> int:
        """Permanently delete every tick of ``symbol``."""
        result = self.db.execute(
            delete(PriceTick)
            .where(PriceTick.stock_symbol == normalize_symbol(symbol))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def _latest_tick(self, symbol: str, before: Optional[datetime] = None) -> Optional[PriceTick]:
        query = select(PriceTick).where(PriceTick.stock_symbol == symbol)
        if before is not None:
            query = query.where(PriceTick.fetched_at < before)
        query = query.order_by(desc(PriceTick.fetched_at), desc(PriceTick.id)).limit(1)
        return self.db.scalars(query).first()
