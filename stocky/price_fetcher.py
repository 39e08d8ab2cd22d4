"""
Mock price sampler.

Periodically appends one price tick per sample symbol through the price
store. Prices are random within +/-5% of a per-symbol base, rounded to whole
rupees.
"""
import logging
import random
import threading
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import schedule
from sqlalchemy import select
from sqlalchemy.orm import Session

from .db import SessionFactory, UnitOfWork
from .errors import StockyError
from .models import CorporateActionType
from .prices import PriceStore
from .tables import CorporateActionRecord, utcnow

logger = logging.getLogger(__name__)

DEFAULT_BASE_PRICE = 1000.0

BASE_PRICES = {
    "RELIANCE": 2600.0,
    "TCS": 3300.0,
    "INFY": 1500.0,
    "MAHINDRA": 900.0,
    "CISCO": 4500.0,
    "HDFC": 2500.0,
    "ICICI": DEFAULT_BASE_PRICE,
    "WIPRO": 400.0,
    "LT": 1800.0,
    "ADANI": 2000.0,
    "AXIS": 700.0,
    "KOTAK": 1800.0,
    "BAJAJ": 3500.0,
    "BHARTI": 700.0,
    "VEDANTA": 300.0,
}

SAMPLE_STOCKS = list(BASE_PRICES)


def random_price_for_symbol(symbol: str, rng: Optional[random.Random] = None) -> Decimal:
    rng = rng or random
    base = BASE_PRICES.get(symbol, DEFAULT_BASE_PRICE)
    change = rng.uniform(-0.05, 0.05)
    return Decimal(str(base * (1.0 + change))).quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def delisted_symbols(session: Session, symbols: list[str]) -> set[str]:
    """Symbols among ``symbols`` with a recorded DELIST action."""
    return set(session.scalars(
        select(CorporateActionRecord.stock_symbol)
        .where(CorporateActionRecord.action_type == CorporateActionType.DELIST.value)
        .where(CorporateActionRecord.stock_symbol.in_(symbols))
    ))


def fetch_and_store_prices(session_factory: SessionFactory, symbols: Optional[list[str]] = None) -> int:
    """
    Append one tick per symbol in a single unit of work.

    Delisted symbols are skipped so they stay without a price. Returns the
    number of ticks written.
    """
    symbols = symbols or SAMPLE_STOCKS
    fetched_at = utcnow()
    with UnitOfWork(session_factory) as session:
        skipped = delisted_symbols(session, symbols)
        active = [s for s in symbols if s not in skipped]
        logger.info("Fetching prices (mock) for %d symbols, %d delisted skipped", len(active), len(skipped))
        store = PriceStore(session)
        for symbol in active:
            price = random_price_for_symbol(symbol)
            store.append(symbol, price, fetched_at)
            logger.debug("Price stored %s -> %s", symbol, price)
    return len(active)


class PriceFetcher:
    """
    Samples prices once on start and then every ``interval_minutes``.

    The job lives on its own ``schedule.Scheduler``; a daemon thread pumps
    ``run_pending`` until ``stop()`` is called.
    """

    def __init__(self, session_factory: SessionFactory, interval_minutes: int, poll_seconds: float = 1.0):
        self.session_factory = session_factory
        self.poll_seconds = poll_seconds
        self.scheduler = schedule.Scheduler()
        self.job = self.scheduler.every(interval_minutes).minutes.do(self.fetch)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def fetch(self) -> None:
        try:
            fetch_and_store_prices(self.session_factory)
        except StockyError as e:
            logger.error("Price fetch failed: %s", e)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="price-fetcher", daemon=True)
        self._thread.start()
        logger.info("Price fetcher scheduled every %s %s", self.job.interval, self.job.unit)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None

    def run(self) -> None:
        self.scheduler.run_all()
        while not self._stop.is_set():
            self.scheduler.run_pending()
            self._stop.wait(self.poll_seconds)
