"""
Unit Tests for the Price Store and the mock price sampler
"""

import random
from datetime import date
from decimal import Decimal

import pytest

from stocky.db import UnitOfWork
from stocky.errors import PriceNotFoundError, ValidationError
from stocky.price_fetcher import (
    BASE_PRICES, SAMPLE_STOCKS, PriceFetcher, fetch_and_store_prices, random_price_for_symbol,
)
from stocky.prices import PriceStore
from stocky.tables import PriceTick

from .conftest import utc


class TestLookups:
    """Latest and as-of price lookups."""

    def test_latest_price(self, add_price, session_factory):
        add_price("TCS", "3200", utc(2026, 1, 1, 4))
        add_price("TCS", "3300", utc(2026, 1, 2, 4))
        add_price("INFY", "1500", utc(2026, 1, 3, 4))

        with session_factory() as session:
            assert PriceStore(session).latest_price("TCS") == Decimal("3300")

    def test_latest_price_missing(self, session_factory):
        with session_factory() as session:
            with pytest.raises(PriceNotFoundError) as exc_info:
                PriceStore(session).latest_price("NOPE")
        assert exc_info.value.symbol == "NOPE"

    def test_latest_price_as_of_day(self, add_price, session_factory):
        add_price("TCS", "3200", utc(2026, 1, 1, 4))
        add_price("TCS", "3250", utc(2026, 1, 1, 10))
        add_price("TCS", "3300", utc(2026, 1, 3, 4))

        with session_factory() as session:
            store = PriceStore(session)
            assert store.latest_price_as_of("TCS", date(2026, 1, 1)) == Decimal("3250")
            # No tick on the 2nd: carries forward
            assert store.latest_price_as_of("TCS", date(2026, 1, 2)) == Decimal("3250")
            assert store.latest_price_as_of("TCS", date(2026, 1, 3)) == Decimal("3300")
            with pytest.raises(PriceNotFoundError):
                store.latest_price_as_of("TCS", date(2025, 12, 31))

    def test_as_of_uses_reporting_timezone(self, add_price, session_factory):
        """20:00 UTC on Jan 1 is already Jan 2 in Asia/Kolkata."""
        add_price("TCS", "3200", utc(2026, 1, 1, 4))
        add_price("TCS", "3400", utc(2026, 1, 1, 20))

        with session_factory() as session:
            assert PriceStore(session, "Asia/Kolkata").latest_price_as_of("TCS", date(2026, 1, 1)) == Decimal("3200")
            assert PriceStore(session, "UTC").latest_price_as_of("TCS", date(2026, 1, 1)) == Decimal("3400")

    def test_symbols_are_case_insensitive(self, add_price, session_factory, fetch_all):
        add_price("infy", "1500")
        add_price(" Infy ", "1510")

        assert {t.stock_symbol for t in fetch_all(PriceTick)} == {"INFY"}
        with session_factory() as session:
            store = PriceStore(session)
            assert store.latest_price("Infy") == Decimal("1510")
            assert len(store.history("infy")) == 2

    def test_history_is_ordered(self, add_price, session_factory):
        add_price("TCS", "3300", utc(2026, 1, 2))
        add_price("TCS", "3200", utc(2026, 1, 1))

        with session_factory() as session:
            assert [t.price_inr for t in PriceStore(session).history("TCS")] == [Decimal("3200"), Decimal("3300")]


class TestMutations:
    """Append, rescale and purge."""

    def test_append_rejects_non_positive_price(self, session_factory):
        with pytest.raises(ValidationError):
            with UnitOfWork(session_factory) as session:
                PriceStore(session).append("TCS", Decimal("0"))

    def test_rescale_only_touches_symbol(self, add_price, session_factory, fetch_all):
        add_price("TCS", "3000")
        add_price("INFY", "1500")

        with UnitOfWork(session_factory) as session:
            assert PriceStore(session).rescale("TCS", Decimal("4")) == 1

        prices = {t.stock_symbol: t.price_inr for t in fetch_all(PriceTick)}
        assert prices == {"TCS": Decimal("750"), "INFY": Decimal("1500")}

    def test_rescale_is_exact(self, add_price, session_factory, fetch_all):
        add_price("TCS", "3000.1")

        with UnitOfWork(session_factory) as session:
            PriceStore(session).rescale("TCS", Decimal("3"))

        assert fetch_all(PriceTick)[0].price_inr == Decimal("3000.1") / Decimal("3")

    def test_purge(self, add_price, session_factory, fetch_all):
        add_price("TCS", "3000")
        add_price("TCS", "3100")
        add_price("INFY", "1500")

        with UnitOfWork(session_factory) as session:
            assert PriceStore(session).purge("TCS") == 2

        assert [t.stock_symbol for t in fetch_all(PriceTick)] == ["INFY"]


class TestPriceFetcher:
    """Mock price sampling."""

    def test_random_price_within_five_percent(self):
        rng = random.Random(42)
        for _ in range(50):
            price = random_price_for_symbol("RELIANCE", rng)
            assert Decimal("2470") <= price <= Decimal("2730")
            assert price == price.to_integral_value()

    def test_unknown_symbol_uses_default_base(self):
        price = random_price_for_symbol("UNKNOWN", random.Random(1))
        assert Decimal("950") <= price <= Decimal("1050")

    def test_fetch_and_store_prices(self, session_factory, fetch_all):
        count = fetch_and_store_prices(session_factory)

        assert count == len(SAMPLE_STOCKS)
        ticks = fetch_all(PriceTick)
        assert {t.stock_symbol for t in ticks} == set(BASE_PRICES)
        assert all(t.price_inr > 0 for t in ticks)

    def test_delisted_symbols_are_skipped(self, session_factory, action_service, fetch_all):
        action_service.apply("DELIST", "WIPRO")

        count = fetch_and_store_prices(session_factory)

        assert count == len(SAMPLE_STOCKS) - 1
        assert "WIPRO" not in {t.stock_symbol for t in fetch_all(PriceTick)}
        with session_factory() as session:
            with pytest.raises(PriceNotFoundError):
                PriceStore(session).latest_price("WIPRO")

    def test_fetcher_job_schedule(self, session_factory):
        fetcher = PriceFetcher(session_factory, interval_minutes=60)

        assert fetcher.job.interval == 60
        assert fetcher.job.unit == "minutes"
        assert fetcher.scheduler.jobs == [fetcher.job]

    def test_fetcher_job_writes_ticks(self, session_factory, fetch_all):
        fetcher = PriceFetcher(session_factory, interval_minutes=60)

        fetcher.scheduler.run_all()

        assert len(fetch_all(PriceTick)) == len(SAMPLE_STOCKS)

    def test_fetcher_thread_runs_and_stops(self, session_factory, fetch_all):
        fetcher = PriceFetcher(session_factory, interval_minutes=60, poll_seconds=0.01)
        fetcher.start()
        fetcher.stop()

        assert len(fetch_all(PriceTick)) in (0, len(SAMPLE_STOCKS))
