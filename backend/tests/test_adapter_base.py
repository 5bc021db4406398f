"""Tests for adapter plumbing: clean-and-sort, candle building, rate limit and retry."""

import time
from unittest.mock import AsyncMock, patch

import pytest

from btc_dashboard.models import Candle, Category, Timeframe
from btc_dashboard.services.adapters import (
    BaseAdapter,
    RateLimiter,
    RetryPolicy,
    TransientError,
    UnsupportedCategoryError,
    build_candles_from_prices,
    clean_and_sort,
)


class TestCleanAndSort:
    """Tests for candle validation, ordering and truncation."""

    def test_sorts_and_deduplicates(self):
        raw = [
            {"time": 300, "open": 2, "high": 3, "low": 1, "close": 2.5},
            {"time": 100, "open": 1, "high": 2, "low": 0.5, "close": 1.5},
            {"time": 300, "open": 9, "high": 9, "low": 9, "close": 9},
            {"time": 200, "open": 1.5, "high": 2, "low": 1, "close": 2},
        ]
        result = clean_and_sort(raw)

        assert [c.time for c in result] == [100, 200, 300]
        assert result[2].open == 2

    def test_drops_invalid_records(self):
        raw = [
            {"time": 100, "open": 1, "high": 2, "low": 0.5, "close": 1.5},
            {"time": -5, "open": 1, "high": 2, "low": 0.5, "close": 1.5},
            {"time": "200", "open": 1, "high": 2, "low": 0.5, "close": 1.5},
            {"time": 300, "open": float("nan"), "high": 2, "low": 0.5, "close": 1.5},
            {"time": 400, "open": 1, "high": "2", "low": 0.5, "close": 1.5},
            {"time": 500, "open": 0, "high": 2, "low": 0.5, "close": 1.5},
            {"time": 600, "open": True, "high": 2, "low": 0.5, "close": 1.5},
            None,
        ]
        result = clean_and_sort(raw)

        assert [c.time for c in result] == [100]

    def test_output_satisfies_ohlc_invariant(self):
        raw = [
            Candle(time=100, open=10, high=9, low=11, close=12, volume=1),
            Candle(time=200, open=12, high=15, low=8, close=9, volume=-3),
        ]
        result = clean_and_sort(raw)

        for candle in result:
            assert candle.high >= max(candle.open, candle.close)
            assert candle.low <= min(candle.open, candle.close)
            assert candle.volume >= 0
        assert result[1].volume == 0.0

    def test_times_strictly_increasing(self):
        raw = [{"time": t, "open": 1, "high": 1, "low": 1, "close": 1} for t in (5, 3, 3, 9, 1, 9)]
        times = [c.time for c in clean_and_sort(raw)]

        assert times == sorted(set(times))

    def test_truncates_to_most_recent(self):
        raw = [{"time": t, "open": 1, "high": 1, "low": 1, "close": 1} for t in range(1, 101)]
        result = clean_and_sort(raw, max_candles=50)

        assert len(result) == 50
        assert result[0].time == 51
        assert result[-1].time == 100

    def test_empty_input(self):
        assert clean_and_sort(None) == []
        assert clean_and_sort([]) == []


class TestBuildCandlesFromPrices:
    """Tests for grouping raw price points into candles."""

    def test_groups_into_buckets(self):
        points = [
            (1000, 100.0, 1.0),
            (1100, 110.0, 2.0),
            (1250, 95.0, 1.0),
            (1300, 105.0, 4.0),
            (1500, 120.0, 1.0),
        ]
        candles = build_candles_from_prices(points, Timeframe.M5)

        assert [c.time for c in candles] == [900, 1200, 1500]
        first, second, third = candles
        assert first.open == 100.0
        assert first.close == 110.0
        assert first.volume == 3.0
        # open is the previous bucket's close
        assert second.open == 110.0
        assert second.close == 105.0
        assert second.low == 95.0
        assert second.high == 110.0
        assert third.open == 105.0

    def test_unsorted_points(self):
        points = [(1300, 105.0, 0.0), (1000, 100.0, 0.0)]
        candles = build_candles_from_prices(points, Timeframe.M5)

        assert [c.time for c in candles] == [900, 1200]


class TestRetryPolicy:
    """Tests for retry with exponential backoff."""

    def test_delay_doubles_and_caps(self):
        policy = RetryPolicy(max_attempts=6, base_delay=1.0, max_delay=10.0)
        assert [policy.delay_for(a) for a in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 10.0]

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        func = AsyncMock(side_effect=[TransientError("x", "boom"), TransientError("x", "boom"), "ok"])
        policy = RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=10.0)

        with patch("btc_dashboard.services.adapters.base.asyncio.sleep", new_callable=AsyncMock) as sleep:
            result = await policy.run(func)

        assert result == "ok"
        assert func.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_final_error_propagates_unchanged(self):
        error = ValueError("malformed payload")
        func = AsyncMock(side_effect=error)
        policy = RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0)

        with pytest.raises(ValueError) as exc_info:
            await policy.run(func)

        assert exc_info.value is error
        assert func.await_count == 3

    @pytest.mark.asyncio
    async def test_unsupported_is_not_retried(self):
        func = AsyncMock(side_effect=UnsupportedCategoryError("x", Category.OHLC))
        policy = RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0)

        with pytest.raises(UnsupportedCategoryError):
            await policy.run(func)

        assert func.await_count == 1


class TestRateLimiter:
    """Tests for minimum request spacing."""

    @pytest.mark.asyncio
    async def test_first_request_is_immediate(self):
        limiter = RateLimiter(0.05)
        assert await limiter.acquire() == 0.0
        assert limiter.last_request_at is not None

    @pytest.mark.asyncio
    async def test_enforces_spacing(self):
        limiter = RateLimiter(0.05)
        await limiter.acquire()
        start = time.monotonic()
        waited = await limiter.acquire()

        assert waited > 0
        assert time.monotonic() - start >= 0.04


class MarketOnlyAdapter(BaseAdapter):
    name = "market-only"
    display_name = "MarketOnly"
    SUPPORTED_CATEGORIES = frozenset({Category.MARKET})

    async def get_market_data(self):
        return "market"


class TestBaseAdapterDispatch:
    """Tests for category dispatch and unsupported categories."""

    @pytest.mark.asyncio
    async def test_fetch_dispatches_by_category(self):
        adapter = MarketOnlyAdapter()
        assert await adapter.fetch(Category.MARKET) == "market"
        assert await adapter.fetch("market") == "market"

    @pytest.mark.asyncio
    async def test_unsupported_category_raises(self):
        adapter = MarketOnlyAdapter()

        with pytest.raises(UnsupportedCategoryError) as exc_info:
            await adapter.fetch(Category.BLOCKCHAIN)

        assert exc_info.value.category == Category.BLOCKCHAIN

    @pytest.mark.asyncio
    async def test_unimplemented_method_raises_unsupported(self):
        adapter = MarketOnlyAdapter()

        with pytest.raises(UnsupportedCategoryError):
            await adapter.get_supply_data()

    def test_supports(self):
        adapter = MarketOnlyAdapter()
        assert adapter.supports("market")
        assert not adapter.supports(Category.OHLC)
        assert adapter.supported_categories() == frozenset({Category.MARKET})

    def test_health_status(self):
        status = MarketOnlyAdapter().get_health_status()
        assert status["name"] == "MarketOnly"
        assert status["last_request_time"] is None
        assert status["rate_limit_delay_seconds"] == 1.0
