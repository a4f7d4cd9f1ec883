"""
Unit tests for the TechnicalAnalyzer.

Tests:
- Steady uptrend reads as a BUY trend
- Flat candles read as a range with zero bandwidth
- Fewer than 2 candles give the neutral fallback
- Multi-timeframe fusion, caching and async candle fetching
"""

import pytest

from fx_decision.analytics.technical_analyzer import TechnicalAnalyzer, determine_trend
from fx_decision.errors import UnsupportedTimeframeError
from tests.conftest import flat_candles, trending_candles


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def analyzer():
    return TechnicalAnalyzer({'cache_ttl_seconds': 60})


class FakeCandleProvider:
    """Serves canned candles; raises for timeframes listed in `failing`."""

    def __init__(self, candles_by_tf, failing=()):
        self.candles_by_tf = candles_by_tf
        self.failing = set(failing)
        self.calls = []

    async def fetch_candles(self, pair, timeframe, count):
        self.calls.append((pair, timeframe, count))
        if timeframe in self.failing:
            raise ConnectionError(f"{timeframe} feed down")
        return self.candles_by_tf.get(timeframe, [])


# ============================================================================
# Single timeframe
# ============================================================================

def test_uptrend_is_buy_trend(analyzer, uptrend_m15):
    frame = analyzer.analyze_timeframe(uptrend_m15, 'M15', 'EURUSD')

    assert frame.indicators.adx.value > 25
    assert frame.regime.state == 'trend'
    assert frame.direction == 'BUY'
    assert frame.score > 0
    assert frame.last_price == pytest.approx(uptrend_m15[-1].close)


def test_flat_candles_read_as_range(analyzer):
    frame = analyzer.analyze_timeframe(flat_candles(20), 'M15', 'EURUSD')

    assert frame.indicators.bollinger.bandwidth == pytest.approx(0.0)
    assert frame.regime.state == 'range'


@pytest.mark.parametrize("count", [0, 1])
def test_fewer_than_two_candles_is_neutral_fallback(analyzer, count):
    frame = analyzer.analyze_timeframe(trending_candles(count), 'M15', 'EURUSD')

    assert frame.is_fallback
    assert frame.score == 0.0
    assert frame.direction == 'NEUTRAL'
    assert frame.patterns == []
    assert frame.indicators.rsi is None


def test_d1_carries_ranges_and_pivots(analyzer):
    frame = analyzer.analyze_timeframe(trending_candles(40, timeframe='D1'), 'D1', 'EURUSD')
    assert frame.ranges is not None
    assert frame.pivot_points is not None


def test_dict_candles_are_normalized(analyzer, uptrend_m15):
    raw = [c.to_dict() for c in reversed(uptrend_m15)]
    frame = analyzer.analyze_timeframe(raw, 'M15', 'EURUSD')
    assert frame.candle_count == len(uptrend_m15)
    assert frame.last_price == pytest.approx(uptrend_m15[-1].close)


# ============================================================================
# Multi-timeframe
# ============================================================================

def test_analyze_fuses_timeframes(analyzer, candles_by_tf):
    analysis = analyzer.analyze('EURUSD', candles_by_tf)

    assert set(analysis.timeframes) == {'M15', 'H1', 'H4', 'D1'}
    assert analysis.overall_score > 0
    assert analysis.direction == 'BUY'
    assert analysis.trend in ('bullish', 'strong_bullish')
    assert analysis.latest_price == pytest.approx(candles_by_tf['M15'][-1].close)
    assert analysis.direction_summary['BUY'] >= 1


def test_missing_timeframe_falls_back(analyzer, uptrend_m15):
    analysis = analyzer.analyze('EURUSD', {'M15': uptrend_m15})
    assert analysis.timeframes['H4'].is_fallback
    assert not analysis.timeframes['M15'].is_fallback


def test_unsupported_timeframe_raises(analyzer, uptrend_m15):
    with pytest.raises(UnsupportedTimeframeError):
        analyzer.analyze('EURUSD', {'M7': uptrend_m15})
    with pytest.raises(ValueError):
        analyzer.analyze('EURUSD', {'M15': uptrend_m15}, timeframes=['X1'])


def test_repeated_analysis_hits_cache(analyzer, candles_by_tf):
    first = analyzer.analyze('EURUSD', candles_by_tf)
    second = analyzer.analyze('EURUSD', candles_by_tf)
    assert first is second
    assert analyzer.cache.hits == 1


def test_determine_trend_bands():
    assert determine_trend(50) == 'strong_bullish'
    assert determine_trend(20) == 'bullish'
    assert determine_trend(0) == 'neutral'
    assert determine_trend(-20) == 'bearish'
    assert determine_trend(-50) == 'strong_bearish'


# ============================================================================
# Async fetch
# ============================================================================

@pytest.mark.asyncio
async def test_analyze_pair_fetches_every_timeframe(analyzer, candles_by_tf):
    provider = FakeCandleProvider(candles_by_tf)
    analysis = await analyzer.analyze_pair('EURUSD', provider)

    assert [call[1] for call in provider.calls] == ['M15', 'H1', 'H4', 'D1']
    assert analysis.direction == 'BUY'


@pytest.mark.asyncio
async def test_failed_fetch_degrades_to_fallback(analyzer, candles_by_tf):
    provider = FakeCandleProvider(candles_by_tf, failing=['H4'])
    analysis = await analyzer.analyze_pair('EURUSD', provider)

    assert analysis.timeframes['H4'].is_fallback
    assert not analysis.timeframes['H1'].is_fallback
