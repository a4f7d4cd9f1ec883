"""
Unit tests for technical indicators.

Tests:
- Moving averages and their position signals
- RSI flat / one-sided / insufficient data
- MACD signal line and crossover
- Bollinger zero width
- Stochastic, ATR and the simplified ADX proxy
- Fibonacci and linear regression
"""

import pytest

from fx_decision.analytics.candle import closes_of
from fx_decision.analytics.indicators import (
    calculate_adx,
    calculate_atr,
    calculate_bollinger,
    calculate_ema_value,
    calculate_fibonacci,
    calculate_ichimoku,
    calculate_macd,
    calculate_macd_series,
    calculate_rsi,
    calculate_rsi_series,
    calculate_sma_levels,
    calculate_stochastic,
    identify_swings,
    linear_regression,
)
from tests.conftest import candle, flat_candles, trending_candles


# ============================================================================
# Moving averages
# ============================================================================

def test_sma_levels_skip_periods_longer_than_series():
    closes = [1.0 + i * 0.01 for i in range(60)]
    levels = calculate_sma_levels(closes, (20, 50, 200))

    assert levels[200] is None
    assert levels[20].value == pytest.approx(sum(closes[-20:]) / 20)
    assert levels[20].signal == 'bullish'
    assert levels[50].distance > 0


def test_ema_of_constant_series_is_constant():
    assert calculate_ema_value([1.25] * 30, 9) == pytest.approx(1.25)
    assert calculate_ema_value([1.25] * 5, 9) is None


# ============================================================================
# RSI
# ============================================================================

def test_rsi_flat_series_reads_50():
    reading = calculate_rsi([1.1] * 20)
    assert reading.value == pytest.approx(50.0)
    assert reading.signal == 'neutral'


def test_rsi_without_losses_reads_100():
    reading = calculate_rsi([1.0 + i * 0.001 for i in range(30)])
    assert reading.value == pytest.approx(100.0)
    assert reading.signal == 'overbought'


def test_rsi_needs_period_plus_one():
    assert calculate_rsi([1.0] * 14) is None
    assert calculate_rsi([1.0] * 15) is not None


def test_rsi_series_stamped_with_bar_times(uptrend_m15):
    series = calculate_rsi_series(uptrend_m15)
    assert len(series) == len(uptrend_m15) - 14
    assert series[-1].time == uptrend_m15[-1].time


# ============================================================================
# MACD
# ============================================================================

def test_macd_series_carries_signal_after_seed(uptrend_m15):
    series = calculate_macd_series(uptrend_m15)
    assert series[0].signal is None
    assert series[-1].signal is not None
    assert series[-1].histogram == pytest.approx(series[-1].value - series[-1].signal)


def test_macd_bullish_in_uptrend(uptrend_m15):
    reading = calculate_macd(uptrend_m15)
    assert reading.macd > 0
    assert reading.crossover == 'bullish'


def test_macd_requires_slow_plus_signal_bars():
    assert calculate_macd(trending_candles(30)) is None


# ============================================================================
# Bands and oscillators
# ============================================================================

def test_bollinger_zero_width_position_50():
    reading = calculate_bollinger([1.1] * 20)
    assert reading.bandwidth == pytest.approx(0.0)
    assert reading.position == 50.0
    assert reading.signal == 'neutral'


def test_stochastic_zero_range_repeats_fifty():
    reading = calculate_stochastic(flat_candles(20))
    assert reading.k == pytest.approx(50.0)
    assert reading.crossover == 'neutral'


def test_stochastic_bounds(uptrend_m15):
    reading = calculate_stochastic(uptrend_m15)
    assert 0 <= reading.k <= 100
    assert 0 <= reading.d <= 100


# ============================================================================
# ATR / ADX
# ============================================================================

def test_atr_of_uniform_bars(uptrend_m15):
    reading = calculate_atr(uptrend_m15)
    assert reading.value == pytest.approx(0.0002)
    assert reading.volatility == 'low'


def test_adx_proxy_strong_bullish_in_uptrend(uptrend_m15):
    reading = calculate_adx(uptrend_m15)
    assert reading.value > 25
    assert reading.trend == 'strong'
    assert reading.direction == 'bullish'


def test_adx_zero_when_atr_zero():
    reading = calculate_adx(flat_candles(20))
    assert reading.value == 0.0
    assert reading.trend == 'weak'


def test_ichimoku_needs_52_bars(uptrend_m15):
    assert calculate_ichimoku(uptrend_m15[:51]) is None
    assert calculate_ichimoku(uptrend_m15).signal == 'bullish'


# ============================================================================
# Fibonacci / swings / regression
# ============================================================================

def test_fibonacci_nearest_level_at_top_of_uptrend(uptrend_m15):
    closes = closes_of(uptrend_m15)
    reading = calculate_fibonacci(closes)
    assert reading.nearest_level == 0.0
    assert reading.nearest_price == pytest.approx(reading.high)
    assert calculate_fibonacci(closes[:19]) is None


def test_identify_swings_finds_peak_and_trough():
    bars = [
        candle(1.0, 1.1, 0.9, 1.0, time=i)
        for i in range(3)
    ] + [candle(1.0, 1.5, 0.9, 1.0, time=3)] + [
        candle(1.0, 1.1, 0.9, 1.0, time=4 + i)
        for i in range(3)
    ] + [candle(1.0, 1.1, 0.5, 1.0, time=7)] + [
        candle(1.0, 1.1, 0.9, 1.0, time=8 + i)
        for i in range(3)
    ]
    swings = identify_swings(bars, lookback=3)
    assert [s.index for s in swings.highs] == [3]
    assert [s.index for s in swings.lows] == [7]


def test_linear_regression_perfect_fit():
    fit = linear_regression([0, 1, 2, 3], [1, 3, 5, 7])
    assert fit.slope == pytest.approx(2.0)
    assert fit.intercept == pytest.approx(1.0)
    assert fit.r_squared == pytest.approx(1.0)


def test_linear_regression_degenerate_inputs():
    fit = linear_regression([], [])
    assert (fit.slope, fit.intercept, fit.r_squared) == (0.0, 0.0, 0.0)
