"""
Unit tests for candlestick pattern detectors.
"""

from fx_decision.analytics.patterns import (
    detect_patterns,
    is_bearish_engulfing,
    is_bullish_engulfing,
    is_doji,
    is_hammer,
    is_morning_star,
    is_shooting_star,
    is_three_white_soldiers,
)
from tests.conftest import candle


# ============================================================================
# Single candle
# ============================================================================

def test_doji():
    assert is_doji(candle(1.1000, 1.1010, 1.0990, 1.1001))
    assert not is_doji(candle(1.1000, 1.1010, 1.0990, 1.1008))


def test_hammer_and_shooting_star():
    hammer = candle(1.1000, 1.1006, 1.0970, 1.1005)
    star = candle(1.1005, 1.1040, 1.0999, 1.1000)
    assert is_hammer(hammer)
    assert not is_shooting_star(hammer)
    assert is_shooting_star(star)
    assert not is_hammer(star)


# ============================================================================
# Two and three candles
# ============================================================================

def test_engulfing():
    bearish = candle(1.1010, 1.1012, 1.0998, 1.1000)
    bullish = candle(1.0998, 1.1020, 1.0995, 1.1015)
    assert is_bullish_engulfing(bearish, bullish)
    assert not is_bearish_engulfing(bearish, bullish)


def test_morning_star():
    first = candle(1.1050, 1.1052, 1.0998, 1.1000)
    middle = candle(1.0995, 1.1000, 1.0990, 1.0996)
    last = candle(1.1000, 1.1045, 1.0998, 1.1040)
    assert is_morning_star(first, middle, last)


def test_three_white_soldiers():
    bars = [
        candle(1.1000, 1.1012, 1.0998, 1.1010),
        candle(1.1005, 1.1022, 1.1003, 1.1020),
        candle(1.1015, 1.1032, 1.1013, 1.1030),
    ]
    assert is_three_white_soldiers(bars)
    assert not is_three_white_soldiers(bars[:2])


# ============================================================================
# Detector
# ============================================================================

def test_detect_patterns_needs_three_bars():
    assert detect_patterns([candle(1.1, 1.2, 1.0, 1.1)] * 2) == []


def test_detect_patterns_reports_signal_and_strength():
    bars = [
        candle(1.1020, 1.1022, 1.1008, 1.1010),
        candle(1.1010, 1.1012, 1.0998, 1.1000),
        candle(1.0998, 1.1020, 1.0995, 1.1015),
    ]
    matches = {m.name: m for m in detect_patterns(bars)}
    assert 'Bullish Engulfing' in matches
    assert matches['Bullish Engulfing'].signal == 'bullish'
    assert matches['Bullish Engulfing'].strength == 80
