"""
Candlestick pattern detectors.

Pure functions over immutable `Candle` values. Each predicate inspects one,
two or three bars; `detect_patterns` runs all of them against the tail of a
series and returns the matches with their signal and base strength.
"""

from dataclasses import dataclass
from typing import List, Sequence

from .candle import Candle


@dataclass(frozen=True)
class PatternMatch:
    """A detected pattern. signal is bullish, bearish, reversal or neutral."""
    name: str
    signal: str
    strength: float

    def to_dict(self) -> dict:
        return {'name': self.name, 'signal': self.signal, 'strength': self.strength}


# ============================================================================
# Single-candle patterns
# ============================================================================

def is_doji(candle: Candle) -> bool:
    return candle.body < candle.range * 0.1


def is_spinning_top(candle: Candle) -> bool:
    body = candle.body
    if candle.range == 0:
        return False
    return (
        body > 0
        and body <= candle.range * 0.35
        and candle.upper_shadow >= body * 0.8
        and candle.lower_shadow >= body * 0.8
    )


def is_hammer(candle: Candle) -> bool:
    body = candle.body
    return candle.lower_shadow > body * 2 and candle.upper_shadow < body * 0.5


def is_shooting_star(candle: Candle) -> bool:
    body = candle.body
    return candle.upper_shadow > body * 2 and candle.lower_shadow < body * 0.5


# ============================================================================
# Two-candle patterns
# ============================================================================

def is_bullish_engulfing(prev: Candle, current: Candle) -> bool:
    return (
        prev.is_bearish
        and current.is_bullish
        and current.open < prev.close
        and current.close > prev.open
    )


def is_bearish_engulfing(prev: Candle, current: Candle) -> bool:
    return (
        prev.is_bullish
        and current.is_bearish
        and current.open > prev.close
        and current.close < prev.open
    )


def is_bullish_harami(prev: Candle, current: Candle) -> bool:
    if not prev.is_bearish or not current.is_bullish or prev.body == 0:
        return False
    return (
        current.body <= prev.body * 0.6
        and current.open >= prev.close
        and current.close <= prev.open
    )


def is_bearish_harami(prev: Candle, current: Candle) -> bool:
    if not prev.is_bullish or not current.is_bearish or prev.body == 0:
        return False
    return (
        current.body <= prev.body * 0.6
        and current.open <= prev.close
        and current.close >= prev.open
    )


def is_piercing_line(prev: Candle, current: Candle) -> bool:
    if not (prev.is_bearish and current.is_bullish) or prev.body == 0:
        return False
    midpoint = prev.open - prev.body / 2
    return current.open <= prev.close and midpoint < current.close < prev.open


def is_dark_cloud_cover(prev: Candle, current: Candle) -> bool:
    if not (prev.is_bullish and current.is_bearish) or prev.body == 0:
        return False
    midpoint = prev.open + prev.body / 2
    return current.open >= prev.close and prev.open < current.close < midpoint


# ============================================================================
# Three-candle patterns
# ============================================================================

def is_morning_star(first: Candle, middle: Candle, last: Candle) -> bool:
    return (
        first.is_bearish
        and middle.body < first.range * 0.3
        and last.is_bullish
        and last.close > (first.open + first.close) / 2
    )


def is_evening_star(first: Candle, middle: Candle, last: Candle) -> bool:
    return (
        first.is_bullish
        and middle.body < first.range * 0.3
        and last.is_bearish
        and last.close < (first.open + first.close) / 2
    )


def _uniform_bodies(candles: Sequence[Candle]) -> bool:
    bodies = [c.body for c in candles]
    if any(body == 0 for body in bodies):
        return False
    average = sum(bodies) / len(bodies)
    return all(body >= average * 0.7 for body in bodies)


def is_three_white_soldiers(candles: Sequence[Candle]) -> bool:
    if len(candles) != 3 or not _uniform_bodies(candles):
        return False
    for idx, candle in enumerate(candles):
        if not candle.is_bullish:
            return False
        if idx == 0:
            continue
        prev = candles[idx - 1]
        if not (prev.open <= candle.open <= prev.close and candle.close > prev.close):
            return False
    return True


def is_three_black_crows(candles: Sequence[Candle]) -> bool:
    if len(candles) != 3 or not _uniform_bodies(candles):
        return False
    for idx, candle in enumerate(candles):
        if not candle.is_bearish:
            return False
        if idx == 0:
            continue
        prev = candles[idx - 1]
        if not (prev.close <= candle.open <= prev.open and candle.close < prev.close):
            return False
    return True


# ============================================================================
# Detector
# ============================================================================

def detect_patterns(candles: Sequence[Candle]) -> List[PatternMatch]:
    """
    Detect candlestick patterns at the end of a series.

    Args:
        candles: Oldest-first series; at least 3 bars are required

    Returns:
        Matches in detection order (single, two, then three-candle patterns)
    """
    if len(candles) < 3:
        return []

    recent = list(candles[-5:])
    last = recent[-1]
    prev = recent[-2]
    matches: List[PatternMatch] = []

    if is_doji(last):
        matches.append(PatternMatch('Doji', 'reversal', 60))
    if is_spinning_top(last):
        matches.append(PatternMatch('Spinning Top', 'neutral', 55))
    if is_hammer(last):
        matches.append(PatternMatch('Hammer', 'bullish', 70))
    if is_shooting_star(last):
        matches.append(PatternMatch('Shooting Star', 'bearish', 70))

    if is_bullish_engulfing(prev, last):
        matches.append(PatternMatch('Bullish Engulfing', 'bullish', 80))
    if is_bearish_engulfing(prev, last):
        matches.append(PatternMatch('Bearish Engulfing', 'bearish', 80))
    if is_bullish_harami(prev, last):
        matches.append(PatternMatch('Bullish Harami', 'bullish', 65))
    if is_bearish_harami(prev, last):
        matches.append(PatternMatch('Bearish Harami', 'bearish', 65))
    if is_piercing_line(prev, last):
        matches.append(PatternMatch('Piercing Line', 'bullish', 82))
    if is_dark_cloud_cover(prev, last):
        matches.append(PatternMatch('Dark Cloud Cover', 'bearish', 82))

    triple = recent[-3:]
    if is_morning_star(*triple):
        matches.append(PatternMatch('Morning Star', 'bullish', 85))
    if is_evening_star(*triple):
        matches.append(PatternMatch('Evening Star', 'bearish', 85))
    if is_three_white_soldiers(triple):
        matches.append(PatternMatch('Three White Soldiers', 'bullish', 88))
    if is_three_black_crows(triple):
        matches.append(PatternMatch('Three Black Crows', 'bearish', 88))

    return matches
