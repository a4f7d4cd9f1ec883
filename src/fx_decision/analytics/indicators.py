"""
Technical Indicators - moving averages, oscillators and volatility measures.

Implements:
1. SMA / EMA levels with price-vs-average signal
2. RSI (Wilder smoothing) and the RSI series used for divergences
3. MACD with a 9-period signal EMA, plus the full MACD series
4. Bollinger Bands, Stochastic %K/%D, ATR
5. ADX proxy (directional-move sums over ATR, not full Wilder smoothing)
6. Ichimoku (9/26/52) and Fibonacci retracement
7. Swing detection and least-squares regression

Every function returns None (or an empty list) when there is not enough data;
nothing here raises for short or flat series.
"""

import logging
import math
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np

from .candle import Candle, closes_of, highs_of, lows_of

logger = logging.getLogger(__name__)

# Histogram values this small are treated as a flat MACD/signal cross.
MACD_FLAT_EPSILON = 1e-9
STOCH_FLAT_EPSILON = 1e-6

FIBONACCI_RATIOS = (0.0, 23.6, 38.2, 50.0, 61.8, 78.6, 100.0)


# ============================================================================
# Result types
# ============================================================================

@dataclass
class MovingAverageLevel:
    """One SMA/EMA level. signal is bullish, bearish or neutral (price on the average)."""
    period: int
    value: float
    signal: str
    distance: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class RSIReading:
    value: float
    signal: str  # overbought / oversold / neutral
    trend: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class MACDReading:
    macd: float
    signal: float
    histogram: float
    crossover: str
    strength: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class BollingerReading:
    upper: float
    middle: float
    lower: float
    bandwidth: float
    position: float
    signal: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class StochasticReading:
    k: float
    d: float
    signal: str
    crossover: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ATRReading:
    value: float
    percentage: float
    volatility: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ADXReading:
    value: float
    plus_di: float
    minus_di: float
    trend: str  # strong / moderate / weak
    direction: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class IchimokuReading:
    tenkan: float
    kijun: float
    senkou_a: float
    senkou_b: float
    signal: str
    cloud_thickness: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class FibonacciReading:
    levels: Dict[float, float]
    nearest_level: float
    nearest_price: float
    high: float
    low: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SeriesPoint:
    """A timestamped oscillator value (RSI or MACD line)."""
    time: int
    value: float
    signal: Optional[float] = None
    histogram: Optional[float] = None


@dataclass
class Swing:
    time: int
    price: float
    index: int


@dataclass
class SwingSet:
    highs: List[Swing] = field(default_factory=list)
    lows: List[Swing] = field(default_factory=list)


@dataclass
class RegressionFit:
    slope: float
    intercept: float
    r_squared: float


# ============================================================================
# Moving averages
# ============================================================================

def _position_signal(price: float, reference: float) -> str:
    if price > reference:
        return 'bullish'
    if price < reference:
        return 'bearish'
    return 'neutral'


def calculate_ema_value(prices: Sequence[float], period: int) -> Optional[float]:
    """
    EMA seeded with the SMA of the first `period` prices.

    Args:
        prices: Closing prices (oldest first)
        period: EMA period

    Returns:
        Latest EMA value or None if insufficient data
    """
    if period <= 0 or len(prices) < period:
        return None

    multiplier = 2 / (period + 1)
    ema = float(np.mean(prices[:period]))
    for price in prices[period:]:
        ema = (price - ema) * multiplier + ema
    return float(ema)


def calculate_sma_levels(prices: Sequence[float], periods: Sequence[int]) -> Dict[int, Optional[MovingAverageLevel]]:
    """SMA per period with the signal of the latest close against it."""
    result: Dict[int, Optional[MovingAverageLevel]] = {}
    for period in periods:
        if len(prices) < period:
            result[period] = None
            continue
        sma = float(np.mean(prices[-period:]))
        current = float(prices[-1])
        result[period] = MovingAverageLevel(
            period=period,
            value=sma,
            signal=_position_signal(current, sma),
            distance=(current - sma) / sma * 100 if sma else 0.0,
        )
    return result


def calculate_ema_levels(prices: Sequence[float], periods: Sequence[int]) -> Dict[int, Optional[MovingAverageLevel]]:
    """EMA per period with the signal of the latest close against it."""
    result: Dict[int, Optional[MovingAverageLevel]] = {}
    for period in periods:
        ema = calculate_ema_value(prices, period)
        if ema is None:
            result[period] = None
            continue
        current = float(prices[-1])
        result[period] = MovingAverageLevel(
            period=period,
            value=ema,
            signal=_position_signal(current, ema),
            distance=(current - ema) / ema * 100 if ema else 0.0,
        )
    return result


# ============================================================================
# RSI
# ============================================================================

def _rsi_from_averages(avg_gain: float, avg_loss: float) -> float:
    if avg_gain == 0 and avg_loss == 0:
        return 50.0
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100 - 100 / (1 + rs)


def _wilder_averages(prices: Sequence[float], period: int):
    """Yield (index, avg_gain, avg_loss) for each close from `period` onward."""
    deltas = np.diff(np.asarray(prices, dtype=float))
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    avg_gain = float(np.mean(gains[:period]))
    avg_loss = float(np.mean(losses[:period]))
    yield period, avg_gain, avg_loss

    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        yield i + 1, avg_gain, avg_loss


def calculate_rsi(prices: Sequence[float], period: int = 14) -> Optional[RSIReading]:
    """
    Calculate Relative Strength Index (RSI).

    RSI = 100 - (100 / (1 + RS)), RS = Average Gain / Average Loss, with the
    averages seeded by a simple mean and then smoothed with Wilder's method.

    A perfectly flat series reads 50; a series with no losses reads 100.

    Args:
        prices: Closing prices (oldest first)
        period: RSI period (default: 14)

    Returns:
        RSIReading or None if insufficient data
    """
    if len(prices) < period + 1:
        logger.debug(f"Insufficient data for RSI calculation: need {period + 1}, got {len(prices)}")
        return None

    avg_gain = avg_loss = 0.0
    for _, avg_gain, avg_loss in _wilder_averages(prices, period):
        pass

    value = _rsi_from_averages(avg_gain, avg_loss)
    if value > 70:
        signal = 'overbought'
    elif value < 30:
        signal = 'oversold'
    else:
        signal = 'neutral'
    return RSIReading(value=value, signal=signal, trend='bullish' if value > 50 else 'bearish')


def calculate_rsi_series(candles: Sequence[Candle], period: int = 14) -> List[SeriesPoint]:
    """RSI value for every bar from `period` onward, stamped with the bar time."""
    if len(candles) <= period:
        return []
    prices = closes_of(candles)
    return [
        SeriesPoint(time=candles[idx].time, value=round(_rsi_from_averages(gain, loss), 2))
        for idx, gain, loss in _wilder_averages(prices, period)
    ]


# ============================================================================
# MACD
# ============================================================================

def calculate_macd_series(
    candles: Sequence[Candle],
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> List[SeriesPoint]:
    """
    MACD line, signal line and histogram for every bar after the slow EMA seed.

    The signal line is seeded with the mean of the first `signal_period` MACD
    values; points before that carry signal/histogram None.
    """
    if len(candles) < slow_period + signal_period:
        return []

    closes = closes_of(candles)
    mult_fast = 2 / (fast_period + 1)
    mult_slow = 2 / (slow_period + 1)
    mult_signal = 2 / (signal_period + 1)

    ema_fast = float(np.mean(closes[:fast_period]))
    for price in closes[fast_period:slow_period]:
        ema_fast = (price - ema_fast) * mult_fast + ema_fast
    ema_slow = float(np.mean(closes[:slow_period]))

    series: List[SeriesPoint] = []
    macd_values: List[float] = []
    signal: Optional[float] = None

    for i in range(slow_period, len(closes)):
        price = closes[i]
        ema_fast = (price - ema_fast) * mult_fast + ema_fast
        ema_slow = (price - ema_slow) * mult_slow + ema_slow
        macd_value = float(ema_fast - ema_slow)
        macd_values.append(macd_value)

        if len(macd_values) == signal_period:
            signal = float(np.mean(macd_values))
        elif signal is not None:
            signal = (macd_value - signal) * mult_signal + signal

        series.append(SeriesPoint(
            time=candles[i].time,
            value=macd_value,
            signal=signal,
            histogram=None if signal is None else macd_value - signal,
        ))

    return series


def calculate_macd(
    candles: Sequence[Candle],
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> Optional[MACDReading]:
    """
    Latest MACD reading.

    Crossover follows the sign of the histogram. When MACD and signal coincide
    (a steady trend) the sign of the MACD line decides instead.
    """
    series = calculate_macd_series(candles, fast_period, slow_period, signal_period)
    if not series or series[-1].signal is None:
        return None

    last = series[-1]
    histogram = last.histogram
    if abs(histogram) <= MACD_FLAT_EPSILON:
        histogram = 0.0
        reference = last.value
    else:
        reference = histogram

    if reference > 0:
        crossover = 'bullish'
    elif reference < 0:
        crossover = 'bearish'
    else:
        crossover = 'neutral'

    return MACDReading(
        macd=last.value,
        signal=last.signal,
        histogram=histogram,
        crossover=crossover,
        strength=abs(histogram),
    )


# ============================================================================
# Bands and oscillators
# ============================================================================

def calculate_bollinger(prices: Sequence[float], period: int = 20, num_std: float = 2.0) -> Optional[BollingerReading]:
    """
    Bollinger Bands over the last `period` closes (population standard deviation).

    Zero-width bands report position 50.
    """
    if len(prices) < period:
        return None

    window = np.asarray(prices[-period:], dtype=float)
    sma = float(np.mean(window))
    std = float(np.std(window))
    upper = sma + std * num_std
    lower = sma - std * num_std
    current = float(prices[-1])

    width = upper - lower
    bandwidth = width / sma * 100 if sma else 0.0
    position = (current - lower) / width * 100 if width > 0 else 50.0

    if position > 80:
        signal = 'overbought'
    elif position < 20:
        signal = 'oversold'
    else:
        signal = 'neutral'

    return BollingerReading(
        upper=upper,
        middle=sma,
        lower=lower,
        bandwidth=bandwidth,
        position=position,
        signal=signal,
    )


def _rolling_mean(values: List[float], length: int) -> List[float]:
    window = max(1, min(length, len(values)))
    return [float(np.mean(values[i - window + 1:i + 1])) for i in range(window - 1, len(values))]


def calculate_stochastic(
    candles: Sequence[Candle],
    period: int = 14,
    k_smooth: int = 3,
    d_smooth: int = 3,
) -> Optional[StochasticReading]:
    """Slow stochastic; a zero-range window repeats the previous raw %K (or 50)."""
    if len(candles) < period:
        return None

    highs = highs_of(candles)
    lows = lows_of(candles)
    closes = closes_of(candles)

    raw_k: List[float] = []
    for i in range(period - 1, len(candles)):
        lowest = float(np.min(lows[i - period + 1:i + 1]))
        highest = float(np.max(highs[i - period + 1:i + 1]))
        spread = highest - lowest
        if spread == 0:
            raw_k.append(raw_k[-1] if raw_k else 50.0)
        else:
            raw_k.append((closes[i] - lowest) / spread * 100)

    smoothed_k = _rolling_mean(raw_k, k_smooth)
    smoothed_d = _rolling_mean(smoothed_k, d_smooth)
    k = smoothed_k[-1]
    d = smoothed_d[-1] if smoothed_d else k

    if k > 80:
        signal = 'overbought'
    elif k < 20:
        signal = 'oversold'
    else:
        signal = 'neutral'

    if abs(k - d) <= STOCH_FLAT_EPSILON:
        crossover = 'neutral'
    else:
        crossover = 'bullish' if k > d else 'bearish'

    return StochasticReading(k=k, d=d, signal=signal, crossover=crossover)


# ============================================================================
# Volatility and trend strength
# ============================================================================

def true_ranges(candles: Sequence[Candle]) -> np.ndarray:
    """True range of every bar after the first."""
    if len(candles) < 2:
        return np.array([], dtype=float)
    highs = highs_of(candles)[1:]
    lows = lows_of(candles)[1:]
    prev_close = closes_of(candles)[:-1]
    return np.maximum.reduce([highs - lows, np.abs(highs - prev_close), np.abs(lows - prev_close)])


def calculate_atr(candles: Sequence[Candle], period: int = 14) -> Optional[ATRReading]:
    """Average of the last `period` true ranges."""
    if len(candles) < period + 1:
        return None

    atr = float(np.mean(true_ranges(candles)[-period:]))
    current = candles[-1].close
    return ATRReading(
        value=atr,
        percentage=atr / current * 100 if current else 0.0,
        volatility='high' if atr > current * 0.01 else 'low',
    )


def calculate_adx(candles: Sequence[Candle], period: int = 14) -> Optional[ADXReading]:
    """
    Simplified ADX proxy.

    +DM/-DM are summed over the first `period - 1` bar pairs of the series,
    divided by the period and the current ATR. DX is reported as ADX with no
    further smoothing. Scores downstream are calibrated on this proxy.
    """
    if len(candles) < period + 1:
        return None

    plus_dm = 0.0
    minus_dm = 0.0
    for i in range(1, min(period, len(candles))):
        high_diff = candles[i].high - candles[i - 1].high
        low_diff = candles[i - 1].low - candles[i].low
        if high_diff > low_diff and high_diff > 0:
            plus_dm += high_diff
        if low_diff > high_diff and low_diff > 0:
            minus_dm += low_diff

    atr = calculate_atr(candles, period)
    if atr is None:
        return None
    if atr.value == 0:
        return ADXReading(value=0.0, plus_di=0.0, minus_di=0.0, trend='weak', direction='neutral')

    plus_di = plus_dm / period / atr.value * 100
    minus_di = minus_dm / period / atr.value * 100
    di_sum = plus_di + minus_di
    adx = abs(plus_di - minus_di) / di_sum * 100 if di_sum > 0 else 0.0

    if adx > 25:
        trend = 'strong'
    elif adx > 20:
        trend = 'moderate'
    else:
        trend = 'weak'

    if plus_di > minus_di:
        direction = 'bullish'
    elif minus_di > plus_di:
        direction = 'bearish'
    else:
        direction = 'neutral'

    return ADXReading(value=adx, plus_di=plus_di, minus_di=minus_di, trend=trend, direction=direction)


# ============================================================================
# Ichimoku / Fibonacci
# ============================================================================

def calculate_ichimoku(candles: Sequence[Candle]) -> Optional[IchimokuReading]:
    if len(candles) < 52:
        return None

    highs = highs_of(candles)
    lows = lows_of(candles)

    def midpoint(period: int) -> float:
        return float((np.max(highs[-period:]) + np.min(lows[-period:])) / 2)

    tenkan = midpoint(9)
    kijun = midpoint(26)
    senkou_a = (tenkan + kijun) / 2
    senkou_b = midpoint(52)
    current = candles[-1].close

    if current > max(senkou_a, senkou_b):
        signal = 'bullish'
    elif current < min(senkou_a, senkou_b):
        signal = 'bearish'
    else:
        signal = 'neutral'

    return IchimokuReading(
        tenkan=tenkan,
        kijun=kijun,
        senkou_a=senkou_a,
        senkou_b=senkou_b,
        signal=signal,
        cloud_thickness=abs(senkou_a - senkou_b),
    )


def calculate_fibonacci(prices: Sequence[float]) -> Optional[FibonacciReading]:
    """Retracement levels between the window's highest and lowest close."""
    if len(prices) < 20:
        return None

    window = np.asarray(prices, dtype=float)
    high = float(np.max(window))
    low = float(np.min(window))
    diff = high - low
    levels = {ratio: high - diff * ratio / 100 for ratio in FIBONACCI_RATIOS}

    current = float(prices[-1])
    nearest_level, nearest_price = min(levels.items(), key=lambda item: abs(current - item[1]))
    return FibonacciReading(
        levels=levels,
        nearest_level=nearest_level,
        nearest_price=nearest_price,
        high=high,
        low=low,
    )


# ============================================================================
# Swings / regression
# ============================================================================

def identify_swings(candles: Sequence[Candle], lookback: int = 3) -> SwingSet:
    """
    Strict local highs and lows.

    A swing high must exceed every high `lookback` bars before it and be no
    lower than the ones after it; swing lows mirror this.
    """
    swings = SwingSet()
    window = max(1, lookback)

    for i in range(window, len(candles) - window):
        current = candles[i]
        is_high = True
        is_low = True
        for j in range(1, window + 1):
            if candles[i - j].high >= current.high or candles[i + j].high > current.high:
                is_high = False
            if candles[i - j].low <= current.low or candles[i + j].low < current.low:
                is_low = False
            if not is_high and not is_low:
                break
        if is_high:
            swings.highs.append(Swing(time=current.time, price=current.high, index=i))
        if is_low:
            swings.lows.append(Swing(time=current.time, price=current.low, index=i))

    return swings


def linear_regression(x_values: Sequence[float], y_values: Sequence[float]) -> RegressionFit:
    """Ordinary least squares fit; degenerate inputs give a flat zero fit."""
    if len(x_values) == 0 or len(x_values) != len(y_values):
        return RegressionFit(slope=0.0, intercept=0.0, r_squared=0.0)

    x = np.asarray(x_values, dtype=float)
    y = np.asarray(y_values, dtype=float)
    x_diff = x - x.mean()
    denominator = float(np.sum(x_diff * x_diff))
    slope = float(np.sum(x_diff * (y - y.mean())) / denominator) if denominator else 0.0
    intercept = float(y.mean() - slope * x.mean())

    predicted = slope * x + intercept
    ss_tot = float(np.sum((y - y.mean()) ** 2))
    ss_res = float(np.sum((y - predicted) ** 2))
    r_squared = 0.0 if ss_tot == 0 else 1 - ss_res / ss_tot
    if math.isnan(r_squared):
        r_squared = 0.0

    return RegressionFit(slope=slope, intercept=intercept, r_squared=r_squared)
