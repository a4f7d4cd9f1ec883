"""
Market state readings derived from a candle series and its indicators.

- Regime: trend / range / transition from ADX, regression slope and bandwidth
- Volatility clustering over rolling returns
- RSI / MACD divergences at the last two swing highs and lows
- Volume pressure (up vs down volume, range proxy when volume is absent)
- Support/resistance, D1 ranges and classic pivot points
"""

import logging
import math
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np

from .candle import Candle, closes_of, highs_of, lows_of
from .indicators import (
    ADXReading,
    BollingerReading,
    SeriesPoint,
    Swing,
    identify_swings,
    linear_regression,
)

logger = logging.getLogger(__name__)

# Bars whose mean volume is compared with the 40-bar window average.
VOLUME_RECENT_BARS = 10


# ============================================================================
# Regime
# ============================================================================

@dataclass
class RegimeReading:
    state: str  # trend / range / transition
    confidence: int
    adx: Optional[float]
    bandwidth: Optional[float]
    slope: float
    slope_angle: float
    momentum: float
    sample_size: int

    def to_dict(self) -> dict:
        return asdict(self)


def detect_regime(
    candles: Sequence[Candle],
    adx: Optional[ADXReading],
    bollinger: Optional[BollingerReading],
    price_change_percent: float,
) -> RegimeReading:
    """
    Classify the series as trend, range or transition.

    Trend when ADX >= 25 or the normalized regression slope over the last
    120 closes reaches 0.018. Range when bandwidth <= 6.5 and the slope stays
    under 0.012. Confidence blends slope, ADX and momentum strength plus a
    bandwidth bonus, clamped to [10, 100].
    """
    adx_value = adx.value if adx is not None else None
    bandwidth = bollinger.bandwidth if bollinger is not None else None

    recent = candles[-min(120, len(candles)):]
    slope_pct = 0.0
    slope_angle = 0.0
    if len(recent) >= 20:
        closes = closes_of(recent)
        fit = linear_regression(np.arange(len(closes), dtype=float), closes)
        latest = closes[-1] or 1.0
        slope_pct = fit.slope / latest * len(recent)
        slope_angle = math.degrees(math.atan(slope_pct))

    momentum = price_change_percent if math.isfinite(price_change_percent) else 0.0
    slope_strength = min(1.0, abs(slope_pct) * 15)
    adx_strength = min(1.0, adx_value / 50) if adx_value is not None else 0.0
    momentum_strength = min(1.0, abs(momentum) / 10)
    composite = slope_strength * 0.45 + adx_strength * 0.4 + momentum_strength * 0.15

    state = 'transition'
    if (adx_value is not None and adx_value >= 25) or abs(slope_pct) >= 0.018:
        state = 'trend'
    elif bandwidth is not None and bandwidth <= 6.5 and abs(slope_pct) < 0.012:
        state = 'range'

    boost = 0.0
    if bandwidth is not None:
        if state == 'trend':
            boost = 0.12 if bandwidth >= 12 else (0.07 if bandwidth >= 9 else 0.0)
        elif bandwidth <= 6:
            boost = 0.1

    confidence = int(max(10, min(100, round((composite + boost) * 100))))
    return RegimeReading(
        state=state,
        confidence=confidence,
        adx=adx_value,
        bandwidth=round(bandwidth, 2) if bandwidth is not None else None,
        slope=round(slope_pct, 4),
        slope_angle=round(slope_angle, 2),
        momentum=round(momentum, 2),
        sample_size=len(recent),
    )


# ============================================================================
# Volatility clustering
# ============================================================================

@dataclass
class VolatilityCluster:
    state: str  # volatile / calm / normal
    start: int
    end: int
    count: int
    avg_magnitude: float


@dataclass
class VolatilityReading:
    state: str
    current: Optional[float]
    std: Optional[float] = None
    mean_abs: Optional[float] = None
    atr_percentage: Optional[float] = None
    range: Optional[float] = None
    volatility_score: float = 0.0
    clusters: List[VolatilityCluster] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def analyze_volatility(candles: Sequence[Candle], atr: Optional[float]) -> VolatilityReading:
    """Tag each return against mean-abs-return thresholds and merge runs into clusters."""
    window = min(60, len(candles))
    if window < 15:
        return VolatilityReading(state='unknown', current=atr)

    recent = candles[-window:]
    closes = closes_of(recent)
    bases = np.where(closes[:-1] == 0, 1.0, closes[:-1])
    returns = np.diff(closes) / bases
    magnitudes = np.abs(returns)

    std = float(np.std(returns))
    mean_abs = float(np.mean(magnitudes))
    last_close = recent[-1].close
    atr_pct = atr / last_close if atr is not None and last_close else 0.0

    vol_score = min(1.2, std * 12 + atr_pct * 4 + mean_abs * 6)
    threshold_high = mean_abs * 1.8
    threshold_low = mean_abs * 0.7

    clusters: List[VolatilityCluster] = []
    for i, magnitude in enumerate(magnitudes, start=1):
        magnitude = float(magnitude)
        if magnitude > threshold_high:
            tag = 'volatile'
        elif magnitude < threshold_low:
            tag = 'calm'
        else:
            tag = 'normal'

        current = clusters[-1] if clusters else None
        if current is None or current.state != tag:
            clusters.append(VolatilityCluster(
                state=tag,
                start=recent[i - 1].time,
                end=recent[i].time,
                count=1,
                avg_magnitude=magnitude,
            ))
        else:
            current.end = recent[i].time
            current.count += 1
            current.avg_magnitude += (magnitude - current.avg_magnitude) / current.count

    return VolatilityReading(
        state=clusters[-1].state if clusters else 'normal',
        current=atr,
        std=round(std, 6),
        mean_abs=round(mean_abs, 6),
        atr_percentage=round(atr_pct * 100, 3),
        range=float(np.max(highs_of(recent)) - np.min(lows_of(recent))),
        volatility_score=round(vol_score * 100, 1),
        clusters=clusters,
    )


# ============================================================================
# Divergences
# ============================================================================

@dataclass
class Divergence:
    type: str  # bullish / bearish
    indicator: str  # RSI / MACD
    confidence: int
    price_previous: float
    price_current: float
    oscillator_previous: float
    oscillator_current: float
    previous_time: int
    current_time: int

    def to_dict(self) -> dict:
        return asdict(self)


def _nearest_value(series: Sequence[SeriesPoint], timestamp: int) -> Optional[float]:
    if not series:
        return None
    closest = min(series, key=lambda point: abs(point.time - timestamp))
    return closest.value


def _compare_swings(
    first: Swing,
    second: Swing,
    kind: str,
    rsi_series: Sequence[SeriesPoint],
    macd_series: Sequence[SeriesPoint],
) -> List[Divergence]:
    price_delta = (second.price - first.price) / (first.price or 1)
    if abs(price_delta) < 0.0015:
        return []
    if kind == 'bearish' and price_delta <= 0:
        return []
    if kind == 'bullish' and price_delta >= 0:
        return []

    # Oscillator moves against price: lower for bearish, higher for bullish
    direction = -1 if kind == 'bearish' else 1
    found: List[Divergence] = []

    rsi_prev = _nearest_value(rsi_series, first.time)
    rsi_curr = _nearest_value(rsi_series, second.time)
    if rsi_prev is not None and rsi_curr is not None:
        diff = (rsi_curr - rsi_prev) * direction
        if diff > 1.5:
            found.append(Divergence(
                type=kind,
                indicator='RSI',
                confidence=int(min(92, round(45 + diff * 1.8))),
                price_previous=first.price,
                price_current=second.price,
                oscillator_previous=round(rsi_prev, 2),
                oscillator_current=round(rsi_curr, 2),
                previous_time=first.time,
                current_time=second.time,
            ))

    macd_prev = _nearest_value(macd_series, first.time)
    macd_curr = _nearest_value(macd_series, second.time)
    if macd_prev is not None and macd_curr is not None:
        diff = (macd_curr - macd_prev) * direction
        if diff > 0.0005:
            found.append(Divergence(
                type=kind,
                indicator='MACD',
                confidence=int(min(95, round(50 + diff * 1000))),
                price_previous=first.price,
                price_current=second.price,
                oscillator_previous=round(macd_prev, 5),
                oscillator_current=round(macd_curr, 5),
                previous_time=first.time,
                current_time=second.time,
            ))

    return found


def detect_divergences(
    candles: Sequence[Candle],
    rsi_series: Sequence[SeriesPoint],
    macd_series: Sequence[SeriesPoint],
) -> List[Divergence]:
    """Bearish divergence at the last two swing highs, bullish at the last two swing lows."""
    window = min(120, len(candles))
    if window < 25:
        return []

    swings = identify_swings(candles[-window:], 4)
    divergences: List[Divergence] = []
    if len(swings.highs) >= 2:
        divergences.extend(_compare_swings(swings.highs[-2], swings.highs[-1], 'bearish', rsi_series, macd_series))
    if len(swings.lows) >= 2:
        divergences.extend(_compare_swings(swings.lows[-2], swings.lows[-1], 'bullish', rsi_series, macd_series))
    return divergences


# ============================================================================
# Volume pressure
# ============================================================================

@dataclass
class VolumePressure:
    pressure: float
    state: str  # buying / selling / neutral
    imbalance: float = 0.0
    volume_rate: float = 1.0
    volume_z_score: float = 0.0
    price_delta_pct: float = 0.0
    sample_size: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def compute_volume_pressure(candles: Sequence[Candle]) -> VolumePressure:
    """
    Up-volume vs down-volume imbalance over the last 40 bars.

    volume_rate is the mean volume of the last VOLUME_RECENT_BARS bars over
    the window mean, so a late surge reads above 1.
    """
    if len(candles) < 10:
        return VolumePressure(pressure=0.0, state='neutral', sample_size=len(candles))

    window = candles[-40:]
    volumes = np.array([c.volume or 0.0 for c in window], dtype=float)
    avg_volume = float(np.mean(volumes))
    std_volume = float(np.std(volumes))

    up_vol = down_vol = range_up = range_down = 0.0
    for candle, volume in zip(window, volumes):
        if candle.close >= candle.open:
            up_vol += volume
            range_up += candle.range
        else:
            down_vol += volume
            range_down += candle.range

    total = up_vol + down_vol
    if total > 0:
        imbalance = (up_vol - down_vol) / total
    else:
        imbalance = (range_up - range_down) / max(1e-6, range_up + range_down)

    if imbalance > 0.12:
        state = 'buying'
    elif imbalance < -0.12:
        state = 'selling'
    else:
        state = 'neutral'

    n = len(volumes)
    recent = volumes[-min(VOLUME_RECENT_BARS, n):]
    recent_avg = float(np.mean(recent))
    volume_rate = recent_avg / avg_volume if total > 0 and avg_volume > 0 else 1.0
    z = (recent_avg - avg_volume) / (std_volume / math.sqrt(len(recent))) if std_volume > 0 else 0.0
    first_close = window[0].close or 1.0
    price_delta_pct = (window[-1].close - window[0].close) / first_close

    return VolumePressure(
        pressure=round(imbalance * 100, 2),
        state=state,
        imbalance=round(imbalance, 4),
        volume_rate=round(volume_rate, 2),
        volume_z_score=round(z, 2),
        price_delta_pct=round(price_delta_pct * 100, 2),
        sample_size=n,
    )


# ============================================================================
# Levels
# ============================================================================

@dataclass
class SupportResistance:
    resistance: List[float]
    support: List[float]
    current_price: float

    def to_dict(self) -> dict:
        return asdict(self)


def support_resistance(candles: Sequence[Candle]) -> SupportResistance:
    """Highest high / lowest low with and without the most recent 10 bars."""
    highs = highs_of(candles)
    lows = lows_of(candles)
    older_highs = highs[:-10]
    older_lows = lows[:-10]

    resistance = [float(np.max(highs))]
    support = [float(np.min(lows))]
    if len(older_highs):
        resistance.append(float(np.max(older_highs)))
        support.append(float(np.min(older_lows)))

    return SupportResistance(
        resistance=sorted(resistance, reverse=True),
        support=sorted(support, reverse=True),
        current_price=candles[-1].close,
    )


def daily_ranges(candles: Sequence[Candle]) -> Optional[Dict[str, Dict[str, float]]]:
    """Day / week (5 bars) / month (22 bars) high-low ranges from D1 candles."""
    if not candles:
        return None

    def high_low(window: Sequence[Candle]) -> Dict[str, float]:
        return {
            'high': float(np.max(highs_of(window))),
            'low': float(np.min(lows_of(window))),
        }

    return {
        'day': high_low(candles[-1:]),
        'week': high_low(candles[-5:]),
        'month': high_low(candles[-22:]),
    }


@dataclass
class PivotPoints:
    pivot: float
    r1: float
    s1: float
    r2: float
    s2: float
    based_on: int

    def to_dict(self) -> dict:
        return asdict(self)


def classic_pivot_points(candles: Sequence[Candle]) -> Optional[PivotPoints]:
    """Classic floor pivots from the previous completed bar."""
    if len(candles) < 2:
        return None

    prev = candles[-2]
    pivot = (prev.high + prev.low + prev.close) / 3
    return PivotPoints(
        pivot=pivot,
        r1=2 * pivot - prev.low,
        s1=2 * pivot - prev.high,
        r2=pivot + prev.range,
        s2=pivot - prev.range,
        based_on=prev.time,
    )
