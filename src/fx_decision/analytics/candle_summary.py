"""
Candle Summary - lightweight price-action read of one timeframe.

Complements the indicator analysis with structure and smart-money heuristics:
- trend %, returns stdev, ATR(14), simple RSI, regression slope / r²
- swing structure (higher highs / lower lows)
- doji / engulfing / pinbar on the last two bars
- liquidity sweep, liquidity trap, order block, fair-value gap
- volume spike, volume imbalance, accumulation / distribution

The summary feeds the candle, structure, liquidity, volume, memory and
statistics layers. Fewer than 3 usable candles returns None.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np

from ..utils.math_utils import clamp, clamp01, population_std
from .candle import Candle, closes_of, normalize_series

logger = logging.getLogger(__name__)

# Heuristic thresholds
SWEEP_WICK_BODY_MIN = 1.4
SWEEP_WICK_RANGE_MIN = 0.35
SWEEP_ATR_DIV = 0.6
OB_IMPULSE_RANGE_MULT = 1.8
OB_IMPULSE_BODY_FRAC_MIN = 0.55
OB_NEAR_ATR_FRAC = 0.35
VOLUME_RATIO_MIN = 1.8
VOLUME_Z_MIN = 1.5
VOLUME_IMBALANCE_MIN_ABS = 0.12
FVG_MIN_ATR_FRAC = 0.15
FVG_MAX_AGE_BARS = 25
TRAP_FOLLOW_THROUGH_MAX_PCT = 0.12
TRAP_CONFIDENCE_MIN = 62
TRAP_VOLUME_RATIO_MAX = 1.1

AGGREGATE_WEIGHTS = {'D1': 1.0, 'H4': 0.85, 'H1': 0.7, 'M15': 0.55, 'M1': 0.35}


# ============================================================================
# Result types
# ============================================================================

@dataclass
class LitePattern:
    name: str
    bias: str
    strength: float


@dataclass
class StructureRead:
    state: str  # hh_hl / ll_lh / mixed
    bias: str
    confidence: int
    score: int


@dataclass
class LiquiditySweep:
    type: str  # sweep_high / sweep_low
    bias: str
    level: float
    swept_by: float
    rejection: float
    wick_ratio: float
    confidence: int


@dataclass
class LiquidityTrap:
    bias: str
    type: str
    confidence: int
    follow_through_pct: Optional[float]
    volume_ratio: Optional[float]


@dataclass
class OrderBlock:
    direction: str
    zone_low: float
    zone_high: float
    distance: Optional[float]
    near: Optional[bool]
    impulse_ratio: Optional[float]
    age_bars: int
    confidence: int


@dataclass
class VolumeSpike:
    newest: float
    average: float
    z_score: float
    ratio: float
    is_spike: bool


@dataclass
class VolumeImbalance:
    imbalance: float
    pressure_pct: float
    state: str  # buying / selling / neutral
    sample_size: int


@dataclass
class FairValueGap:
    type: str  # bullish / bearish
    zone_low: float
    zone_high: float
    size: float
    fill_pct: float
    created_at: int
    age_bars: int
    distance: Optional[float] = None


@dataclass
class PriceImbalance:
    state: str  # bullish / bearish / none
    gaps: List[FairValueGap] = field(default_factory=list)
    nearest: Optional[FairValueGap] = None
    confidence: int = 0


@dataclass
class AccumulationDistribution:
    state: str  # accumulation / distribution / neutral
    confidence: int
    pct_move: float
    pressure_pct: Optional[float] = None


@dataclass
class SmcRead:
    liquidity_sweep: Optional[LiquiditySweep] = None
    liquidity_trap: Optional[LiquidityTrap] = None
    order_block: Optional[OrderBlock] = None
    volume_spike: Optional[VolumeSpike] = None
    volume_imbalance: Optional[VolumeImbalance] = None
    accumulation_distribution: Optional[AccumulationDistribution] = None
    price_imbalance: Optional[PriceImbalance] = None
    memory_tags: List[str] = field(default_factory=list)

    @property
    def has_fvg(self) -> bool:
        return self.price_imbalance is not None and self.price_imbalance.state != 'none'

    @property
    def has_volume_imbalance(self) -> bool:
        return self.volume_imbalance is not None and self.volume_imbalance.state != 'neutral'


@dataclass
class CandleRegime:
    state: str  # trend / range
    confidence: int
    r2: Optional[int]  # percent
    slope: Optional[float]


@dataclass
class CandleVolatility:
    state: str  # high / low / normal / unknown
    atr: Optional[float]
    atr_pct: Optional[float]
    stdev_returns: Optional[float]


@dataclass
class VolumeSummary:
    newest: float
    average: float
    trend_pct: float


@dataclass
class CandleSummary:
    """Price-action summary for one timeframe."""
    timeframe: Optional[str]
    sample_count: int
    newest_time: int
    newest_close: float
    direction: str
    strength: float
    confidence: int
    raw_score: float
    score_delta: float
    trend_pct: float
    rsi: Optional[float]
    regime: CandleRegime
    volatility: CandleVolatility
    structure: Optional[StructureRead]
    patterns: List[LitePattern]
    volume: Optional[VolumeSummary]
    smc: SmcRead
    trend_direction: str

    def has_pattern(self, *names: str) -> bool:
        return any(p.name in names for p in self.patterns)

    def to_dict(self) -> dict:
        return asdict(self)

    def __repr__(self) -> str:
        return f"CandleSummary({self.timeframe}: {self.direction} strength={self.strength} conf={self.confidence})"


@dataclass
class CandleAggregate:
    direction: str
    strength: float
    confidence: int
    score_delta: float
    direction_summary: Dict[str, int]

    def to_dict(self) -> dict:
        return asdict(self)


# ============================================================================
# Basic statistics
# ============================================================================

def _simple_rsi(closes: Sequence[float], period: int = 14) -> Optional[float]:
    """RSI from plain sums over the last `period` deltas (no smoothing)."""
    if len(closes) < period + 2:
        return None
    deltas = np.diff(np.asarray(closes[-(period + 1):], dtype=float))
    gains = float(np.sum(deltas[deltas >= 0]))
    losses = float(-np.sum(deltas[deltas < 0]))
    if losses == 0:
        return 100.0
    rs = gains / losses
    return 100 - 100 / (1 + rs)


def _simple_atr(candles: Sequence[Candle], period: int = 14) -> Optional[float]:
    if len(candles) < period + 2:
        return None
    ranges = []
    for i in range(max(1, len(candles) - period - 1), len(candles)):
        curr = candles[i]
        prev_close = candles[i - 1].close
        ranges.append(max(curr.high - curr.low, abs(curr.high - prev_close), abs(curr.low - prev_close)))
    if len(ranges) < max(6, int(period * 0.6)):
        return None
    return float(np.mean(ranges))


def _regression(closes: Sequence[float], max_points: int = 30):
    """(slope, r2) over the last `max_points` closes, or None."""
    if len(closes) < 8:
        return None
    y = np.asarray(closes[-max_points:], dtype=float)
    m = len(y)
    x = np.arange(m, dtype=float)
    denom = m * float(np.sum(x * x)) - float(np.sum(x)) ** 2
    if denom == 0:
        return None
    slope = (m * float(np.sum(x * y)) - float(np.sum(x)) * float(np.sum(y))) / denom
    mean_y = float(np.mean(y))
    intercept = mean_y - slope * float(np.sum(x)) / m
    ss_tot = float(np.sum((y - mean_y) ** 2))
    ss_res = float(np.sum((y - (intercept + slope * x)) ** 2))
    r2 = clamp(1 - ss_res / ss_tot, 0.0, 1.0) if ss_tot > 0 else 0.0
    return slope, r2


# ============================================================================
# Structure and patterns
# ============================================================================

def detect_structure(candles: Sequence[Candle], lookback: int = 8) -> Optional[StructureRead]:
    if len(candles) < 6:
        return None
    recent = candles[-lookback:]
    hh = hl = lh = ll = 0
    for prev, curr in zip(recent, recent[1:]):
        if curr.high > prev.high:
            hh += 1
        elif curr.high < prev.high:
            lh += 1
        if curr.low > prev.low:
            hl += 1
        elif curr.low < prev.low:
            ll += 1

    score = hh + hl - (lh + ll)
    if score >= 2:
        bias, state = 'BUY', 'hh_hl'
    elif score <= -2:
        bias, state = 'SELL', 'll_lh'
    else:
        bias, state = 'NEUTRAL', 'mixed'
    confidence = clamp(abs(score) / (len(recent) - 1) * 100, 0, 100)
    return StructureRead(state=state, bias=bias, confidence=int(round(confidence)), score=score)


def detect_lite_patterns(candles: Sequence[Candle]) -> List[LitePattern]:
    if len(candles) < 2:
        return []
    prev, curr = candles[-2], candles[-1]
    patterns: List[LitePattern] = []

    body = curr.body
    rng = curr.range
    if rng > 0 and body / rng <= 0.12:
        patterns.append(LitePattern('DOJI', 'NEUTRAL', 10))

    prev_min, prev_max = min(prev.open, prev.close), max(prev.open, prev.close)
    curr_min, curr_max = min(curr.open, curr.close), max(curr.open, curr.close)
    engulfs = curr_min <= prev_min and curr_max >= prev_max
    if prev.is_bearish and curr.is_bullish and engulfs:
        patterns.append(LitePattern('BULLISH_ENGULFING', 'BUY', 22))
    if prev.is_bullish and curr.is_bearish and engulfs:
        patterns.append(LitePattern('BEARISH_ENGULFING', 'SELL', 22))

    if rng > 0 and curr.lower_shadow >= body * 2.2 and curr.upper_shadow <= body * 0.8:
        patterns.append(LitePattern('PINBAR_BULL', 'BUY', 14))
    if rng > 0 and curr.upper_shadow >= body * 2.2 and curr.lower_shadow <= body * 0.8:
        patterns.append(LitePattern('PINBAR_BEAR', 'SELL', 14))

    return patterns


# ============================================================================
# Smart-money heuristics
# ============================================================================

def detect_liquidity_sweep(
    candles: Sequence[Candle], lookback: int = 20, atr: Optional[float] = None
) -> Optional[LiquiditySweep]:
    """Last bar pierces the prior range extreme and closes back inside with a long wick."""
    if len(candles) < lookback + 2:
        return None

    prior = candles[-1 - lookback:-1]
    prev_high = max(c.high for c in prior)
    prev_low = min(c.low for c in prior)
    curr = candles[-1]

    body = curr.body
    rng = max(1e-9, curr.range)
    upper = curr.upper_shadow
    lower = curr.lower_shadow

    def confidence(swept_by: float, wick_ratio: float) -> int:
        atr_factor = clamp01(swept_by / (atr * SWEEP_ATR_DIV)) if atr and atr > 0 else 0.45
        wick_factor = clamp01((wick_ratio - 1) / 3)
        return int(clamp(round((atr_factor * 0.55 + wick_factor * 0.45) * 100), 0, 100))

    if (
        curr.high > prev_high
        and curr.close < prev_high
        and upper >= body * SWEEP_WICK_BODY_MIN
        and upper / rng >= SWEEP_WICK_RANGE_MIN
    ):
        ratio = upper / max(1e-9, body)
        swept_by = curr.high - prev_high
        return LiquiditySweep(
            type='sweep_high',
            bias='SELL',
            level=prev_high,
            swept_by=swept_by,
            rejection=prev_high - curr.close,
            wick_ratio=round(ratio, 2),
            confidence=confidence(swept_by, ratio),
        )

    if (
        curr.low < prev_low
        and curr.close > prev_low
        and lower >= body * SWEEP_WICK_BODY_MIN
        and lower / rng >= SWEEP_WICK_RANGE_MIN
    ):
        ratio = lower / max(1e-9, body)
        swept_by = prev_low - curr.low
        return LiquiditySweep(
            type='sweep_low',
            bias='BUY',
            level=prev_low,
            swept_by=swept_by,
            rejection=curr.close - prev_low,
            wick_ratio=round(ratio, 2),
            confidence=confidence(swept_by, ratio),
        )

    return None


def detect_order_block(
    candles: Sequence[Candle],
    atr: Optional[float] = None,
    lookback: int = 40,
    impulse_lookback: int = 12,
) -> Optional[OrderBlock]:
    """Last opposite-coloured candle before a recent impulse bar."""
    if len(candles) < 14:
        return None

    window = candles[-lookback:]
    ranges = [c.range for c in window]
    if len(ranges) < 10:
        return None
    avg_range = float(np.mean(ranges))
    price = window[-1].close

    start = max(1, len(window) - impulse_lookback)
    for i in range(len(window) - 1, start - 1, -1):
        curr, prev = window[i], window[i - 1]
        rng = curr.range
        if not (rng > avg_range * OB_IMPULSE_RANGE_MULT and curr.body / max(1e-9, rng) >= OB_IMPULSE_BODY_FRAC_MIN):
            continue

        impulse_dir = 'BUY' if curr.is_bullish else ('SELL' if curr.is_bearish else 'NEUTRAL')
        prev_dir = 'BUY' if prev.is_bullish else ('SELL' if prev.is_bearish else 'NEUTRAL')
        if impulse_dir == 'NEUTRAL' or prev_dir in ('NEUTRAL', impulse_dir):
            continue

        zone_low = min(prev.open, prev.close, prev.low)
        zone_high = max(prev.open, prev.close, prev.high)
        if zone_low <= price <= zone_high:
            dist = 0.0
        else:
            dist = min(abs(price - zone_low), abs(price - zone_high))
        near = dist <= max(atr * OB_NEAR_ATR_FRAC, 1e-9) if atr and atr > 0 else None

        ratio = rng / avg_range if avg_range > 0 else None
        impulse_factor = 0.55 if ratio is None else clamp01((ratio - 1.6) / 1.4)
        proximity = 0.35 if near is None else (1.0 if near else 0.0)
        return OrderBlock(
            direction=impulse_dir,
            zone_low=zone_low,
            zone_high=zone_high,
            distance=dist,
            near=near,
            impulse_ratio=round(ratio, 2) if ratio is not None else None,
            age_bars=len(window) - i,
            confidence=int(clamp(round((impulse_factor * 0.65 + proximity * 0.35) * 100), 0, 100)),
        )

    return None


def detect_volume_spike(candles: Sequence[Candle], lookback: int = 20) -> Optional[VolumeSpike]:
    volumes = [c.volume for c in candles[-lookback:] if c.volume is not None and c.volume > 0]
    if len(volumes) < 8:
        return None
    values = np.asarray(volumes, dtype=float)
    last = float(values[-1])
    avg = float(np.mean(values))
    std = float(np.std(values))
    z = (last - avg) / std if std > 0 else 0.0
    ratio = last / avg if avg > 0 else 1.0
    return VolumeSpike(
        newest=round(last, 2),
        average=round(avg, 2),
        z_score=round(z, 2),
        ratio=round(ratio, 2),
        is_spike=ratio >= VOLUME_RATIO_MIN and z >= VOLUME_Z_MIN,
    )


def compute_volume_imbalance(candles: Sequence[Candle], lookback: int = 20) -> Optional[VolumeImbalance]:
    recent = candles[-lookback:]
    if len(recent) < 6:
        return None

    up = down = total = 0.0
    missing = 0
    for candle in recent:
        if candle.volume is None:
            missing += 1
            continue
        total += candle.volume
        if candle.close >= candle.open:
            up += candle.volume
        else:
            down += candle.volume

    if total <= 0 or missing > int(len(recent) * 0.6):
        return None

    imbalance = (up - down) / total
    if imbalance > VOLUME_IMBALANCE_MIN_ABS:
        state = 'buying'
    elif imbalance < -VOLUME_IMBALANCE_MIN_ABS:
        state = 'selling'
    else:
        state = 'neutral'
    return VolumeImbalance(
        imbalance=round(imbalance, 4),
        pressure_pct=round(imbalance * 100, 2),
        state=state,
        sample_size=len(recent),
    )


def _gap_distance(gap: FairValueGap, price: float) -> float:
    if gap.zone_low <= price <= gap.zone_high:
        return 0.0
    return min(abs(price - gap.zone_low), abs(price - gap.zone_high))


def detect_price_imbalance(
    candles: Sequence[Candle], lookback: int = 34, atr: Optional[float] = None
) -> Optional[PriceImbalance]:
    """Three-bar fair-value gaps, their fill %, and the nearest unfilled one."""
    if len(candles) < 6:
        return None

    price = candles[-1].close
    start = max(2, len(candles) - max(6, lookback))
    gaps: List[FairValueGap] = []

    for i in range(len(candles) - 1, start - 1, -1):
        c0, c2 = candles[i - 2], candles[i]
        after = candles[i + 1:]
        age = len(candles) - 1 - i

        if c2.low > c0.high:
            zone_low, zone_high = c0.high, c2.low
            size = zone_high - zone_low
            if atr and atr > 0 and size < atr * FVG_MIN_ATR_FRAC:
                continue
            deepest = clamp(min(c.low for c in after), zone_low, zone_high) if after else zone_high
            fill = clamp((zone_high - deepest) / size * 100, 0, 100) if size > 0 else 0.0
            gaps.append(FairValueGap('bullish', zone_low, zone_high, size, round(fill, 1), c2.time, age))

        if c2.high < c0.low:
            zone_low, zone_high = c2.high, c0.low
            size = zone_high - zone_low
            if atr and atr > 0 and size < atr * FVG_MIN_ATR_FRAC:
                continue
            highest = clamp(max(c.high for c in after), zone_low, zone_high) if after else zone_low
            fill = clamp((highest - zone_low) / size * 100, 0, 100) if size > 0 else 0.0
            gaps.append(FairValueGap('bearish', zone_low, zone_high, size, round(fill, 1), c2.time, age))

        if len(gaps) >= 10:
            break

    recent = [g for g in gaps if g.age_bars <= FVG_MAX_AGE_BARS]
    if not recent:
        return PriceImbalance(state='none')

    unfilled = sorted((g for g in recent if g.fill_pct < 100), key=lambda g: _gap_distance(g, price))
    nearest = unfilled[0] if unfilled else recent[0]
    dist = _gap_distance(nearest, price)
    nearest = FairValueGap(**{**asdict(nearest), 'distance': dist})

    atr_factor = clamp01(1 - dist / (atr * 1.2)) if atr and atr > 0 else 0.45
    open_share = clamp01(1 - nearest.fill_pct / 100)
    return PriceImbalance(
        state=nearest.type,
        gaps=recent[:10],
        nearest=nearest,
        confidence=int(clamp(round((atr_factor * 0.55 + open_share * 0.45) * 100), 0, 100)),
    )


def _liquidity_trap(
    candles: Sequence[Candle], sweep: Optional[LiquiditySweep], spike: Optional[VolumeSpike]
) -> Optional[LiquidityTrap]:
    """A sweep with weak follow-through and no volume confirmation reads as a trap."""
    if sweep is None or not sweep.confidence:
        return None

    last, prev = candles[-1], candles[-2]
    move_pct = (last.close - prev.close) / prev.close * 100 if prev.close else None
    weak_follow = move_pct is not None and abs(move_pct) <= TRAP_FOLLOW_THROUGH_MAX_PCT
    volume_ratio = spike.newest / spike.average if spike and spike.average > 0 else None
    weak_volume = volume_ratio is not None and volume_ratio <= TRAP_VOLUME_RATIO_MAX

    score = int(clamp(round(sweep.confidence * 0.6 + (25 if weak_follow else 0) + (15 if weak_volume else 0)), 0, 100))
    if score < TRAP_CONFIDENCE_MIN:
        return None
    return LiquidityTrap(
        bias='SELL' if sweep.bias == 'BUY' else 'BUY',
        type=sweep.type,
        confidence=score,
        follow_through_pct=round(move_pct, 4) if move_pct is not None else None,
        volume_ratio=round(volume_ratio, 2) if volume_ratio is not None else None,
    )


def _accumulation_distribution(
    candles: Sequence[Candle], spike: Optional[VolumeSpike], imbalance: Optional[VolumeImbalance]
) -> Optional[AccumulationDistribution]:
    """Heavy volume with a muted 10-bar move suggests absorption."""
    if spike is None or not spike.is_spike or imbalance is None:
        return None
    recent = candles[-10:]
    first, last = recent[0], recent[-1]
    if not first.close:
        return None
    move = (last.close - first.close) / first.close * 100
    if abs(move) > 0.12:
        return AccumulationDistribution('neutral', 35, round(move, 3))
    if imbalance.state == 'buying':
        return AccumulationDistribution('accumulation', 70, round(move, 3), imbalance.pressure_pct)
    if imbalance.state == 'selling':
        return AccumulationDistribution('distribution', 70, round(move, 3), imbalance.pressure_pct)
    return AccumulationDistribution('neutral', 45, round(move, 3))


def _memory_tags(
    sweep: Optional[LiquiditySweep], spike: Optional[VolumeSpike], patterns: Sequence[LitePattern]
) -> List[str]:
    """Reaction markers that make a price zone worth remembering."""
    tags = []
    if sweep is not None:
        tags.append('sweep')
    if (sweep is not None and sweep.rejection > 0) or any(p.name.startswith('PINBAR') for p in patterns):
        tags.append('rejection')
    if spike is not None and spike.is_spike:
        tags.append('volume_spike')
    return tags


def _volume_summary(candles: Sequence[Candle]) -> Optional[VolumeSummary]:
    volumes = [c.volume for c in candles if c.volume is not None]
    if len(volumes) < 6:
        return None
    newest = volumes[-1]
    oldest = volumes[max(0, len(volumes) - 1 - min(20, len(volumes) - 2))]
    trend = (newest - oldest) / oldest * 100 if oldest else 0.0
    return VolumeSummary(
        newest=round(newest, 2),
        average=round(float(np.mean(volumes[-20:])), 2),
        trend_pct=round(trend, 2),
    )


# ============================================================================
# Summary
# ============================================================================

def summarize_candles(
    raw: Optional[Iterable[Any]], timeframe: Optional[str] = None
) -> Optional[CandleSummary]:
    """
    Build the candle summary for one timeframe.

    Args:
        raw: Candles or candle dicts (any order; sorted by time)
        timeframe: Optional timeframe label

    Returns:
        CandleSummary, or None with fewer than 3 usable candles
    """
    candles = normalize_series(raw)
    if len(candles) < 3:
        return None

    closes = closes_of(candles)
    newest = candles[-1]
    oldest = candles[max(0, len(candles) - 1 - min(20, len(candles) - 2))]
    trend_pct = (newest.close - oldest.close) / oldest.close * 100 if oldest.close else 0.0

    returns = [
        (candles[i].close - candles[i - 1].close) / candles[i - 1].close
        for i in range(max(1, len(candles) - 30), len(candles))
        if candles[i - 1].close
    ]
    stdev = population_std(returns) if len(returns) >= 3 else None
    atr = _simple_atr(candles, 14)
    atr_pct = atr / newest.close * 100 if atr is not None and newest.close else None
    rsi = _simple_rsi(closes, 14)
    regression = _regression(closes, 30)
    r2 = regression[1] if regression else None

    structure = detect_structure(candles, 8)
    patterns = detect_lite_patterns(candles)

    sweep = detect_liquidity_sweep(candles, 20, atr)
    spike = detect_volume_spike(candles, 20)
    imbalance = compute_volume_imbalance(candles, 20)
    smc = SmcRead(
        liquidity_sweep=sweep,
        liquidity_trap=_liquidity_trap(candles, sweep, spike),
        order_block=detect_order_block(candles, atr, 40, 12),
        volume_spike=spike,
        volume_imbalance=imbalance,
        accumulation_distribution=_accumulation_distribution(candles, spike, imbalance),
        price_imbalance=detect_price_imbalance(candles, 34, atr),
        memory_tags=_memory_tags(sweep, spike, patterns),
    )

    regime_state = 'trend' if r2 is not None and r2 >= 0.62 and abs(trend_pct) >= 0.18 else 'range'
    regime_confidence = clamp(r2 * 100, 0, 100) if r2 is not None else 0.0

    if atr_pct is None:
        vol_state = 'unknown'
    elif atr_pct >= 0.75:
        vol_state = 'high'
    elif atr_pct <= 0.22:
        vol_state = 'low'
    else:
        vol_state = 'normal'

    pattern_score = sum(p.strength if p.bias == 'BUY' else (-p.strength if p.bias == 'SELL' else 0) for p in patterns)
    structure_score = 0.0
    if structure is not None and structure.bias == 'BUY':
        structure_score = clamp(structure.score * 6, 0, 18)
    elif structure is not None and structure.bias == 'SELL':
        structure_score = -clamp(abs(structure.score) * 6, 0, 18)
    rsi_score = 0 if rsi is None else (10 if rsi <= 28 else (-10 if rsi >= 72 else 0))
    trend_score = clamp(trend_pct * 8, -60, 60)
    r2_score = 0.0 if r2 is None else clamp((r2 - 0.4) * 70, -18, 22)
    vol_penalty = 0.0 if stdev is None else clamp(stdev * 10000 * 0.05, 0, 14)

    raw_score = clamp(trend_score + r2_score + rsi_score + structure_score + pattern_score - vol_penalty, -100, 100)
    direction = 'BUY' if raw_score > 10 else ('SELL' if raw_score < -10 else 'NEUTRAL')
    strength = clamp(abs(raw_score) * 1.1, 0, 100)
    confidence = clamp(
        clamp(len(candles) / 40 * 55, 0, 55) + clamp(regime_confidence * 0.45, 0, 45) - vol_penalty, 0, 100
    )
    delta = clamp(strength * 0.18, 0, 18)
    score_delta = delta if direction == 'BUY' else (-delta if direction == 'SELL' else 0.0)

    return CandleSummary(
        timeframe=timeframe,
        sample_count=len(candles),
        newest_time=newest.time,
        newest_close=newest.close,
        direction=direction,
        strength=round(strength, 1),
        confidence=int(round(confidence)),
        raw_score=round(raw_score, 2),
        score_delta=round(score_delta, 2),
        trend_pct=round(trend_pct, 4),
        rsi=rsi,
        regime=CandleRegime(
            state=regime_state,
            confidence=int(round(regime_confidence)),
            r2=int(round(r2 * 100)) if r2 is not None else None,
            slope=regression[0] if regression else None,
        ),
        volatility=CandleVolatility(state=vol_state, atr=atr, atr_pct=atr_pct, stdev_returns=stdev),
        structure=structure,
        patterns=patterns[:4],
        volume=_volume_summary(candles),
        smc=smc,
        trend_direction='BUY' if trend_pct > 0.03 else ('SELL' if trend_pct < -0.03 else 'NEUTRAL'),
    )


def aggregate_summaries(by_timeframe: Mapping[str, Optional[CandleSummary]]) -> Optional[CandleAggregate]:
    """Timeframe-weighted vote across candle summaries (D1 heaviest)."""
    entries = [(tf, s) for tf, s in by_timeframe.items() if s is not None]
    if not entries:
        return None

    weighted_delta = weight_sum = confidence_sum = 0.0
    votes = {'BUY': 0, 'SELL': 0, 'NEUTRAL': 0}
    for tf, summary in entries:
        weight = AGGREGATE_WEIGHTS.get(tf, 0.5)
        weighted_delta += summary.score_delta * weight
        confidence_sum += summary.confidence * weight
        weight_sum += weight
        votes[summary.direction] += 1

    avg_delta = weighted_delta / weight_sum
    if votes['BUY'] > votes['SELL']:
        direction = 'BUY'
    elif votes['SELL'] > votes['BUY']:
        direction = 'SELL'
    else:
        direction = 'NEUTRAL'

    return CandleAggregate(
        direction=direction,
        strength=round(clamp(abs(avg_delta) * 5.5, 0, 100), 1),
        confidence=int(round(clamp(confidence_sum / weight_sum, 0, 100))),
        score_delta=round(clamp(avg_delta, -18, 18), 2),
        direction_summary=votes,
    )
