"""
Technical Analyzer - per-timeframe indicator analysis fused across timeframes.

Flow per timeframe:
1. Indicators (SMA/EMA/RSI/MACD/Bollinger/Stochastic/ATR/ADX/Ichimoku/Fibonacci)
2. Candlestick patterns
3. Support/resistance (plus ranges and pivots on D1)
4. Regime, volatility clustering, divergences, volume pressure
5. Composite score in [-100, 100] and BUY/SELL/NEUTRAL direction

Timeframes are then fused with weights M15 .20 / H1 .25 / H4 .25 / D1 .30.
Results are cached by (pair, timeframes, latest bar time).
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Union

from ..config.settings import AnalyzerSettings, coerce_settings
from ..utils.logger import get_performance_logger
from .cache import TTLCache
from .candle import Candle, closes_of, normalize_series, validate_timeframe
from .indicators import (
    ADXReading,
    ATRReading,
    BollingerReading,
    FibonacciReading,
    IchimokuReading,
    MACDReading,
    MovingAverageLevel,
    RSIReading,
    SeriesPoint,
    StochasticReading,
    calculate_adx,
    calculate_atr,
    calculate_bollinger,
    calculate_ema_levels,
    calculate_fibonacci,
    calculate_ichimoku,
    calculate_macd,
    calculate_macd_series,
    calculate_rsi,
    calculate_rsi_series,
    calculate_sma_levels,
    calculate_stochastic,
)
from .market_state import (
    Divergence,
    PivotPoints,
    RegimeReading,
    SupportResistance,
    VolatilityReading,
    VolumePressure,
    analyze_volatility,
    classic_pivot_points,
    compute_volume_pressure,
    daily_ranges,
    detect_divergences,
    detect_regime,
    support_resistance,
)
from .patterns import PatternMatch, detect_patterns

logger = logging.getLogger(__name__)

SMA_PERIODS = (20, 50, 200)
EMA_PERIODS = (9, 21, 55)
ADX_TREND_MULTIPLIERS = {'strong': 1.35, 'moderate': 1.15, 'weak': 1.0}
REGIME_MULTIPLIERS = {'trend': 1.08, 'range': 0.96}
LATEST_PRICE_PRIORITY = ('M15', 'H1', 'H4', 'D1')


# ============================================================================
# Result types
# ============================================================================

@dataclass
class IndicatorSet:
    """All indicator readings for one timeframe; None where data was insufficient."""
    sma: Dict[int, Optional[MovingAverageLevel]] = field(default_factory=dict)
    ema: Dict[int, Optional[MovingAverageLevel]] = field(default_factory=dict)
    rsi: Optional[RSIReading] = None
    macd: Optional[MACDReading] = None
    bollinger: Optional[BollingerReading] = None
    stochastic: Optional[StochasticReading] = None
    atr: Optional[ATRReading] = None
    adx: Optional[ADXReading] = None
    ichimoku: Optional[IchimokuReading] = None
    fibonacci: Optional[FibonacciReading] = None
    rsi_series: List[SeriesPoint] = field(default_factory=list)
    macd_series: List[SeriesPoint] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = asdict(self)
        # Series are only kept for divergence detection
        data.pop('rsi_series')
        data.pop('macd_series')
        return data


@dataclass
class TimeframeAnalysis:
    """Analysis of one (pair, timeframe) candle series."""
    timeframe: str
    pair: Optional[str] = None
    indicators: IndicatorSet = field(default_factory=IndicatorSet)
    patterns: List[PatternMatch] = field(default_factory=list)
    support_resistance: Optional[SupportResistance] = None
    ranges: Optional[Dict[str, Dict[str, float]]] = None
    pivot_points: Optional[PivotPoints] = None
    regime: Optional[RegimeReading] = None
    volatility: Optional[VolatilityReading] = None
    divergences: List[Divergence] = field(default_factory=list)
    volume_pressure: Optional[VolumePressure] = None
    score: float = 0.0
    direction: str = 'NEUTRAL'
    last_price: Optional[float] = None
    latest_candle: Optional[Candle] = None
    price_change_percent: float = 0.0
    candle_count: int = 0

    @property
    def is_fallback(self) -> bool:
        return self.candle_count < 2

    def to_dict(self) -> dict:
        return {
            'timeframe': self.timeframe,
            'pair': self.pair,
            'indicators': self.indicators.to_dict(),
            'patterns': [p.to_dict() for p in self.patterns],
            'support_resistance': self.support_resistance.to_dict() if self.support_resistance else None,
            'ranges': self.ranges,
            'pivot_points': self.pivot_points.to_dict() if self.pivot_points else None,
            'regime': self.regime.to_dict() if self.regime else None,
            'volatility': self.volatility.to_dict() if self.volatility else None,
            'divergences': [d.to_dict() for d in self.divergences],
            'volume_pressure': self.volume_pressure.to_dict() if self.volume_pressure else None,
            'score': self.score,
            'direction': self.direction,
            'last_price': self.last_price,
            'latest_candle': self.latest_candle.to_dict() if self.latest_candle else None,
            'price_change_percent': self.price_change_percent,
            'candle_count': self.candle_count,
        }

    def __repr__(self) -> str:
        return f"TimeframeAnalysis({self.timeframe}: {self.direction} score={self.score:.1f})"


@dataclass
class TimeframeSignal:
    timeframe: str
    type: str
    strength: float
    confidence: float
    price: Optional[float]
    direction: str
    patterns: List[str]

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class RegimeSummary:
    state: str
    confidence: int
    average_bandwidth: Optional[float]
    average_slope: Optional[float]
    average_slope_angle: Optional[float]
    timeframes: List[dict]

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class VolatilitySummary:
    state: str
    average_atr: Optional[float]
    average_std: Optional[float]
    average_score: Optional[float]
    timeframes: List[dict]

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class DivergenceSummary:
    bullish: List[dict]
    bearish: List[dict]
    total: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class VolumePressureSummary:
    state: str
    average_pressure: float
    average_volume_rate: Optional[float]
    average_volume_z_score: Optional[float]
    timeframes: List[dict]

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class MultiTimeframeAnalysis:
    """Fused analysis across all requested timeframes for one pair."""
    pair: str
    timeframes: Dict[str, TimeframeAnalysis] = field(default_factory=dict)
    overall_score: float = 0.0
    trend: str = 'neutral'
    strength: float = 0.0
    signals: List[TimeframeSignal] = field(default_factory=list)
    latest_price: Optional[float] = None
    direction_summary: Dict[str, int] = field(default_factory=lambda: {'BUY': 0, 'SELL': 0, 'NEUTRAL': 0})
    regime_summary: Optional[RegimeSummary] = None
    volatility_summary: Optional[VolatilitySummary] = None
    divergence_summary: Optional[DivergenceSummary] = None
    volume_pressure_summary: Optional[VolumePressureSummary] = None

    @property
    def direction(self) -> str:
        if self.overall_score > 12:
            return 'BUY'
        if self.overall_score < -12:
            return 'SELL'
        return 'NEUTRAL'

    def to_dict(self) -> dict:
        return {
            'pair': self.pair,
            'timeframes': {tf: frame.to_dict() for tf, frame in self.timeframes.items()},
            'overall_score': self.overall_score,
            'trend': self.trend,
            'strength': self.strength,
            'signals': [s.to_dict() for s in self.signals],
            'latest_price': self.latest_price,
            'direction_summary': dict(self.direction_summary),
            'regime_summary': self.regime_summary.to_dict() if self.regime_summary else None,
            'volatility_summary': self.volatility_summary.to_dict() if self.volatility_summary else None,
            'divergence_summary': self.divergence_summary.to_dict() if self.divergence_summary else None,
            'volume_pressure_summary': (
                self.volume_pressure_summary.to_dict() if self.volume_pressure_summary else None
            ),
        }

    def __repr__(self) -> str:
        return (
            f"MultiTimeframeAnalysis({self.pair}: {self.trend} "
            f"score={self.overall_score:.1f}, tfs={list(self.timeframes)})"
        )


class CandleProvider(Protocol):
    """External candle source (broker bridge, database, replay file)."""

    async def fetch_candles(self, pair: str, timeframe: str, count: int) -> Sequence[Any]:
        ...


CandleInput = Union[Sequence[Candle], Iterable[Mapping[str, Any]], None]


# ============================================================================
# Scoring
# ============================================================================

def score_timeframe(analysis: TimeframeAnalysis) -> float:
    """
    Composite signed score for one timeframe.

    Indicator votes are summed, boosted by ADX trend strength, nudged by the
    last bar's % change, scaled by the regime and clamped to [-100, 100].
    """
    ind = analysis.indicators
    score = 0.0

    for level in ind.sma.values():
        if level is not None:
            score += 10 if level.signal == 'bullish' else (-10 if level.signal == 'bearish' else 0)

    for level in ind.ema.values():
        if level is not None:
            score += 8 if level.signal == 'bullish' else (-8 if level.signal == 'bearish' else 0)

    if ind.rsi is not None:
        if ind.rsi.signal == 'oversold':
            score += 15
        elif ind.rsi.signal == 'overbought':
            score -= 15

    if ind.macd is not None:
        if ind.macd.crossover == 'bullish':
            score += 18
        elif ind.macd.crossover == 'bearish':
            score -= 18

    if ind.bollinger is not None:
        if ind.bollinger.signal == 'oversold':
            score += 12
        elif ind.bollinger.signal == 'overbought':
            score -= 12

    if ind.stochastic is not None:
        if ind.stochastic.signal == 'oversold':
            score += 9
        elif ind.stochastic.signal == 'overbought':
            score -= 9
        if ind.stochastic.crossover == 'bullish':
            score += 4
        elif ind.stochastic.crossover == 'bearish':
            score -= 4

    for pattern in analysis.patterns:
        if pattern.signal == 'bullish':
            score += pattern.strength / 5
        elif pattern.signal == 'bearish':
            score -= pattern.strength / 5

    if ind.ichimoku is not None:
        if ind.ichimoku.signal == 'bullish':
            score += 14
        elif ind.ichimoku.signal == 'bearish':
            score -= 14

    if ind.fibonacci is not None and analysis.last_price is not None:
        # Deep retracement reads as support, shallow as resistance
        if ind.fibonacci.nearest_level >= 61.8:
            score += 6
        if ind.fibonacci.nearest_level <= 38.2:
            score -= 6

    if ind.adx is not None and ind.adx.direction in ('bullish', 'bearish'):
        score *= ADX_TREND_MULTIPLIERS.get(ind.adx.trend, 1.0)

    score += analysis.price_change_percent

    if analysis.regime is not None:
        score *= REGIME_MULTIPLIERS.get(analysis.regime.state, 1.0)

    return max(-100.0, min(100.0, score))


def determine_trend(score: float) -> str:
    if score > 40:
        return 'strong_bullish'
    if score > 15:
        return 'bullish'
    if score < -40:
        return 'strong_bearish'
    if score < -15:
        return 'bearish'
    return 'neutral'


# ============================================================================
# Multi-timeframe aggregates
# ============================================================================

def _mean(values: List[float], digits: int) -> Optional[float]:
    return round(sum(values) / len(values), digits) if values else None


def aggregate_regime(frames: Mapping[str, TimeframeAnalysis]) -> Optional[RegimeSummary]:
    entries = [(tf, frame.regime) for tf, frame in frames.items() if frame.regime is not None]
    if not entries:
        return None

    trend_score = 0.0
    for _, regime in entries:
        if regime.state == 'trend':
            trend_score += regime.confidence
        elif regime.state == 'range':
            trend_score -= regime.confidence
    average_confidence = sum(r.confidence for _, r in entries) / len(entries)
    confidence = int(min(100, max(15, round(max(abs(trend_score) / len(entries), average_confidence * 0.75)))))

    state = 'transition'
    if trend_score > confidence * len(entries) * 0.15:
        state = 'trend'
    elif trend_score < -confidence * len(entries) * 0.15:
        state = 'range'

    ranked = sorted(entries, key=lambda item: item[1].confidence, reverse=True)[:4]
    return RegimeSummary(
        state=state,
        confidence=confidence,
        average_bandwidth=_mean([r.bandwidth for _, r in entries if r.bandwidth is not None], 2),
        average_slope=_mean([r.slope for _, r in entries], 4),
        average_slope_angle=_mean([r.slope_angle for _, r in entries], 2),
        timeframes=[
            {
                'timeframe': tf,
                'state': r.state,
                'confidence': r.confidence,
                'bandwidth': r.bandwidth,
                'slope': r.slope,
                'slope_angle': r.slope_angle,
                'momentum': r.momentum,
            }
            for tf, r in ranked
        ],
    )


def aggregate_volatility(frames: Mapping[str, TimeframeAnalysis]) -> Optional[VolatilitySummary]:
    entries = [(tf, frame.volatility) for tf, frame in frames.items() if frame.volatility is not None]
    if not entries:
        return None

    score = 0
    for _, vol in entries:
        if vol.state == 'volatile':
            score += 2
        elif vol.state == 'calm':
            score -= 1

    ranked = sorted(entries, key=lambda item: item[1].std or 0.0, reverse=True)[:4]
    return VolatilitySummary(
        state='volatile' if score >= 0 else 'calm',
        average_atr=_mean([v.current for _, v in entries if v.current is not None], 6),
        average_std=_mean([v.std for _, v in entries if v.std is not None], 6),
        average_score=_mean([v.volatility_score for _, v in entries if v.state != 'unknown'], 1),
        timeframes=[
            {
                'timeframe': tf,
                'state': v.state,
                'std': v.std,
                'atr': v.current,
                'volatility_score': v.volatility_score,
                'range': v.range,
            }
            for tf, v in ranked
        ],
    )


def aggregate_divergences(frames: Mapping[str, TimeframeAnalysis]) -> DivergenceSummary:
    bullish: List[dict] = []
    bearish: List[dict] = []
    for tf, frame in frames.items():
        for div in frame.divergences:
            entry = {'timeframe': tf, **div.to_dict()}
            (bullish if div.type == 'bullish' else bearish).append(entry)
    return DivergenceSummary(bullish=bullish[:5], bearish=bearish[:5], total=len(bullish) + len(bearish))


def aggregate_volume_pressure(frames: Mapping[str, TimeframeAnalysis]) -> Optional[VolumePressureSummary]:
    entries = [(tf, frame.volume_pressure) for tf, frame in frames.items() if frame.volume_pressure is not None]
    if not entries:
        return None

    state_score = sum(1 if vp.state == 'buying' else (-1 if vp.state == 'selling' else 0) for _, vp in entries)
    if state_score > 0:
        state = 'buying'
    elif state_score < 0:
        state = 'selling'
    else:
        state = 'neutral'

    ranked = sorted(entries, key=lambda item: abs(item[1].pressure), reverse=True)[:4]
    return VolumePressureSummary(
        state=state,
        average_pressure=round(sum(vp.pressure for _, vp in entries) / len(entries), 2),
        average_volume_rate=_mean([vp.volume_rate for _, vp in entries], 2),
        average_volume_z_score=_mean([vp.volume_z_score for _, vp in entries], 2),
        timeframes=[
            {
                'timeframe': tf,
                'state': vp.state,
                'pressure': vp.pressure,
                'volume_rate': vp.volume_rate,
                'volume_z_score': vp.volume_z_score,
                'price_delta_pct': vp.price_delta_pct,
            }
            for tf, vp in ranked
        ],
    )


# ============================================================================
# TechnicalAnalyzer
# ============================================================================

class TechnicalAnalyzer:
    """
    Technical analysis engine.

    Usage:
        analyzer = TechnicalAnalyzer()
        analysis = analyzer.analyze('EURUSD', {'M15': candles_m15, 'H1': candles_h1})
        analysis = await analyzer.analyze_pair('EURUSD', provider)
    """

    def __init__(
        self,
        config: Union[AnalyzerSettings, Dict[str, Any], None] = None,
        cache: Optional[TTLCache] = None,
    ):
        self.config = coerce_settings(AnalyzerSettings, config)
        self.cache = cache or TTLCache(
            ttl_seconds=self.config.cache_ttl_seconds,
            max_entries=self.config.cache_max_entries,
        )
        self.perf = get_performance_logger(__name__)
        logger.info(f"TechnicalAnalyzer initialized - timeframes={self.config.timeframes}")

    # ------------------------------------------------------------------
    # Single timeframe
    # ------------------------------------------------------------------

    def analyze_timeframe(self, candles: CandleInput, timeframe: str, pair: Optional[str] = None) -> TimeframeAnalysis:
        """
        Analyze one candle series.

        Fewer than 2 usable candles returns the neutral fallback (score 0).
        """
        series = candles if _is_candle_list(candles) else normalize_series(candles)
        if len(series) < 2:
            logger.debug(f"Insufficient candles for {pair} {timeframe}: {len(series)}")
            return TimeframeAnalysis(timeframe=timeframe, pair=pair, candle_count=len(series))

        closes = closes_of(series)
        latest = series[-1]
        prev = series[-2]

        indicators = IndicatorSet(
            sma=calculate_sma_levels(closes, SMA_PERIODS),
            ema=calculate_ema_levels(closes, EMA_PERIODS),
            rsi=calculate_rsi(closes, 14),
            macd=calculate_macd(series),
            bollinger=calculate_bollinger(closes, 20, 2),
            stochastic=calculate_stochastic(series, 14, 3, 3),
            atr=calculate_atr(series, 14),
            adx=calculate_adx(series, 14),
            ichimoku=calculate_ichimoku(series),
            fibonacci=calculate_fibonacci(closes),
            rsi_series=calculate_rsi_series(series, 14),
            macd_series=calculate_macd_series(series),
        )

        analysis = TimeframeAnalysis(
            timeframe=timeframe,
            pair=pair,
            indicators=indicators,
            patterns=detect_patterns(series),
            support_resistance=support_resistance(series),
            last_price=latest.close,
            latest_candle=latest,
            price_change_percent=(latest.close - prev.close) / prev.close * 100 if prev.close else 0.0,
            candle_count=len(series),
        )

        if timeframe == 'D1':
            analysis.ranges = daily_ranges(series)
            analysis.pivot_points = classic_pivot_points(series)

        analysis.regime = detect_regime(series, indicators.adx, indicators.bollinger, analysis.price_change_percent)
        analysis.volatility = analyze_volatility(series, indicators.atr.value if indicators.atr else None)
        analysis.divergences = detect_divergences(series, indicators.rsi_series, indicators.macd_series)
        analysis.volume_pressure = compute_volume_pressure(series)

        analysis.score = score_timeframe(analysis)
        threshold = self.config.direction_threshold
        if analysis.score > threshold:
            analysis.direction = 'BUY'
        elif analysis.score < -threshold:
            analysis.direction = 'SELL'
        return analysis

    # ------------------------------------------------------------------
    # Multi-timeframe
    # ------------------------------------------------------------------

    def cache_key(self, pair: str, timeframes: Sequence[str], series_by_tf: Mapping[str, Sequence[Candle]]) -> str:
        parts = [f"tech|{pair}"]
        for tf in timeframes:
            series = series_by_tf.get(tf) or []
            parts.append(f"{tf}:{series[-1].time if series else 'na'}")
        return "|".join(parts)

    def analyze(
        self,
        pair: str,
        candles_by_timeframe: Mapping[str, CandleInput],
        timeframes: Optional[Sequence[str]] = None,
    ) -> MultiTimeframeAnalysis:
        """
        Analyze every requested timeframe and fuse the results.

        Raises:
            UnsupportedTimeframeError: if a requested or supplied timeframe name is unknown
        """
        requested = [validate_timeframe(tf) for tf in (timeframes or self.config.timeframes)]
        series_by_tf: Dict[str, List[Candle]] = {}
        for name, raw in (candles_by_timeframe or {}).items():
            series_by_tf[validate_timeframe(name)] = raw if _is_candle_list(raw) else normalize_series(raw)

        key = self.cache_key(pair, requested, series_by_tf)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Cache hit for {key}")
            return cached

        try:
            with self.perf.timer(f"analyze_{pair}"):
                frames = {
                    tf: self.analyze_timeframe(series_by_tf.get(tf, []), tf, pair)
                    for tf in requested
                }
                analysis = self._fuse(pair, frames)
        except Exception as e:
            logger.error(f"❌ Technical analysis failed for {pair}: {e}")
            logger.exception("Full traceback:")
            return MultiTimeframeAnalysis(pair=pair)

        self.cache.set(key, analysis)
        return analysis

    async def analyze_pair(
        self,
        pair: str,
        provider: CandleProvider,
        timeframes: Optional[Sequence[str]] = None,
    ) -> MultiTimeframeAnalysis:
        """Fetch candles for each timeframe, then analyze. Failed fetches fall back per timeframe."""
        candles = await self.fetch_all(pair, provider, timeframes)
        return self.analyze(pair, candles, timeframes)

    async def fetch_all(
        self,
        pair: str,
        provider: CandleProvider,
        timeframes: Optional[Sequence[str]] = None,
    ) -> Dict[str, List[Candle]]:
        requested = [validate_timeframe(tf) for tf in (timeframes or self.config.timeframes)]
        candles: Dict[str, List[Candle]] = {}
        for tf in requested:
            count = self.config.bar_counts.get(tf, 200)
            try:
                raw = await provider.fetch_candles(pair, tf, count)
            except Exception as e:
                logger.error(f"❌ Candle fetch failed for {pair} {tf}: {e}")
                raw = None
            series = normalize_series(raw)
            if not series:
                logger.warning(f"⚠️  No candles for {pair} {tf}, using neutral fallback")
            candles[tf] = series
        return candles

    def _fuse(self, pair: str, frames: Dict[str, TimeframeAnalysis]) -> MultiTimeframeAnalysis:
        weights = self.config.timeframe_weights
        default_weight = self.config.default_timeframe_weight
        total_score = 0.0
        total_weight = 0.0
        for tf, frame in frames.items():
            weight = weights.get(tf, default_weight)
            total_score += frame.score * weight
            total_weight += weight
        overall = total_score / total_weight if total_weight > 0 else 0.0

        direction_summary = {'BUY': 0, 'SELL': 0, 'NEUTRAL': 0}
        for frame in frames.values():
            direction_summary[frame.direction] += 1

        signals = [
            TimeframeSignal(
                timeframe=tf,
                type='BUY' if frame.score > 0 else 'SELL',
                strength=abs(frame.score),
                confidence=min(abs(frame.score), 95),
                price=frame.last_price,
                direction=frame.direction,
                patterns=[p.name for p in frame.patterns],
            )
            for tf, frame in frames.items()
            if abs(frame.score) > self.config.signal_threshold
        ]

        latest_price = None
        for tf in LATEST_PRICE_PRIORITY:
            if tf in frames and frames[tf].last_price is not None:
                latest_price = frames[tf].last_price
                break

        return MultiTimeframeAnalysis(
            pair=pair,
            timeframes=frames,
            overall_score=overall,
            trend=determine_trend(overall),
            strength=min(abs(overall), 100),
            signals=signals,
            latest_price=latest_price,
            direction_summary=direction_summary,
            regime_summary=aggregate_regime(frames),
            volatility_summary=aggregate_volatility(frames),
            divergence_summary=aggregate_divergences(frames),
            volume_pressure_summary=aggregate_volume_pressure(frames),
        )


def _is_candle_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(item, Candle) for item in value)
