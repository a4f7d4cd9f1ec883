"""
Signal Enhancer

Re-scores a signal from multi-timeframe context:

    enhanced = 25% trend strength + 20% momentum quality + 15% volume
             + 15% microstructure + 15% pattern similarity + 10% original score

and proposes optimized exit levels (three partial take-profits). The enhancer
never raises: on error it returns the signal with enhanced=False and the
error text.
"""

import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np

from ..analytics.candle import Candle, normalize_series
from ..analytics.indicators import calculate_stochastic, true_ranges
from ..analytics.technical_analyzer import MultiTimeframeAnalysis, TimeframeAnalysis
from ..config.settings import EnhancerSettings, coerce_settings
from ..decision.models import Direction, PrimarySignal
from ..errors import MissingCollaboratorInputError
from ..utils.math_utils import clamp
from ..utils.time_utils import ensure_utc

logger = logging.getLogger(__name__)

SCORE_WEIGHTS = {
    'trend_strength': 0.25,
    'momentum_quality': 0.20,
    'volume_score': 0.15,
    'microstructure_score': 0.15,
    'pattern_similarity': 0.15,
    'original_score': 0.10,
}

TP_LADDER = ((1.5, 50), (2.5, 30), (4.0, 20))

RATINGS = (
    ('ULTRA', 90, 0.90),
    ('EXCELLENT', 80, 0.80),
    ('GOOD', 70, 0.70),
    ('ACCEPTABLE', 60, 0.60),
)


# ============================================================================
# Result types
# ============================================================================

@dataclass
class PatternSimilarity:
    score: float = 0.70
    count: int = 0
    win_rate: float = 0.70
    avg_similarity: Optional[float] = None


@dataclass
class EnhancementMetrics:
    trend_strength: float
    momentum_quality: float
    volume_score: float
    microstructure_score: float
    pattern_similarity: PatternSimilarity


@dataclass
class TakeProfitLevel:
    level: float
    close_percent: int
    risk_reward: float


@dataclass
class OptimizedLevels:
    entry: float
    stop_loss: float
    take_profit_1: float
    take_profit_2: float
    take_profit_3: float
    tp_levels: List[TakeProfitLevel] = field(default_factory=list)


@dataclass
class EnhancedSignal:
    """Enhancer output. `enhanced` is False (with `error`) when enhancement failed."""
    signal: Dict[str, Any]
    enhanced: bool
    original_score: Optional[float] = None
    enhanced_score: Optional[float] = None
    win_probability: Optional[float] = None
    metrics: Optional[EnhancementMetrics] = None
    optimized_levels: Optional[OptimizedLevels] = None
    rating: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    def __repr__(self) -> str:
        if not self.enhanced:
            return f"EnhancedSignal(enhanced=False, error={self.error!r})"
        return (
            f"EnhancedSignal(score={self.enhanced_score:.1f}, "
            f"win={self.win_probability:.2f}, rating={self.rating})"
        )


@dataclass
class HistoricalPattern:
    pair: str
    direction: Direction
    strength: Optional[float]
    confidence: Optional[float]
    outcome: str  # WIN / LOSS
    timestamp: datetime


# ============================================================================
# Enhancer
# ============================================================================

class SignalEnhancer:
    """
    Multi-timeframe signal enhancement.

    Example:
        enhancer = SignalEnhancer()
        result = enhancer.enhance_signal(signal, analysis, candles_by_tf, spread_pips=1.2)
        print(result.rating)
    """

    def __init__(self, config: Union[EnhancerSettings, Dict[str, Any], None] = None, name: str = "SignalEnhancer"):
        self.name = name
        self.config = coerce_settings(EnhancerSettings, config)
        self.logger = logging.getLogger(f"{__name__}.{name}")
        self._lock = threading.Lock()
        self._patterns: Deque[HistoricalPattern] = deque(maxlen=self.config.max_history_size)

        self.enhanced = 0
        self.failed = 0

    # ------------------------------------------------------------------
    # Sub-scores
    # ------------------------------------------------------------------

    @staticmethod
    def timeframe_trend_strength(frame: Optional[TimeframeAnalysis], direction: Direction) -> float:
        """MA alignment, ADX, RSI and MACD agreement for one timeframe (0-1)."""
        if frame is None or frame.is_fallback:
            return 0.5
        ind = frame.indicators
        buy = direction is Direction.BUY
        parts = []

        fast, slow = ind.sma.get(50), ind.sma.get(200)
        if fast and slow:
            parts.append(1.0 if (fast.value > slow.value) == buy else 0.0)
        if ind.adx:
            parts.append(min(ind.adx.value / 40, 1.0))
        if ind.rsi:
            rsi = ind.rsi.value
            confirmed = 50 < rsi < 70 if buy else 30 < rsi < 50
            parts.append(1.0 if confirmed else 0.3)
        if ind.macd:
            aligned = ind.macd.macd > ind.macd.signal if buy else ind.macd.macd < ind.macd.signal
            parts.append(1.0 if aligned else 0.0)
        return sum(parts) / len(parts) if parts else 0.5

    def trend_strength(self, analysis: Optional[MultiTimeframeAnalysis], direction: Direction) -> float:
        frames = analysis.timeframes if analysis else {}
        total = weight_sum = 0.0
        for tf in ('D1', 'H4', 'H1', 'M15'):
            weight = self.config.timeframe_weights.get(tf, 0.25)
            total += self.timeframe_trend_strength(frames.get(tf), direction) * weight
            weight_sum += weight
        return total / weight_sum if weight_sum > 0 else 0.5

    @staticmethod
    def momentum_quality(
        frame: Optional[TimeframeAnalysis], candles: Sequence[Candle], direction: Direction
    ) -> float:
        """Average of MACD-histogram expansion, RSI, price and stochastic deltas (0-1)."""
        sign = 1 if direction is Direction.BUY else -1
        parts = []

        if frame is not None:
            hist = [p.histogram for p in frame.indicators.macd_series if p.histogram is not None]
            if len(hist) >= 2:
                parts.append(1.0 if abs(hist[-1]) > abs(hist[-2]) else 0.5)
            rsi = frame.indicators.rsi_series
            if len(rsi) >= 2:
                parts.append(1.0 if (rsi[-1].value - rsi[-2].value) * sign > 0 else 0.3)

        if len(candles) >= 2:
            parts.append(1.0 if (candles[-1].close - candles[-2].close) * sign > 0 else 0.3)
            current, previous = calculate_stochastic(candles), calculate_stochastic(candles[:-1])
            if current is not None and previous is not None:
                parts.append(1.0 if (current.k - previous.k) * sign > 0 else 0.4)

        return sum(parts) / len(parts) if parts else 0.5

    @staticmethod
    def volume_score(candles: Sequence[Candle], atr: Optional[float]) -> float:
        volumes = [c.volume for c in candles[-21:] if c.volume is not None]
        if len(volumes) < 2 or not np.mean(volumes[:-1]):
            return 0.6

        newest, previous = volumes[-1], volumes[-2]
        ratio = newest / float(np.mean(volumes[:-1]))
        score = 0.4 if ratio > 1.2 else (0.3 if ratio > 1.0 else 0.1)
        score += 0.3 if newest > previous else 0.1
        last = candles[-1]
        move = last.body / atr if atr else 0.0
        score += 0.3 if move > 0.5 and ratio > 1.0 else 0.1
        return min(score, 1.0)

    @staticmethod
    def microstructure_score(
        candles: Sequence[Candle], direction: Direction, spread_pips: Optional[float], atr: Optional[float]
    ) -> float:
        parts = []
        if spread_pips is not None:
            parts.append(1.0 if spread_pips < 2 else (0.7 if spread_pips < 3 else 0.4))
        if not candles:
            return sum(parts) / len(parts) if parts else 0.5

        last = candles[-1]
        if last.volume:
            bullish = last.close > last.open
            parts.append(1.0 if bullish == (direction is Direction.BUY) else 0.3)
        if atr and len(candles) >= 2:
            average_range = float(np.mean(true_ranges(candles)))
            if average_range > 0:
                ratio = atr / average_range
                parts.append(1.0 if ratio < 1.5 else (0.6 if ratio < 2.0 else 0.3))
        body_ratio = last.body / last.range if last.range > 0 else 0.5
        parts.append(1.0 if body_ratio > 0.6 else (0.7 if body_ratio > 0.4 else 0.4))
        return sum(parts) / len(parts)

    @staticmethod
    def similarity(signal: PrimarySignal, pattern: HistoricalPattern, now: datetime) -> float:
        """Strength, confidence and time-of-day proximity (0-1); 0 on direction mismatch."""
        if signal.direction != pattern.direction:
            return 0.0
        parts = []
        if signal.strength and pattern.strength:
            parts.append(1 - abs(signal.strength - pattern.strength) / 100)
        if signal.confidence and pattern.confidence:
            parts.append(1 - abs(signal.confidence - pattern.confidence) / 100)
        hour_diff = abs(now.hour - pattern.timestamp.hour)
        parts.append(1.0 if hour_diff <= 2 else (0.6 if hour_diff <= 4 else 0.3))
        return sum(parts) / len(parts)

    def pattern_similarity(self, signal: PrimarySignal, now: datetime) -> PatternSimilarity:
        with self._lock:
            candidates = [p for p in self._patterns if p.pair == signal.pair and p.direction == signal.direction]
        scored = [(self.similarity(signal, p, now), p) for p in candidates]
        similar = sorted(
            [(s, p) for s, p in scored if s >= self.config.min_pattern_similarity],
            key=lambda item: item[0],
            reverse=True,
        )[:self.config.max_similar_patterns]
        if not similar:
            return PatternSimilarity()

        win_rate = sum(1 for _, p in similar if p.outcome == 'WIN') / len(similar)
        avg_similarity = sum(s for s, _ in similar) / len(similar)
        return PatternSimilarity(
            score=(win_rate + avg_similarity) / 2,
            count=len(similar),
            win_rate=win_rate,
            avg_similarity=avg_similarity,
        )

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    @staticmethod
    def enhanced_score(metrics: EnhancementMetrics, original_score: float) -> float:
        total = (
            metrics.trend_strength * SCORE_WEIGHTS['trend_strength']
            + metrics.momentum_quality * SCORE_WEIGHTS['momentum_quality']
            + metrics.volume_score * SCORE_WEIGHTS['volume_score']
            + metrics.microstructure_score * SCORE_WEIGHTS['microstructure_score']
            + (metrics.pattern_similarity.score or 0.7) * SCORE_WEIGHTS['pattern_similarity']
            + original_score / 100 * SCORE_WEIGHTS['original_score']
        ) * 100
        return clamp(total, 0, 100)

    @staticmethod
    def win_probability(score: float, metrics: EnhancementMetrics) -> float:
        probability = score / 100
        if metrics.trend_strength > 0.80:
            probability += 0.05
        elif metrics.trend_strength < 0.60:
            probability -= 0.05
        if metrics.momentum_quality > 0.80:
            probability += 0.03
        elif metrics.momentum_quality < 0.60:
            probability -= 0.03
        if metrics.volume_score > 0.75:
            probability += 0.02
        win_rate = metrics.pattern_similarity.win_rate
        if win_rate > 0.80:
            probability += 0.05
        elif win_rate < 0.60:
            probability -= 0.05
        return clamp(probability, 0.50, 0.99)

    def optimize_levels(self, signal: PrimarySignal, atr: Optional[float]) -> OptimizedLevels:
        entry = signal.entry
        if entry.price is None:
            raise MissingCollaboratorInputError(f"{signal.pair}: entry price is required to optimize levels")
        atr = atr or self.config.default_atr
        sign = 1 if signal.direction is Direction.BUY else -1
        stop = entry.stop_loss if entry.stop_loss is not None else entry.price - sign * 1.5 * atr
        distance = abs(entry.price - stop)

        levels = [
            TakeProfitLevel(level=entry.price + sign * multiple * distance, close_percent=pct, risk_reward=multiple)
            for multiple, pct in TP_LADDER
        ]
        return OptimizedLevels(
            entry=entry.price,
            stop_loss=stop,
            take_profit_1=levels[0].level,
            take_profit_2=levels[1].level,
            take_profit_3=levels[2].level,
            tp_levels=levels,
        )

    @staticmethod
    def rating(score: float, win_probability: float) -> str:
        for label, min_score, min_probability in RATINGS:
            if score >= min_score and win_probability >= min_probability:
                return label
        return 'FILTERED'

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def enhance_signal(
        self,
        signal: PrimarySignal,
        analysis: Optional[MultiTimeframeAnalysis] = None,
        candles_by_tf: Optional[Mapping[str, Any]] = None,
        spread_pips: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> EnhancedSignal:
        """
        Enhance a signal.

        Args:
            signal: Primary signal
            analysis: Multi-timeframe analysis (trend and momentum inputs)
            candles_by_tf: Raw candles keyed by timeframe (H1 momentum, M15 volume)
            spread_pips: Current spread for the microstructure score
            now: Evaluation timestamp (pattern time-of-day proximity)

        Returns:
            EnhancedSignal; enhanced=False with the error text on failure
        """
        try:
            now = ensure_utc(now)
            candles_by_tf = candles_by_tf or {}
            frames = analysis.timeframes if analysis else {}
            h1 = normalize_series(candles_by_tf.get('H1'))
            m15 = normalize_series(candles_by_tf.get('M15'))
            m15_frame = frames.get('M15')
            m15_atr = m15_frame.indicators.atr.value if m15_frame and m15_frame.indicators.atr else None

            metrics = EnhancementMetrics(
                trend_strength=self.trend_strength(analysis, signal.direction),
                momentum_quality=self.momentum_quality(frames.get('H1'), h1, signal.direction),
                volume_score=self.volume_score(m15, m15_atr),
                microstructure_score=self.microstructure_score(m15, signal.direction, spread_pips, m15_atr),
                pattern_similarity=self.pattern_similarity(signal, now),
            )
            original = signal.final_score or 0.0
            score = self.enhanced_score(metrics, original)
            probability = self.win_probability(score, metrics)
            result = EnhancedSignal(
                signal=signal.to_dict(),
                enhanced=True,
                original_score=signal.final_score,
                enhanced_score=score,
                win_probability=probability,
                metrics=metrics,
                optimized_levels=self.optimize_levels(signal, m15_atr),
                rating=self.rating(score, probability),
            )
            with self._lock:
                self.enhanced += 1
            self.logger.info(
                f"✅ Signal enhanced: {signal.pair} {original:.1f} -> {score:.1f} "
                f"win={probability * 100:.1f}% rating={result.rating}"
            )
            return result

        except Exception as e:
            with self._lock:
                self.failed += 1
            self.logger.error(f"❌ Signal enhancement failed for {signal.pair}: {e}")
            self.logger.exception("Full traceback:")
            return EnhancedSignal(signal=signal.to_dict(), enhanced=False, error=str(e))

    def record_pattern(self, signal: PrimarySignal, outcome: str, now: Optional[datetime] = None):
        """Store a finished signal for later similarity scoring."""
        pattern = HistoricalPattern(
            pair=signal.pair,
            direction=signal.direction,
            strength=signal.strength,
            confidence=signal.confidence,
            outcome=str(outcome).upper(),
            timestamp=ensure_utc(now),
        )
        with self._lock:
            self._patterns.append(pattern)
        self.logger.debug(f"Pattern recorded: {pattern.pair} {pattern.direction.value} {pattern.outcome}")

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'name': self.name,
                'enhanced': self.enhanced,
                'failed': self.failed,
                'patterns_stored': len(self._patterns),
            }
