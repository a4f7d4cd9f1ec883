"""
Ultra Signal Filter - five-stage quality gate.

Stages:
1. Basic quality: strength / confidence / final score thresholds and complete levels
2. Market regime: allowed regime, volatility band, trend strength, news, liquidity
3. Technical confluence: at least N of 7 independent confirmations
4. Risk-reward profile: R:R, expected value, fractional Kelly band, stop/target pips
5. Historical validation: similar recorded outcomes and their win rate

A signal passes only when every stage passes and the estimated win
probability reaches the configured minimum.
"""

import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional, Tuple, Union

from ..analytics.technical_analyzer import MultiTimeframeAnalysis, TimeframeAnalysis
from ..config.settings import UltraFilterSettings, coerce_settings
from ..decision.models import Direction, NewsSnapshot, PairMetadata, PrimarySignal
from ..errors import InsufficientDataError
from ..utils.math_utils import clamp, safe_divide
from ..utils.time_utils import ensure_utc

logger = logging.getLogger(__name__)

STAGE_WEIGHTS = (1.0, 1.1, 1.2, 1.3, 1.4)
STAGE_MULTIPLIERS = (1.0, 1.15, 1.25, 1.20, 1.30)
FAILED_STAGE_MULTIPLIER = 0.7
MAX_WIN_PROBABILITY = 0.98
KEY_LEVEL_TOLERANCE = 0.002
FIBONACCI_TOLERANCE = 0.001
PRIMARY_FRAME_ORDER = ('H1', 'H4', 'M15', 'D1')


# ============================================================================
# Inputs and results
# ============================================================================

@dataclass
class FilterMarketView:
    """
    Market context the filter reads.

    Built from a MultiTimeframeAnalysis with `from_analysis`, or constructed
    directly. Every field has a neutral default.
    """
    trend: str = 'neutral'  # bullish / bearish / neutral
    trend_strength: float = 50.0
    volatility: float = 1.0  # ATR % of price
    momentum: float = 50.0
    volume_profile: float = 50.0
    liquidity: Optional[float] = None
    timeframe_trends: List[str] = field(default_factory=list)
    key_levels: List[float] = field(default_factory=list)
    short_ma_above_long: Optional[bool] = None
    price_above_short_ma: Optional[bool] = None
    rsi: float = 50.0
    macd_histogram: Optional[float] = None
    macd_bias: Optional[str] = None
    fibonacci_prices: List[float] = field(default_factory=list)
    high_impact_events: int = 0
    news_sentiment: float = 0.0

    @classmethod
    def from_analysis(
        cls,
        analysis: Optional[MultiTimeframeAnalysis],
        news: Optional[NewsSnapshot] = None,
        volume_profile: Optional[float] = None,
    ) -> "FilterMarketView":
        """
        volume_profile, when given, replaces the value derived from the
        analysis (recent-vs-average volume rate x 50).
        """
        view = cls()
        if volume_profile is not None:
            view.volume_profile = clamp(volume_profile, 0, 100)
        if news is not None:
            view.high_impact_events = int(news.upcoming_events or 0) if news.high_impact_soon else 0
            view.news_sentiment = news.sentiment or 0.0
        if analysis is None:
            return view

        if 'bullish' in analysis.trend:
            view.trend = 'bullish'
        elif 'bearish' in analysis.trend:
            view.trend = 'bearish'
        view.trend_strength = analysis.strength
        view.momentum = clamp(50 + analysis.overall_score / 2, 0, 100)

        frames = [f for f in analysis.timeframes.values() if not f.is_fallback]
        atr_pcts = [f.indicators.atr.percentage for f in frames if f.indicators.atr]
        if atr_pcts:
            view.volatility = sum(atr_pcts) / len(atr_pcts)
        pressure = analysis.volume_pressure_summary
        if volume_profile is None and pressure and pressure.average_volume_rate is not None:
            view.volume_profile = clamp(pressure.average_volume_rate * 50, 0, 100)

        view.timeframe_trends = [
            'bullish' if f.direction == 'BUY' else ('bearish' if f.direction == 'SELL' else 'neutral')
            for f in frames
        ]
        for frame in frames:
            sr = frame.support_resistance
            if sr:
                view.key_levels.extend(sr.support + sr.resistance)

        primary = _primary_frame(analysis)
        if primary is not None:
            ind = primary.indicators
            short, long = ind.sma.get(20), ind.sma.get(50)
            if short and long:
                view.short_ma_above_long = short.value > long.value
            if short and primary.last_price is not None:
                view.price_above_short_ma = primary.last_price > short.value
            if ind.rsi:
                view.rsi = ind.rsi.value
            if ind.macd:
                view.macd_histogram = ind.macd.histogram
                view.macd_bias = ind.macd.crossover
            if ind.fibonacci:
                view.fibonacci_prices = list(ind.fibonacci.levels.values())
        return view


def _primary_frame(analysis: MultiTimeframeAnalysis) -> Optional[TimeframeAnalysis]:
    for tf in PRIMARY_FRAME_ORDER:
        frame = analysis.timeframes.get(tf)
        if frame is not None and not frame.is_fallback:
            return frame
    return None


@dataclass
class PatternRecord:
    """Recorded outcome of a past signal."""
    pair: str
    direction: Direction
    strength: Optional[float]
    confidence: Optional[float]
    outcome: str  # win / loss
    timestamp: datetime


@dataclass
class StageResult:
    name: str
    passed: bool
    score: float
    checks: Dict[str, bool] = field(default_factory=dict)
    details: str = ''
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)

    def __repr__(self) -> str:
        return f"StageResult({self.name}: {'PASS' if self.passed else 'FAIL'} {self.score:.0f})"


def _stage(name: str, checks: Dict[str, bool], details: str, **data) -> StageResult:
    passed_count = sum(1 for ok in checks.values() if ok)
    score = passed_count / len(checks) * 100 if checks else 100.0
    return StageResult(
        name=name,
        passed=all(checks.values()),
        score=score,
        checks=checks,
        details=details,
        data=data,
    )


@dataclass
class FilterResult:
    """
    Ultra filter verdict.

    Attributes:
        passed: All stages passed and win probability reached the minimum
        confidence: Stage-weighted average score (0-100)
        win_probability: Estimated win probability (0-0.98)
        recommendation: STRONG_BUY / BUY / CONSIDER / REJECT
        enhanced_signal: Signal fields plus the ultra-quality block, when all stages passed
    """
    passed: bool
    confidence: float
    win_probability: float
    stages: List[StageResult]
    recommendation: str
    reason: str
    enhanced_signal: Optional[Dict[str, Any]] = None

    def stage(self, name: str) -> Optional[StageResult]:
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None

    def to_dict(self) -> dict:
        return {
            'passed': self.passed,
            'confidence': self.confidence,
            'win_probability': self.win_probability,
            'stages': [s.to_dict() for s in self.stages],
            'recommendation': self.recommendation,
            'reason': self.reason,
            'enhanced_signal': self.enhanced_signal,
        }

    def __repr__(self) -> str:
        return (
            f"FilterResult(passed={self.passed}, win={self.win_probability:.2f}, "
            f"conf={self.confidence:.1f}, {self.recommendation})"
        )


# ============================================================================
# Filter
# ============================================================================

class UltraSignalFilter:
    """
    Extreme-quality signal selection.

    Example:
        ultra = UltraSignalFilter({'min_confluence': 5})
        result = ultra.filter_signal(signal, FilterMarketView.from_analysis(analysis))
        if result.passed:
            ...
        ultra.record_signal_outcome(signal, 'win')
    """

    def __init__(self, config: Union[UltraFilterSettings, Dict[str, Any], None] = None, name: str = "UltraFilter"):
        self.name = name
        self.config = coerce_settings(UltraFilterSettings, config)
        self.logger = logging.getLogger(f"{__name__}.{name}")
        self._lock = threading.Lock()
        self._history: Deque[PatternRecord] = deque(maxlen=self.config.max_history_size)

        self.evaluated = 0
        self.passed = 0

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def check_basic_quality(self, signal: PrimarySignal) -> StageResult:
        cfg = self.config
        entry = signal.entry
        checks = {
            'strength': (signal.strength or 0) >= cfg.min_strength,
            'confidence': (signal.confidence or 0) >= cfg.min_confidence,
            'final_score': (signal.final_score or 0) >= cfg.min_final_score,
            'has_entry': (entry.price or 0) > 0,
            'has_stop_loss': (entry.stop_loss or 0) > 0,
            'has_take_profit': (entry.take_profit or 0) > 0,
        }
        passed = sum(checks.values())
        return _stage(
            'basic_quality', checks,
            f"Basic quality: {passed / len(checks) * 100:.1f}% ({passed}/{len(checks)} checks)",
        )

    @staticmethod
    def classify_regime(view: FilterMarketView) -> str:
        strength = view.trend_strength
        if strength >= 70 and view.trend in ('bullish', 'bearish'):
            return 'trending_strong'
        if strength >= 50:
            return 'trending_moderate'
        return 'ranging'

    @staticmethod
    def has_conflicting_news(signal: PrimarySignal, view: FilterMarketView) -> bool:
        if view.high_impact_events <= 0:
            return False
        return (
            (signal.direction is Direction.BUY and view.news_sentiment < -50)
            or (signal.direction is Direction.SELL and view.news_sentiment > 50)
        )

    def check_market_regime(self, signal: PrimarySignal, view: FilterMarketView) -> StageResult:
        cfg = self.config
        regime = self.classify_regime(view)
        liquidity = view.liquidity if view.liquidity is not None else 75.0
        checks = {
            'regime_allowed': regime in cfg.allowed_regimes,
            'volatility_in_range': cfg.min_volatility <= view.volatility <= cfg.max_volatility,
            'trend_strength': view.trend_strength >= cfg.min_trend_strength,
            'no_conflicting_news': not self.has_conflicting_news(signal, view),
            'liquidity': liquidity >= cfg.min_liquidity,
        }
        return _stage(
            'market_regime', checks,
            f"Market regime: {regime}, volatility: {view.volatility:.2f}",
            regime=regime,
            volatility=view.volatility,
        )

    def confirmations(self, signal: PrimarySignal, view: FilterMarketView) -> List[str]:
        """Names of the technical confirmations that agree with the signal."""
        buy = signal.direction is Direction.BUY
        wanted = 'bullish' if buy else 'bearish'
        price = signal.entry.price
        found = []

        if sum(1 for t in view.timeframe_trends if t == wanted) >= 3:
            found.append('trend_alignment')
        if (view.momentum > 60) if buy else (view.momentum < 40):
            found.append('momentum')
        if view.volume_profile > 60:
            found.append('volume')
        if price and any(abs(price - level) / price < KEY_LEVEL_TOLERANCE for level in view.key_levels):
            found.append('key_levels')
        if view.short_ma_above_long is not None and view.price_above_short_ma is not None:
            if buy and view.short_ma_above_long and view.price_above_short_ma:
                found.append('ma_alignment')
            elif not buy and not view.short_ma_above_long and not view.price_above_short_ma:
                found.append('ma_alignment')
        histogram = view.macd_histogram or 0
        if buy:
            oscillators = 45 < view.rsi < 70 and (view.macd_bias == 'bullish' or histogram > 0)
        else:
            oscillators = 30 < view.rsi < 55 and (view.macd_bias == 'bearish' or histogram < 0)
        if oscillators:
            found.append('oscillators')
        if price and any(abs(price - fib) / price < FIBONACCI_TOLERANCE for fib in view.fibonacci_prices):
            found.append('fibonacci')
        return found

    def check_technical_confluence(self, signal: PrimarySignal, view: FilterMarketView) -> StageResult:
        found = self.confirmations(signal, view)
        count = len(found)
        return StageResult(
            name='technical_confluence',
            passed=count >= self.config.min_confluence,
            score=min(count / 7 * 100, 100.0),
            details=f"{count}/7 technical confirmations (need {self.config.min_confluence}+)",
            data={'confluence_count': count, 'confirmations': found},
        )

    @staticmethod
    def base_win_rate(signal: PrimarySignal) -> float:
        quality = ((signal.strength or 0) + (signal.confidence or 0)) / 2
        return 0.5 + quality / 200

    @staticmethod
    def expected_value(risk_reward: float, win_rate: float) -> float:
        return win_rate * risk_reward - (1 - win_rate)

    def kelly_fraction(self, win_rate: float, risk_reward: float) -> float:
        """Fractional Kelly: full Kelly scaled by the configured multiplier."""
        if risk_reward <= 0:
            return 0.0
        full = (win_rate * risk_reward - (1 - win_rate)) / risk_reward
        return full * self.config.kelly_fraction_multiplier

    @staticmethod
    def risk_reward(signal: PrimarySignal) -> float:
        entry = signal.entry
        if entry.risk_reward:
            return entry.risk_reward
        if not entry.is_complete:
            return 0.0
        return safe_divide(abs(entry.take_profit - entry.price), abs(entry.price - entry.stop_loss))

    def check_risk_reward(self, signal: PrimarySignal) -> StageResult:
        cfg = self.config
        entry = signal.entry
        meta = PairMetadata.from_pair(signal.pair)
        rr = self.risk_reward(signal)
        win_rate = self.base_win_rate(signal)
        ev = self.expected_value(rr, win_rate)
        kelly = self.kelly_fraction(win_rate, rr)

        stop_pips = meta.pips(entry.price - entry.stop_loss) if entry.price and entry.stop_loss else None
        target_pips = meta.pips(entry.take_profit - entry.price) if entry.price and entry.take_profit else None

        checks = {
            'min_rr': rr >= cfg.min_risk_reward,
            'positive_expected_value': ev > cfg.min_expected_value,
            'optimal_kelly': 0.01 < kelly < 0.25,
            'tight_stop': stop_pips is not None and cfg.min_stop_pips <= stop_pips <= cfg.max_stop_pips,
            'realistic_tp': target_pips is not None and cfg.min_target_pips <= target_pips <= cfg.max_target_pips,
        }
        return _stage(
            'risk_reward', checks,
            f"R:R {rr:.2f}, EV: {ev:.2f}, Kelly: {kelly * 100:.2f}%",
            risk_reward=rr,
            expected_value=ev,
            kelly_fraction=kelly,
            stop_pips=stop_pips,
            target_pips=target_pips,
        )

    def similar_patterns(self, signal: PrimarySignal) -> List[PatternRecord]:
        with self._lock:
            matches = [p for p in self._history if p.pair == signal.pair]
        return matches[-10:]

    @staticmethod
    def pattern_statistics(patterns: List[PatternRecord]) -> Tuple[float, float]:
        """Win rate (0-1) and average strength of recorded patterns."""
        if not patterns:
            raise InsufficientDataError('historical patterns', 1, 0)
        win_rate = sum(1 for p in patterns if p.outcome == 'win') / len(patterns)
        strength = sum(p.strength if p.strength is not None else 50 for p in patterns) / len(patterns)
        return win_rate, strength

    def check_historical_validation(self, signal: PrimarySignal) -> StageResult:
        cfg = self.config
        if not cfg.enable_pattern_matching:
            return StageResult('historical_validation', True, 100.0, details='Pattern matching disabled')

        patterns = self.similar_patterns(signal)
        try:
            win_rate, strength = self.pattern_statistics(patterns)
        except InsufficientDataError as e:
            self.logger.debug(f"{signal.pair}: {e}, using default win rate")
            win_rate = cfg.default_historical_win_rate
            strength = 70.0

        checks = {
            'sufficient_history': len(patterns) >= cfg.min_similar_patterns,
            'high_win_rate': win_rate >= cfg.min_historical_win_rate,
            'strong_pattern': strength >= cfg.min_pattern_strength,
        }
        return _stage(
            'historical_validation', checks,
            f"{len(patterns)} similar patterns, {win_rate * 100:.1f}% win rate",
            historical_win_rate=win_rate,
            pattern_count=len(patterns),
            pattern_strength=strength,
        )

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    @staticmethod
    def overall_confidence(stages: List[StageResult]) -> float:
        weighted = sum(stage.score * weight for stage, weight in zip(stages, STAGE_WEIGHTS))
        return min(weighted / sum(STAGE_WEIGHTS), 100.0)

    @staticmethod
    def win_probability(stages: List[StageResult], signal: PrimarySignal) -> float:
        probability = ((signal.strength or 0) + (signal.confidence or 0)) / 200
        for stage, multiplier in zip(stages, STAGE_MULTIPLIERS):
            probability *= multiplier if stage.passed else FAILED_STAGE_MULTIPLIER
        return min(probability, MAX_WIN_PROBABILITY)

    @staticmethod
    def recommendation(all_passed: bool, win_probability: float, confidence: float) -> str:
        if not all_passed:
            return 'REJECT'
        if win_probability >= 0.90 and confidence >= 90:
            return 'STRONG_BUY'
        if win_probability >= 0.85 and confidence >= 85:
            return 'BUY'
        if win_probability >= 0.80 and confidence >= 75:
            return 'CONSIDER'
        return 'REJECT'

    def filter_signal(
        self,
        signal: PrimarySignal,
        view: Optional[FilterMarketView] = None,
        now: Optional[datetime] = None,
    ) -> FilterResult:
        """
        Run the signal through all five stages.

        Args:
            signal: Primary signal with entry/stop/target
            view: Market context (neutral defaults when omitted)
            now: Timestamp stamped on the enhanced signal

        Returns:
            FilterResult
        """
        view = view or FilterMarketView()
        stages = [
            self.check_basic_quality(signal),
            self.check_market_regime(signal, view),
            self.check_technical_confluence(signal, view),
            self.check_risk_reward(signal),
            self.check_historical_validation(signal),
        ]
        all_passed = all(stage.passed for stage in stages)
        confidence = self.overall_confidence(stages)
        win_probability = self.win_probability(stages, signal)
        passed = all_passed and win_probability >= self.config.min_win_probability

        if all_passed:
            reason = 'Signal meets all ultra-quality criteria'
        else:
            failed = [f"{s.name}: {s.details}" for s in stages if not s.passed]
            reason = f"Failed stages: {'; '.join(failed)}"

        enhanced = None
        if all_passed:
            enhanced = {
                **signal.to_dict(),
                'ultra_quality': True,
                'quality_score': confidence,
                'win_probability': win_probability,
                'confluence': stages[2].data.get('confirmations', []),
                'regime': stages[1].data.get('regime'),
                'historical_win_rate': stages[4].data.get('historical_win_rate'),
                'timestamp': ensure_utc(now).isoformat(),
            }

        result = FilterResult(
            passed=passed,
            confidence=confidence,
            win_probability=win_probability,
            stages=stages,
            recommendation=self.recommendation(all_passed, win_probability, confidence),
            reason=reason,
            enhanced_signal=enhanced,
        )

        with self._lock:
            self.evaluated += 1
            if passed:
                self.passed += 1
        if passed:
            self.logger.info(
                f"🎯 ULTRA-QUALITY SIGNAL: {signal.pair} {signal.direction.value} "
                f"win={win_probability * 100:.1f}% conf={confidence:.1f}"
            )
        else:
            self.logger.debug(f"{signal.pair}: {result}")
        return result

    def record_signal_outcome(self, signal: PrimarySignal, outcome: str, now: Optional[datetime] = None):
        """Append a win/loss outcome to the bounded history stage 5 reads."""
        record = PatternRecord(
            pair=signal.pair,
            direction=signal.direction,
            strength=signal.strength,
            confidence=signal.confidence,
            outcome=str(outcome).lower(),
            timestamp=ensure_utc(now),
        )
        with self._lock:
            self._history.append(record)
        self.logger.info(f"Signal outcome recorded: {signal.pair} {record.outcome}")

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'name': self.name,
                'evaluated': self.evaluated,
                'passed': self.passed,
                'pass_rate': safe_divide(self.passed, self.evaluated),
                'history_size': len(self._history),
            }
