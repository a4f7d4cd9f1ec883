"""
Layered Analysis Builder

Fuses the technical analysis, candle summaries, quote, external snapshots and
the validator verdict into exactly 18 ordered layers:

    L1  Raw market data             L10 Silent liquidity & intermarket
    L2  Candles (numeric)           L11 Macro
    L3  Market structure            L12 News impact
    L4  Trend & momentum            L13 Psychology
    L5  Liquidity / SMC             L14 Risk environment
    L6  Volume & order flow         L15 Statistics
    L7  Volatility                  L16 Validation
    L8  Time intelligence           L17 Confluence
    L9  Memory & relative strength  L18 Decision

Every layer is built inside its own boundary: an exception turns that layer
into a degraded placeholder and the other layers still complete. L17 and L18
are built last.
"""

import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from ..analytics.candle_summary import (
    CandleAggregate,
    CandleRegime,
    CandleSummary,
    CandleVolatility,
    SmcRead,
    StructureRead,
    aggregate_summaries,
)
from ..analytics.technical_analyzer import MultiTimeframeAnalysis
from ..config.settings import LayerSettings, coerce_settings
from ..errors import LayerComputationError
from ..utils.logger import get_decision_logger
from ..utils.math_utils import clamp, pct
from ..utils.time_utils import ensure_utc, session_for
from .confluence import KEY_SMART_IDS, GateStatus
from .layers import (
    LAYER_COUNT,
    CandleMetrics,
    ConfluenceMetrics,
    DecisionMetrics,
    FailureCost,
    HtfView,
    Layer,
    LiquidityMetrics,
    LiquidityQuality,
    MacroMetrics,
    MemoryStrengthMetrics,
    MissingInputs,
    MomentumMetrics,
    NewsMetrics,
    PsychologyMetrics,
    RawDataMetrics,
    RiskEnvironmentMetrics,
    SilentLiquidityIntermarketMetrics,
    StatisticsMetrics,
    StructureMetrics,
    TimeIntelligenceMetrics,
    ValidationMetrics,
    VolatilityMetrics,
    VolumeFlowMetrics,
    WeightedFail,
    build_layer,
    degraded_layer,
)
from .models import Availability, DecisionState, Direction, MarketScenario, PairMetadata, Quote
from .validator import ValidationVerdict, frame_direction, pick_summary

logger = logging.getLogger(__name__)

LATE_SESSION_PATTERN = re.compile(r"close|late|last minutes", re.IGNORECASE)

MISSING_INPUT_STEPS = {
    'intermarket:correlation': 'Correlation: stream peer symbols so the correlation snapshot can be computed.',
    'news:calendarEvents': 'Events: provide economic calendar events for the pair currencies.',
    'news:headlines': 'Headlines: connect a news provider or enable headline evidence.',
    'technical:indicators': 'Technical snapshot: wait for indicators (RSI/MACD/ATR) to hydrate.',
    'market:quote': 'Quote: wait for a live bid/ask/spread/volume feed.',
}


# ============================================================================
# Derived inputs
# ============================================================================

@dataclass
class QuoteView:
    """Quote with bid/ask synthesized and spread figures derived."""
    bid: Optional[float] = None
    ask: Optional[float] = None
    last: Optional[float] = None
    mid: Optional[float] = None
    spread: Optional[float] = None
    spread_pct: Optional[float] = None
    spread_points: Optional[float] = None
    age_ms: Optional[float] = None
    velocity: Optional[float] = None
    acceleration: Optional[float] = None
    liquidity_hint: Optional[str] = None
    volume: Optional[float] = None
    gap_to_mid: Optional[float] = None
    pending: bool = False
    source: Optional[str] = None


def synthesize_quote(quote: Optional[Quote]) -> QuoteView:
    """
    Normalize a raw quote.

    A feed that is not bars-only but reports a zero bid or ask gets both
    synthesized from last/mid. Spread points come from the point size, or
    from the digit count when the point is unknown. A bars-only feed with no
    real bid/ask never reports a zero spread.
    """
    if quote is None:
        return QuoteView()

    bid, ask, last, mid = quote.bid, quote.ask, quote.last, quote.mid
    fallback = last if last is not None else mid
    if not quote.bars_only and fallback is not None:
        if not (bid is not None and bid > 0):
            bid = fallback
        if not (ask is not None and ask > 0):
            ask = fallback
        if mid is None:
            mid = (bid + ask) / 2

    inferred = round(ask - bid, 8) if bid is not None and ask is not None and ask > bid else None
    spread = quote.spread if quote.spread is not None else inferred

    spread_pct = quote.spread_pct
    if spread_pct is None and spread is not None and mid is not None and mid > 0:
        spread_pct = round(spread / mid * 100, 4)

    spread_points = quote.spread_points
    if spread_points is None and spread is not None:
        point = None
        if quote.point is not None and quote.point > 0:
            point = quote.point
        elif quote.digits is not None and quote.digits >= 0:
            point = 1 / 10 ** quote.digits
        if point:
            spread_points = round(spread / point, 2)

    if quote.bars_only and inferred is None:
        spread = None if spread == 0 else spread
        spread_points = None if spread_points == 0 else spread_points
        spread_pct = None if spread_pct == 0 else spread_pct

    return QuoteView(
        bid=bid,
        ask=ask,
        last=last,
        mid=mid,
        spread=spread,
        spread_pct=spread_pct,
        spread_points=spread_points,
        age_ms=quote.age_ms,
        velocity=quote.mid_velocity_per_sec,
        acceleration=quote.mid_acceleration_per_sec2,
        liquidity_hint=quote.liquidity_hint,
        volume=quote.volume,
        gap_to_mid=quote.gap_to_mid,
        pending=quote.pending,
        source=quote.source,
    )


def infer_market_phase(
    regime: Optional[CandleRegime],
    volatility: Optional[CandleVolatility],
    structure: Optional[StructureRead],
    smc: Optional[SmcRead],
    trend_pct: Optional[float],
    candle_dir: Direction,
) -> str:
    """accumulation / distribution / retracement / expansion / unknown."""
    acc_dist = (smc.accumulation_distribution.state if smc and smc.accumulation_distribution else '').lower()
    if 'accum' in acc_dist:
        return 'accumulation'
    if 'dist' in acc_dist:
        return 'distribution'

    regime_state = (regime.state if regime else '').lower()
    vol_state = (volatility.state if volatility else '').lower()
    structure_bias = Direction.normalize(structure.bias if structure else None)

    if structure_bias.is_directional and candle_dir.is_directional and structure_bias != candle_dir:
        if trend_pct is None or abs(trend_pct) <= 0.12:
            return 'retracement'
    if regime_state and regime_state != 'range' and vol_state in ('normal', 'high'):
        return 'expansion'
    if regime_state == 'range' or vol_state == 'low':
        return 'accumulation'
    return 'unknown'


def liquidity_quality(
    hint: Optional[str], spread_points: Optional[float], volume: Optional[float], volume_spike: bool
) -> LiquidityQuality:
    text = (hint or '').lower()
    score = 60
    if any(word in text for word in ('deep', 'real', 'good')):
        score += 18
    if any(word in text for word in ('thin', 'fake', 'poor', 'low')):
        score -= 22
    if spread_points is not None:
        if spread_points <= 15:
            score += 12
        elif spread_points >= 35:
            score -= 20
        elif spread_points >= 25:
            score -= 10
    if volume is not None:
        if volume >= 150:
            score += 10
        elif volume <= 40:
            score -= 10
    if volume_spike:
        score += 8
    score = int(clamp(round(score), 0, 100))
    quality = 'real' if score >= 70 else ('thin_or_fake' if score <= 45 else 'mixed')
    return LiquidityQuality(quality=quality, score=score)


def memory_score(tags: List[str]) -> int:
    score = (
        (30 if 'sweep' in tags else 0)
        + (30 if 'rejection' in tags else 0)
        + (25 if 'volume_spike' in tags else 0)
        + (15 if tags else 0)
    )
    return int(clamp(score, 0, 100))


def liquidity_defense_score(smc: Optional[SmcRead]) -> int:
    if smc is None:
        return 0
    score = (
        (35 if smc.liquidity_sweep is not None else 0)
        + (25 if smc.has_fvg else 0)
        + (25 if smc.order_block is not None else 0)
        + (15 if smc.has_volume_imbalance else 0)
    )
    return int(clamp(score, 0, 100))


def risk_environment_score(
    spread_points: Optional[float], news_impact_score: Optional[float], atr_pct: Optional[float]
) -> float:
    penalty = 0.0
    if spread_points is not None:
        penalty += clamp((spread_points - 10) * 2.5, 0, 35)
    if news_impact_score is not None:
        penalty += clamp(news_impact_score * 8, 0, 35)
    if atr_pct is not None:
        penalty += clamp((atr_pct - 0.2) * 45, 0, 35)
    return clamp(100 - penalty, 0, 100)


def execution_quality_score(quote: QuoteView) -> int:
    penalty = 0.0
    if quote.spread_points is not None:
        penalty += clamp((quote.spread_points - 10) * 2.8, 0, 45)
    if quote.age_ms is not None:
        penalty += clamp((quote.age_ms - 3_000) / 1_000, 0, 25)
    if quote.pending:
        penalty += 15
    return int(clamp(round(100 - penalty), 0, 100))


def estimate_failure_cost(meta: PairMetadata, price: Optional[float], stop_loss: Optional[float],
                          velocity: Optional[float]) -> FailureCost:
    """Stop distance in pips and seconds to reach it at the current mid velocity."""
    if price is None or stop_loss is None:
        return FailureCost(available=False)
    distance = abs(price - stop_loss)
    seconds = None
    if velocity is not None and abs(velocity) > 1e-12:
        seconds = int(round(distance / abs(velocity)))
    return FailureCost(
        available=True,
        invalidation_distance_pips=round(meta.pips(distance), 1),
        time_to_invalidation_sec=seconds,
    )


@dataclass
class LayerContext:
    """Everything the individual layer builders read, derived once per evaluation."""
    scenario: MarketScenario
    verdict: ValidationVerdict
    analysis: Optional[MultiTimeframeAnalysis]
    summaries: Mapping[str, CandleSummary]
    now: datetime
    quote: QuoteView
    focus_tf: Optional[str]
    focus: Optional[CandleSummary]
    aggregate: Optional[CandleAggregate]
    candle_dir: Direction
    d1_dir: Direction
    h4_dir: Direction
    patterns: List[str] = field(default_factory=list)

    @classmethod
    def create(
        cls,
        scenario: MarketScenario,
        verdict: ValidationVerdict,
        analysis: Optional[MultiTimeframeAnalysis],
        summaries: Mapping[str, CandleSummary],
        now: datetime,
    ) -> "LayerContext":
        focus_tf, focus = pick_summary(summaries)
        aggregate = aggregate_summaries(summaries) if summaries else None
        candle_dir = Direction.normalize(
            aggregate.direction if aggregate else (focus.direction if focus else None)
        )

        def htf(tf: str) -> Direction:
            direction = frame_direction(analysis, tf)
            if direction is None and summaries.get(tf) is not None:
                direction = Direction.normalize(summaries[tf].direction)
            return direction or Direction.NEUTRAL

        return cls(
            scenario=scenario,
            verdict=verdict,
            analysis=analysis,
            summaries=summaries,
            now=now,
            quote=synthesize_quote(scenario.quote),
            focus_tf=focus_tf,
            focus=focus,
            aggregate=aggregate,
            candle_dir=candle_dir,
            d1_dir=htf('D1'),
            h4_dir=htf('H4'),
            patterns=[p.name for p in focus.patterns] if focus else [],
        )

    # Convenience views ---------------------------------------------------

    @property
    def direction(self) -> Direction:
        return self.scenario.primary.direction

    @property
    def confidence(self) -> Optional[float]:
        return self.scenario.primary.confidence

    @property
    def regime(self) -> Optional[CandleRegime]:
        return self.focus.regime if self.focus else None

    @property
    def volatility(self) -> Optional[CandleVolatility]:
        return self.focus.volatility if self.focus else None

    @property
    def structure(self) -> Optional[StructureRead]:
        return self.focus.structure if self.focus else None

    @property
    def smc(self) -> Optional[SmcRead]:
        return self.focus.smc if self.focus else None

    @property
    def rsi(self) -> Optional[float]:
        return self.focus.rsi if self.focus else None

    @property
    def trend_pct(self) -> Optional[float]:
        return self.focus.trend_pct if self.focus else None

    @property
    def atr_pct(self) -> Optional[float]:
        vol = self.volatility
        return round(vol.atr_pct, 4) if vol and vol.atr_pct is not None else None

    @property
    def summary_confidence(self) -> Optional[float]:
        if self.aggregate is not None:
            return self.aggregate.confidence
        return self.focus.confidence if self.focus else None

    @property
    def rsi_extreme(self) -> bool:
        rsi = self.rsi
        if rsi is None:
            return False
        return (self.direction is Direction.BUY and rsi >= 78) or (self.direction is Direction.SELL and rsi <= 22)

    @property
    def htf_conflict(self) -> bool:
        if not self.direction.is_directional:
            return False
        return any(d.is_directional and d != self.direction for d in (self.d1_dir, self.h4_dir))

    @property
    def news_impact_score(self) -> Optional[float]:
        return self.scenario.news.impact_score if self.scenario.news else None

    @property
    def risk_score(self) -> float:
        return risk_environment_score(self.quote.spread_points, self.news_impact_score, self.atr_pct)

    def gate_status(self, gate_id: str) -> Optional[GateStatus]:
        return self.verdict.confluence.status_of(gate_id)

    def gate_failed(self, gate_id: str) -> bool:
        return self.gate_status(gate_id) is GateStatus.FAIL

    def votes(self) -> Dict[str, Direction]:
        """Five factor directions used by the confluence layer."""
        scenario = self.scenario
        return {
            'technical': Direction.normalize(self.analysis.direction if self.analysis else None),
            'candles': self.candle_dir,
            'economic': scenario.economic.direction if scenario.economic else Direction.NEUTRAL,
            'news': scenario.news.direction if scenario.news else Direction.NEUTRAL,
            'macro': scenario.macro.direction if scenario.macro else Direction.NEUTRAL,
        }

    def alignment(self) -> Tuple[Direction, int, Dict[str, int]]:
        votes = list(self.votes().values())
        buy = sum(1 for v in votes if v is Direction.BUY)
        sell = sum(1 for v in votes if v is Direction.SELL)
        neutral = len(votes) - buy - sell
        aligned = Direction.BUY if buy > sell else (Direction.SELL if sell > buy else Direction.NEUTRAL)
        score = int(clamp(round((max(buy, sell) + neutral * 0.25) / max(1, len(votes)) * 100), 0, 100))
        return aligned, score, {'BUY': buy, 'SELL': sell, 'NEUTRAL': neutral}


# ============================================================================
# Builder
# ============================================================================

class LayerBuilder:
    """
    Builds the 18 analytical layers for one evaluation.

    Example:
        builder = LayerBuilder()
        layers = builder.build(scenario, verdict, analysis, summaries, now=now)
        assert len(layers) == 18
    """

    def __init__(self, config: Union[LayerSettings, Dict[str, Any], None] = None, name: str = "LayerBuilder"):
        self.name = name
        self.config = coerce_settings(LayerSettings, config)
        self.logger = logging.getLogger(f"{__name__}.{name}")
        self.decision_logger = get_decision_logger(f"{__name__}.{name}")

    def build(
        self,
        scenario: MarketScenario,
        verdict: ValidationVerdict,
        analysis: Optional[MultiTimeframeAnalysis] = None,
        summaries: Optional[Mapping[str, CandleSummary]] = None,
        now: Optional[datetime] = None,
    ) -> List[Layer]:
        """
        Build all 18 layers.

        Args:
            scenario: Primary signal and external snapshots
            verdict: Validator verdict for the same evaluation
            analysis: Multi-timeframe technical analysis (may be None)
            summaries: Candle summaries keyed by timeframe
            now: Evaluation timestamp (UTC)

        Returns:
            Exactly 18 layers in index order
        """
        ctx = LayerContext.create(scenario, verdict, analysis, summaries or {}, ensure_utc(now))
        steps: List[Tuple[int, Callable[[LayerContext], Layer]]] = [
            (1, self._raw_data),
            (2, self._candles),
            (3, self._structure),
            (4, self._momentum),
            (5, self._liquidity),
            (6, self._volume_flow),
            (7, self._volatility),
            (8, self._time_intelligence),
            (9, self._memory_strength),
            (10, self._silent_liquidity_intermarket),
            (11, self._macro),
            (12, self._news),
            (13, self._psychology),
            (14, self._risk_environment),
            (15, self._statistics),
            (16, self._validation),
            (17, self._confluence),
            (18, self._decision),
        ]

        layers: List[Layer] = []
        for index, step in steps:
            try:
                layers.append(step(ctx))
            except Exception as e:
                error = LayerComputationError(f"L{index}", e)
                self.decision_logger.layer_degraded(error.layer_key, error, pair=scenario.pair)
                self.logger.exception("Full traceback:")
                layers.append(degraded_layer(index, error))

        degraded = [layer.key for layer in layers if layer.degraded]
        if degraded:
            self.logger.warning(f"⚠️  {scenario.pair}: degraded layers {degraded}")
        self.logger.debug(f"Built {len(layers)}/{LAYER_COUNT} layers for {scenario.pair}")
        return layers

    # ------------------------------------------------------------------
    # L1-L8
    # ------------------------------------------------------------------

    def _raw_data(self, ctx: LayerContext) -> Layer:
        q = ctx.quote
        cfg = self.config
        coverage = ctx.scenario.bars_coverage
        m15 = coverage.get('M15') if coverage else None
        h1 = coverage.get('H1') if coverage else None

        warnings = []
        if q.pending:
            warnings.append('Quote/snapshot requested (pending).')
        if q.age_ms is not None and q.age_ms > cfg.stale_quote_ms:
            warnings.append(f"Quote is stale (>{cfg.stale_quote_ms / 1000:g}s).")
        if q.spread_points is not None and q.spread_points > cfg.wide_spread_points:
            warnings.append('Spread is wide (execution risk).')
        if not coverage:
            warnings.append('Bars missing (no timeframe coverage).')
        if m15 and m15.count is not None and m15.count < cfg.m15_min_bars:
            warnings.append(f"M15 bars insufficient (<{cfg.m15_min_bars}).")
        if m15 and m15.age_ms is not None and m15.age_ms > cfg.m15_max_age_minutes * 60_000:
            warnings.append(f"M15 bars stale (>{cfg.m15_max_age_minutes:g}m).")
        if h1 and h1.count is not None and h1.count < cfg.h1_min_bars:
            warnings.append(f"H1 bars insufficient (<{cfg.h1_min_bars}).")

        def show(value):
            return '-' if value is None else value

        return build_layer(
            1,
            ctx.direction,
            ctx.confidence,
            RawDataMetrics(
                pair=ctx.scenario.pair,
                bid=q.bid,
                ask=q.ask,
                last=q.last,
                mid=q.mid,
                spread=q.spread,
                spread_pct=q.spread_pct,
                spread_points=q.spread_points,
                mid_velocity_per_sec=q.velocity,
                mid_acceleration_per_sec2=q.acceleration,
                liquidity_hint=q.liquidity_hint,
                volume=q.volume,
                gap_to_mid=q.gap_to_mid,
                quote_age_ms=q.age_ms,
                pending=q.pending,
                quote_source=q.source,
                bars_coverage=coverage.to_dict() if coverage else None,
                timeframe_focus=ctx.focus_tf,
            ),
            summary_en=(
                f"Quote {f'last={q.last}' if q.last is not None else 'unavailable'}, "
                f"spread={show(q.spread_points)} pts, age={show(q.age_ms)}ms, "
                f"v={show(q.velocity)}/s, a={show(q.acceleration)}/s², "
                f"vol={show(q.volume)}, source={q.source or '-'}"
            ),
            evidence=[
                f"Quote freshness: {q.age_ms}ms" if q.age_ms is not None else None,
                f"Spread points: {q.spread_points}" if q.spread_points is not None else None,
                f"Spread %: {q.spread_pct}%" if q.spread_pct is not None else None,
                f"Liquidity: {q.liquidity_hint}" if q.liquidity_hint else None,
                f"Volume: {q.volume}" if q.volume is not None else None,
                f"Gap to close: {q.gap_to_mid}" if q.gap_to_mid is not None else None,
                f"Candle focus timeframe: {ctx.focus_tf}" if ctx.focus_tf else None,
            ],
            warnings=warnings,
            availability=(
                Availability.AVAILABLE if q.last is not None or q.bid is not None else Availability.PARTIAL
            ),
        )

    def _candles(self, ctx: LayerContext) -> Layer:
        focus, regime = ctx.focus, ctx.regime
        phase = infer_market_phase(regime, ctx.volatility, ctx.structure, ctx.smc, ctx.trend_pct, ctx.candle_dir)
        source = ctx.aggregate or focus
        return build_layer(
            2,
            ctx.candle_dir,
            ctx.summary_confidence,
            CandleMetrics(
                timeframe_focus=ctx.focus_tf,
                market_phase=phase,
                trend_pct=ctx.trend_pct,
                rsi=ctx.rsi,
                atr_pct=ctx.atr_pct,
                regime_state=regime.state if regime else None,
                regime_confidence=regime.confidence if regime else None,
                r2=regime.r2 if regime else None,
                patterns=list(ctx.patterns),
            ),
            score=source.score_delta if source else None,
            summary_en=(
                f"Bias {ctx.candle_dir.value}, strength={source.strength}, delta={source.score_delta}"
                if source else 'No candle analysis available.'
            ),
            summary_ar=None if source else 'لا يوجد تحليل شموع متاح.',
            evidence=list(ctx.patterns),
            warnings=[] if source else ['Missing candle series/analysis.'],
            availability=Availability.AVAILABLE if source else Availability.MISSING,
        )

    def _structure(self, ctx: LayerContext) -> Layer:
        structure = ctx.structure
        phase = infer_market_phase(ctx.regime, ctx.volatility, structure, ctx.smc, ctx.trend_pct, ctx.candle_dir)
        conflict = ctx.htf_conflict
        warnings = [] if structure else ['No HH/HL structure proxy (insufficient candles).']
        if conflict:
            warnings.append('HTF conflict: avoid entries against D1/H4.')

        return build_layer(
            3,
            structure.bias if structure else ctx.candle_dir,
            structure.confidence if structure else None,
            StructureMetrics(
                timeframe_focus=ctx.focus_tf,
                market_phase=phase,
                htf=HtfView(d1=ctx.d1_dir, h4=ctx.h4_dir, conflict_with_signal=conflict),
                state=structure.state if structure else None,
                bias=structure.bias if structure else None,
                confidence=structure.confidence if structure else None,
            ),
            summary_en=(
                f"Structure={structure.state}, bias={structure.bias}, conf={structure.confidence}%, phase={phase}"
                if structure else 'Structure unavailable (needs candle series).'
            ),
            evidence=[
                f"State: {structure.state}",
                f"Bias: {structure.bias}",
                f"Phase: {phase}",
                f"D1: {ctx.d1_dir.value}",
                f"H4: {ctx.h4_dir.value}",
            ] if structure else [],
            warnings=warnings,
            availability=Availability.AVAILABLE if structure else Availability.PARTIAL,
        )

    def _momentum(self, ctx: LayerContext) -> Layer:
        trend_pct, rsi, regime = ctx.trend_pct, ctx.rsi, ctx.regime
        if trend_pct is not None and abs(trend_pct) > 0.03:
            direction = Direction.BUY if trend_pct > 0 else Direction.SELL
        else:
            direction = ctx.candle_dir

        time_gate = ctx.verdict.confluence.gate('smart_time_intelligence')
        late_session = bool(
            time_gate and time_gate.failed and LATE_SESSION_PATTERN.search(time_gate.reason or '')
        )

        quality = (
            (clamp(regime.confidence, 0, 100) * 0.45 if regime else 35)
            + (min(35, abs(trend_pct) * 250) if trend_pct is not None else 10)
            + ((-20 if ctx.rsi_extreme else 10) if rsi is not None else 0)
        )
        quality_score = int(clamp(round(quality), 0, 100))

        spike = ctx.smc.volume_spike if ctx.smc else None
        flags = [
            'execution_spread' if ctx.gate_failed('spread_ok') else None,
            'thin_liquidity' if 'thin' in (ctx.quote.liquidity_hint or '').lower() else None,
            'low_volume' if spike is not None and not spike.is_spike else None,
            'late_session' if late_session else None,
        ]
        flags = [f for f in flags if f]
        fomo = ctx.rsi_extreme or late_session

        warnings = []
        if trend_pct is None:
            warnings.append('Missing trend features (no candles).')
        if ctx.rsi_extreme:
            warnings.append('RSI extreme: auto-confidence should be reduced.')
        if flags:
            warnings.append('Possible false strength (thin liquidity/low volume/late expansion).')

        return build_layer(
            4,
            direction,
            regime.confidence if regime else ctx.summary_confidence,
            MomentumMetrics(
                timeframe_focus=ctx.focus_tf,
                trend_pct=trend_pct,
                rsi=rsi,
                regime_state=regime.state if regime else None,
                quality_score=quality_score,
                fomo_risk=fomo,
                rsi_extreme=ctx.rsi_extreme,
                false_strength_flags=flags,
            ),
            summary_en=(
                f"Trend={trend_pct:.3f}%, RSI={rsi if rsi is not None else '-'}, "
                f"regime={regime.state if regime else '-'}, momentumQ={quality_score}/100"
                f"{', FOMO-risk' if fomo else ''}"
                if trend_pct is not None else 'Trend unavailable.'
            ),
            evidence=[
                f"TrendPct: {trend_pct:.4f}%" if trend_pct is not None else None,
                f"RSI: {rsi:.1f}" if rsi is not None else None,
                f"Regime: {regime.state}" if regime else None,
                f"MomentumQuality: {quality_score}/100",
                'FOMO risk detected' if fomo else None,
                f"FalseStrengthFlags: {','.join(flags)}" if flags else None,
            ],
            warnings=warnings,
            availability=Availability.AVAILABLE if trend_pct is not None else Availability.PARTIAL,
        )

    def _liquidity(self, ctx: LayerContext) -> Layer:
        smc = ctx.smc
        sweep = smc.liquidity_sweep if smc else None
        block = smc.order_block if smc else None
        imbalance = smc.price_imbalance if smc else None
        spike = smc.volume_spike if smc else None
        has_pinbar = any('PINBAR' in name for name in ctx.patterns)
        has_engulf = any('ENGULF' in name for name in ctx.patterns)

        if sweep or block:
            availability = Availability.AVAILABLE
        elif ctx.patterns:
            availability = Availability.PARTIAL
        else:
            availability = Availability.MISSING

        if sweep:
            direction = Direction.normalize(sweep.bias)
        elif block:
            direction = Direction.normalize(block.direction)
        else:
            direction = Direction.normalize(ctx.structure.bias) if ctx.structure else ctx.candle_dir

        confidence = (
            (sweep.confidence if sweep else 0) * 0.65
            + (block.confidence if block else 0) * 0.35
            + (10 if has_pinbar else 0)
            + (8 if has_engulf else 0)
        )
        quality = liquidity_quality(
            ctx.quote.liquidity_hint, ctx.quote.spread_points, ctx.quote.volume, bool(spike and spike.is_spike)
        )

        parts = []
        if sweep:
            parts.append(f"Sweep={sweep.type} @{sweep.level} -> {sweep.bias} (conf={sweep.confidence}%)")
        if block:
            parts.append(
                f"OB={block.direction} zone=[{block.zone_low},{block.zone_high}] near={block.near} "
                f"(conf={block.confidence}%)"
            )
        if imbalance and imbalance.state != 'none':
            parts.append(f"FVG={imbalance.state} (conf={imbalance.confidence}%)")
        if not parts and (has_pinbar or has_engulf):
            proxies = [name for flag, name in ((has_pinbar, 'pinbar'), (has_engulf, 'engulfing')) if flag]
            parts.append(f"Pattern proxy: {', '.join(proxies)}")
        summary = ', '.join(parts) or 'No liquidity sweep/order-block detected (best-effort).'

        if availability is Availability.MISSING:
            warnings = ['SMC liquidity needs enough candle history.']
        else:
            warnings = ['Liquidity/SMC is best-effort without full order-book.']
            if quality.quality == 'thin_or_fake':
                warnings.append('Thin/fake liquidity risk: require stronger confirmations.')

        return build_layer(
            5,
            direction,
            confidence,
            LiquidityMetrics(
                timeframe_focus=ctx.focus_tf,
                quality=quality,
                sweep=asdict(sweep) if sweep else None,
                order_block=asdict(block) if block else None,
                price_imbalance=asdict(imbalance) if imbalance else None,
                patterns=list(ctx.patterns),
            ),
            summary_en=f"{summary}, quality={quality.quality} ({quality.score}/100)",
            evidence=[
                f"sweep:{sweep.type}" if sweep else None,
                f"ob:{block.direction}" if block else None,
                f"fvg:{imbalance.state}" if imbalance else None,
                f"liquidityHint:{ctx.quote.liquidity_hint}" if ctx.quote.liquidity_hint else None,
                f"spreadPts:{ctx.quote.spread_points}" if ctx.quote.spread_points is not None else None,
                f"tickVol:{ctx.quote.volume}" if ctx.quote.volume is not None else None,
                *ctx.patterns,
            ],
            warnings=warnings,
            availability=availability,
        )

    def _volume_flow(self, ctx: LayerContext) -> Layer:
        smc = ctx.smc
        spike = smc.volume_spike if smc else None
        imbalance = smc.volume_imbalance if smc else None
        acc_dist = smc.accumulation_distribution if smc else None
        volume = ctx.focus.volume if ctx.focus else None

        if imbalance is not None and imbalance.state == 'buying':
            direction = Direction.BUY
        elif imbalance is not None and imbalance.state == 'selling':
            direction = Direction.SELL
        else:
            direction = ctx.candle_dir

        confidence = (
            (55 if spike and spike.is_spike else 0)
            + (min(35, abs(imbalance.pressure_pct)) if imbalance else 0)
            + (10 if volume else 0)
        )

        parts = []
        if spike:
            parts.append(f"VolSpike={'YES' if spike.is_spike else 'no'} (ratio={spike.ratio} z={spike.z_score})")
        if imbalance:
            parts.append(f"VolImb={imbalance.state} ({imbalance.pressure_pct}%)")
        if acc_dist:
            parts.append(f"A/D={acc_dist.state} (conf={acc_dist.confidence}%)")
        if volume:
            parts.append(f"TickVol newest={volume.newest} avg={volume.average}")

        return build_layer(
            6,
            direction,
            confidence,
            VolumeFlowMetrics(
                timeframe_focus=ctx.focus_tf,
                volume=asdict(volume) if volume else None,
                volume_spike=asdict(spike) if spike else None,
                volume_imbalance=asdict(imbalance) if imbalance else None,
                accumulation_distribution=asdict(acc_dist) if acc_dist else None,
            ),
            summary_en=', '.join(parts) or 'Volume/order-flow unavailable.',
            evidence=[
                f"volSpike:{int(spike.is_spike)}" if spike else None,
                f"volImb:{imbalance.state}" if imbalance else None,
                f"accDist:{acc_dist.state}" if acc_dist else None,
            ],
            warnings=['True order-flow requires order-book depth; this is best-effort from candle volume.'],
            availability=Availability.PARTIAL if (spike or imbalance or volume) else Availability.MISSING,
        )

    def _volatility(self, ctx: LayerContext) -> Layer:
        vol = ctx.volatility
        regime = ctx.regime
        return build_layer(
            7,
            ctx.candle_dir,
            regime.confidence if regime else ctx.summary_confidence,
            VolatilityMetrics(
                timeframe_focus=ctx.focus_tf,
                state=vol.state if vol else None,
                atr_pct=ctx.atr_pct,
                stdev_returns=vol.stdev_returns if vol else None,
            ),
            summary_en=f"ATR%={ctx.atr_pct if ctx.atr_pct is not None else '-'}, state={vol.state}"
            if vol else 'Volatility unavailable.',
            evidence=[f"ATR%: {ctx.atr_pct}", f"State: {vol.state}"] if vol else [],
            availability=Availability.AVAILABLE if vol else Availability.PARTIAL,
        )

    def _time_intelligence(self, ctx: LayerContext) -> Layer:
        now = ctx.now
        session = session_for(now)
        authority = {
            gate_id: (status.value if status else None)
            for gate_id, status in (
                ('smart_time_intelligence', ctx.gate_status('smart_time_intelligence')),
                ('session_window', ctx.gate_status('session_window')),
                ('trading_window_hard', ctx.gate_status('trading_window_hard')),
            )
        }
        failed = authority['smart_time_intelligence'] == 'FAIL' or authority['session_window'] == 'FAIL'
        shown = authority['smart_time_intelligence'] or authority['session_window'] or '-'

        return build_layer(
            8,
            ctx.direction,
            40,
            TimeIntelligenceMetrics(
                utc_hour=now.hour,
                utc_day_of_week=now.isoweekday() % 7,
                session=session.value,
                gate_status=authority,
            ),
            summary_en=f"UTC hour={now.hour}, session={session.value}, authority={shown}",
            evidence=['Session is heuristic (UTC-based).'],
            warnings=[
                'Time intelligence improves with broker timezone and session stats.',
                'Time-window authority failed: wait for opening drive or valid re-entry.' if failed else None,
            ],
            availability=Availability.BEST_EFFORT,
        )

    # ------------------------------------------------------------------
    # L9-L15
    # ------------------------------------------------------------------

    def _memory_strength(self, ctx: LayerContext) -> Layer:
        scenario = ctx.scenario
        econ, macro = scenario.economic, scenario.macro
        tags = list(ctx.smc.memory_tags) if ctx.smc else []
        mem_score = memory_score(tags)
        confirmed = mem_score >= self.config.memory_confirm_score

        macro_diff = macro.differential if macro else None
        rel_sent = econ.relative_sentiment if econ else None
        if econ is not None and econ.direction.is_directional:
            relative = econ.direction
        elif macro_diff is not None:
            relative = Direction.BUY if macro_diff > 5 else (Direction.SELL if macro_diff < -5 else Direction.NEUTRAL)
        else:
            relative = Direction.NEUTRAL

        relative_available = macro_diff is not None or rel_sent is not None
        relative_conf = pct(
            (pct(macro.confidence if macro else None) or 0) * 0.55
            + (pct(econ.confidence if econ else None) or 0) * 0.45
        )
        memory_conf = pct(ctx.structure.confidence if ctx.structure else ctx.summary_confidence)
        parts = [c for c in (memory_conf if tags else None, relative_conf if relative_available else None)
                 if c is not None]
        confidence = sum(parts) / len(parts) if parts else memory_conf

        direction = relative if relative.is_directional else (ctx.direction if confirmed else Direction.NEUTRAL)

        if tags and relative_available:
            availability = Availability.AVAILABLE
        elif tags or relative_available:
            availability = Availability.PARTIAL
        else:
            availability = Availability.MISSING

        trend_score = (
            round(clamp(abs(ctx.trend_pct) * 700, 0, 100), 1) if ctx.trend_pct is not None else None
        )
        return build_layer(
            9,
            direction,
            confidence,
            MemoryStrengthMetrics(
                memory_score=mem_score,
                memory_flags=tags,
                memory_confirmed=confirmed,
                trend_score=trend_score,
                relative_bias=relative,
                macro_differential=macro_diff,
                relative_sentiment=rel_sent,
                relative_confidence=relative_conf,
            ),
            score=mem_score,
            summary_en=(
                f"Memory flags: {', '.join(tags[:4]) or 'none'} (score={mem_score}), "
                f"relative={relative.value} macroDelta={macro_diff if macro_diff is not None else '-'}"
            ),
            evidence=[
                *[f"Memory flag: {t}" for t in tags[:6]],
                f"Macro differential: {macro_diff}" if macro_diff is not None else None,
                f"Relative sentiment: {rel_sent}" if rel_sent is not None else None,
            ],
            warnings=[
                None if confirmed else 'Memory zone not confirmed (weak).',
                None if relative_available else 'No relative-strength drivers available.',
            ],
            availability=availability,
        )

    def _silent_liquidity_intermarket(self, ctx: LayerContext) -> Layer:
        smc = ctx.smc
        defense = liquidity_defense_score(smc)
        defended = defense >= self.config.liquidity_defense_min
        corr = ctx.scenario.intermarket
        live = corr is not None and corr.available

        confidences = []
        if defense > 0:
            confidences.append(pct(ctx.structure.confidence if ctx.structure else ctx.summary_confidence) or 0)
        if live:
            confidences.append(pct(corr.confidence) or 0)
        confidence = sum(confidences) / len(confidences) if confidences else 0

        warnings = [None if defended else 'Liquidity defense weak/unclear.']
        if live:
            if corr.breaks:
                warnings.append(f"Correlation break detected ({len(corr.breaks)} relationship(s)).")
            warnings.extend(corr.warnings[:3])
            top = ', '.join(f"{p.peer}={p.corr}{' (BREAK)' if p.broken else ''}" for p in corr.top[:6])
            intermarket_text = top or f"live correlation ({corr.timeframe or '-'}, window={corr.window})"
        else:
            warnings.append('Intermarket correlation unavailable (requires bars for peer symbols).')
            intermarket_text = 'intermarket unavailable'

        if live:
            availability = Availability.AVAILABLE
        elif defense > 0:
            availability = Availability.PARTIAL
        else:
            availability = Availability.MISSING

        return build_layer(
            10,
            ctx.direction if defended else Direction.NEUTRAL,
            confidence,
            SilentLiquidityIntermarketMetrics(
                liquidity_defense_score=defense,
                sweep_detected=bool(smc and smc.liquidity_sweep),
                order_block_detected=bool(smc and smc.order_block),
                fvg_detected=bool(smc and smc.has_fvg),
                volume_imbalance_detected=bool(smc and smc.has_volume_imbalance),
                intermarket_available=live,
                intermarket_confidence=corr.confidence if live else None,
                timeframe=corr.timeframe if live else None,
                window=corr.window if live else None,
                breaks_count=len(corr.breaks) if live else 0,
                stability_score=corr.stability_score if live else None,
                peers=list(corr.peers) if live else [],
            ),
            score=defense,
            summary_en=f"Defense score={defense}, {intermarket_text}",
            evidence=[
                'Liquidity sweep detected' if smc and smc.liquidity_sweep else None,
                'Order block reaction' if smc and smc.order_block else None,
                'Price imbalance zone' if smc and smc.has_fvg else None,
                'Volume imbalance' if smc and smc.has_volume_imbalance else None,
                f"Correlation source: {corr.source}" if live and corr.source else None,
                f"Correlation timeframe: {corr.timeframe}" if live and corr.timeframe else None,
            ],
            warnings=warnings,
            availability=availability,
        )

    def _macro(self, ctx: LayerContext) -> Layer:
        macro = ctx.scenario.macro
        diff = macro.differential if macro else None
        return build_layer(
            11,
            macro.direction if macro else Direction.NEUTRAL,
            macro.confidence if macro else None,
            MacroMetrics(
                direction=macro.direction if macro else Direction.NEUTRAL,
                differential=diff,
                confidence=macro.confidence if macro else None,
                note=macro.note if macro else None,
            ),
            score=diff,
            summary_en=(macro.note if macro and macro.note else None) or 'Macro fundamentals unavailable.',
            evidence=[f"Macro delta: {diff}" if diff is not None else None],
            warnings=[] if diff is not None else ['Macro layer depends on fundamentals coverage.'],
            availability=Availability.PARTIAL if diff is not None else Availability.MISSING,
        )

    def _news(self, ctx: LayerContext) -> Layer:
        news = ctx.scenario.news
        impact_score = ctx.news_impact_score
        impact = news.impact if news else None
        upcoming = news.upcoming_events if news else None
        high_risk = impact_score is not None and impact_score >= 4
        return build_layer(
            12,
            news.direction if news else Direction.NEUTRAL,
            news.confidence if news else None,
            NewsMetrics(
                direction=news.direction if news else Direction.NEUTRAL,
                impact=impact,
                impact_score=impact_score,
                upcoming_events=upcoming,
                high_event_risk=high_risk,
            ),
            score=impact if impact is not None else impact_score,
            summary_en=(
                f"News dir={news.direction.value if news else '-'}, "
                f"impact={impact if impact is not None else (impact_score if impact_score is not None else '-')}, "
                f"upcoming={upcoming if upcoming is not None else '-'}"
            ),
            evidence=[
                f"Realtime impactScore: {impact_score}" if impact_score is not None else None,
                f"Upcoming events: {upcoming}" if upcoming is not None else None,
            ],
            warnings=['High event risk. Consider no-trade.'] if high_risk else [],
            availability=Availability.PARTIAL if news is not None else Availability.MISSING,
        )

    def _psychology(self, ctx: LayerContext) -> Layer:
        doji = any('DOJI' in name for name in ctx.patterns)
        atr_pct = ctx.atr_pct
        if doji:
            summary_en, summary_ar = 'Indecision detected (doji).', 'تردد/حيرة (Doji).'
        elif atr_pct is not None and atr_pct >= 0.75:
            summary_en, summary_ar = 'High volatility suggests fear/urgency.', 'تذبذب عالي يشير إلى خوف/استعجال.'
        else:
            summary_en, summary_ar = 'No strong psychology marker detected.', 'لا توجد علامة نفسية قوية.'
        return build_layer(
            13,
            Direction.NEUTRAL if doji else ctx.candle_dir,
            55 if doji else 35,
            PsychologyMetrics(doji=doji, atr_pct=atr_pct, patterns=list(ctx.patterns)),
            summary_en=summary_en,
            summary_ar=summary_ar,
            evidence=list(ctx.patterns),
            availability=Availability.PARTIAL if ctx.patterns else Availability.BEST_EFFORT,
        )

    def _risk_environment(self, ctx: LayerContext) -> Layer:
        q = ctx.quote
        risk_score = ctx.risk_score
        exec_quality = execution_quality_score(q)
        entry = ctx.scenario.primary.entry
        failure = estimate_failure_cost(ctx.scenario.metadata, entry.price, entry.stop_loss, q.velocity)

        if failure.available:
            failure_text = f"FailureCost: invalidation~{failure.invalidation_distance_pips} pips"
            if failure.time_to_invalidation_sec is not None:
                failure_text += f" (~{failure.time_to_invalidation_sec}s @ current velocity)"
        else:
            failure_text = 'FailureCost: unavailable'

        return build_layer(
            14,
            ctx.direction,
            60,
            RiskEnvironmentMetrics(
                risk_score=int(round(risk_score)),
                execution_quality_score=exec_quality,
                spread_points=q.spread_points,
                news_impact_score=ctx.news_impact_score,
                atr_pct=ctx.atr_pct,
                failure_cost=failure,
            ),
            score=round(risk_score),
            summary_en=f"Risk score={round(risk_score)}/100, execQ={exec_quality}/100",
            evidence=[
                f"Spread penalty source: {q.spread_points} pts" if q.spread_points is not None else None,
                f"News penalty source: {ctx.news_impact_score}" if ctx.news_impact_score is not None else None,
                f"Vol penalty source: ATR%={ctx.atr_pct}" if ctx.atr_pct is not None else None,
                failure_text,
            ],
            warnings=(
                ['Risk environment is unfavorable; tighten rules or no-trade.']
                if risk_score < self.config.unfavorable_risk_score else []
            ),
            availability=Availability.BEST_EFFORT,
        )

    def _statistics(self, ctx: LayerContext) -> Layer:
        regime, vol = ctx.regime, ctx.volatility
        r2 = regime.r2 if regime else None
        stdev = vol.stdev_returns if vol else None
        return build_layer(
            15,
            ctx.candle_dir,
            clamp(r2, 0, 100) if r2 is not None else 20,
            StatisticsMetrics(
                timeframe_focus=ctx.focus_tf,
                r2=r2,
                stdev_returns=stdev,
                regime_state=regime.state if regime else None,
            ),
            score=r2,
            summary_en=f"Trend-fit R²={r2}%, stdev={stdev if stdev is not None else '-'}"
            if r2 is not None else 'Statistical diagnostics unavailable.',
            evidence=[f"R²={r2}%"] if r2 is not None else [],
            warnings=(
                ['Low trend-fit; prefer range tactics or reduce size.']
                if r2 is not None and r2 < self.config.low_trend_fit else []
            ),
            availability=Availability.AVAILABLE if r2 is not None else Availability.PARTIAL,
        )

    # ------------------------------------------------------------------
    # L16-L18
    # ------------------------------------------------------------------

    def _validation(self, ctx: LayerContext) -> Layer:
        verdict = ctx.verdict
        valid = verdict.is_trade_valid
        failed = [key for key, ok in verdict.checks.items() if not ok]
        return build_layer(
            16,
            ctx.direction if valid else Direction.NEUTRAL,
            85 if valid else 95,
            ValidationMetrics(verdict='PASS' if valid else 'FAIL', is_trade_valid=valid, failed_checks=failed),
            summary_en='Signal passed validity checks.' if valid else f"Signal blocked: {verdict.reason or 'invalid'}",
            summary_ar='الإشارة اجتازت التحقق.' if valid else f"تم رفض الإشارة: {verdict.reason or 'غير صالح'}",
            evidence=[f"FAILED:{key}" for key in failed],
            warnings=[] if valid else ['Do not trade until constraints are satisfied.'],
            availability=Availability.AVAILABLE,
        )

    def _confluence(self, ctx: LayerContext) -> Layer:
        aligned, alignment, counts = ctx.alignment()
        votes = ctx.votes()
        confluence = ctx.verdict.confluence
        conflict = ctx.htf_conflict

        return build_layer(
            17,
            aligned,
            alignment,
            ConfluenceMetrics(
                alignment_score=alignment,
                votes=votes,
                htf_priority=HtfView(d1=ctx.d1_dir, h4=ctx.h4_dir, conflict_with_signal=conflict),
                weighted_score=confluence.score,
                min_score=confluence.min_score,
                passed=confluence.passed,
                strict=confluence.strict,
                hard_fails=list(confluence.hard_fails),
                top_weighted_fails=[
                    WeightedFail(id=g.id, weight=g.weight, reason=g.reason, label=g.label)
                    for g in confluence.top_weighted_fails(6)
                ],
            ),
            score=alignment,
            summary_en=(
                f"Alignment={alignment}%, votes BUY={counts['BUY']} SELL={counts['SELL']} "
                f"NEUTRAL={counts['NEUTRAL']}, confluenceW={confluence.score}/{confluence.min_score:g}"
            ),
            evidence=[
                *[f"vote:{name}:{v.value}" for name, v in votes.items()],
                f"D1:{ctx.d1_dir.value}",
                f"H4:{ctx.h4_dir.value}",
                f"ConfluenceWeighted:{confluence.score}/100",
                'StrictSmartChecklist:ON' if confluence.strict else None,
            ],
            warnings=[
                'Low confluence; reduce risk or wait.' if alignment < self.config.low_alignment else None,
                'HTF priority rule: do NOT enter against D1/H4.' if conflict else None,
            ],
            availability=Availability.AVAILABLE,
        )

    def _missing_inputs(self, ctx: LayerContext) -> MissingInputs:
        result = MissingInputs()
        scenario = ctx.scenario
        news = scenario.news

        events = news.calendar_events if news else []
        if events:
            result.details['news_calendar_events'] = {'available': True, 'count': len(events)}
        else:
            result.missing.append('news:calendarEvents')
            result.details['news_calendar_events'] = {'available': False, 'reason': 'No calendar events received yet.'}

        headlines = news.headlines_count if news else 0
        if headlines:
            result.details['news_headlines'] = {'available': True, 'count': headlines}
        else:
            result.missing.append('news:headlines')
            result.details['news_headlines'] = {'available': False, 'reason': 'No headline evidence received yet.'}

        if scenario.intermarket is not None and scenario.intermarket.available:
            result.details['correlation'] = {'available': True}
        else:
            result.missing.append('intermarket:correlation')
            result.details['correlation'] = {'available': False, 'reason': 'Correlation snapshot not provided.'}

        frames = ctx.analysis.timeframes.values() if ctx.analysis else []
        if any(f.indicators.rsi or f.indicators.macd or f.indicators.atr for f in frames):
            result.details['technical_indicators'] = {'available': True}
        else:
            result.missing.append('technical:indicators')
            result.details['technical_indicators'] = {'available': False, 'reason': 'Waiting for RSI/MACD/ATR.'}

        quote = scenario.quote
        if quote is not None and (quote.bid or quote.ask or quote.last):
            result.details['quote'] = {
                'available': True,
                'liquidity_hint': quote.liquidity_hint,
                'spread_points': ctx.quote.spread_points,
                'volume': quote.volume,
            }
        else:
            result.missing.append('market:quote')
            result.details['quote'] = {'available': False, 'reason': 'Quote missing (bid/ask/spread/volume).'}
        return result

    def _next_steps(self, ctx: LayerContext, missing_inputs: MissingInputs) -> List[str]:
        steps: List[str] = []

        def push(text: Optional[str]):
            text = (text or '').strip()
            if text and text not in steps:
                steps.append(text)

        kill_items = sorted(ctx.verdict.kill_switch.items, key=lambda item: item.weight, reverse=True)
        for item in kill_items[:6]:
            push(f"{item.label or item.id}: {item.reason or 'needs PASS'}")
        for key in missing_inputs.missing[:6]:
            push(MISSING_INPUT_STEPS.get(key, f"Missing input: {key}"))
        for line in ctx.verdict.what_would_change[:10]:
            push(line)
        return steps[:self.config.max_next_steps]

    def _decision(self, ctx: LayerContext) -> Layer:
        verdict = ctx.verdict
        primary = ctx.scenario.primary
        entry = primary.entry
        base_conf = ctx.confidence
        blocked = verdict.blocked
        valid = verdict.is_trade_valid
        confluence = verdict.confluence
        _, alignment, _ = ctx.alignment()
        risk_score = int(round(ctx.risk_score))

        adaptive = None
        if base_conf is not None:
            penalty = 0
            if ctx.rsi_extreme:
                penalty += 18
            if ctx.gate_failed('spread_ok'):
                penalty += 15
            if ctx.gate_failed('momentum_rsi'):
                penalty += 12
            if ctx.gate_failed('smart_time_intelligence'):
                penalty += 10
            if confluence.strict and confluence.hard_fails:
                penalty += min(25, len(confluence.hard_fails) * 4)
            adaptive = int(clamp(round(base_conf - penalty), 0, 100))

        sizing_hint = int(clamp(round(((base_conf or 0) * 0.6 + alignment * 0.4) / 10), 0, 10))
        missing_inputs = self._missing_inputs(ctx)
        next_steps = self._next_steps(ctx, missing_inputs)
        key_gates = [
            {'id': g.id, 'status': g.status.value, 'reason': g.reason, 'weight': g.weight}
            for g in confluence.gates if g.id in KEY_SMART_IDS
        ]

        if valid:
            confidence = base_conf
        elif blocked:
            confidence = 95
        else:
            confidence = max(55, min(95, base_conf if base_conf is not None else 70))

        state = verdict.state
        if state is DecisionState.ENTER:
            summary = f"Decision=ENTER {ctx.direction.value}, score={verdict.score}/100, sizeHint={sizing_hint}/10"
        elif state is DecisionState.WAIT_MONITOR:
            summary = f"Decision=WAIT/MONITOR, score={verdict.score}/100, missing={','.join(verdict.missing) or '-'}"
        elif verdict.kill_switch.blocked:
            labels = [item.label or item.id for item in verdict.kill_switch.items[:4]]
            summary = f"Decision=BLOCKED (kill-switch): {', '.join(labels)}"
        else:
            summary = f"Decision=BLOCKED, blockers={','.join(verdict.blockers) or '-'}"

        warnings = [
            f"KILL-SWITCH: {item.reason or item.label or item.id}" for item in verdict.kill_switch.items[:4]
        ]
        if missing_inputs.missing:
            warnings.append(f"MISSING INPUTS: {', '.join(missing_inputs.missing[:6])}")
        if risk_score < self.config.unfavorable_risk_score:
            warnings.append('Consider smaller size or wait.')

        return build_layer(
            18,
            Direction.NEUTRAL if blocked else ctx.direction,
            confidence,
            DecisionMetrics(
                direction=ctx.direction,
                confidence=base_conf,
                adaptive_confidence=adaptive,
                final_score=primary.final_score,
                state=state.value,
                score=verdict.score,
                blocked=blocked,
                is_trade_valid=valid,
                reason=verdict.reason,
                checks=dict(verdict.checks),
                missing=list(verdict.missing[:10]),
                what_would_change=list(verdict.what_would_change[:10]),
                missing_inputs=missing_inputs,
                next_steps=next_steps,
                kill_switch=verdict.kill_switch.to_dict(),
                key_gates=key_gates,
                entry=entry,
                risk_score=risk_score,
                sizing_hint=sizing_hint,
            ),
            score=primary.final_score,
            summary_en=summary,
            evidence=[
                f"R:R={verdict.context.risk_reward}" if verdict.context.risk_reward is not None else None,
                f"Alignment={alignment}%",
                f"RiskScore={risk_score}",
                f"AdaptiveConfidence={adaptive}%" if adaptive is not None else None,
                f"DecisionScore={verdict.score}/100",
            ],
            warnings=warnings,
            availability=Availability.AVAILABLE,
        )
