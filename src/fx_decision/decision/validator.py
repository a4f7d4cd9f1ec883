"""
Signal Validator

Derives the raw trade decision that layers L16-L18 report:

1. Hard checks - any failure blocks the trade
2. Soft score - six smoothed contributors, weighted per asset-class profile,
   times news, session and data-quality modifiers
3. Weighted confluence gates (PASS / FAIL / SKIP)
4. Kill-switch - strict mode only, safety-critical gate failures
5. State - NO_TRADE_BLOCKED, ENTER or WAIT_MONITOR, plus what is missing
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from ..analytics.candle_summary import CandleSummary
from ..analytics.technical_analyzer import MultiTimeframeAnalysis, TimeframeAnalysis
from ..config.settings import DecisionMode, DecisionProfileSettings, ValidatorSettings, coerce_settings
from ..utils.math_utils import clamp, clamp01, smooth01
from ..utils.time_utils import ensure_utc
from .confluence import (
    KEY_SMART_IDS,
    Gate,
    GateStatus,
    KillSwitch,
    WeightedConfluence,
    evaluate_kill_switch,
    score_confluence,
)
from .models import DecisionState, Direction, MarketScenario, PairMetadata

logger = logging.getLogger(__name__)

HARD_MIN_CONFIDENCE = 45
HARD_MIN_STRENGTH = 25
SUMMARY_PRIORITY = ('H1', 'M15', 'H4', 'D1', 'M1')

EVENT_BEFORE_MINUTES = 30
EVENT_AFTER_MINUTES = 15
EVENT_IMPACT_THRESHOLD = 25
QUOTE_MAX_AGE_MS = 30_000
MAX_SL_ATR_RATIO = 1.8
MAX_KEY_FAILS = 6

PASS, FAIL, SKIP = GateStatus.PASS, GateStatus.FAIL, GateStatus.SKIP


# ============================================================================
# Result types
# ============================================================================

@dataclass
class ExecutionContext:
    """Cost and distance figures in pips."""
    spread_pips: Optional[float] = None
    atr_pips: Optional[float] = None
    spread_to_atr: Optional[float] = None
    spread_to_tp: Optional[float] = None
    stop_loss_pips: Optional[float] = None
    take_profit_pips: Optional[float] = None
    risk_reward: Optional[float] = None


@dataclass
class Contributors:
    direction: float
    strength: float
    probability: float
    confidence: float
    risk_reward: float
    spread_efficiency: float


@dataclass
class Modifiers:
    news: float
    session: float
    data_quality: float


@dataclass
class ValidationVerdict:
    """Raw decision for one evaluation."""
    state: DecisionState
    direction: Direction
    score: float
    blocked: bool
    category: str
    asset_class: str
    is_trade_valid: bool
    checks: Dict[str, bool]
    blockers: List[str]
    contributors: Contributors
    modifiers: Modifiers
    context: ExecutionContext
    confluence: WeightedConfluence
    kill_switch: KillSwitch
    missing: List[str] = field(default_factory=list)
    what_would_change: List[str] = field(default_factory=list)
    reason: str = ''
    enter_score: float = 0.0

    def to_dict(self) -> dict:
        return {
            'state': self.state.value,
            'direction': self.direction.value,
            'score': self.score,
            'blocked': self.blocked,
            'category': self.category,
            'asset_class': self.asset_class,
            'is_trade_valid': self.is_trade_valid,
            'checks': dict(self.checks),
            'blockers': list(self.blockers),
            'contributors': asdict(self.contributors),
            'modifiers': asdict(self.modifiers),
            'context': asdict(self.context),
            'confluence': self.confluence.to_dict(),
            'kill_switch': self.kill_switch.to_dict(),
            'missing': list(self.missing),
            'what_would_change': list(self.what_would_change),
            'reason': self.reason,
            'enter_score': self.enter_score,
        }

    def __repr__(self) -> str:
        return f"ValidationVerdict({self.state.value} {self.direction.value} score={self.score})"


# ============================================================================
# Helpers
# ============================================================================

def pick_summary(
    summaries: Optional[Mapping[str, CandleSummary]],
    order: Tuple[str, ...] = SUMMARY_PRIORITY,
) -> Tuple[Optional[str], Optional[CandleSummary]]:
    """First available candle summary in priority order, else any."""
    if not summaries:
        return None, None
    for tf in order:
        if summaries.get(tf) is not None:
            return tf, summaries[tf]
    for tf, summary in summaries.items():
        if summary is not None:
            return tf, summary
    return None, None


def frame_of(analysis: Optional[MultiTimeframeAnalysis], timeframe: str) -> Optional[TimeframeAnalysis]:
    if analysis is None:
        return None
    frame = analysis.timeframes.get(timeframe)
    if frame is None or frame.is_fallback:
        return None
    return frame


def frame_direction(analysis: Optional[MultiTimeframeAnalysis], timeframe: str) -> Optional[Direction]:
    frame = frame_of(analysis, timeframe)
    return Direction.normalize(frame.direction) if frame else None


def momentum_frame(analysis: Optional[MultiTimeframeAnalysis]) -> Tuple[Optional[str], Optional[TimeframeAnalysis]]:
    for tf in ('H1', 'M15'):
        frame = frame_of(analysis, tf)
        if frame is not None:
            return tf, frame
    return None, None


def in_london_ny(hour: int) -> bool:
    return 7 <= hour < 21


def session_modifier(asset_class: str, now: datetime) -> float:
    hour = ensure_utc(now).hour
    asia = 0 <= hour < 7
    if asset_class == 'crypto':
        return 1.0 if in_london_ny(hour) else 0.96
    if asset_class == 'metals':
        return 1.0 if in_london_ny(hour) else (0.9 if asia else 0.92)
    return 1.0 if in_london_ny(hour) else (0.95 if asia else 0.9)


def _strict_or_skip(strict: bool, reason: str) -> Tuple[GateStatus, Optional[str], Dict]:
    """Missing data fails the gate in strict mode and skips it otherwise."""
    if strict:
        return FAIL, f"{reason} (strict)", {}
    return SKIP, reason, {}


# ============================================================================
# Validator
# ============================================================================

class SignalValidator:
    """
    Turns a primary signal plus market context into a raw decision.

    The validator is stateless between calls; every time-dependent check reads
    the explicit `now` passed to `validate`.
    """

    def __init__(
        self,
        config: Union[ValidatorSettings, Dict[str, Any], None] = None,
        name: str = "SignalValidator",
    ):
        self.name = name
        self.config = coerce_settings(ValidatorSettings, config)
        self.logger = logging.getLogger(f"{__name__}.{self.name}")

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def profile_for(self, asset_class: str) -> DecisionProfileSettings:
        """Asset-class profile, relaxed for the aggressive and smart_strong modes."""
        if asset_class == 'metals':
            profile = self.config.metals
        elif asset_class == 'crypto':
            profile = self.config.crypto
        else:
            profile = self.config.forex

        mode = self.config.mode
        if mode == DecisionMode.AGGRESSIVE:
            return profile.model_copy(update={
                'enter_score': min(profile.enter_score, 25.0),
                'min_strength': min(profile.min_strength, 20.0),
                'min_win_rate': min(profile.min_win_rate, 50.0),
                'min_confidence': min(profile.min_confidence, 20.0),
                'min_momentum_for_enter': 0.0,
            })
        if mode == DecisionMode.SMART_STRONG:
            return profile.model_copy(update={
                'enter_score': min(profile.enter_score, 45.0),
                'min_strength': min(profile.min_strength, 45.0),
                'min_win_rate': min(profile.min_win_rate, 52.0),
                'min_confidence': min(profile.min_confidence, 45.0),
                'min_momentum_for_enter': min(profile.min_momentum_for_enter, 0.02),
            })
        return profile

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def validate(
        self,
        scenario: MarketScenario,
        analysis: Optional[MultiTimeframeAnalysis] = None,
        summaries: Optional[Mapping[str, CandleSummary]] = None,
        now: Optional[datetime] = None,
    ) -> ValidationVerdict:
        """
        Validate the scenario's primary signal.

        Args:
            scenario: Primary signal and external snapshots
            analysis: Multi-timeframe technical analysis (may be None)
            summaries: Candle summaries keyed by timeframe
            now: Evaluation timestamp (UTC)

        Returns:
            ValidationVerdict
        """
        now = ensure_utc(now)
        summaries = summaries or {}
        primary = scenario.primary
        meta = scenario.metadata
        asset = meta.asset_class
        strict = self.config.strict_smart_checklist
        profile = self.profile_for(asset)

        context = self.execution_context(scenario, analysis)
        checks = self.hard_checks(scenario, analysis, summaries, context, now)

        strength = primary.strength if primary.strength is not None else 0.0
        confidence = primary.confidence if primary.confidence is not None else 0.0
        win_rate = primary.estimated_win_rate if primary.estimated_win_rate is not None else 50.0

        contributors = self._contributors(primary.direction, strength, confidence, win_rate, context, profile)
        modifiers = Modifiers(
            news=round(self._news_modifier(scenario), 3),
            session=round(session_modifier(asset, now), 3),
            data_quality=round(self._data_quality_penalty(scenario), 3),
        )
        weighted = self._weighted(contributors, profile)
        score01 = clamp01(weighted * modifiers.news * modifiers.session * modifiers.data_quality)
        score = round(score01 * 100, 1)

        gates = self.build_gates(scenario, analysis, summaries, context, checks, profile, now)
        confluence = score_confluence(gates, self.config.confluence_min_score, strict)
        kill_switch = evaluate_kill_switch(confluence)
        checks['smart_kill_switch_ok'] = not kill_switch.blocked
        blockers = [key for key, ok in checks.items() if not ok]
        blocked = bool(blockers)

        direction = primary.direction
        state = DecisionState.WAIT_MONITOR
        category = 'no_signal'
        if blocked:
            state = DecisionState.NO_TRADE_BLOCKED
            category = 'killswitch' if kill_switch.blocked else 'blocked'
        elif direction.is_directional and score >= profile.enter_score:
            state = DecisionState.ENTER
            category = 'enter'

        if state is DecisionState.ENTER and (confluence.hard_fails or confluence.score < confluence.min_score):
            state = DecisionState.WAIT_MONITOR
            category = 'confluence'

        missing: List[str] = []
        what_would_change: List[str] = []
        if not blocked and state is not DecisionState.ENTER:
            self._explain_wait(direction, contributors, confluence, missing, what_would_change)

        reason = self._reason(state, score, asset, missing, kill_switch, blockers)
        checks['confluence'] = confluence.passed

        verdict = ValidationVerdict(
            state=state,
            direction=direction,
            score=score,
            blocked=blocked,
            category=category,
            asset_class=asset,
            is_trade_valid=state is DecisionState.ENTER,
            checks=checks,
            blockers=blockers,
            contributors=contributors,
            modifiers=modifiers,
            context=context,
            confluence=confluence,
            kill_switch=kill_switch,
            missing=missing,
            what_would_change=what_would_change,
            reason=reason,
            enter_score=profile.enter_score,
        )
        self.logger.debug(f"{scenario.pair}: {verdict!r} {reason}")
        return verdict

    # ------------------------------------------------------------------
    # Execution context
    # ------------------------------------------------------------------

    def execution_context(
        self, scenario: MarketScenario, analysis: Optional[MultiTimeframeAnalysis]
    ) -> ExecutionContext:
        meta: PairMetadata = scenario.metadata
        entry = scenario.primary.entry
        quote = scenario.quote
        dq = scenario.data_quality

        spread_pips = dq.spread_pips if dq is not None else None
        if spread_pips is None and quote is not None:
            if quote.bid and quote.ask and quote.ask > quote.bid:
                spread_pips = round(meta.pips(quote.ask - quote.bid), 3)
            elif quote.spread is not None and quote.spread > 0:
                spread_pips = round(meta.pips(quote.spread), 3)

        atr_price = entry.atr
        if atr_price is None:
            _, frame = momentum_frame(analysis)
            if frame is not None and frame.indicators.atr is not None:
                atr_price = frame.indicators.atr.value
        atr_pips = round(meta.pips(atr_price), 3) if atr_price else None

        stop_pips = entry.stop_loss_pips
        if stop_pips is None and entry.stop_distance is not None:
            stop_pips = round(meta.pips(entry.stop_distance), 2)
        target_pips = entry.take_profit_pips
        if target_pips is None and entry.price is not None and entry.take_profit is not None:
            target_pips = round(meta.pips(entry.take_profit - entry.price), 2)

        risk_reward = entry.risk_reward
        if risk_reward is None and stop_pips and target_pips is not None:
            risk_reward = round(target_pips / stop_pips, 3)

        return ExecutionContext(
            spread_pips=spread_pips,
            atr_pips=atr_pips,
            spread_to_atr=(
                round(spread_pips / atr_pips, 4) if spread_pips is not None and atr_pips else None
            ),
            spread_to_tp=(
                round(spread_pips / target_pips, 4) if spread_pips is not None and target_pips else None
            ),
            stop_loss_pips=stop_pips,
            take_profit_pips=target_pips,
            risk_reward=risk_reward,
        )

    # ------------------------------------------------------------------
    # Hard checks
    # ------------------------------------------------------------------

    def hard_checks(
        self,
        scenario: MarketScenario,
        analysis: Optional[MultiTimeframeAnalysis],
        summaries: Mapping[str, CandleSummary],
        context: ExecutionContext,
        now: datetime,
    ) -> Dict[str, bool]:
        cfg = self.config
        dq = scenario.data_quality
        news = scenario.news
        asset = scenario.metadata.asset_class
        direction = scenario.primary.direction
        recommendation = (dq.recommendation or '').lower() if dq else ''

        market_data_fresh = dq is None or not (
            dq.stale or (dq.circuit_breaker and recommendation == 'block')
        )
        high_impact_soon = news is not None and (
            news.high_impact_soon
            or (news.impact_score is not None and news.impact_score >= cfg.high_impact_news_score)
        )

        if not scenario.primary.entry.is_complete:
            within_risk_limit = True
        elif scenario.risk_can_trade is not None:
            within_risk_limit = bool(scenario.risk_can_trade) and (
                scenario.active_trades_count < cfg.max_concurrent_trades
            )
        elif scenario.quote is not None:
            within_risk_limit = scenario.active_trades_count < cfg.max_concurrent_trades
        else:
            within_risk_limit = False

        hour = now.hour
        within_window = asset != 'forex' or (
            cfg.trading_window_start_hour <= hour < cfg.trading_window_end_hour
        )

        data_quality_ok = dq is None or not (
            dq.circuit_breaker or recommendation == 'block' or dq.confidence_floor_breached
        )

        fx_atr_ok = (
            asset != 'forex'
            or context.atr_pips is None
            or cfg.fx_atr_min_pips <= context.atr_pips <= cfg.fx_atr_max_pips
        )

        rsi_ok = macd_ok = True
        if cfg.enforce_momentum and direction.is_directional:
            _, frame = momentum_frame(analysis)
            rsi = frame.indicators.rsi.value if frame and frame.indicators.rsi else None
            hist = frame.indicators.macd.histogram if frame and frame.indicators.macd else None
            if rsi is not None:
                rsi_ok = not (
                    (direction is Direction.BUY and rsi >= 78) or (direction is Direction.SELL and rsi <= 22)
                )
            if hist is not None:
                macd_ok = not (
                    (direction is Direction.BUY and hist < 0) or (direction is Direction.SELL and hist > 0)
                )

        htf_ok = True
        if cfg.enforce_htf_alignment and direction.is_directional:
            htf = [frame_direction(analysis, tf) for tf in ('H4', 'D1', 'W1')]
            htf_ok = all(d == direction for d in htf if d is not None and d.is_directional)

        crypto_vol_ok = True
        if asset == 'crypto' and analysis is not None and analysis.volatility_summary is not None:
            average = analysis.volatility_summary.average_score
            crypto_vol_ok = average is None or average <= cfg.crypto_vol_spike_ratio

        cost_ok = True
        if cfg.enforce_execution_cost:
            cost_ok = (context.spread_to_atr is None or context.spread_to_atr <= cfg.max_spread_to_atr) and (
                context.spread_to_tp is None or context.spread_to_tp <= cfg.max_spread_to_tp
            )

        coverage_ok = True
        if cfg.require_bars_coverage:
            coverage_ok = (
                self._bar_count(scenario, analysis, 'M15') >= cfg.min_m15_bars
                and self._bar_count(scenario, analysis, 'H1') >= cfg.min_h1_bars
            )

        return {
            'market_data_fresh': market_data_fresh,
            'spread_ok': context.spread_pips is None or context.spread_pips <= cfg.max_spread_pips,
            'no_high_impact_news_soon': not high_impact_soon,
            'within_risk_limit': within_risk_limit,
            'within_trading_window': within_window,
            'data_quality_ok': data_quality_ok,
            'fx_atr_range_ok': fx_atr_ok,
            'momentum_rsi_ok': rsi_ok,
            'momentum_macd_ok': macd_ok,
            'htf_alignment_ok': htf_ok,
            'crypto_vol_spike_ok': crypto_vol_ok,
            'execution_cost_ok': cost_ok,
            'bars_coverage_ok': coverage_ok,
        }

    @staticmethod
    def _bar_count(scenario: MarketScenario, analysis: Optional[MultiTimeframeAnalysis], timeframe: str) -> int:
        coverage = scenario.bars_coverage.get(timeframe) if scenario.bars_coverage else None
        if coverage is not None and coverage.count is not None:
            return coverage.count
        frame = analysis.timeframes.get(timeframe) if analysis else None
        return frame.candle_count if frame else 0

    # ------------------------------------------------------------------
    # Soft score
    # ------------------------------------------------------------------

    @staticmethod
    def _contributors(
        direction: Direction,
        strength: float,
        confidence: float,
        win_rate: float,
        context: ExecutionContext,
        profile: DecisionProfileSettings,
    ) -> Contributors:
        def curve(value: float, floor: float, ceiling: float) -> float:
            span = ceiling - floor
            return smooth01((value - floor) / span) if span > 0 else (1.0 if value >= floor else 0.0)

        if context.risk_reward is None:
            rr_score = 0.45
        else:
            rr_score = curve(context.risk_reward, profile.min_risk_reward, profile.target_rr)

        atr_factor = 1.0 if context.spread_to_atr is None else clamp01(
            1 - context.spread_to_atr / profile.max_spread_to_atr_warn
        )
        tp_factor = 1.0 if context.spread_to_tp is None else clamp01(
            1 - context.spread_to_tp / profile.max_spread_to_tp_warn
        )

        return Contributors(
            direction=0.4 if direction is Direction.NEUTRAL else 1.0,
            strength=round(curve(strength, profile.min_strength, 100), 3),
            probability=round(curve(win_rate, profile.min_win_rate, 95), 3),
            confidence=round(curve(confidence, profile.min_confidence, 100), 3),
            risk_reward=round(rr_score, 3),
            spread_efficiency=round(0.5 * atr_factor + 0.5 * tp_factor, 3),
        )

    @staticmethod
    def _weighted(contributors: Contributors, profile: DecisionProfileSettings) -> float:
        w = profile.weights
        pairs = (
            (w.direction, contributors.direction),
            (w.strength, contributors.strength),
            (w.probability, contributors.probability),
            (w.confidence, contributors.confidence),
            (w.risk_reward, contributors.risk_reward),
            (w.spread_efficiency, contributors.spread_efficiency),
        )
        total = sum(weight for weight, _ in pairs)
        if total <= 0:
            return 0.0
        return sum(weight * value for weight, value in pairs) / total

    @staticmethod
    def _news_modifier(scenario: MarketScenario) -> float:
        news = scenario.news
        impact = news.impact if news and news.impact is not None else 0.0
        upcoming = news.upcoming_events if news and news.upcoming_events is not None else 0.0
        return clamp01(1 - min(0.22, impact / 100 * 0.18 + upcoming * 0.01))

    @staticmethod
    def _data_quality_penalty(scenario: MarketScenario) -> float:
        dq = scenario.data_quality
        if dq is None:
            return 1.0
        penalty = clamp(dq.modifier, 0.35, 1.0) if dq.modifier is not None else 1.0
        if dq.confidence_floor_breached:
            penalty = min(penalty, 0.82)
        if dq.stale:
            penalty = min(penalty, 0.9)
        return penalty

    # ------------------------------------------------------------------
    # Confluence gates
    # ------------------------------------------------------------------

    def build_gates(
        self,
        scenario: MarketScenario,
        analysis: Optional[MultiTimeframeAnalysis],
        summaries: Mapping[str, CandleSummary],
        context: ExecutionContext,
        checks: Mapping[str, bool],
        profile: DecisionProfileSettings,
        now: datetime,
    ) -> List[Gate]:
        strict = self.config.strict_smart_checklist
        primary = scenario.primary
        direction = primary.direction
        directional = direction.is_directional
        asset = scenario.metadata.asset_class
        confidence = primary.confidence if primary.confidence is not None else 0.0
        strength = primary.strength if primary.strength is not None else 0.0

        gates: List[Gate] = []

        def add(gate_id: str, label: str, weight: float, result: Tuple[GateStatus, Optional[str], Dict]):
            status, reason, metrics = result
            gates.append(Gate(gate_id, label, weight, status, reason, metrics or None))

        def pass_fail(ok: bool, reason: str, **metrics):
            return (PASS, None, metrics) if ok else (FAIL, reason, metrics)

        add('direction', 'Directional bias (BUY/SELL)', 1.0,
            pass_fail(directional, 'Signal direction is NEUTRAL'))
        add('min_confidence', f"Confidence ≥ {HARD_MIN_CONFIDENCE}", 1.1,
            pass_fail(confidence >= HARD_MIN_CONFIDENCE, f"confidence={confidence}",
                      confidence=confidence, min=HARD_MIN_CONFIDENCE))
        add('min_strength', f"Strength ≥ {HARD_MIN_STRENGTH}", 1.1,
            pass_fail(strength >= HARD_MIN_STRENGTH, f"strength={strength}",
                      strength=strength, min=HARD_MIN_STRENGTH))
        add('market_data_fresh', 'Market data freshness', 1.2,
            pass_fail(checks['market_data_fresh'], 'Market data is stale / blocked'))
        add('spread_ok', 'Execution spread within limit', 1.1,
            pass_fail(checks['spread_ok'],
                      f"spreadPips={context.spread_pips} maxSpreadPips={self.config.max_spread_pips}",
                      spread_pips=context.spread_pips, max_spread_pips=self.config.max_spread_pips))
        add('news_blackout', 'No high-impact news blackout', 0.9,
            pass_fail(checks['no_high_impact_news_soon'], 'High impact event near now'))
        add('smart_event_risk_governor', 'Event-risk governor (pre/post high-impact blackout)', 1.1,
            self._event_risk_governor(scenario, directional, strict, now))
        add('smart_data_completeness', 'Data completeness (calendar + headlines + correlation)', 1.1,
            self._data_completeness(scenario, directional, strict))

        if asset == 'forex':
            window = pass_fail(checks['within_trading_window'], 'Outside configured trading window')
        else:
            window = (SKIP, 'Trading window not enforced', {})
        add('trading_window_hard', 'Trading window guard', 1.05, window)
        add('risk_limit', 'Risk budget / concurrency OK', 1.0,
            pass_fail(checks['within_risk_limit'], 'Risk/capacity constraint'))
        session_ok = asset == 'crypto' or in_london_ny(now.hour)
        add('session_window', 'Session window (London/NY for FX/metals)', 0.6,
            pass_fail(session_ok, 'Outside London/NY window'))

        for tf, weight in (('H4', 0.9), ('D1', 1.0), ('W1', 0.7)):
            add(f"htf_{tf.lower()}", f"Higher timeframe alignment ({tf})", weight,
                self._htf_gate(analysis, tf, direction, strict and tf == 'D1'))

        add('smart_time_intelligence', 'Time intelligence (London/NY only, ≥ 65)', 0.85,
            self._time_intelligence(asset, strict, now))

        momentum_tf, frame = momentum_frame(analysis)
        add('momentum_rsi', f"Momentum (RSI @ {momentum_tf or '-'})", 0.75,
            self._momentum_rsi(frame, direction))
        add('momentum_macd', f"Momentum (MACD @ {momentum_tf or '-'})", 0.75,
            self._momentum_macd(frame, direction))

        add('smart_atr_rr_2to1', 'Risk/Reward floor (dynamic)', 1.0,
            self._risk_reward_floor(scenario, context, profile, directional, strict))
        add('smart_failure_cost_check', 'Failure cost check (invalidation must be cheap)', 0.95,
            self._failure_cost(context, directional, strict))
        add('smart_news_guard', 'News proximity clean', 0.8, self._news_guard(scenario, strict))

        summary_tf, summary = pick_summary(summaries)
        add('smart_structure_clean', 'Market structure clean (HH/HL or LL/LH)', 1.0,
            self._structure_clean(summary, summaries, direction, strict))
        add('smart_volatility_state', 'Volatility tradeable (not low/high)', 0.9,
            self._volatility_state(summaries, strict))
        add('candles_summary', 'Candle summary agreement', 0.55, self._candle_agreement(summary, direction))
        add('smc_liquidity_sweep', f"SMC liquidity sweep ({summary_tf or '-'})", 0.7,
            self._liquidity_sweep(summary, direction, strict))
        add('smart_volume_confirm', 'Volume confirms (spike required)', 0.85,
            self._volume_confirm(summary, directional, strict))

        quote_gate = self._quote_integrity(scenario, analysis, context, strict)
        add('smart_quote_integrity', 'Quote integrity (fresh bid/ask required)', 1.05, quote_gate)
        add('smart_liquidity_execution_risk', 'Liquidity + execution risk (thin+spread veto)', 1.05,
            self._liquidity_execution(scenario, context, directional, strict, quote_gate[0]))
        add('smart_execution_edge_filter', 'Execution cost vs edge (expectancy filter)', 1.05,
            self._edge_filter(scenario, context, directional, strict))
        return gates

    # Individual gates --------------------------------------------------

    def _event_risk_governor(self, scenario: MarketScenario, directional: bool, strict: bool, now: datetime):
        if not directional:
            return SKIP, 'Non-directional', {}
        news = scenario.news
        meta = scenario.metadata
        now_ms = now.timestamp() * 1000
        relevant = []
        for event in (news.calendar_events if news else []):
            if event.time_ms is None:
                continue
            if event.currency and event.currency not in (meta.base, meta.quote):
                continue
            relevant.append((event, round((event.time_ms - now_ms) / 60000, 2)))

        window = {'before_minutes': EVENT_BEFORE_MINUTES, 'after_minutes': EVENT_AFTER_MINUTES}
        if not relevant:
            if strict:
                return FAIL, 'No calendar feed/events available (strict)', window
            return SKIP, 'No calendar events available', window

        high = [(e, m) for e, m in relevant if e.impact is not None and e.impact >= EVENT_IMPACT_THRESHOLD]
        hits = [(e, m) for e, m in high if -EVENT_AFTER_MINUTES <= m <= EVENT_BEFORE_MINUTES]
        if hits:
            hits.sort(key=lambda item: abs(item[1]))
            window['hits'] = [
                {'event': e.title, 'currency': e.currency, 'impact': e.impact, 'minutes_from_now': m}
                for e, m in hits[:3]
            ]
            return FAIL, 'Event-risk governor: high-impact release window', window
        window['monitored'] = min(50, len(high))
        return PASS, None, window

    @staticmethod
    def _data_completeness(scenario: MarketScenario, directional: bool, strict: bool):
        if not directional:
            return SKIP, 'Non-directional', {}
        if not strict:
            return SKIP, 'Not strict', {}
        missing = []
        news = scenario.news
        if news is None or not news.calendar_events:
            missing.append('news:calendarEvents')
        if news is None or news.headlines_count <= 0:
            missing.append('news:headlines')
        if scenario.intermarket is None or not scenario.intermarket.available:
            missing.append('intermarket:correlation')
        if missing:
            return FAIL, 'Missing required data feeds (strict)', {'missing': missing}
        return PASS, None, {'missing': []}

    @staticmethod
    def _htf_gate(analysis, timeframe: str, direction: Direction, fail_when_missing: bool):
        htf = frame_direction(analysis, timeframe)
        if not direction.is_directional or htf is None or not htf.is_directional:
            if fail_when_missing and direction.is_directional:
                return FAIL, f"{timeframe} direction unavailable/neutral (strict)", {}
            return SKIP, f"{timeframe} direction unavailable", {}
        if htf == direction:
            return PASS, None, {}
        return FAIL, f"{timeframe}={htf.value} vs signal={direction.value}", {}

    @staticmethod
    def _time_intelligence(asset: str, strict: bool, now: datetime):
        if asset not in ('forex', 'metals'):
            return SKIP, 'Non-FX/metals', {}
        hour, minute = now.hour, now.minute
        in_session = in_london_ny(hour)
        last_minutes = minute >= 55
        late_close = 20 <= hour <= 22
        score = (70 if in_session else 0) + (0 if last_minutes else 15) + (0 if late_close else 15)
        metrics = {'score': score, 'min': 65}

        def veto(strict_reason: str, soft_reason: str):
            return (FAIL, strict_reason, metrics) if strict else (SKIP, soft_reason, metrics)

        if not in_session:
            return veto('Only London/NY sessions allowed', 'Outside London/NY window')
        if last_minutes:
            return veto('Avoid last minutes of the hour', 'Last minutes of the hour')
        if late_close:
            return veto('Avoid pre-close / late NY window', 'Late NY window')
        if score >= 65:
            return PASS, None, metrics
        return veto('Time intelligence < 65', 'Time intelligence < 65')

    @staticmethod
    def _momentum_rsi(frame: Optional[TimeframeAnalysis], direction: Direction):
        rsi = frame.indicators.rsi.value if frame and frame.indicators.rsi else None
        if not direction.is_directional or rsi is None:
            return SKIP, 'RSI unavailable', {}
        if direction is Direction.BUY and rsi >= 78:
            return FAIL, f"RSI={rsi} (overbought)", {'rsi': rsi}
        if direction is Direction.SELL and rsi <= 22:
            return FAIL, f"RSI={rsi} (oversold)", {'rsi': rsi}
        return PASS, None, {'rsi': rsi}

    @staticmethod
    def _momentum_macd(frame: Optional[TimeframeAnalysis], direction: Direction):
        hist = frame.indicators.macd.histogram if frame and frame.indicators.macd else None
        if not direction.is_directional or hist is None:
            return SKIP, 'MACD histogram unavailable', {}
        if direction is Direction.BUY and hist < 0:
            return FAIL, f"MACD histogram={hist:.6f} against BUY", {'histogram': hist}
        if direction is Direction.SELL and hist > 0:
            return FAIL, f"MACD histogram={hist:.6f} against SELL", {'histogram': hist}
        return PASS, None, {'histogram': hist}

    @staticmethod
    def _risk_reward_floor(scenario, context: ExecutionContext, profile, directional: bool, strict: bool):
        if not directional:
            return SKIP, 'Non-directional', {}
        floor = 2.0 if scenario.metadata.asset_class == 'crypto' else 1.6
        win_rate = scenario.primary.estimated_win_rate
        breakeven = None
        if win_rate is not None:
            p = clamp(win_rate / 100, 0.45, 0.85)
            breakeven = (1 - p) / p
        min_rr = max(floor, profile.min_risk_reward, (breakeven or 0.0) + 0.4)
        rr = context.risk_reward
        if rr is None:
            return _strict_or_skip(strict, 'Risk/reward unavailable')
        metrics = {'rr': rr, 'min': round(min_rr, 3), 'breakeven_rr': breakeven}
        if rr >= min_rr:
            return PASS, None, metrics
        return FAIL, f"RR={rr:.2f} < {min_rr:.2f}", metrics

    @staticmethod
    def _failure_cost(context: ExecutionContext, directional: bool, strict: bool):
        if not directional:
            return SKIP, 'Non-directional', {}
        if context.stop_loss_pips is None:
            return _strict_or_skip(strict, 'Stop loss pips unavailable')
        if not context.atr_pips:
            return _strict_or_skip(strict, 'ATR pips unavailable')
        ratio = context.stop_loss_pips / context.atr_pips
        metrics = {'stop_loss_pips': context.stop_loss_pips, 'atr_pips': context.atr_pips,
                   'sl_to_atr': round(ratio, 4)}
        if ratio > MAX_SL_ATR_RATIO:
            return FAIL, f"Failure cost too high (SL/ATR={ratio:.2f} > {MAX_SL_ATR_RATIO})", metrics
        return PASS, None, metrics

    @staticmethod
    def _news_guard(scenario: MarketScenario, strict: bool):
        news = scenario.news
        impact = news.impact if news and news.impact is not None else 0.0
        upcoming = news.upcoming_events if news and news.upcoming_events is not None else 0.0
        metrics = {'impact': impact, 'upcoming_events': upcoming}
        if impact <= 0 and upcoming <= 0:
            return PASS, None, metrics
        if upcoming > 0 and impact < 35:
            return SKIP, f"Upcoming events={upcoming:g}", metrics
        if impact >= 35:
            if strict:
                return FAIL, f"News impact={impact:g} too high", metrics
            return SKIP, f"News impact={impact:g} (informational)", metrics
        if strict:
            return FAIL, f"News impact present ({impact:g}) (strict)", metrics
        return SKIP, 'News impact present', metrics

    @staticmethod
    def _structure_clean(summary, summaries, direction: Direction, strict: bool):
        if not direction.is_directional:
            return SKIP, 'Non-directional', {}
        structure = summary.structure if summary else None
        if structure is None:
            return _strict_or_skip(strict, 'Structure unavailable')
        bias = Direction.normalize(structure.bias)
        if not bias.is_directional:
            return _strict_or_skip(strict, 'Structure bias invalid')
        if bias != direction:
            return FAIL, f"Structure={bias.value} vs signal={direction.value}", {}
        if structure.confidence < 60:
            if strict:
                return FAIL, f"Structure confidence={structure.confidence} (<60)", {}
            return SKIP, 'Structure confidence low', {}

        _, regime_source = pick_summary(summaries, ('M15', 'H1'))
        regime = regime_source.regime if regime_source else None
        if regime is not None and regime.state == 'range':
            return FAIL, 'Regime is range (structure not clean)', {}
        if regime is not None and regime.confidence < 60:
            if strict:
                return FAIL, f"Regime confidence={regime.confidence} (<60)", {}
            return SKIP, 'Regime confidence low', {}
        return PASS, None, {
            'structure_confidence': structure.confidence,
            'regime_confidence': regime.confidence if regime else None,
        }

    @staticmethod
    def _volatility_state(summaries, strict: bool):
        _, source = pick_summary(summaries, ('M15', 'H1'))
        state = source.volatility.state if source else None
        if not state:
            return _strict_or_skip(strict, 'Volatility state unavailable')
        if state == 'normal':
            return PASS, None, {'state': state}
        if state == 'low':
            return FAIL, 'Volatility contracted (low)', {'state': state}
        if state == 'high':
            return FAIL, 'Volatility chaotic (high)', {'state': state}
        return SKIP, f"Volatility state={state}", {'state': state}

    @staticmethod
    def _candle_agreement(summary: Optional[CandleSummary], direction: Direction):
        if not direction.is_directional or summary is None:
            return SKIP, 'Candles summary unavailable', {}
        candles = Direction.normalize(summary.direction)
        if not candles.is_directional:
            return SKIP, 'Candles summary neutral', {}
        if candles == direction:
            return PASS, None, {}
        return FAIL, f"candles={candles.value} vs signal={direction.value}", {}

    @staticmethod
    def _liquidity_sweep(summary: Optional[CandleSummary], direction: Direction, strict: bool):
        if not direction.is_directional:
            return SKIP, 'Non-directional', {}
        sweep = summary.smc.liquidity_sweep if summary else None
        if sweep is None:
            if strict:
                return FAIL, 'No sweep confirmation (strict)', {}
            return SKIP, 'No sweep signal', {}
        metrics = {'type': sweep.type, 'bias': sweep.bias, 'level': sweep.level,
                   'confidence': sweep.confidence, 'rejection': sweep.rejection}
        bias = Direction.normalize(sweep.bias)
        if not bias.is_directional:
            status, reason, _ = _strict_or_skip(strict, 'Sweep bias unavailable')
            return status, reason, metrics
        if bias == direction:
            if sweep.confidence >= 55:
                return PASS, None, metrics
            if strict:
                return FAIL, f"Sweep confidence={sweep.confidence} (<55)", metrics
            return SKIP, 'Low-confidence sweep', metrics
        if sweep.confidence >= 55:
            return FAIL, f"Sweep bias={bias.value} vs signal={direction.value}", metrics
        if strict:
            return FAIL, f"Sweep bias={bias.value} vs signal={direction.value} (strict)", metrics
        return SKIP, 'Low-confidence opposing sweep', metrics

    @staticmethod
    def _volume_confirm(summary: Optional[CandleSummary], directional: bool, strict: bool):
        if not directional:
            return SKIP, 'Non-directional', {}
        spike = summary.smc.volume_spike if summary else None
        if spike is None:
            return _strict_or_skip(strict, 'No volume spike')
        metrics = {'is_spike': spike.is_spike, 'ratio': spike.ratio, 'z_score': spike.z_score}
        if spike.is_spike:
            return PASS, None, metrics
        status, reason, _ = _strict_or_skip(strict, 'Volume spike not detected')
        return status, reason, metrics

    @staticmethod
    def _quote_integrity(scenario: MarketScenario, analysis, context: ExecutionContext, strict: bool):
        quote = scenario.quote
        bid = quote.bid if quote else None
        ask = quote.ask if quote else None
        age = quote.age_ms if quote else None
        metrics = {'age_ms': age, 'max_age_ms': QUOTE_MAX_AGE_MS, 'bid': bid, 'ask': ask}
        if not strict:
            return SKIP, 'Quote integrity not enforced', metrics
        if quote is None:
            return FAIL, 'Quote missing (strict)', metrics
        if bid is None or ask is None or not (bid > 0 and ask > 0 and ask > bid):
            return FAIL, 'Invalid bid/ask (strict)', metrics
        if age is None:
            return FAIL, 'Quote timestamp missing (strict)', metrics
        if age > QUOTE_MAX_AGE_MS:
            return FAIL, f"Quote stale ({round(age / 1000)}s) (strict)", metrics

        reference = scenario.primary.entry.price
        if reference is None and analysis is not None:
            reference = analysis.latest_price
        if reference is not None and context.atr_pips:
            delta = round(scenario.metadata.pips((bid + ask) / 2 - reference), 2)
            metrics.update(delta_pips=delta, atr_pips=context.atr_pips)
            if delta > context.atr_pips * 2:
                return FAIL, 'Quote price desynced vs analysis price (strict)', metrics
        return PASS, None, metrics

    def _liquidity_execution(
        self, scenario: MarketScenario, context: ExecutionContext, directional: bool, strict: bool,
        quote_status: GateStatus,
    ):
        if not directional:
            return SKIP, 'Non-directional', {}
        if quote_status is FAIL:
            return SKIP, 'Quote integrity veto (see quote integrity gate)', {}
        quote = scenario.quote
        hint = (quote.liquidity_hint or '').lower() if quote else ''
        thin_hint = any(word in hint for word in ('thin', 'fake', 'poor', 'low'))
        low_volume = quote is not None and quote.volume is not None and quote.volume <= 40
        spread = context.spread_pips
        max_spread = self.config.max_spread_pips
        if spread is None:
            return _strict_or_skip(strict, 'Spread unavailable for liquidity gate')

        near_limit = spread > max_spread * 0.9
        thin = thin_hint or low_volume
        metrics = {'spread_pips': spread, 'max_spread_pips': max_spread, 'thin': thin, 'near_limit': near_limit}
        if strict:
            if thin:
                return FAIL, 'Thin/fake liquidity (strict veto)', metrics
            if near_limit:
                reason = 'Spread above max limit' if spread > max_spread else 'Spread elevated near limit'
                return FAIL, f"{reason} (strict veto)", metrics
            return PASS, None, metrics
        if thin and near_limit:
            return FAIL, 'Thin liquidity + elevated spread', metrics
        return PASS, None, metrics

    @staticmethod
    def _edge_filter(scenario: MarketScenario, context: ExecutionContext, directional: bool, strict: bool):
        if not directional:
            return SKIP, 'Non-directional', {}
        rr = context.risk_reward
        win = scenario.primary.estimated_win_rate
        if rr is None or win is None:
            return _strict_or_skip(strict, 'Edge/expectancy unavailable')
        p = clamp(win / 100, 0.35, 0.9)
        expectancy = p * rr - (1 - p)
        to_tp, to_atr = context.spread_to_tp, context.spread_to_atr
        metrics = {'expectancy': round(expectancy, 3), 'spread_to_tp': to_tp, 'spread_to_atr': to_atr}
        if expectancy <= 0.1:
            return FAIL, f"Negative/low expectancy ({expectancy:.2f})", metrics
        if (to_tp is not None and to_tp > 0.18) or (to_atr is not None and to_atr > 0.35):
            return FAIL, 'Execution cost too large vs expected move', metrics
        if expectancy < 0.25 and to_tp is not None and to_tp > 0.12:
            return FAIL, 'Edge too small for spread cost', metrics
        return PASS, None, metrics

    # ------------------------------------------------------------------
    # Explanation
    # ------------------------------------------------------------------

    def _explain_wait(
        self,
        direction: Direction,
        contributors: Contributors,
        confluence: WeightedConfluence,
        missing: List[str],
        what_would_change: List[str],
    ) -> None:
        if direction is Direction.NEUTRAL:
            missing.append('direction_confirmation')
            what_would_change.append('A clear directional bias (technical/structure alignment).')
        if contributors.strength < 0.65:
            missing.append('strength')
            what_would_change.append(f"Strength rising above {min(95, self.config.min_strength_target):g}.")
        if contributors.probability < 0.6:
            missing.append('probability')
            what_would_change.append(f"Estimated win-rate above {min(95, self.config.min_win_rate_target):g}%.")
        if contributors.spread_efficiency < 0.65:
            missing.append('execution_cost')
            what_would_change.append('Tighter spread or larger expected move (ATR/TP).')
        if confluence.score < confluence.min_score:
            missing.append('confluence')
            what_would_change.append(f"Confluence score above {confluence.min_score:g}/100 (layer alignment).")

        if confluence.strict:
            key_fails = [g for g in confluence.gates if g.failed and g.id in KEY_SMART_IDS][:MAX_KEY_FAILS]
            for gate in key_fails:
                missing.append(f"smart:{gate.id}")
                what_would_change.append(f"{gate.label}: {gate.reason or 'needs confirmation'}")

    @staticmethod
    def _reason(
        state: DecisionState,
        score: float,
        asset: str,
        missing: List[str],
        kill_switch: KillSwitch,
        blockers: List[str],
    ) -> str:
        if state is DecisionState.ENTER:
            return f"ENTER: score={score}/100 ({asset})"
        if state is DecisionState.WAIT_MONITOR:
            return f"WAIT: score={score}/100 ({asset}) missing={','.join(missing) or '-'}"
        if kill_switch.blocked:
            return f"NO-TRADE (kill-switch): {','.join(kill_switch.ids[:6])}"
        return f"NO-TRADE (blocked): {','.join(blockers) or 'constraints'}"
