"""
Decision Engine - evaluation orchestrator.

One evaluation runs:
1. TechnicalAnalyzer over every timeframe (candles supplied or fetched)
2. Candle summaries per timeframe
3. SignalValidator for the raw decision
4. LayerBuilder for the 18 layers; the Decision is read back from L16-L18
5. Readiness gate, with the optional strong override
6. RiskEngine sizing when the decision is actionable

The Ultra Filter and the Enhancer are independent quality gates and are not
part of this path.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from ..analytics.candle import normalize_series
from ..analytics.candle_summary import CandleSummary, summarize_candles
from ..analytics.technical_analyzer import CandleProvider, MultiTimeframeAnalysis, TechnicalAnalyzer
from ..config.settings import AppConfig, ReadinessSettings, coerce_settings
from ..errors import UnsupportedTimeframeError
from ..risk.engine import RiskAssessment, RiskEngine, VaRSnapshot
from ..utils.logger import get_decision_logger
from ..utils.time_utils import ensure_utc
from .confluence import KillSwitch
from .layer_builder import LayerBuilder
from .layers import DecisionMetrics, Layer, ValidationMetrics, layer_by_key
from .models import DecisionState, Direction, MarketScenario
from .readiness import ReadinessResult, evaluate_layers_readiness, evaluate_strong_override
from .validator import SignalValidator, ValidationVerdict

logger = logging.getLogger(__name__)


# ============================================================================
# Results
# ============================================================================

@dataclass
class Decision:
    """
    The decision as reported by layers L16-L18.

    `state` is the layer reading, not the final verdict: the readiness gate
    (EvaluationResult.actionable) decides whether the signal is tradeable.
    """
    state: DecisionState
    direction: Direction
    score: Optional[float]
    blocked: bool
    is_trade_valid: bool
    missing: List[str]
    what_would_change: List[str]
    kill_switch: KillSwitch
    reason: Optional[str]
    checks: Dict[str, bool]
    from_layers: bool = True

    @classmethod
    def from_layers(cls, layers: List[Layer], verdict: ValidationVerdict) -> "Decision":
        """
        Read the decision from L18 (state) and L16 (validity).

        A degraded L18 or L16 falls back to the validator verdict.
        """
        l16 = layer_by_key(layers, 'L16')
        l18 = layer_by_key(layers, 'L18')
        validation = l16.metrics if l16 and isinstance(l16.metrics, ValidationMetrics) else None
        final = l18.metrics if l18 and isinstance(l18.metrics, DecisionMetrics) else None

        if final is None:
            return cls(
                state=verdict.state,
                direction=verdict.direction,
                score=verdict.score,
                blocked=verdict.blocked,
                is_trade_valid=validation.is_trade_valid if validation else verdict.is_trade_valid,
                missing=list(verdict.missing),
                what_would_change=list(verdict.what_would_change),
                kill_switch=verdict.kill_switch,
                reason=verdict.reason,
                checks=dict(verdict.checks),
                from_layers=False,
            )

        return cls(
            state=DecisionState(final.state),
            direction=final.direction,
            score=final.score,
            blocked=final.blocked,
            is_trade_valid=validation.is_trade_valid if validation else final.is_trade_valid,
            missing=list(final.missing),
            what_would_change=list(final.what_would_change),
            kill_switch=verdict.kill_switch,
            reason=final.reason,
            checks=dict(final.checks),
        )

    def to_dict(self) -> dict:
        return {
            'state': self.state.value,
            'direction': self.direction.value,
            'score': self.score,
            'blocked': self.blocked,
            'is_trade_valid': self.is_trade_valid,
            'missing': list(self.missing),
            'what_would_change': list(self.what_would_change),
            'kill_switch': self.kill_switch.to_dict(),
            'reason': self.reason,
            'checks': dict(self.checks),
            'from_layers': self.from_layers,
        }

    def __repr__(self) -> str:
        return f"Decision({self.state.value} {self.direction.value} score={self.score})"


@dataclass
class EvaluationResult:
    """Everything one evaluation produced."""
    pair: str
    evaluated_at: datetime
    decision: Decision
    readiness: ReadinessResult
    layers: List[Layer]
    verdict: ValidationVerdict
    analysis: MultiTimeframeAnalysis
    summaries: Dict[str, CandleSummary] = field(default_factory=dict)
    risk: Optional[RiskAssessment] = None

    @property
    def actionable(self) -> bool:
        return self.readiness.ok

    @property
    def can_trade(self) -> bool:
        return bool(self.actionable and self.risk and self.risk.can_trade)

    def to_dict(self) -> dict:
        return {
            'pair': self.pair,
            'evaluated_at': self.evaluated_at.isoformat(),
            'decision': self.decision.to_dict(),
            'readiness': self.readiness.to_dict(),
            'layers': [layer.to_dict() for layer in self.layers],
            'verdict': self.verdict.to_dict(),
            'analysis': self.analysis.to_dict(),
            'summaries': {tf: s.to_dict() for tf, s in self.summaries.items()},
            'risk': self.risk.to_dict() if self.risk else None,
            'actionable': self.actionable,
            'can_trade': self.can_trade,
        }

    def __repr__(self) -> str:
        return (
            f"EvaluationResult({self.pair} {self.decision.state.value} "
            f"ready={self.readiness.ok} can_trade={self.can_trade})"
        )


# ============================================================================
# Engine
# ============================================================================

class DecisionEngine:
    """
    Orchestrates one pair evaluation end to end.

    Example:
        engine = create_default_decision_engine()
        result = await engine.evaluate(scenario, candles_by_tf={'M15': m15, 'H1': h1})
        if result and result.can_trade:
            print(result.risk.position_size)
    """

    def __init__(
        self,
        analyzer: TechnicalAnalyzer,
        validator: SignalValidator,
        layer_builder: LayerBuilder,
        risk_engine: RiskEngine,
        readiness: Union[ReadinessSettings, Dict[str, Any], None] = None,
        name: str = "DecisionEngine",
    ):
        self.analyzer = analyzer
        self.validator = validator
        self.layer_builder = layer_builder
        self.risk_engine = risk_engine
        self.readiness = coerce_settings(ReadinessSettings, readiness)
        self.name = name

        self._decision_callbacks: List[Callable] = []
        self.evaluations = 0
        self.actionable = 0
        self.errors = 0

        self.logger = logging.getLogger(f"{__name__}.{name}")
        self.decision_logger = get_decision_logger(f"{__name__}.{name}")
        self.logger.info(
            f"DecisionEngine initialized: min_L17={self.readiness.min_layer17_confidence}, "
            f"strong_override={'on' if self.readiness.allow_strong_override else 'off'}"
        )

    async def evaluate(
        self,
        scenario: Union[MarketScenario, Mapping[str, Any]],
        candles_by_tf: Optional[Mapping[str, Any]] = None,
        provider: Optional[CandleProvider] = None,
        var_snapshot: Union[VaRSnapshot, Mapping[str, Any], None] = None,
        now: Optional[datetime] = None,
    ) -> Optional[EvaluationResult]:
        """
        Evaluate one pair.

        Args:
            scenario: MarketScenario (or its dict form)
            candles_by_tf: Candles keyed by timeframe; fetched from `provider` when omitted
            provider: Async candle source
            var_snapshot: External value-at-risk snapshot for the risk engine
            now: Evaluation timestamp (UTC); defaults to the current time

        Returns:
            EvaluationResult, or None when the evaluation failed unexpectedly

        Raises:
            UnsupportedTimeframeError: for an unknown timeframe name
        """
        if not isinstance(scenario, MarketScenario):
            scenario = MarketScenario.from_dict(scenario)
        now = ensure_utc(now)
        pair = scenario.pair

        try:
            if candles_by_tf is None and provider is not None:
                candles_by_tf = await self.analyzer.fetch_all(pair, provider)
            series = {tf: normalize_series(raw) for tf, raw in (candles_by_tf or {}).items()}

            analysis = self.analyzer.analyze(pair, series)
            summaries = {
                tf: summary
                for tf, summary in ((tf, summarize_candles(candles, tf)) for tf, candles in series.items())
                if summary is not None
            }

            verdict = self.validator.validate(scenario, analysis, summaries, now)
            layers = self.layer_builder.build(scenario, verdict, analysis, summaries, now)
            decision = Decision.from_layers(layers, verdict)
            readiness = self.check_readiness(scenario, layers, verdict)

            risk = None
            if readiness.ok:
                volatility = analysis.volatility_summary
                risk = self.risk_engine.calculate_risk(
                    scenario.primary,
                    volatility_state=volatility.state if volatility else None,
                    volatility_score=volatility.average_score if volatility else None,
                    var_snapshot=var_snapshot,
                    now=now,
                )

            result = EvaluationResult(
                pair=pair,
                evaluated_at=now,
                decision=decision,
                readiness=readiness,
                layers=layers,
                verdict=verdict,
                analysis=analysis,
                summaries=summaries,
                risk=risk,
            )

            self.evaluations += 1
            self.decision_logger.decision(
                pair, decision.state.value, decision.direction.value, decision.score,
                ready=readiness.ok,
                can_trade=result.can_trade,
            )
            if readiness.ok:
                self.actionable += 1
                await self._emit_decision(result)
            return result

        except UnsupportedTimeframeError:
            raise
        except Exception as e:
            self.errors += 1
            self.logger.error(f"❌ Error evaluating {pair}: {e}")
            self.logger.exception("Full traceback:")
            return None

    def check_readiness(
        self, scenario: MarketScenario, layers: List[Layer], verdict: ValidationVerdict
    ) -> ReadinessResult:
        """Layer gate first; the strong override only matters when the gate fails."""
        cfg = self.readiness
        gate = evaluate_layers_readiness(layers, cfg.min_layer17_confidence)
        override = evaluate_strong_override(
            cfg.allow_strong_override,
            scenario.primary,
            verdict.state.value,
            verdict.is_trade_valid,
            gate.ok,
            min_confidence=cfg.strong_min_confidence,
            min_strength=cfg.strong_min_strength,
        )
        return evaluate_layers_readiness(layers, cfg.min_layer17_confidence, strong_override=override)

    def on_decision(self, callback: Callable) -> None:
        """
        Register a callback for actionable decisions.

        Args:
            callback: async def callback(result: EvaluationResult) -> None
        """
        self._decision_callbacks.append(callback)
        self.logger.info(f"Registered decision callback: {callback.__name__}")

    async def _emit_decision(self, result: EvaluationResult) -> None:
        for callback in self._decision_callbacks:
            try:
                await callback(result)
            except Exception as e:
                self.logger.error(f"Error in decision callback {callback.__name__}: {e}")

    def get_stats(self) -> dict:
        return {
            'name': self.name,
            'evaluations': self.evaluations,
            'actionable': self.actionable,
            'errors': self.errors,
            'min_layer17_confidence': self.readiness.min_layer17_confidence,
            'strong_override': self.readiness.allow_strong_override,
            'decision_callbacks_registered': len(self._decision_callbacks),
            'risk': self.risk_engine.get_stats(),
        }


def create_default_decision_engine(
    config: Union[AppConfig, Dict[str, Any], None] = None,
    ledger=None,
) -> DecisionEngine:
    """
    Build a DecisionEngine with every component configured from one AppConfig.

    Args:
        config: AppConfig or dict; None loads the YAML configuration
        ledger: Shared ActiveTradeLedger (a fresh one when omitted)

    Returns:
        Configured DecisionEngine instance
    """
    from ..analytics.cache import TTLCache
    from ..config.loader import get_app_config

    app = get_app_config() if config is None else coerce_settings(AppConfig, config)
    cache = TTLCache(
        ttl_seconds=app.analyzer.cache_ttl_seconds,
        max_entries=app.analyzer.cache_max_entries,
    )

    return DecisionEngine(
        analyzer=TechnicalAnalyzer(app.analyzer, cache=cache),
        validator=SignalValidator(app.validator),
        layer_builder=LayerBuilder(app.layers),
        risk_engine=RiskEngine(app.risk, ledger=ledger),
        readiness=app.readiness,
    )
