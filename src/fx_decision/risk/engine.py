"""
Risk & Position-Sizing Engine

Sizes an ENTER signal with a blended Kelly fraction, then scales it by
volatility and correlation guardrails and caps it by the remaining daily
budget:

    kelly      = clamp(.6 * raw_kelly + .4 * risk_per_trade, min, max * 1.1)
    guardrail  = clamp(volatility_adj * correlation_adj, .25, 1.4)
    desired    = clamp(kelly * guardrail, min, max)
    effective  = min(desired, remaining_daily_budget)
    size       = balance * effective / |entry - stop|

Three portfolio guardrails (currency exposure limits, correlation clusters and
value-at-risk) each default to "allowed" when not configured; any breach
forces can_trade to False. Opening and closing trades is not part of sizing;
that lifecycle lives on the ActiveTradeLedger.
"""

import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from ..config.settings import RiskSettings, coerce_settings
from ..decision.models import Direction, PairMetadata, PrimarySignal
from ..utils.logger import get_decision_logger
from ..utils.math_utils import clamp, to_finite
from ..utils.time_utils import ensure_utc, utc_date_key
from .ledger import ActiveTrade, ActiveTradeLedger

logger = logging.getLogger(__name__)

DEFAULT_WIN_RATE_PCT = 75.0
DEFAULT_RISK_REWARD = 1.6
MIN_RISK_REWARD = 1.2
DEFAULT_VOLATILITY_SCORE = 80.0
SHARED_CURRENCY_CORRELATION = 0.68
UNRELATED_CORRELATION = 0.2


# ============================================================================
# Result types
# ============================================================================

@dataclass
class VaRSnapshot:
    """Value-at-risk snapshot produced by an external risk monitor."""
    ready: bool = False
    value_pct: Optional[float] = None
    limit_pct: Optional[float] = None
    confidence: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["VaRSnapshot"]:
        if not isinstance(data, Mapping):
            return None
        return cls(
            ready=data.get('ready', True) is not False,
            value_pct=to_finite(data.get('valuePct', data.get('value_pct'))),
            limit_pct=to_finite(data.get('limitPct', data.get('limit_pct'))),
            confidence=to_finite(data.get('confidence')),
        )


@dataclass
class GuardResult:
    """Outcome of one portfolio guardrail."""
    allowed: bool = True
    ready: bool = True
    breaches: List[Dict[str, Any]] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class StressTest:
    scenario: str
    description: str
    adverse_move: float
    equity_impact: float
    equity_impact_pct: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class RiskGuardrails:
    kelly_fraction: float
    volatility_adjustment: float
    correlation_adjustment: float
    guardrail_multiplier: float
    exposure_breached: bool
    currency_limit_breached: bool
    correlation_blocked: bool
    var_blocked: bool
    currency_limit: GuardResult
    correlation: GuardResult
    value_at_risk: GuardResult
    active_trades: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class ExposureReport:
    current: Dict[str, float]
    preview: Dict[str, float]
    limit: float
    breaches: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class RiskAssessment:
    """
    Sized position and guardrail report for one signal.

    Attributes:
        position_size: Units to trade (risk amount / stop distance)
        risk_fraction: Effective fraction of balance at risk
        can_trade: Daily budget ok and no guardrail breached
    """
    pair: str
    direction: Direction
    position_size: float
    risk_amount: float
    risk_fraction: float
    desired_risk_fraction: float
    price_risk_pct: float
    risk_per_trade_pct: float
    daily_risk_used: float
    daily_risk_used_pct: float
    remaining_daily_risk: float
    remaining_daily_risk_pct: float
    max_position_size: float
    budget_ok: bool
    guardrails: RiskGuardrails
    portfolio_exposure: ExposureReport
    stress_tests: List[StressTest]
    can_trade: bool

    @property
    def blocked_by(self) -> List[str]:
        g = self.guardrails
        reasons = [
            'daily_budget' if not self.budget_ok else None,
            'currency_exposure' if g.exposure_breached else None,
            'currency_limit' if g.currency_limit_breached else None,
            'correlation_cluster' if g.correlation_blocked else None,
            'value_at_risk' if g.var_blocked else None,
        ]
        return [r for r in reasons if r]

    def to_dict(self) -> dict:
        data = asdict(self)
        data['direction'] = self.direction.value
        data['blocked_by'] = self.blocked_by
        return data

    def __repr__(self) -> str:
        return (
            f"RiskAssessment({self.pair} {self.direction.value} size={self.position_size} "
            f"risk={self.risk_fraction:.4f} can_trade={self.can_trade})"
        )


# ============================================================================
# Engine
# ============================================================================

class RiskEngine:
    """
    Kelly-based position sizing with portfolio guardrails.

    Example:
        engine = RiskEngine({'account_balance': 10_000})
        assessment = engine.calculate_risk(signal, now=now)
        if assessment and assessment.can_trade:
            ledger.open_trade(trade_id, signal.pair, signal.direction, assessment.position_size)
    """

    def __init__(
        self,
        config: Union[RiskSettings, Dict[str, Any], None] = None,
        ledger: Optional[ActiveTradeLedger] = None,
        name: str = "RiskEngine",
    ):
        self.name = name
        self.config = coerce_settings(RiskSettings, config)
        self.ledger = ledger if ledger is not None else ActiveTradeLedger()
        self.logger = logging.getLogger(f"{__name__}.{name}")
        self.decision_logger = get_decision_logger(f"{__name__}.{name}")

        self._budget_lock = threading.Lock()
        self._daily_risk = 0.0
        self._budget_date: Optional[str] = None

        self.assessments = 0
        self.blocked = 0

        self.logger.info(
            f"✅ {name} initialized: balance={self.config.account_balance}, "
            f"risk_per_trade={self.config.risk_per_trade}, max_daily={self.config.max_daily_risk}"
        )

    # ------------------------------------------------------------------
    # Kelly and adjustments
    # ------------------------------------------------------------------

    def compute_kelly_fraction(self, win_rate_pct: Optional[float], risk_reward: Optional[float]) -> float:
        """Blended Kelly fraction, always within [min_kelly, max_kelly * 1.1]."""
        cfg = self.config
        win_rate = clamp((win_rate_pct if win_rate_pct is not None else DEFAULT_WIN_RATE_PCT) / 100, 0.05, 0.99)
        reward = max(risk_reward if risk_reward is not None else DEFAULT_RISK_REWARD, MIN_RISK_REWARD)
        raw = (win_rate * (reward + 1) - 1) / reward
        adjusted = raw if raw > 0 else cfg.min_kelly_fraction * 0.6
        blended = adjusted * 0.6 + cfg.risk_per_trade * 0.4
        return clamp(blended, cfg.min_kelly_fraction, cfg.max_kelly_fraction * 1.1)

    def volatility_adjustment(self, state: Optional[str], score: Optional[float] = None) -> float:
        multipliers = self.config.volatility_risk_multipliers
        key = (state or 'normal').lower()
        base = multipliers.get(key, multipliers.get('normal', 1.0))
        score = score if score is not None else DEFAULT_VOLATILITY_SCORE
        score_factor = clamp(1.1 - (score - 60) / 220, 0.55, 1.25)
        return clamp(base * score_factor, 0.3, 1.4)

    def correlation_adjustment(self, pair: str, direction: Direction, trades: List[ActiveTrade]) -> float:
        if not trades:
            return 1.0
        meta = PairMetadata.from_pair(pair)
        penalty = self.config.correlation_penalty
        adjustment = 1.0
        for trade in trades:
            other = PairMetadata.from_pair(trade.pair)
            if other.pair == meta.pair:
                adjustment *= penalty.same_pair
            elif {other.base, other.quote} & {meta.base, meta.quote}:
                adjustment *= penalty.shared_currency
                if trade.direction != direction:
                    adjustment *= 1.05
        return clamp(adjustment, 0.3, 1.0)

    # ------------------------------------------------------------------
    # Daily budget
    # ------------------------------------------------------------------

    def _roll_budget(self, now: datetime):
        key = utc_date_key(now)
        if key != self._budget_date:
            if self._budget_date is not None:
                self.logger.info(f"Daily risk budget reset ({self._budget_date} -> {key})")
            self._daily_risk = 0.0
            self._budget_date = key

    def daily_risk_used(self, now: Optional[datetime] = None) -> float:
        with self._budget_lock:
            self._roll_budget(ensure_utc(now))
            return self._daily_risk

    def record_daily_risk(self, fraction: float, now: Optional[datetime] = None) -> float:
        """Book consumed risk budget; returns today's total."""
        fraction = to_finite(fraction)
        if fraction is None or fraction <= 0:
            return self.daily_risk_used(now)
        with self._budget_lock:
            self._roll_budget(ensure_utc(now))
            self._daily_risk += fraction
            total = self._daily_risk
        if total >= self.config.max_daily_risk:
            self.decision_logger.risk_alert(
                'daily_budget', 'high', f"Daily risk budget exhausted ({total:.4f}/{self.config.max_daily_risk})"
            )
        return total

    # ------------------------------------------------------------------
    # Guardrails
    # ------------------------------------------------------------------

    @staticmethod
    def currency_exposures(trades: List[ActiveTrade]) -> Dict[str, float]:
        """Signed net exposure per currency: long base / short quote for BUY."""
        exposures: Dict[str, float] = {}
        for trade in trades:
            meta = PairMetadata.from_pair(trade.pair)
            sign = 1 if trade.direction is Direction.BUY else -1
            exposures[meta.base] = exposures.get(meta.base, 0.0) + sign * trade.position_size
            exposures[meta.quote] = exposures.get(meta.quote, 0.0) - sign * trade.position_size
        return {ccy: round(value, 2) for ccy, value in exposures.items()}

    def preview_exposure(
        self, exposures: Dict[str, float], pair: str, direction: Direction, position_size: float
    ) -> Tuple[Dict[str, float], List[Dict[str, Any]]]:
        preview = dict(exposures)
        meta = PairMetadata.from_pair(pair)
        sign = 1 if direction is Direction.BUY else -1
        preview[meta.base] = preview.get(meta.base, 0.0) + sign * position_size
        preview[meta.quote] = preview.get(meta.quote, 0.0) - sign * position_size
        limit = self.config.max_exposure_per_currency
        breaches = [
            {'currency': ccy, 'exposure': round(value, 2)}
            for ccy, value in preview.items() if abs(value) > limit
        ]
        return {ccy: round(value, 2) for ccy, value in preview.items()}, breaches

    def currency_limit_guard(self, preview: Dict[str, float]) -> GuardResult:
        cfg = self.config
        default_limit = abs(cfg.default_currency_limit) if cfg.default_currency_limit else cfg.max_exposure_per_currency
        limits = cfg.currency_limits or {}
        result = GuardResult()
        for ccy, exposure in preview.items():
            limit = to_finite(limits.get(ccy))
            limit = abs(limit) if limit is not None else default_limit
            if not limit or limit <= 0:
                continue
            if abs(exposure) > limit:
                result.allowed = False
                result.breaches.append({'currency': ccy, 'exposure': round(exposure, 2), 'limit': limit})
        return result

    def pair_correlation(self, pair_a: str, pair_b: str) -> float:
        a = PairMetadata.from_pair(pair_a)
        b = PairMetadata.from_pair(pair_b)
        if a.pair == b.pair:
            return 1.0
        matrix = self.config.correlation.matrix
        for key in (f"{a.pair}:{b.pair}", f"{b.pair}:{a.pair}"):
            if key in matrix:
                return abs(matrix[key])
        if {a.base, a.quote} & {b.base, b.quote}:
            return SHARED_CURRENCY_CORRELATION
        return UNRELATED_CORRELATION

    def correlation_guard(self, pair: str, direction: Direction, trades: List[ActiveTrade]) -> GuardResult:
        guard = self.config.correlation
        if not guard.enabled:
            return GuardResult(ready=False)
        correlated = []
        for trade in trades:
            score = self.pair_correlation(pair, trade.pair)
            if score < guard.threshold:
                continue
            correlated.append({
                'trade_id': trade.id,
                'pair': trade.pair,
                'correlation': round(score, 3),
                'direction': trade.direction.value,
            })
        return GuardResult(
            allowed=len(correlated) < guard.max_cluster_size,
            breaches=correlated,
            details={
                'cluster_size': len(correlated),
                'threshold': guard.threshold,
                'max_cluster': guard.max_cluster_size,
                'direction': direction.value,
            },
        )

    def value_at_risk_guard(self, snapshot: Optional[VaRSnapshot]) -> GuardResult:
        guard = self.config.value_at_risk
        if not guard.enabled or snapshot is None or not snapshot.ready:
            return GuardResult(ready=False)
        limit = snapshot.limit_pct if snapshot.limit_pct is not None else guard.max_loss_pct
        value = abs(snapshot.value_pct) if snapshot.value_pct is not None else 0.0
        details = {
            'value_pct': value,
            'limit_pct': limit,
            'confidence': snapshot.confidence if snapshot.confidence is not None else guard.confidence,
        }
        if limit is None or limit <= 0:
            return GuardResult(details=details)
        return GuardResult(allowed=value <= limit, details=details)

    @staticmethod
    def stress_tests(atr: Optional[float], position_size: float, stop_distance: float,
                     balance: float) -> List[StressTest]:
        atr = atr if atr is not None and atr > 0 else stop_distance * 0.85
        scenarios = (
            ('atr_retrace', 'Price retraces by 1 ATR against the position', atr),
            ('stop_gap_150', 'Gap against position equals 150% of stop distance', stop_distance * 1.5),
            ('volatility_spike', 'Volatility spike pushes price 1.8 ATR beyond entry', atr * 1.8),
        )
        tests = []
        for scenario, description, move in scenarios:
            loss = move * position_size
            tests.append(StressTest(
                scenario=scenario,
                description=description,
                adverse_move=round(move, 5),
                equity_impact=round(-loss, 2),
                equity_impact_pct=round(-loss / balance * 100, 2),
            ))
        return tests

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def calculate_risk(
        self,
        signal: PrimarySignal,
        volatility_state: Optional[str] = None,
        volatility_score: Optional[float] = None,
        var_snapshot: Union[VaRSnapshot, Mapping[str, Any], None] = None,
        now: Optional[datetime] = None,
    ) -> Optional[RiskAssessment]:
        """
        Size a signal.

        Args:
            signal: Primary signal with entry levels
            volatility_state: calm / normal / high / volatile / extreme (entry state wins)
            volatility_score: Average volatility score from the analyzer
            var_snapshot: External value-at-risk snapshot
            now: Evaluation timestamp, used for daily budget rollover

        Returns:
            RiskAssessment, or None when entry/stop is missing or the stop distance is 0
        """
        entry = signal.entry
        if entry.price is None or entry.stop_loss is None:
            self.logger.debug(f"{signal.pair}: no entry/stop, skipping risk sizing")
            return None
        stop_distance = abs(entry.price - entry.stop_loss)
        if stop_distance == 0:
            self.logger.warning(f"⚠️  {signal.pair}: zero stop distance, skipping risk sizing")
            return None

        cfg = self.config
        now = ensure_utc(now)
        if isinstance(var_snapshot, Mapping):
            var_snapshot = VaRSnapshot.from_dict(var_snapshot)
        trades = self.ledger.snapshot()
        direction = signal.direction

        kelly = self.compute_kelly_fraction(signal.estimated_win_rate, entry.risk_reward)
        vol_adj = self.volatility_adjustment(entry.volatility_state or volatility_state, volatility_score)
        corr_adj = self.correlation_adjustment(signal.pair, direction, trades)
        guardrail = clamp(vol_adj * corr_adj, 0.25, 1.4)
        desired = clamp(kelly * guardrail, cfg.min_kelly_fraction, cfg.max_kelly_fraction)

        daily_used = self.daily_risk_used(now)
        remaining = max(0.0, cfg.max_daily_risk - daily_used)
        effective = min(desired, remaining)
        budget_ok = effective >= cfg.min_kelly_fraction and remaining >= cfg.min_kelly_fraction

        balance = cfg.account_balance
        risk_amount = balance * effective
        position_size = risk_amount / stop_distance

        exposures = self.currency_exposures(trades)
        preview, exposure_breaches = self.preview_exposure(exposures, signal.pair, direction, position_size)
        currency_limit = self.currency_limit_guard(preview)
        correlation = self.correlation_guard(signal.pair, direction, trades)
        value_at_risk = self.value_at_risk_guard(var_snapshot)

        exposure_breached = bool(exposure_breaches)
        currency_limit_breached = bool(currency_limit.breaches)
        correlation_blocked = not correlation.allowed
        var_blocked = not value_at_risk.allowed

        can_trade = (
            budget_ok
            and not exposure_breached
            and not currency_limit_breached
            and not correlation_blocked
            and not var_blocked
        )
        post_trade_remaining = max(0.0, remaining - effective)

        assessment = RiskAssessment(
            pair=signal.pair,
            direction=direction,
            position_size=round(position_size, 2),
            risk_amount=round(risk_amount, 2),
            risk_fraction=round(effective, 4),
            desired_risk_fraction=round(desired, 4),
            price_risk_pct=round(stop_distance / entry.price * 100, 2) if entry.price else 0.0,
            risk_per_trade_pct=round(effective * 100, 2),
            daily_risk_used=round(daily_used, 4),
            daily_risk_used_pct=round(daily_used * 100, 2),
            remaining_daily_risk=round(remaining, 4),
            remaining_daily_risk_pct=round(post_trade_remaining * 100, 2),
            max_position_size=round(balance * remaining / stop_distance, 2),
            budget_ok=budget_ok,
            guardrails=RiskGuardrails(
                kelly_fraction=round(kelly, 4),
                volatility_adjustment=round(vol_adj, 3),
                correlation_adjustment=round(corr_adj, 3),
                guardrail_multiplier=round(guardrail, 3),
                exposure_breached=exposure_breached,
                currency_limit_breached=currency_limit_breached,
                correlation_blocked=correlation_blocked,
                var_blocked=var_blocked,
                currency_limit=currency_limit,
                correlation=correlation,
                value_at_risk=value_at_risk,
                active_trades=[t.to_dict() for t in trades],
            ),
            portfolio_exposure=ExposureReport(
                current=exposures,
                preview=preview,
                limit=cfg.max_exposure_per_currency,
                breaches=exposure_breaches,
            ),
            stress_tests=self.stress_tests(entry.atr, position_size, stop_distance, balance),
            can_trade=can_trade,
        )

        self.assessments += 1
        if not can_trade:
            self.blocked += 1
            self.decision_logger.risk_alert(
                'trade_blocked', 'medium', f"{signal.pair} blocked by {', '.join(assessment.blocked_by)}",
                pair=signal.pair,
            )
        else:
            self.logger.info(f"✅ Risk sized: {assessment}")
        return assessment

    def get_stats(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'assessments': self.assessments,
            'blocked': self.blocked,
            'daily_risk_used': round(self._daily_risk, 4),
            'budget_date': self._budget_date,
            'active_trades': len(self.ledger),
        }
