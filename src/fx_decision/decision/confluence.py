"""
Weighted Confluence Gates

Each validator check becomes a gate with a weight and a PASS / FAIL / SKIP
status. The confluence score is the share of eligible weight that passed:

    score = sum(weight of PASS) / sum(weight of PASS + FAIL) * 100

SKIP never counts. Outside strict mode FAILs of advisory gates (ids starting
with smart_, smc_ or htf_) are informational and excluded from the score.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional
import logging

logger = logging.getLogger(__name__)

ADVISORY_PREFIXES = ('smart_', 'smc_', 'htf_')

BASE_HARD_FAIL_IDS = ('min_confidence', 'min_strength')

# Gate failures that downgrade ENTER to WAIT when the strict checklist is on
STRICT_HARD_FAIL_IDS = (
    'htf_d1',
    'smart_time_intelligence',
    'smart_failure_cost_check',
    'smart_atr_rr_2to1',
    'smart_structure_clean',
    'smart_volatility_state',
    'smart_news_guard',
    'smart_event_risk_governor',
    'smart_data_completeness',
    'smart_liquidity_execution_risk',
    'smart_execution_edge_filter',
    'smart_volume_confirm',
    'smc_liquidity_sweep',
)

# Gate failures that force NO_TRADE_BLOCKED when the strict checklist is on
KILL_SWITCH_IDS = (
    'smart_news_guard',
    'smart_event_risk_governor',
    'smart_post_news_regime',
    'smart_data_completeness',
    'smart_quote_integrity',
    'smart_liquidity_execution_risk',
    'smart_execution_slippage_risk',
    'trading_window_hard',
    'session_window',
    'smart_signal_ttl',
    'smart_failure_cost_check',
)

# Failures surfaced as "what would change" in strict mode
KEY_SMART_IDS = (
    'htf_d1',
    'smart_time_intelligence',
    'smart_atr_rr_2to1',
    'smart_structure_clean',
    'smart_volatility_state',
    'smart_news_guard',
    'smart_event_risk_governor',
    'smart_data_completeness',
    'smart_liquidity_execution_risk',
    'smart_execution_edge_filter',
    'smart_volume_confirm',
    'smc_liquidity_sweep',
)


class GateStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    SKIP = "SKIP"


@dataclass
class Gate:
    """One weighted confluence check."""
    id: str
    label: str
    weight: float
    status: GateStatus
    reason: Optional[str] = None
    metrics: Optional[Dict[str, Any]] = None

    @property
    def failed(self) -> bool:
        return self.status is GateStatus.FAIL

    @property
    def advisory(self) -> bool:
        return self.id.startswith(ADVISORY_PREFIXES)

    def to_dict(self) -> dict:
        return asdict(self)

    def __repr__(self) -> str:
        return f"Gate({self.id}={self.status.value} w={self.weight})"


@dataclass
class WeightedConfluence:
    """
    Confluence result.

    Attributes:
        score: Passed share of eligible weight, 0-100 (1 dp)
        min_score: Score needed for `passed`
        strict: Whether the strict smart checklist was applied
        hard_fails: Failed gate ids that downgrade ENTER regardless of score
        gates: Every gate in evaluation order
    """
    score: float
    min_score: float
    passed: bool
    strict: bool
    hard_fails: List[str] = field(default_factory=list)
    gates: List[Gate] = field(default_factory=list)

    def gate(self, gate_id: str) -> Optional[Gate]:
        for gate in self.gates:
            if gate.id == gate_id:
                return gate
        return None

    def status_of(self, gate_id: str) -> Optional[GateStatus]:
        gate = self.gate(gate_id)
        return gate.status if gate else None

    def top_weighted_fails(self, limit: int = 6) -> List[Gate]:
        failed = [g for g in self.gates if g.failed]
        return sorted(failed, key=lambda g: g.weight, reverse=True)[:limit]

    def to_dict(self) -> dict:
        return {
            'score': self.score,
            'min_score': self.min_score,
            'passed': self.passed,
            'strict': self.strict,
            'hard_fails': list(self.hard_fails),
            'gates': [g.to_dict() for g in self.gates],
        }

    def __repr__(self) -> str:
        return (
            f"WeightedConfluence(score={self.score:.1f}/{self.min_score:.0f}, "
            f"passed={self.passed}, hard_fails={self.hard_fails})"
        )


@dataclass
class KillSwitchItem:
    id: str
    label: str
    reason: Optional[str]
    weight: float


@dataclass
class KillSwitch:
    enabled: bool = False
    blocked: bool = False
    items: List[KillSwitchItem] = field(default_factory=list)

    @property
    def ids(self) -> List[str]:
        return [item.id for item in self.items]

    @property
    def reasons(self) -> List[str]:
        return [f"{item.label}: {item.reason}" if item.reason else item.label for item in self.items]

    def to_dict(self) -> dict:
        return {
            'enabled': self.enabled,
            'blocked': self.blocked,
            'ids': self.ids,
            'reasons': self.reasons,
            'items': [asdict(item) for item in self.items],
        }


def score_confluence(gates: Iterable[Gate], min_score: float, strict: bool) -> WeightedConfluence:
    """Aggregate gates into a weighted confluence score."""
    gates = list(gates)
    eligible = [
        g for g in gates
        if g.status is GateStatus.PASS
        or (g.status is GateStatus.FAIL and (strict or not g.advisory))
    ]
    total = sum(g.weight for g in eligible)
    passed_weight = sum(g.weight for g in eligible if g.status is GateStatus.PASS)
    score = round(passed_weight / total * 100, 1) if total > 0 else 0.0

    hard_ids = set(BASE_HARD_FAIL_IDS)
    if strict:
        hard_ids.update(STRICT_HARD_FAIL_IDS)
    hard_fails = [g.id for g in gates if g.failed and g.id in hard_ids]

    result = WeightedConfluence(
        score=score,
        min_score=min_score,
        passed=score >= min_score,
        strict=strict,
        hard_fails=hard_fails,
        gates=gates,
    )
    logger.debug(f"Confluence: {result}")
    return result


def evaluate_kill_switch(confluence: WeightedConfluence) -> KillSwitch:
    """Strict-mode absolute NO-TRADE for safety-critical gate failures."""
    if not confluence.strict:
        return KillSwitch(enabled=False)
    items = [
        KillSwitchItem(id=g.id, label=g.label, reason=g.reason, weight=g.weight)
        for g in confluence.gates
        if g.failed and g.id in KILL_SWITCH_IDS
    ]
    return KillSwitch(enabled=True, blocked=bool(items), items=items)
