"""
Layer readiness gate.

A decision is actionable only when all 18 layers exist, L16 passed, L17
confluence confidence clears the configured minimum and L18 says ENTER.
A strong-override escape lets a very strong, fully-specified signal through
when the layers themselves are unavailable or degraded.
"""

import logging
from dataclasses import asdict, dataclass
from typing import List, Optional

from .layers import LAYER_COUNT, DecisionMetrics, Layer, ValidationMetrics, layer_by_key
from .models import DecisionState, Direction, PrimarySignal

logger = logging.getLogger(__name__)


@dataclass
class StrongOverride:
    ok: bool
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ReadinessResult:
    ok: bool
    layers_count: int
    layer16_pass: bool
    layer17_ok: bool
    layer18_state: Optional[str]
    strong_override: Optional[StrongOverride] = None

    def to_dict(self) -> dict:
        return asdict(self)

    def __repr__(self) -> str:
        return (
            f"ReadinessResult(ok={self.ok}, layers={self.layers_count}, L16={self.layer16_pass}, "
            f"L17={self.layer17_ok}, L18={self.layer18_state})"
        )


def evaluate_strong_override(
    allow: bool,
    signal: PrimarySignal,
    decision_state_fallback: Optional[str],
    is_trade_valid: bool,
    gate_ok: bool,
    min_confidence: float = 85.0,
    min_strength: float = 70.0,
) -> StrongOverride:
    """
    Decide whether a strong signal may bypass a failed layer gate.

    Args:
        allow: Whether the override is enabled at all
        signal: The primary signal
        decision_state_fallback: Raw decision state from the validator
        is_trade_valid: Raw validity from the validator
        gate_ok: Result of the normal layer gate

    Returns:
        StrongOverride with the first failing condition as its reason
    """
    if gate_ok or not allow:
        return StrongOverride(ok=False)

    entry = signal.entry
    confidence = signal.confidence if signal.confidence is not None else 0
    checks = (
        ('direction_neutral', signal.direction in (Direction.BUY, Direction.SELL)),
        ('decision_not_enter', str(decision_state_fallback or '').upper() == DecisionState.ENTER.value),
        ('trade_invalid', is_trade_valid),
        ('missing_strength', signal.strength is not None),
        ('below_strong_floor',
         confidence >= min_confidence and (signal.strength or 0) >= min_strength),
        ('missing_entry_levels', entry.is_complete),
    )
    for reason, passed in checks:
        if not passed:
            return StrongOverride(ok=False, reason=reason)
    return StrongOverride(ok=True, reason='strong_override')


def evaluate_layers_readiness(
    layers: Optional[List[Layer]],
    min_layer17_confidence: float = 60.0,
    strong_override: Optional[StrongOverride] = None,
) -> ReadinessResult:
    """Apply the layer gate, optionally rescued by a strong override."""
    layers = list(layers or [])

    l16 = layer_by_key(layers, 'L16')
    l17 = layer_by_key(layers, 'L17')
    l18 = layer_by_key(layers, 'L18')

    layer16_pass = bool(l16 and isinstance(l16.metrics, ValidationMetrics) and l16.metrics.verdict == 'PASS')
    layer17_ok = bool(l17 and l17.confidence is not None and l17.confidence >= min_layer17_confidence)
    layer18_state = l18.metrics.state if l18 and isinstance(l18.metrics, DecisionMetrics) else None

    gate_ok = (
        len(layers) == LAYER_COUNT
        and layer16_pass
        and layer17_ok
        and layer18_state == DecisionState.ENTER.value
    )
    override_ok = bool(strong_override and strong_override.ok)

    result = ReadinessResult(
        ok=gate_ok or override_ok,
        layers_count=len(layers),
        layer16_pass=layer16_pass,
        layer17_ok=layer17_ok,
        layer18_state=layer18_state,
        strong_override=strong_override,
    )
    if override_ok and not gate_ok:
        logger.warning(f"⚠️  Layer gate failed; strong override applied: {result}")
    else:
        logger.debug(f"Readiness: {result}")
    return result
