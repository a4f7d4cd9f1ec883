"""
Unit tests for the layer readiness gate and the strong override.

Layers come from a real build of the rising-market scenario; the gating
layers (L16, L17, L18) are then rewritten per case.
"""

import random
from dataclasses import replace

import pytest

from fx_decision.decision.layers import LAYER_COUNT, ValidationMetrics
from fx_decision.decision.readiness import (
    StrongOverride,
    evaluate_layers_readiness,
    evaluate_strong_override,
)
from tests.conftest import make_signal


def gated(layers, l16_pass=True, l17_confidence=80, l18_state='ENTER', drop=None):
    """Copy of `layers` with the three gating layers set as requested."""
    result = []
    for layer in layers:
        if layer.key == drop:
            continue
        if layer.key == 'L16':
            layer = replace(layer, metrics=ValidationMetrics(
                verdict='PASS' if l16_pass else 'FAIL',
                is_trade_valid=l16_pass,
                failed_checks=[] if l16_pass else ['min_confidence'],
            ))
        elif layer.key == 'L17':
            layer = replace(layer, confidence=l17_confidence)
        elif layer.key == 'L18':
            layer = replace(layer, metrics=replace(layer.metrics, state=l18_state))
        result.append(layer)
    return result


# ============================================================================
# Layer gate
# ============================================================================

def test_all_gates_pass(built_layers):
    result = evaluate_layers_readiness(gated(built_layers))

    assert result.ok
    assert result.layers_count == LAYER_COUNT
    assert result.layer16_pass and result.layer17_ok
    assert result.layer18_state == 'ENTER'


@pytest.mark.parametrize("overrides", [
    {'l16_pass': False},
    {'l17_confidence': 59},
    {'l17_confidence': None},
    {'l18_state': 'WAIT_MONITOR'},
    {'l18_state': 'NO_TRADE_BLOCKED'},
    {'drop': 'L7'},
])
def test_any_failing_gate_blocks(built_layers, overrides):
    assert not evaluate_layers_readiness(gated(built_layers, **overrides)).ok


def test_l17_threshold_is_inclusive(built_layers):
    assert evaluate_layers_readiness(gated(built_layers, l17_confidence=60)).ok
    assert not evaluate_layers_readiness(gated(built_layers, l17_confidence=70), min_layer17_confidence=75).ok


def test_missing_layers_is_not_ready():
    result = evaluate_layers_readiness(None)
    assert not result.ok
    assert result.layers_count == 0
    assert result.layer18_state is None


def test_readiness_matches_conjunction_of_gates(built_layers):
    rng = random.Random(20240305)
    for _ in range(200):
        l16_pass = rng.random() < 0.7
        l17_confidence = rng.randint(0, 100)
        l18_state = rng.choice(['ENTER', 'WAIT_MONITOR', 'NO_TRADE_BLOCKED'])
        drop = rng.choice([None, None, None, 'L3'])
        layers = gated(built_layers, l16_pass, l17_confidence, l18_state, drop)

        expected = (
            drop is None
            and l16_pass
            and l17_confidence >= 60
            and l18_state == 'ENTER'
        )
        assert evaluate_layers_readiness(layers).ok is expected
        assert evaluate_layers_readiness(layers, strong_override=StrongOverride(ok=True)).ok


# ============================================================================
# Strong override
# ============================================================================

def test_override_skipped_when_gate_ok_or_disabled():
    signal = make_signal(strength=90, confidence=95)
    assert not evaluate_strong_override(True, signal, 'ENTER', True, gate_ok=True).ok
    assert not evaluate_strong_override(False, signal, 'ENTER', True, gate_ok=False).ok


def test_override_applies_for_strong_complete_signal():
    signal = make_signal(strength=90, confidence=95)
    override = evaluate_strong_override(True, signal, 'enter', True, gate_ok=False)

    assert override.ok
    assert override.reason == 'strong_override'


@pytest.mark.parametrize("kwargs,state,valid,reason", [
    ({'direction': 'NEUTRAL'}, 'ENTER', True, 'direction_neutral'),
    ({}, 'WAIT_MONITOR', True, 'decision_not_enter'),
    ({}, 'ENTER', False, 'trade_invalid'),
    ({'strength': None}, 'ENTER', True, 'missing_strength'),
    ({'confidence': 80}, 'ENTER', True, 'below_strong_floor'),
    ({'strength': 60}, 'ENTER', True, 'below_strong_floor'),
    ({'stop_loss': None}, 'ENTER', True, 'missing_entry_levels'),
])
def test_override_reports_first_failing_condition(kwargs, state, valid, reason):
    params = {'strength': 90, 'confidence': 95, **kwargs}
    override = evaluate_strong_override(True, make_signal(**params), state, valid, gate_ok=False)

    assert not override.ok
    assert override.reason == reason


def test_first_failure_wins_over_later_ones():
    signal = make_signal(direction='NEUTRAL', strength=None, stop_loss=None)
    override = evaluate_strong_override(True, signal, 'WAIT_MONITOR', False, gate_ok=False)
    assert override.reason == 'direction_neutral'
