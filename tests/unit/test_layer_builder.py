"""
Unit tests for the 18-layer builder.
"""

import json

import pytest

from fx_decision.decision.layer_builder import LayerBuilder
from fx_decision.decision.layers import LAYER_COUNT, DegradedMetrics, layer_by_key
from fx_decision.decision.models import Direction, MarketScenario
from tests.conftest import NOW, make_signal


@pytest.fixture
def builder():
    return LayerBuilder()


def test_builds_exactly_eighteen_ordered_layers(built_layers):
    assert len(built_layers) == LAYER_COUNT
    assert [layer.key for layer in built_layers] == [f"L{i}" for i in range(1, 19)]
    assert [layer.index for layer in built_layers] == list(range(1, 19))
    assert not any(layer.degraded for layer in built_layers)


def test_confidence_is_bounded_integer_or_none(built_layers):
    for layer in built_layers:
        if layer.confidence is not None:
            assert isinstance(layer.confidence, int)
            assert 0 <= layer.confidence <= 100


def test_gating_layers_mirror_the_verdict(evaluation_inputs, built_layers):
    verdict = evaluation_inputs[3]
    l16 = layer_by_key(built_layers, 'L16')
    l18 = layer_by_key(built_layers, 'L18')

    assert l16.metrics.verdict == ('PASS' if verdict.is_trade_valid else 'FAIL')
    assert l18.metrics.state == verdict.state.value
    assert l18.metrics.blocked == verdict.blocked
    assert l18.metrics.kill_switch == verdict.kill_switch.to_dict()


def test_layers_serialize_to_json(built_layers):
    payload = [layer.to_dict() for layer in built_layers]
    text = json.dumps(payload, default=str)
    assert '"L18"' in text
    assert payload[0]['arrow'] in ('▲', '▼', '•')


def test_build_is_deterministic(builder, evaluation_inputs):
    scenario, analysis, summaries, verdict = evaluation_inputs
    first = builder.build(scenario, verdict, analysis, summaries, now=NOW)
    second = builder.build(scenario, verdict, analysis, summaries, now=NOW)
    assert [layer.to_dict() for layer in first] == [layer.to_dict() for layer in second]


def test_failing_layer_degrades_without_breaking_the_set(builder, evaluation_inputs, monkeypatch):
    scenario, analysis, summaries, verdict = evaluation_inputs

    def boom(ctx):
        raise ZeroDivisionError("division by zero")

    monkeypatch.setattr(builder, '_momentum', boom)
    layers = builder.build(scenario, verdict, analysis, summaries, now=NOW)

    assert len(layers) == LAYER_COUNT
    l4 = layer_by_key(layers, 'L4')
    assert l4.degraded
    assert isinstance(l4.metrics, DegradedMetrics)
    assert 'LayerComputationError' in l4.metrics.error
    assert 'L4' in l4.metrics.error
    assert l4.direction is Direction.NEUTRAL
    assert l4.confidence == 0
    assert not layer_by_key(layers, 'L5').degraded


def test_builds_without_analysis_or_summaries(builder, fresh_quote):
    from fx_decision.decision.validator import SignalValidator

    scenario = MarketScenario(pair='EURUSD', primary=make_signal(), quote=fresh_quote)
    verdict = SignalValidator().validate(scenario, None, {}, NOW)
    layers = builder.build(scenario, verdict, None, None, now=NOW)

    assert len(layers) == LAYER_COUNT
