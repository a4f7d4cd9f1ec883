"""
End-to-end tests for the DecisionEngine evaluation pipeline.

Tests:
- Full evaluation from candles to a layer-backed Decision
- Readiness gate consistency and risk sizing on actionable results
- Candle fetching through an async provider
- Degraded inputs (missing bars, failing components)
"""

import json

import pytest

from fx_decision import DecisionEngine, create_default_decision_engine
from fx_decision.config import AppConfig
from fx_decision.decision import LAYER_COUNT, evaluate_layers_readiness
from fx_decision.decision.engine import Decision
from fx_decision.decision.layers import degraded_layer
from fx_decision.decision.readiness import ReadinessResult
from fx_decision.errors import UnsupportedTimeframeError
from tests.conftest import NOW, trending_candles


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def engine():
    return create_default_decision_engine(AppConfig())


@pytest.fixture
def force_ready(monkeypatch):
    """Make the readiness gate pass for every evaluation."""
    def apply(engine):
        def ready(scenario, layers, verdict):
            return ReadinessResult(
                ok=True, layers_count=len(layers), layer16_pass=True, layer17_ok=True, layer18_state='ENTER',
            )
        monkeypatch.setattr(engine, 'check_readiness', ready)
        return engine
    return apply


class FakeCandleProvider:
    def __init__(self, candles_by_tf):
        self.candles_by_tf = candles_by_tf
        self.requested = []

    async def fetch_candles(self, pair, timeframe, count):
        self.requested.append(timeframe)
        return self.candles_by_tf.get(timeframe, [])


# ============================================================================
# Evaluation
# ============================================================================

@pytest.mark.asyncio
async def test_evaluation_produces_layer_backed_decision(engine, scenario, candles_by_tf):
    result = await engine.evaluate(scenario, candles_by_tf, now=NOW)

    assert result is not None
    assert isinstance(engine, DecisionEngine)
    assert len(result.layers) == LAYER_COUNT
    assert result.evaluated_at == NOW
    assert result.decision.from_layers
    assert result.decision.state == result.verdict.state
    assert result.decision.is_trade_valid == result.verdict.is_trade_valid
    assert set(result.summaries) == {'M15', 'H1', 'H4', 'D1'}
    json.dumps(result.to_dict(), default=str)


@pytest.mark.asyncio
async def test_readiness_matches_layer_gate(engine, scenario, candles_by_tf):
    result = await engine.evaluate(scenario, candles_by_tf, now=NOW)
    gate = evaluate_layers_readiness(result.layers, 60)

    assert result.readiness.ok == gate.ok
    assert result.actionable == result.readiness.ok
    if not result.readiness.ok:
        assert result.risk is None
        assert not result.can_trade


@pytest.mark.asyncio
async def test_dict_scenario_is_accepted(engine, candles_by_tf):
    scenario = {
        'pair': 'EURUSD',
        'primary': {
            'direction': 'BUY', 'strength': 80, 'confidence': 85, 'finalScore': 75,
            'entry': {'price': 1.1, 'stopLoss': 1.097, 'takeProfit': 1.109},
        },
        'quote': {'bid': 1.10999, 'ask': 1.11007, 'ageMs': 500},
    }
    result = await engine.evaluate(scenario, candles_by_tf, now=NOW)
    assert result.pair == 'EURUSD'
    assert result.verdict.context.spread_pips == pytest.approx(0.8)


@pytest.mark.asyncio
async def test_actionable_result_is_sized_and_emitted(engine, force_ready, scenario, candles_by_tf):
    force_ready(engine)
    received = []

    async def on_decision(result):
        received.append(result)

    engine.on_decision(on_decision)
    result = await engine.evaluate(scenario, candles_by_tf, now=NOW)

    assert result.actionable
    assert result.risk is not None
    assert result.risk.position_size > 0
    assert result.can_trade == result.risk.can_trade
    assert received == [result]
    assert engine.get_stats()['actionable'] == 1


@pytest.mark.asyncio
async def test_failing_callback_does_not_break_evaluation(engine, force_ready, scenario, candles_by_tf):
    force_ready(engine)

    async def broken(result):
        raise RuntimeError("subscriber down")

    engine.on_decision(broken)
    result = await engine.evaluate(scenario, candles_by_tf, now=NOW)
    assert result is not None


# ============================================================================
# Inputs
# ============================================================================

@pytest.mark.asyncio
async def test_candles_fetched_from_provider(engine, scenario, candles_by_tf):
    provider = FakeCandleProvider(candles_by_tf)
    result = await engine.evaluate(scenario, provider=provider, now=NOW)

    assert provider.requested == ['M15', 'H1', 'H4', 'D1']
    assert not result.analysis.timeframes['H1'].is_fallback


@pytest.mark.asyncio
async def test_sparse_candles_still_evaluate(engine, scenario):
    result = await engine.evaluate(scenario, {'M15': trending_candles(1)}, now=NOW)

    assert result is not None
    assert len(result.layers) == LAYER_COUNT
    assert all(frame.is_fallback for frame in result.analysis.timeframes.values())
    assert result.summaries == {}


@pytest.mark.asyncio
async def test_unsupported_timeframe_raises(engine, scenario):
    with pytest.raises(UnsupportedTimeframeError):
        await engine.evaluate(scenario, {'M7': trending_candles(30)}, now=NOW)


@pytest.mark.asyncio
async def test_unexpected_error_returns_none(engine, scenario, candles_by_tf, monkeypatch):
    def explode(pair, series):
        raise RuntimeError("analyzer crashed")

    monkeypatch.setattr(engine.analyzer, 'analyze', explode)
    assert await engine.evaluate(scenario, candles_by_tf, now=NOW) is None
    assert engine.get_stats()['errors'] == 1


# ============================================================================
# Decision extraction
# ============================================================================

@pytest.mark.asyncio
async def test_readiness_not_state_decides_actionability(engine, monkeypatch, scenario, candles_by_tf):
    def closed(scenario, layers, verdict):
        return ReadinessResult(
            ok=False, layers_count=len(layers), layer16_pass=False, layer17_ok=False, layer18_state='ENTER',
        )
    monkeypatch.setattr(engine, 'check_readiness', closed)

    result = await engine.evaluate(scenario, candles_by_tf, now=NOW)

    assert result.decision.state == result.verdict.state
    assert not result.actionable
    assert not result.can_trade
    assert result.risk is None


def test_degraded_l18_falls_back_to_verdict(evaluation_inputs, built_layers):
    verdict = evaluation_inputs[3]
    layers = [
        degraded_layer(18, RuntimeError("boom")) if layer.key == 'L18' else layer
        for layer in built_layers
    ]
    decision = Decision.from_layers(layers, verdict)

    assert not decision.from_layers
    assert decision.state == verdict.state
    assert decision.kill_switch is verdict.kill_switch


def test_decision_kill_switch_comes_from_verdict(evaluation_inputs, built_layers):
    verdict = evaluation_inputs[3]
    decision = Decision.from_layers(built_layers, verdict)

    assert decision.kill_switch is verdict.kill_switch
    assert decision.to_dict()['kill_switch'] == verdict.kill_switch.to_dict()
