"""
Unit tests for the SignalValidator.
"""

import json
from datetime import datetime, timezone

import pytest

from fx_decision.config.settings import DecisionMode
from fx_decision.decision.models import (
    DecisionState,
    Direction,
    MarketDataQuality,
    MarketScenario,
)
from fx_decision.decision.validator import SignalValidator
from tests.conftest import NOW, make_signal


@pytest.fixture
def validator():
    return SignalValidator()


# ============================================================================
# Execution context
# ============================================================================

def test_execution_context_from_quote_and_entry(validator, scenario):
    context = validator.execution_context(scenario, None)

    assert context.spread_pips == pytest.approx(0.8)
    assert context.atr_pips == pytest.approx(12.0)
    assert context.stop_loss_pips == pytest.approx(30.0)
    assert context.take_profit_pips == pytest.approx(90.0)
    assert context.risk_reward == pytest.approx(3.0)
    assert context.spread_to_atr == pytest.approx(0.0667, abs=1e-4)


def test_risk_reward_derived_when_absent(validator, fresh_quote):
    signal = make_signal(risk_reward=None)
    context = validator.execution_context(MarketScenario('EURUSD', signal, fresh_quote), None)
    assert context.risk_reward == pytest.approx(3.0)


# ============================================================================
# Verdicts
# ============================================================================

def test_verdict_is_well_formed(validator, evaluation_inputs):
    verdict = evaluation_inputs[3]

    assert isinstance(verdict.state, DecisionState)
    assert verdict.direction is Direction.BUY
    assert 0 <= verdict.score <= 100
    assert verdict.is_trade_valid == (verdict.state is DecisionState.ENTER)
    assert verdict.blocked == bool(verdict.blockers)
    assert verdict.reason
    json.dumps(verdict.to_dict(), default=str)


def test_validation_is_deterministic(validator, evaluation_inputs):
    scenario, analysis, summaries, first = evaluation_inputs
    second = validator.validate(scenario, analysis, summaries, NOW)
    assert second.to_dict() == first.to_dict()


def test_stale_data_blocks(validator, buy_signal, fresh_quote):
    scenario = MarketScenario(
        'EURUSD', buy_signal, fresh_quote, data_quality=MarketDataQuality(stale=True),
    )
    verdict = validator.validate(scenario, None, {}, NOW)

    assert verdict.state is DecisionState.NO_TRADE_BLOCKED
    assert 'market_data_fresh' in verdict.blockers
    assert not verdict.is_trade_valid


def test_wide_spread_blocks(validator, buy_signal, fresh_quote):
    scenario = MarketScenario(
        'EURUSD', buy_signal, fresh_quote, data_quality=MarketDataQuality(spread_pips=5.0),
    )
    verdict = validator.validate(scenario, None, {}, NOW)

    assert not verdict.checks['spread_ok']
    assert verdict.state is DecisionState.NO_TRADE_BLOCKED


def test_outside_trading_window_blocks(buy_signal, fresh_quote):
    validator = SignalValidator({'trading_window_start_hour': 7, 'trading_window_end_hour': 12})
    scenario = MarketScenario('EURUSD', buy_signal, fresh_quote)

    verdict = validator.validate(scenario, None, {}, NOW)
    assert not verdict.checks['within_trading_window']

    morning = validator.validate(scenario, None, {}, datetime(2024, 3, 5, 9, 0, tzinfo=timezone.utc))
    assert morning.checks['within_trading_window']


def test_neutral_signal_never_enters(validator, fresh_quote):
    scenario = MarketScenario('EURUSD', make_signal(direction='NEUTRAL'), fresh_quote)
    verdict = validator.validate(scenario, None, {}, NOW)

    assert verdict.state is not DecisionState.ENTER
    assert verdict.direction is Direction.NEUTRAL


def test_weak_signal_waits_with_explanation(validator, fresh_quote):
    signal = make_signal(strength=10, confidence=10, win_rate=40)
    verdict = validator.validate(MarketScenario('EURUSD', signal, fresh_quote), None, {}, NOW)

    assert verdict.state is not DecisionState.ENTER
    if verdict.state is DecisionState.WAIT_MONITOR:
        assert verdict.missing or verdict.what_would_change


def test_aggressive_mode_relaxes_profile():
    standard = SignalValidator().profile_for('forex')
    aggressive = SignalValidator({'mode': DecisionMode.AGGRESSIVE}).profile_for('forex')

    assert aggressive.enter_score <= 25.0
    assert aggressive.enter_score <= standard.enter_score
    assert aggressive.min_confidence <= standard.min_confidence
