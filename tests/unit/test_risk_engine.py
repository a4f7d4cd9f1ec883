"""
Unit tests for the RiskEngine.

Tests:
- Kelly fraction stays inside its bounds
- Sizing of a standard EURUSD signal
- Each guardrail breach forces can_trade to False
- Daily budget exhaustion and UTC-day rollover
"""

import json
import random
from datetime import timedelta

import pytest

from fx_decision.risk import ActiveTradeLedger, RiskEngine
from tests.conftest import NOW, make_signal


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def ledger():
    return ActiveTradeLedger()


@pytest.fixture
def engine(ledger):
    return RiskEngine({'account_balance': 10_000}, ledger=ledger)


@pytest.fixture
def signal():
    return make_signal(entry=1.1000, stop_loss=1.0950, take_profit=1.1100, risk_reward=2.0, win_rate=75)


# ============================================================================
# Kelly and adjustments
# ============================================================================

def test_kelly_fraction_bounds(engine):
    rng = random.Random(7)
    for _ in range(500):
        win_rate = rng.uniform(0, 100)
        reward = rng.uniform(0, 6)
        kelly = engine.compute_kelly_fraction(win_rate, reward)
        assert 0.005 <= kelly <= 0.035 * 1.1 + 1e-12


def test_losing_edge_falls_back_to_floor_blend(engine):
    kelly = engine.compute_kelly_fraction(30, 1.2)
    assert kelly == pytest.approx(0.005 * 0.6 * 0.6 + 0.02 * 0.4)


@pytest.mark.parametrize("state", ['high', 'volatile'])
def test_high_and_volatile_share_a_multiplier(engine, state):
    assert engine.volatility_adjustment(state, 60) == pytest.approx(0.72 * 1.1)


def test_unknown_volatility_state_is_normal(engine):
    assert engine.volatility_adjustment('weird', 60) == engine.volatility_adjustment('normal', 60)


def test_correlation_adjustment_penalizes_overlap(engine, ledger):
    buy = make_signal().direction
    assert engine.correlation_adjustment('EURUSD', buy, []) == 1.0

    ledger.open_trade('t1', 'GBPUSD', 'BUY', 10_000)
    assert engine.correlation_adjustment('EURUSD', buy, ledger.snapshot()) == pytest.approx(0.65)

    ledger.open_trade('t2', 'EURUSD', 'BUY', 10_000)
    assert engine.correlation_adjustment('EURUSD', buy, ledger.snapshot()) == pytest.approx(0.3)


# ============================================================================
# Sizing
# ============================================================================

def test_standard_signal_is_sized(engine, signal):
    assessment = engine.calculate_risk(signal, now=NOW)

    assert assessment.can_trade
    assert assessment.blocked_by == []
    assert assessment.risk_fraction == pytest.approx(0.035)
    assert assessment.risk_amount == pytest.approx(350.0)
    assert assessment.position_size == pytest.approx(70_000.0)
    assert assessment.price_risk_pct == pytest.approx(0.45, abs=0.01)
    assert assessment.portfolio_exposure.preview['EUR'] == pytest.approx(70_000.0)
    assert assessment.portfolio_exposure.preview['USD'] == pytest.approx(-70_000.0)
    assert [t.scenario for t in assessment.stress_tests] == ['atr_retrace', 'stop_gap_150', 'volatility_spike']
    json.dumps(assessment.to_dict(), default=str)


def test_risk_fraction_never_exceeds_max(engine):
    rng = random.Random(11)
    for _ in range(100):
        sig = make_signal(win_rate=rng.uniform(40, 99), risk_reward=rng.uniform(1, 5), stop_loss=1.0990)
        assessment = engine.calculate_risk(sig, volatility_state='calm', volatility_score=0, now=NOW)
        assert 0 < assessment.risk_fraction <= 0.035


@pytest.mark.parametrize("kwargs", [{'stop_loss': None}, {'stop_loss': 1.1000}])
def test_missing_or_zero_stop_is_not_sized(engine, kwargs):
    assert engine.calculate_risk(make_signal(**kwargs), now=NOW) is None


# ============================================================================
# Guardrails
# ============================================================================

def test_currency_exposure_breach_blocks(ledger, signal):
    engine = RiskEngine({'max_exposure_per_currency': 1_000}, ledger=ledger)
    assessment = engine.calculate_risk(signal, now=NOW)

    assert not assessment.can_trade
    assert 'currency_exposure' in assessment.blocked_by
    assert 'currency_limit' in assessment.blocked_by
    assert engine.get_stats()['blocked'] == 1


def test_per_currency_limit_breach_blocks(ledger, signal):
    engine = RiskEngine({'currency_limits': {'EUR': 5_000}}, ledger=ledger)
    assessment = engine.calculate_risk(signal, now=NOW)

    assert assessment.blocked_by == ['currency_limit']
    assert assessment.guardrails.currency_limit.breaches[0]['currency'] == 'EUR'


def test_correlation_cluster_blocks(ledger, signal):
    ledger.open_trade('t1', 'EURUSD', 'BUY', 1_000)
    engine = RiskEngine({'correlation': {'max_cluster_size': 1}}, ledger=ledger)

    assessment = engine.calculate_risk(signal, now=NOW)
    assert 'correlation_cluster' in assessment.blocked_by
    assert assessment.guardrails.correlation.details['cluster_size'] == 1


def test_correlation_guard_disabled(ledger, signal):
    ledger.open_trade('t1', 'EURUSD', 'BUY', 1_000)
    engine = RiskEngine({'correlation': {'enabled': False, 'max_cluster_size': 1}}, ledger=ledger)

    assessment = engine.calculate_risk(signal, now=NOW)
    assert 'correlation_cluster' not in assessment.blocked_by
    assert not assessment.guardrails.correlation.ready


def test_value_at_risk_breach_blocks(engine, signal):
    breached = engine.calculate_risk(signal, var_snapshot={'value_pct': -8.0, 'limit_pct': 6.0}, now=NOW)
    within = engine.calculate_risk(signal, var_snapshot={'value_pct': 2.0}, now=NOW)

    assert breached.blocked_by == ['value_at_risk']
    assert within.can_trade


# ============================================================================
# Daily budget
# ============================================================================

def test_exhausted_daily_budget_blocks(engine, signal):
    engine.record_daily_risk(0.06, now=NOW)
    assessment = engine.calculate_risk(signal, now=NOW)

    assert not assessment.budget_ok
    assert assessment.blocked_by == ['daily_budget']
    assert assessment.position_size == 0


def test_partial_budget_caps_fraction(engine, signal):
    engine.record_daily_risk(0.05, now=NOW)
    assessment = engine.calculate_risk(signal, now=NOW)

    assert assessment.risk_fraction == pytest.approx(0.01)
    assert assessment.can_trade


def test_budget_rolls_over_at_utc_midnight(engine):
    engine.record_daily_risk(0.04, now=NOW)
    assert engine.daily_risk_used(NOW) == pytest.approx(0.04)
    assert engine.daily_risk_used(NOW + timedelta(days=1)) == 0.0


def test_non_positive_risk_is_not_booked(engine):
    assert engine.record_daily_risk(-1, now=NOW) == 0.0
    assert engine.record_daily_risk(float('nan'), now=NOW) == 0.0
