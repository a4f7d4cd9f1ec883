"""
Unit tests for weighted confluence and the kill-switch.
"""

import pytest

from fx_decision.decision.confluence import (
    Gate,
    GateStatus,
    evaluate_kill_switch,
    score_confluence,
)


def gate(gate_id, status, weight=1.0, reason=None):
    return Gate(id=gate_id, label=gate_id.replace('_', ' '), weight=weight, status=GateStatus(status), reason=reason)


# ============================================================================
# Scoring
# ============================================================================

def test_score_is_passed_share_of_eligible_weight():
    gates = [
        gate('min_confidence', 'PASS', 3),
        gate('min_strength', 'PASS', 2),
        gate('risk_reward', 'FAIL', 1),
        gate('htf_h4', 'SKIP', 5),
    ]
    result = score_confluence(gates, min_score=60, strict=False)

    assert result.score == pytest.approx(83.3)
    assert result.passed
    assert result.hard_fails == []


def test_advisory_failures_ignored_unless_strict():
    gates = [
        gate('min_confidence', 'PASS', 2),
        gate('smart_news_guard', 'FAIL', 2, reason='event in 10m'),
    ]

    relaxed = score_confluence(gates, min_score=60, strict=False)
    strict = score_confluence(gates, min_score=60, strict=True)

    assert relaxed.score == pytest.approx(100.0)
    assert strict.score == pytest.approx(50.0)
    assert not strict.passed
    assert strict.hard_fails == ['smart_news_guard']


def test_base_hard_fails_apply_in_both_modes():
    result = score_confluence([gate('min_strength', 'FAIL'), gate('x', 'PASS', 10)], 50, strict=False)
    assert result.hard_fails == ['min_strength']


def test_no_eligible_gates_scores_zero():
    result = score_confluence([gate('a', 'SKIP')], 10, strict=False)
    assert result.score == 0.0
    assert not result.passed


def test_top_weighted_fails_sorted_and_limited():
    gates = [gate(f"g{i}", 'FAIL', weight=i) for i in range(1, 9)]
    result = score_confluence(gates, 50, strict=True)

    top = result.top_weighted_fails()
    assert [g.id for g in top] == ['g8', 'g7', 'g6', 'g5', 'g4', 'g3']
    assert result.status_of('g1') is GateStatus.FAIL
    assert result.status_of('missing') is None


# ============================================================================
# Kill-switch
# ============================================================================

def test_kill_switch_disabled_when_not_strict():
    result = score_confluence([gate('smart_news_guard', 'FAIL')], 50, strict=False)
    kill = evaluate_kill_switch(result)
    assert not kill.enabled
    assert not kill.blocked


def test_kill_switch_blocks_on_safety_gate():
    result = score_confluence(
        [gate('smart_quote_integrity', 'FAIL', reason='stale quote'), gate('smart_volume_confirm', 'FAIL')],
        50,
        strict=True,
    )
    kill = evaluate_kill_switch(result)

    assert kill.blocked
    assert kill.ids == ['smart_quote_integrity']
    assert kill.reasons == ['smart quote integrity: stale quote']
    assert kill.to_dict()['blocked'] is True
