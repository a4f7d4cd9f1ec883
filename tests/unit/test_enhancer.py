"""
Unit tests for the SignalEnhancer.
"""

import threading
from datetime import timedelta

import pytest

from fx_decision.quality import SignalEnhancer
from tests.conftest import NOW, make_signal


@pytest.fixture
def enhancer():
    return SignalEnhancer()


# ============================================================================
# Levels and ratings
# ============================================================================

def test_take_profit_ladder_for_buy(enhancer):
    levels = enhancer.optimize_levels(make_signal(entry=1.1000, stop_loss=1.0970), atr=0.0012)

    assert levels.stop_loss == pytest.approx(1.0970)
    assert levels.take_profit_1 == pytest.approx(1.1045)
    assert levels.take_profit_2 == pytest.approx(1.1075)
    assert levels.take_profit_3 == pytest.approx(1.1120)
    assert [lvl.close_percent for lvl in levels.tp_levels] == [50, 30, 20]
    assert [lvl.risk_reward for lvl in levels.tp_levels] == [1.5, 2.5, 4.0]


def test_sell_without_stop_uses_atr(enhancer):
    levels = enhancer.optimize_levels(make_signal(direction='SELL', stop_loss=None), atr=0.0010)

    assert levels.stop_loss == pytest.approx(1.1015)
    assert levels.take_profit_1 == pytest.approx(1.1000 - 1.5 * 0.0015)


@pytest.mark.parametrize("score,probability,expected", [
    (95, 0.95, 'ULTRA'),
    (85, 0.75, 'GOOD'),
    (65, 0.65, 'ACCEPTABLE'),
    (50, 0.50, 'FILTERED'),
])
def test_rating(score, probability, expected):
    assert SignalEnhancer.rating(score, probability) == expected


# ============================================================================
# Pattern similarity
# ============================================================================

def test_pattern_similarity_defaults_without_history(enhancer):
    similarity = enhancer.pattern_similarity(make_signal(), NOW)
    assert similarity.score == pytest.approx(0.70)
    assert similarity.count == 0


def test_recorded_wins_raise_similarity(enhancer):
    signal = make_signal()
    for _ in range(3):
        enhancer.record_pattern(signal, 'win', now=NOW)
    enhancer.record_pattern(make_signal(direction='SELL'), 'loss', now=NOW)

    similarity = enhancer.pattern_similarity(signal, NOW)

    assert similarity.count == 3
    assert similarity.win_rate == pytest.approx(1.0)
    assert similarity.avg_similarity == pytest.approx(1.0)
    assert enhancer.get_stats()['patterns_stored'] == 4


def test_distant_hour_patterns_are_not_similar(enhancer):
    signal = make_signal()
    enhancer.record_pattern(signal, 'WIN', now=NOW - timedelta(hours=5))
    assert enhancer.pattern_similarity(signal, NOW).count == 0


def test_similarity_zero_on_direction_mismatch(enhancer):
    enhancer.record_pattern(make_signal(direction='SELL'), 'WIN', now=NOW)
    pattern = list(enhancer._patterns)[0]
    assert SignalEnhancer.similarity(make_signal(), pattern, NOW) == 0.0


# ============================================================================
# enhance_signal
# ============================================================================

def test_enhance_with_context(enhancer, evaluation_inputs, candles_by_tf):
    analysis = evaluation_inputs[1]
    result = enhancer.enhance_signal(make_signal(), analysis, candles_by_tf, spread_pips=0.8, now=NOW)

    assert result.enhanced
    assert result.error is None
    assert 0 <= result.enhanced_score <= 100
    assert 0.5 <= result.win_probability <= 0.99
    assert result.original_score == 75.0
    for value in (
        result.metrics.trend_strength,
        result.metrics.momentum_quality,
        result.metrics.volume_score,
        result.metrics.microstructure_score,
    ):
        assert 0.0 <= value <= 1.0
    assert [lvl.risk_reward for lvl in result.optimized_levels.tp_levels] == [1.5, 2.5, 4.0]
    assert result.rating is not None


def test_enhance_without_context_uses_neutral_scores(enhancer):
    result = enhancer.enhance_signal(make_signal(), now=NOW)

    assert result.enhanced
    assert result.metrics.trend_strength == pytest.approx(0.5)
    assert result.metrics.volume_score == pytest.approx(0.6)


def test_missing_entry_price_reports_error(enhancer):
    result = enhancer.enhance_signal(make_signal(entry=None), now=NOW)

    assert not result.enhanced
    assert 'entry price' in result.error
    assert enhancer.get_stats()['failed'] == 1


def test_win_probability_is_clamped(enhancer):
    result = enhancer.enhance_signal(make_signal(final_score=100), now=NOW)
    low = SignalEnhancer.win_probability(0, result.metrics)
    high = SignalEnhancer.win_probability(100, result.metrics)
    assert low == pytest.approx(0.5)
    assert high <= 0.99


def test_concurrent_enhancement_counts_every_outcome(enhancer):
    def worker():
        for i in range(40):
            entry = None if i % 4 == 0 else 1.1000
            enhancer.enhance_signal(make_signal(entry=entry), now=NOW)

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    stats = enhancer.get_stats()
    assert stats['enhanced'] == 6 * 30
    assert stats['failed'] == 6 * 10
