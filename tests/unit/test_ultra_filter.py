"""
Unit tests for the five-stage UltraSignalFilter.

Scenario: EURUSD BUY, strength 80 / confidence 85 / final score 75,
entry 1.1000, stop 1.0970 (30 pips), target 1.1090 (90 pips), R:R 3.
"""

import threading
from dataclasses import replace

import pytest

from fx_decision.analytics import TechnicalAnalyzer
from fx_decision.quality import FilterMarketView, UltraSignalFilter
from tests.conftest import NOW, make_signal


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def ultra():
    return UltraSignalFilter()


@pytest.fixture
def strong_view():
    return FilterMarketView(
        trend='bullish',
        trend_strength=75,
        volatility=0.8,
        momentum=70,
        volume_profile=70,
        liquidity=80,
        timeframe_trends=['bullish', 'bullish', 'bullish', 'bullish'],
        key_levels=[1.1005],
        short_ma_above_long=True,
        price_above_short_ma=True,
        rsi=55,
        macd_histogram=0.0002,
        fibonacci_prices=[1.10005],
    )


def record_history(ultra, wins=4, losses=1):
    signal = make_signal()
    for _ in range(wins):
        ultra.record_signal_outcome(signal, 'win', now=NOW)
    for _ in range(losses):
        ultra.record_signal_outcome(signal, 'LOSS', now=NOW)


# ============================================================================
# Stages
# ============================================================================

def test_regime_classification(strong_view):
    assert UltraSignalFilter.classify_regime(strong_view) == 'trending_strong'
    assert UltraSignalFilter.classify_regime(FilterMarketView(trend_strength=55)) == 'trending_moderate'
    assert UltraSignalFilter.classify_regime(FilterMarketView(trend='neutral', trend_strength=90)) == 'trending_moderate'
    assert UltraSignalFilter.classify_regime(FilterMarketView(trend_strength=20)) == 'ranging'


def test_all_seven_confirmations(ultra, strong_view):
    found = ultra.confirmations(make_signal(), strong_view)
    assert found == [
        'trend_alignment', 'momentum', 'volume', 'key_levels', 'ma_alignment', 'oscillators', 'fibonacci',
    ]


def test_risk_reward_stage(ultra):
    stage = ultra.check_risk_reward(make_signal())

    assert stage.passed
    assert stage.data['risk_reward'] == pytest.approx(3.0)
    assert stage.data['stop_pips'] == pytest.approx(30.0)
    assert stage.data['target_pips'] == pytest.approx(90.0)
    assert 0.01 < stage.data['kelly_fraction'] < 0.25


def test_quarter_kelly(ultra):
    full = (0.8 * 2 - 0.2) / 2
    assert ultra.kelly_fraction(0.8, 2.0) == pytest.approx(full * 0.25)
    assert ultra.kelly_fraction(0.8, 0) == 0.0


def test_conflicting_news_fails_regime(ultra, strong_view):
    strong_view.high_impact_events = 2
    strong_view.news_sentiment = -80
    stage = ultra.check_market_regime(make_signal(), strong_view)

    assert not stage.passed
    assert not stage.checks['no_conflicting_news']


def test_history_defaults_without_records(ultra):
    stage = ultra.check_historical_validation(make_signal())

    assert stage.data['historical_win_rate'] == pytest.approx(0.70)
    assert stage.data['pattern_count'] == 0
    assert not stage.checks['sufficient_history']


def test_pattern_statistics(ultra):
    record_history(ultra)
    win_rate, strength = ultra.pattern_statistics(ultra.similar_patterns(make_signal()))
    assert win_rate == pytest.approx(0.8)
    assert strength == pytest.approx(80.0)


# ============================================================================
# End to end
# ============================================================================

def test_ultra_quality_signal_passes(ultra, strong_view):
    record_history(ultra)
    result = ultra.filter_signal(make_signal(), strong_view, now=NOW)

    assert all(stage.passed for stage in result.stages)
    assert result.passed
    assert result.recommendation in ('BUY', 'STRONG_BUY')
    assert result.win_probability == pytest.approx(0.98)
    assert result.confidence == pytest.approx(100.0)
    assert result.enhanced_signal['ultra_quality'] is True
    assert result.enhanced_signal['regime'] == 'trending_strong'
    assert result.enhanced_signal['timestamp'] == NOW.isoformat()
    assert ultra.get_stats()['passed'] == 1


def test_weak_signal_rejected(ultra, strong_view):
    record_history(ultra)
    result = ultra.filter_signal(make_signal(strength=50), strong_view, now=NOW)

    assert not result.passed
    assert result.recommendation == 'REJECT'
    assert result.enhanced_signal is None
    assert not result.stage('basic_quality').passed
    assert 'basic_quality' in result.reason


def test_no_history_rejects(ultra, strong_view):
    result = ultra.filter_signal(make_signal(), strong_view, now=NOW)
    assert not result.passed
    assert not result.stage('historical_validation').passed


def test_view_from_analysis(evaluation_inputs):
    analysis = evaluation_inputs[1]
    view = FilterMarketView.from_analysis(analysis)

    assert view.trend == 'bullish'
    assert view.momentum > 50
    assert view.liquidity is None
    assert 'bullish' in view.timeframe_trends
    assert view.short_ma_above_long is True


def test_view_defaults_without_analysis():
    view = FilterMarketView.from_analysis(None)
    assert view.trend == 'neutral'
    assert view.rsi == 50.0


def surging(candles, last=20, quiet=100.0, loud=5000.0):
    cutoff = len(candles) - last
    return [replace(c, volume=loud if i >= cutoff else quiet) for i, c in enumerate(candles)]


def test_volume_surge_lifts_volume_profile(candles_by_tf):
    quiet = TechnicalAnalyzer().analyze('EURUSD', {tf: surging(c, last=0) for tf, c in candles_by_tf.items()})
    loud = TechnicalAnalyzer().analyze('EURUSD', {tf: surging(c) for tf, c in candles_by_tf.items()})

    assert FilterMarketView.from_analysis(quiet).volume_profile == pytest.approx(50.0)
    view = FilterMarketView.from_analysis(loud)
    assert view.volume_profile > 60
    assert 'volume' in UltraSignalFilter().confirmations(make_signal(), view)


def test_caller_volume_profile_wins(evaluation_inputs):
    view = FilterMarketView.from_analysis(evaluation_inputs[1], volume_profile=85)
    assert view.volume_profile == 85


def test_concurrent_filtering_counts_every_signal(ultra, strong_view):
    def worker():
        for _ in range(50):
            ultra.filter_signal(make_signal(), strong_view, now=NOW)

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert ultra.get_stats()['evaluated'] == 6 * 50
