"""
Unit tests for candle summaries.
"""

import pytest

from fx_decision.analytics.candle_summary import aggregate_summaries, summarize_candles
from tests.conftest import flat_candles, trending_candles


def test_fewer_than_three_candles_returns_none():
    assert summarize_candles(trending_candles(2)) is None
    assert summarize_candles(None) is None


def test_steady_uptrend_summary():
    summary = summarize_candles(trending_candles(60, step=0.0003), 'M15')

    assert summary.timeframe == 'M15'
    assert summary.direction == 'BUY'
    assert summary.trend_direction == 'BUY'
    assert summary.regime.state == 'trend'
    assert summary.regime.r2 == 100
    assert 0 <= summary.confidence <= 100
    assert isinstance(summary.confidence, int)
    assert summary.score_delta > 0


def test_flat_series_is_range():
    summary = summarize_candles(flat_candles(30), 'H1')

    assert summary.trend_direction == 'NEUTRAL'
    assert summary.regime.state == 'range'
    assert summary.trend_pct == pytest.approx(0.0)
    assert summary.volatility.stdev_returns == pytest.approx(0.0)


def test_summary_accepts_unsorted_dicts():
    candles = trending_candles(30, step=0.0003)
    summary = summarize_candles([c.to_dict() for c in reversed(candles)])
    assert summary.newest_time == candles[-1].time
    assert summary.sample_count == 30


def test_aggregate_votes_and_weights():
    up = summarize_candles(trending_candles(60, step=0.0003), 'D1')
    flat = summarize_candles(flat_candles(30), 'M15')

    aggregate = aggregate_summaries({'D1': up, 'H1': up, 'M15': flat, 'M1': None})

    assert aggregate.direction == 'BUY'
    assert aggregate.direction_summary['BUY'] == 2
    assert aggregate.score_delta > 0


def test_aggregate_of_nothing_is_none():
    assert aggregate_summaries({'H1': None}) is None
