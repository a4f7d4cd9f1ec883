"""
Shared fixtures and candle builders.

Candle times are epoch milliseconds. NOW is the fixed evaluation clock used
across the suite (a Tuesday during the London/New York overlap).
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from fx_decision.analytics.candle import Candle
from fx_decision.decision.models import EntryLevels, MarketScenario, PrimarySignal, Quote

NOW = datetime(2024, 3, 5, 14, 0, tzinfo=timezone.utc)
NOW_MS = int(NOW.timestamp() * 1000)

TIMEFRAME_MINUTES = {'M1': 1, 'M5': 5, 'M15': 15, 'M30': 30, 'H1': 60, 'H4': 240, 'D1': 1440}


# ============================================================================
# Candle builders
# ============================================================================

def trending_candles(
    count: int = 60,
    start: float = 1.1000,
    step: float = 0.0001,
    timeframe: str = 'M15',
    end: datetime = NOW,
    volume: Optional[float] = 1000.0,
    volume_step: float = 0.0,
) -> List[Candle]:
    """Closes move by `step` every bar; each bar opens at the previous close."""
    minutes = TIMEFRAME_MINUTES[timeframe]
    first = end - timedelta(minutes=minutes * count)
    candles = []
    price = start
    for i in range(count):
        open_ = price
        close = price + step
        candles.append(Candle(
            time=int((first + timedelta(minutes=minutes * (i + 1))).timestamp() * 1000),
            open=open_,
            high=max(open_, close) + abs(step) / 2,
            low=min(open_, close) - abs(step) / 2,
            close=close,
            volume=None if volume is None else volume + volume_step * i,
        ))
        price = close
    return candles


def flat_candles(count: int = 20, price: float = 1.1000, timeframe: str = 'M15', end: datetime = NOW) -> List[Candle]:
    """Zero-range bars (open == high == low == close)."""
    minutes = TIMEFRAME_MINUTES[timeframe]
    first = end - timedelta(minutes=minutes * count)
    return [
        Candle(
            time=int((first + timedelta(minutes=minutes * (i + 1))).timestamp() * 1000),
            open=price, high=price, low=price, close=price, volume=1000.0,
        )
        for i in range(count)
    ]


def candle(open_: float, high: float, low: float, close: float, time: int = 0, volume: float = 100.0) -> Candle:
    return Candle(time=time, open=open_, high=high, low=low, close=close, volume=volume)


def make_signal(
    pair: str = 'EURUSD',
    direction: str = 'BUY',
    strength: Optional[float] = 80.0,
    confidence: Optional[float] = 85.0,
    final_score: Optional[float] = 75.0,
    win_rate: Optional[float] = 75.0,
    entry: float = 1.1000,
    stop_loss: Optional[float] = 1.0970,
    take_profit: Optional[float] = 1.1090,
    risk_reward: Optional[float] = 3.0,
    atr: Optional[float] = 0.0012,
) -> PrimarySignal:
    return PrimarySignal.from_dict({
        'pair': pair,
        'direction': direction,
        'strength': strength,
        'confidence': confidence,
        'finalScore': final_score,
        'estimatedWinRate': win_rate,
        'entry': {
            'price': entry,
            'stopLoss': stop_loss,
            'takeProfit': take_profit,
            'riskReward': risk_reward,
            'atr': atr,
        },
    })


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def now():
    return NOW


@pytest.fixture
def uptrend_m15():
    return trending_candles(60, timeframe='M15')


@pytest.fixture
def candles_by_tf():
    """Rising series on every default timeframe."""
    return {
        'M15': trending_candles(120, timeframe='M15', volume_step=5.0),
        'H1': trending_candles(120, step=0.0003, timeframe='H1', volume_step=5.0),
        'H4': trending_candles(120, step=0.0006, timeframe='H4'),
        'D1': trending_candles(120, step=0.0015, timeframe='D1'),
    }


@pytest.fixture
def buy_signal():
    return make_signal()


@pytest.fixture
def fresh_quote():
    return Quote.from_dict({
        'bid': 1.10999,
        'ask': 1.11007,
        'digits': 5,
        'point': 0.00001,
        'ageMs': 500,
        'source': 'test',
    })


@pytest.fixture
def scenario(buy_signal, fresh_quote):
    return MarketScenario(pair='EURUSD', primary=buy_signal, quote=fresh_quote)


@pytest.fixture
def entry_levels():
    return EntryLevels(price=1.1000, stop_loss=1.0950, take_profit=1.1100, risk_reward=2.0)


@pytest.fixture
def evaluation_inputs(scenario, candles_by_tf):
    """(scenario, analysis, summaries, verdict) for the rising-market scenario at NOW."""
    from fx_decision.analytics.candle_summary import summarize_candles
    from fx_decision.analytics.technical_analyzer import TechnicalAnalyzer
    from fx_decision.decision.validator import SignalValidator

    analysis = TechnicalAnalyzer().analyze('EURUSD', candles_by_tf)
    summaries = {tf: summarize_candles(c, tf) for tf, c in candles_by_tf.items()}
    verdict = SignalValidator().validate(scenario, analysis, summaries, NOW)
    return scenario, analysis, summaries, verdict


@pytest.fixture
def built_layers(evaluation_inputs):
    from fx_decision.decision.layer_builder import LayerBuilder

    scenario, analysis, summaries, verdict = evaluation_inputs
    return LayerBuilder().build(scenario, verdict, analysis, summaries, now=NOW)
