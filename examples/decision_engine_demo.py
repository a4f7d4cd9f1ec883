"""
Decision Engine Demo

Demonstrates how to:
1. Configure logging and build the default engine
2. Evaluate a signal against synthetic multi-timeframe candles
3. Read the 18 layers, the readiness gate and the risk assessment
4. Run the ultra filter and the enhancer on the same signal

Run after `pip install -e .`:
    python examples/decision_engine_demo.py
"""

import asyncio
from datetime import datetime, timedelta, timezone

from fx_decision import create_default_decision_engine
from fx_decision.analytics import Candle
from fx_decision.config import AppConfig
from fx_decision.decision import MarketScenario
from fx_decision.decision.engine import EvaluationResult
from fx_decision.quality import FilterMarketView, SignalEnhancer, UltraSignalFilter
from fx_decision.utils import setup_logging

NOW = datetime(2024, 3, 5, 14, 0, tzinfo=timezone.utc)
MINUTES = {'M15': 15, 'H1': 60, 'H4': 240, 'D1': 1440}


def synthetic_candles(timeframe: str, count: int, step: float, start: float = 1.0850):
    """Steady drift with a small alternating pullback every third bar."""
    minutes = MINUTES[timeframe]
    first = NOW - timedelta(minutes=minutes * count)
    price = start
    candles = []
    for i in range(count):
        move = -step / 2 if i % 3 == 2 else step
        close = price + move
        candles.append(Candle(
            time=int((first + timedelta(minutes=minutes * (i + 1))).timestamp() * 1000),
            open=price,
            high=max(price, close) + step / 3,
            low=min(price, close) - step / 3,
            close=close,
            volume=900 + 10 * i,
        ))
        price = close
    return candles


def print_result(result: EvaluationResult):
    print("\n" + "=" * 80)
    print(f"EVALUATION: {result.pair} @ {result.evaluated_at.isoformat()}")
    print("=" * 80)

    for layer in result.layers:
        confidence = '-' if layer.confidence is None else f"{layer.confidence}%"
        print(f"  {layer.key:>3} {layer.arrow} {layer.name_en:<32} {confidence:>5}  {layer.summary_en or ''}")

    decision = result.decision
    print(f"\n  Decision:  {decision.state.value} {decision.direction.value} (score={decision.score})")
    print(f"  Reason:    {decision.reason}")
    print(f"  Readiness: {result.readiness}")
    if decision.what_would_change:
        print("  What would change the decision:")
        for item in decision.what_would_change:
            print(f"    • {item}")

    if result.risk:
        risk = result.risk
        print(f"\n  Risk: size={risk.position_size} fraction={risk.risk_fraction} can_trade={risk.can_trade}")
        if risk.blocked_by:
            print(f"        blocked by {', '.join(risk.blocked_by)}")


async def demo_evaluation() -> EvaluationResult:
    """Demo 1: one full evaluation."""
    engine = create_default_decision_engine(AppConfig(readiness={'allow_strong_override': True}))

    async def on_decision(result: EvaluationResult):
        print(f"\n🎯 Actionable decision received for {result.pair}")

    engine.on_decision(on_decision)

    scenario = MarketScenario.from_dict({
        'pair': 'EURUSD',
        'primary': {
            'direction': 'BUY',
            'strength': 82,
            'confidence': 88,
            'finalScore': 78,
            'estimatedWinRate': 72,
            'entry': {'price': 1.0990, 'stopLoss': 1.0960, 'takeProfit': 1.1080, 'atr': 0.0011},
        },
        'quote': {'bid': 1.09898, 'ask': 1.09905, 'ageMs': 400},
    })
    candles = {
        'M15': synthetic_candles('M15', 160, 0.00012),
        'H1': synthetic_candles('H1', 160, 0.0003),
        'H4': synthetic_candles('H4', 120, 0.0007),
        'D1': synthetic_candles('D1', 120, 0.0016, start=0.95),
    }

    result = await engine.evaluate(scenario, candles, now=NOW)
    print_result(result)
    print(f"\n  Engine stats: {engine.get_stats()['evaluations']} evaluation(s)")
    return result


def demo_quality(result: EvaluationResult):
    """Demo 2: the independent quality gates."""
    print("\n" + "=" * 80)
    print("QUALITY GATES")
    print("=" * 80)

    signal = MarketScenario.from_dict({
        'pair': 'EURUSD',
        'primary': {
            'direction': 'BUY', 'strength': 82, 'confidence': 88, 'finalScore': 78,
            'entry': {'price': 1.0990, 'stopLoss': 1.0960, 'takeProfit': 1.1080, 'riskReward': 3.0},
        },
    }).primary

    ultra = UltraSignalFilter()
    for outcome in ('win', 'win', 'win', 'loss'):
        ultra.record_signal_outcome(signal, outcome, now=NOW)
    verdict = ultra.filter_signal(signal, FilterMarketView.from_analysis(result.analysis), now=NOW)
    print(f"\n  Ultra filter: {verdict}")
    for stage in verdict.stages:
        print(f"    {'✅' if stage.passed else '❌'} {stage.name}: {stage.details}")

    enhanced = SignalEnhancer().enhance_signal(signal, result.analysis, spread_pips=0.7, now=NOW)
    print(f"\n  Enhancer: {enhanced}")
    if enhanced.optimized_levels:
        for level in enhanced.optimized_levels.tp_levels:
            print(f"    TP {level.level:.5f} close {level.close_percent}% (R:R {level.risk_reward})")


async def main():
    setup_logging('WARNING', json_format=False)
    result = await demo_evaluation()
    if result is not None:
        demo_quality(result)


if __name__ == '__main__':
    asyncio.run(main())
