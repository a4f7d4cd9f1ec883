"""
Analytics - candle-driven market analysis.

Components:
- Candle: immutable OHLCV bar and series normalization
- indicators: SMA/EMA, RSI, MACD, Bollinger, Stochastic, ATR, ADX, Ichimoku, Fibonacci
- patterns: pure candlestick pattern detectors
- market_state: regime, volatility clustering, divergences, volume pressure
- TechnicalAnalyzer: per-timeframe analysis and multi-timeframe fusion
- candle_summary: structure and smart-money heuristics per timeframe
- TTLCache: thread-safe analysis cache
"""

from .candle import Candle, SUPPORTED_TIMEFRAMES, normalize_series, validate_timeframe
from .cache import TTLCache
from .patterns import PatternMatch, detect_patterns
from .technical_analyzer import (
    CandleProvider,
    IndicatorSet,
    MultiTimeframeAnalysis,
    TechnicalAnalyzer,
    TimeframeAnalysis,
    TimeframeSignal,
)
from .candle_summary import CandleAggregate, CandleSummary, aggregate_summaries, summarize_candles
from . import indicators
from . import market_state

__all__ = [
    # Candles
    'Candle',
    'SUPPORTED_TIMEFRAMES',
    'normalize_series',
    'validate_timeframe',

    # Cache
    'TTLCache',

    # Patterns
    'PatternMatch',
    'detect_patterns',

    # Technical analyzer
    'CandleProvider',
    'IndicatorSet',
    'MultiTimeframeAnalysis',
    'TechnicalAnalyzer',
    'TimeframeAnalysis',
    'TimeframeSignal',

    # Candle summary
    'CandleAggregate',
    'CandleSummary',
    'aggregate_summaries',
    'summarize_candles',

    'indicators',
    'market_state',
]
