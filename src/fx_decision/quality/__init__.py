"""
Signal quality package.

Components:
- UltraSignalFilter: five-stage quality funnel with historical validation
- SignalEnhancer: multi-timeframe re-scoring and optimized exit levels
"""

from .enhancer import EnhancedSignal, EnhancementMetrics, OptimizedLevels, SignalEnhancer
from .ultra_filter import FilterMarketView, FilterResult, StageResult, UltraSignalFilter

__all__ = [
    # Filter
    'UltraSignalFilter',
    'FilterMarketView',
    'FilterResult',
    'StageResult',

    # Enhancer
    'SignalEnhancer',
    'EnhancedSignal',
    'EnhancementMetrics',
    'OptimizedLevels',
]
