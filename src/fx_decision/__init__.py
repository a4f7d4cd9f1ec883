"""
fx_decision - explainable, risk-governed FX trade decisions.

Packages:
- analytics: indicators, patterns, market state, multi-timeframe analysis
- decision: validator, 18-layer builder, readiness gate, orchestrator
- risk: Kelly sizing, guardrails, active trade ledger
- quality: Ultra Filter and Signal Enhancer
- config: pydantic settings and YAML loader
"""

from .errors import (
    ConfigurationError,
    FxDecisionError,
    InsufficientDataError,
    LayerComputationError,
    MissingCollaboratorInputError,
    UnsupportedTimeframeError,
)
from .config import AppConfig, get_app_config
from .analytics import Candle, MultiTimeframeAnalysis, TechnicalAnalyzer, TimeframeAnalysis
from .decision import LayerBuilder, MarketScenario, PrimarySignal, SignalValidator
from .decision.engine import Decision, DecisionEngine, EvaluationResult, create_default_decision_engine
from .risk import ActiveTradeLedger, RiskAssessment, RiskEngine
from .quality import SignalEnhancer, UltraSignalFilter

__version__ = "0.1.0"

__all__ = [
    # Orchestration
    'DecisionEngine',
    'Decision',
    'EvaluationResult',
    'create_default_decision_engine',

    # Components
    'TechnicalAnalyzer',
    'SignalValidator',
    'LayerBuilder',
    'RiskEngine',
    'ActiveTradeLedger',
    'UltraSignalFilter',
    'SignalEnhancer',

    # Data
    'Candle',
    'TimeframeAnalysis',
    'MultiTimeframeAnalysis',
    'MarketScenario',
    'PrimarySignal',
    'RiskAssessment',

    # Config
    'AppConfig',
    'get_app_config',

    # Errors
    'FxDecisionError',
    'InsufficientDataError',
    'MissingCollaboratorInputError',
    'ConfigurationError',
    'UnsupportedTimeframeError',
    'LayerComputationError',
]
