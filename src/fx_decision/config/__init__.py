"""
Configuration package.

Usage:
    from fx_decision.config import get_app_config

    config = get_app_config()
    print(config.risk.max_daily_risk)
"""

from .settings import (
    AppConfig,
    SystemConfig,
    AnalyzerSettings,
    ContributorWeights,
    DecisionProfileSettings,
    ValidatorSettings,
    LayerSettings,
    ReadinessSettings,
    CorrelationPenalty,
    CorrelationGuardSettings,
    VaRGuardSettings,
    RiskSettings,
    UltraFilterSettings,
    EnhancerSettings,
    DecisionMode,
    LogLevel,
    Environment,
    FallbackModel,
    coerce_settings,
)
from .loader import (
    ConfigLoader,
    load_config,
    get_config_loader,
    get_app_config,
    reload_config,
)

__all__ = [
    'AppConfig',
    'SystemConfig',
    'AnalyzerSettings',
    'ContributorWeights',
    'DecisionProfileSettings',
    'ValidatorSettings',
    'LayerSettings',
    'ReadinessSettings',
    'CorrelationPenalty',
    'CorrelationGuardSettings',
    'VaRGuardSettings',
    'RiskSettings',
    'UltraFilterSettings',
    'EnhancerSettings',
    'DecisionMode',
    'LogLevel',
    'Environment',
    'FallbackModel',
    'coerce_settings',
    'ConfigLoader',
    'load_config',
    'get_config_loader',
    'get_app_config',
    'reload_config',
]
