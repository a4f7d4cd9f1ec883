"""
Risk management package.

Components:
- RiskEngine: Kelly sizing, volatility/correlation guardrails, daily budget
- ActiveTradeLedger: Concurrency-safe store of open trades
"""

from .engine import (
    ExposureReport,
    GuardResult,
    RiskAssessment,
    RiskEngine,
    RiskGuardrails,
    StressTest,
    VaRSnapshot,
)
from .ledger import ActiveTrade, ActiveTradeLedger

__all__ = [
    # Engine
    'RiskEngine',
    'RiskAssessment',
    'RiskGuardrails',
    'GuardResult',
    'ExposureReport',
    'StressTest',
    'VaRSnapshot',

    # Ledger
    'ActiveTrade',
    'ActiveTradeLedger',
]
