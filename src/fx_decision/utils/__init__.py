"""Shared utilities: logging setup, numeric helpers and time helpers."""

from .logger import (
    JSONFormatter,
    PerformanceLogger,
    DecisionLogger,
    setup_logging,
    get_decision_logger,
    get_performance_logger,
)
from .math_utils import clamp, clamp01, safe_divide, to_finite, pct, smooth01
from .time_utils import TradingSession, session_for, to_epoch_ms, now_utc, ensure_utc

__all__ = [
    'JSONFormatter',
    'PerformanceLogger',
    'DecisionLogger',
    'setup_logging',
    'get_decision_logger',
    'get_performance_logger',
    'clamp',
    'clamp01',
    'safe_divide',
    'to_finite',
    'pct',
    'smooth01',
    'TradingSession',
    'session_for',
    'to_epoch_ms',
    'now_utc',
    'ensure_utc',
]
