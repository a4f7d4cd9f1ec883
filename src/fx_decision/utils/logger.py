"""
Structured logging for the decision pipeline.

Provides:
- JSONFormatter that carries pair/timeframe/layer/decision context
- PerformanceLogger for timing analyzer and builder stages
- DecisionLogger for decisions, degraded layers and risk alerts
- setup_logging() to configure the root logger once per process
"""

import json
import logging
import sys
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

# Record attributes copied into JSON output when a caller passes them via `extra`.
CONTEXT_FIELDS = (
    'correlation_id',
    'pair',
    'timeframe',
    'layer',
    'decision_state',
    'execution_time',
    'alert_type',
    'severity',
)

PLAIN_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'

_STATE_ICONS = {
    'ENTER': '🎯',
    'WAIT_MONITOR': '⏳',
    'NO_TRADE_BLOCKED': '❌',
}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, UTC timestamps, context fields when present."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'location': f"{record.module}.{record.funcName}:{record.lineno}",
        }
        payload.update(
            (name, getattr(record, name)) for name in CONTEXT_FIELDS if hasattr(record, name)
        )
        if record.exc_info:
            payload['exception'] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class _CorrelationFilter(logging.Filter):
    def __init__(self, correlation_id: str):
        super().__init__()
        self.correlation_id = correlation_id

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, 'correlation_id'):
            record.correlation_id = self.correlation_id
        return True


class PerformanceLogger:
    """Times pipeline stages and logs them at DEBUG with `execution_time` in seconds."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self._running: Dict[int, str] = {}
        self._lock = threading.Lock()
        self._next_token = 0

    @contextmanager
    def timer(self, operation: str, **context) -> Iterator[None]:
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._running[token] = operation
        started = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - started
            with self._lock:
                del self._running[token]
            self.logger.debug(
                f"⏱️ {operation} took {elapsed * 1000:.1f}ms",
                extra={'execution_time': round(elapsed, 6), **context},
            )

    def log_metric(self, metric_name: str, value: float, **context):
        self.logger.info(f"📊 {metric_name}={value}", extra={'metric_name': metric_name, 'metric_value': value, **context})

    @property
    def active_operations(self) -> int:
        with self._lock:
            return len(self._running)


class DecisionLogger:
    """
    Event logger for the decision path.

    decision() logs at INFO, layer_degraded() at ERROR, and risk_alert()
    at ERROR for high/critical severity or WARNING otherwise.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)
        self.performance = PerformanceLogger(self.logger)

    def decision(self, pair: str, state: str, direction: str, score: Optional[float], **context):
        icon = _STATE_ICONS.get(state, 'ℹ️')
        self.logger.info(
            f"{icon} {pair} {state} {direction} score={score}",
            extra={'pair': pair, 'decision_state': state, **context},
        )

    def layer_degraded(self, layer: str, error: Exception, **context):
        self.logger.error(
            f"❌ {layer} degraded ({type(error).__name__}): {error}",
            extra={'layer': layer, **context},
        )

    def risk_alert(self, alert_type: str, severity: str, message: str, **context):
        extra = {'alert_type': alert_type, 'severity': severity, **context}
        if severity.lower() in ('high', 'critical'):
            self.logger.error(f"🚨 Risk [{alert_type}] {message}", extra=extra)
        else:
            self.logger.warning(f"⚠️ Risk [{alert_type}] {message}", extra=extra)


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    json_format: bool = True,
    correlation_id: Optional[str] = None,
) -> logging.Logger:
    """
    Configure the root logger, replacing any handlers already attached.

    Args:
        log_level: Level name, case-insensitive; unknown names mean INFO
        log_file: Also write to this file, creating parent directories
        json_format: JSONFormatter when True, plain text otherwise
        correlation_id: Stamped on every record that does not carry one

    Returns:
        The root logger
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, str(log_level).upper(), logging.INFO))
    for existing in list(root.handlers):
        root.removeHandler(existing)

    formatter = JSONFormatter() if json_format else logging.Formatter(PLAIN_FORMAT)
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))

    for handler in handlers:
        handler.setFormatter(formatter)
        if correlation_id:
            handler.addFilter(_CorrelationFilter(correlation_id))
        root.addHandler(handler)

    return root


def get_decision_logger(name: str) -> DecisionLogger:
    return DecisionLogger(name)


def get_performance_logger(name: str) -> PerformanceLogger:
    return PerformanceLogger(logging.getLogger(name))
