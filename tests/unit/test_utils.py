"""
Unit tests for time, math and logging helpers.
"""

import json
import logging
from datetime import datetime, timezone

import pytest

from fx_decision.utils import get_decision_logger, get_performance_logger, setup_logging
from fx_decision.utils.logger import JSONFormatter
from fx_decision.utils.math_utils import clamp, pct, population_std, safe_divide, to_finite
from fx_decision.utils.time_utils import TradingSession, ensure_utc, session_for, to_epoch_ms, utc_date_key


def at_hour(hour: int) -> datetime:
    return datetime(2024, 3, 5, hour, 0, tzinfo=timezone.utc)


# ============================================================================
# Time
# ============================================================================

@pytest.mark.parametrize("hour,session", [
    (0, TradingSession.ASIA),
    (7, TradingSession.ASIA_LONDON_OVERLAP),
    (8, TradingSession.LONDON),
    (12, TradingSession.LONDON_NY_OVERLAP),
    (16, TradingSession.NEW_YORK),
    (21, TradingSession.OFF_HOURS),
])
def test_session_windows_are_half_open(hour, session):
    assert session_for(at_hour(hour)) is session


def test_ensure_utc_assumes_naive_is_utc():
    naive = datetime(2024, 3, 5, 14, 0)
    assert ensure_utc(naive) == at_hour(14)
    assert ensure_utc(None).tzinfo is not None


def test_to_epoch_ms_accepts_seconds_and_millis():
    assert to_epoch_ms(1_700_000_000) == 1_700_000_000_000
    assert to_epoch_ms(1_700_000_000_000) == 1_700_000_000_000
    assert to_epoch_ms(at_hour(0)) == int(at_hour(0).timestamp() * 1000)
    assert to_epoch_ms('junk') is None


def test_utc_date_key():
    assert utc_date_key(at_hour(23)) == '2024-03-05'


# ============================================================================
# Math
# ============================================================================

def test_numeric_helpers():
    assert to_finite('1.5') == 1.5
    assert to_finite(float('inf')) is None
    assert to_finite(True) is None
    assert clamp(5, 0, 3) == 3
    assert safe_divide(1, 0, default=-1) == -1
    assert pct(101.7) == 100
    assert pct(49.5) in (49, 50)
    assert pct(None) is None


def test_population_std():
    assert population_std([]) == 0.0
    assert population_std([2, 4, 4, 4, 5, 5, 7, 9]) == pytest.approx(2.0)


# ============================================================================
# Logging
# ============================================================================

@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def test_json_formatter_includes_context():
    record = logging.LogRecord('fx', logging.INFO, __file__, 10, 'hello %s', ('world',), None)
    record.pair = 'EURUSD'
    record.layer = 'L4'

    entry = json.loads(JSONFormatter().format(record))

    assert entry['message'] == 'hello world'
    assert entry['pair'] == 'EURUSD'
    assert entry['layer'] == 'L4'
    assert entry['level'] == 'INFO'


def test_setup_logging_writes_json_file(tmp_path, restore_root_logger):
    log_file = tmp_path / "logs" / "engine.log"
    setup_logging('debug', log_file=str(log_file), json_format=True)

    logging.getLogger('fx_decision.test').info('engine started', extra={'pair': 'GBPUSD'})
    for handler in logging.getLogger().handlers:
        handler.flush()

    line = log_file.read_text().strip().splitlines()[-1]
    assert json.loads(line)['pair'] == 'GBPUSD'


def test_decision_logger_events(caplog):
    events = get_decision_logger('fx_decision.test.events')
    with caplog.at_level(logging.INFO, logger='fx_decision.test.events'):
        events.decision('EURUSD', 'ENTER', 'BUY', 72.5, ready=True)
        events.layer_degraded('L4', ValueError('bad input'))
        events.risk_alert('daily_budget', 'high', 'exhausted')

    levels = [r.levelname for r in caplog.records]
    assert levels == ['INFO', 'ERROR', 'ERROR']
    assert caplog.records[0].decision_state == 'ENTER'
    assert caplog.records[1].layer == 'L4'


def test_performance_timer_clears_active_operations():
    perf = get_performance_logger('fx_decision.test.perf')
    with perf.timer('analyze', pair='EURUSD'):
        assert perf.active_operations == 1
    assert perf.active_operations == 0
