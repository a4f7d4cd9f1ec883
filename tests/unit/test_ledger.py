"""
Unit tests for the ActiveTradeLedger.
"""

import threading

from fx_decision.decision.models import Direction
from fx_decision.risk import ActiveTrade, ActiveTradeLedger


def test_open_and_close():
    ledger = ActiveTradeLedger()
    trade = ledger.open_trade('t1', 'eurusd', 'long', 10_000)

    assert trade.pair == 'EURUSD'
    assert trade.direction is Direction.BUY
    assert 't1' in ledger
    assert len(ledger) == 1

    assert ledger.close_trade('t1') == trade
    assert ledger.close_trade('t1') is None
    assert len(ledger) == 0


def test_reopen_replaces_entry():
    ledger = ActiveTradeLedger([ActiveTrade('t1', 'EURUSD', Direction.BUY, 1_000)])
    ledger.open_trade('t1', 'EURUSD', 'SELL', 2_000)

    assert len(ledger) == 1
    assert ledger.get('t1').direction is Direction.SELL


def test_snapshot_is_a_copy():
    ledger = ActiveTradeLedger()
    ledger.open_trade('t1', 'EURUSD', 'BUY', 1_000)
    snapshot = ledger.snapshot()
    ledger.clear()

    assert [t.id for t in snapshot] == ['t1']
    assert list(ledger) == []


def test_to_dict():
    data = ActiveTrade('t1', 'GBPUSD', Direction.SELL, 500.0).to_dict()
    assert data == {
        'id': 't1', 'pair': 'GBPUSD', 'direction': 'SELL', 'position_size': 500.0, 'opened_at': None,
    }


def test_concurrent_open_and_close():
    ledger = ActiveTradeLedger()

    def worker(n: int):
        for i in range(200):
            ledger.open_trade(f"{n}:{i}", 'EURUSD', 'BUY', 1_000)
        for i in range(0, 200, 2):
            ledger.close_trade(f"{n}:{i}")

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(ledger) == 8 * 100
