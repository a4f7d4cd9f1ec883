"""
Active trade ledger.

The one piece of shared mutable state in the engine. Trades are opened and
closed by the execution lifecycle; risk computations only ever read snapshot
copies, so a sizing pass never sees a half-applied mutation.
"""

import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Union

from ..decision.models import Direction
from ..utils.time_utils import ensure_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActiveTrade:
    """An open position as seen by the risk engine."""
    id: str
    pair: str
    direction: Direction
    position_size: float
    opened_at: Optional[datetime] = field(default=None, compare=False)

    def to_dict(self) -> dict:
        data = asdict(self)
        data['direction'] = self.direction.value
        data['opened_at'] = self.opened_at.isoformat() if self.opened_at else None
        return data


class ActiveTradeLedger:
    """
    Concurrency-safe store of open trades.

    Example:
        ledger = ActiveTradeLedger()
        ledger.open_trade("t1", "EURUSD", "BUY", 12_000)
        for trade in ledger.snapshot():
            ...
        ledger.close_trade("t1")
    """

    def __init__(self, trades: Optional[List[ActiveTrade]] = None):
        self._lock = threading.RLock()
        self._trades: Dict[str, ActiveTrade] = {}
        for trade in trades or []:
            self._trades[trade.id] = trade

    def open_trade(
        self,
        trade_id: Union[str, ActiveTrade],
        pair: Optional[str] = None,
        direction: Union[Direction, str, None] = None,
        position_size: float = 0.0,
        opened_at: Optional[datetime] = None,
    ) -> ActiveTrade:
        """Register an open trade; re-opening an id replaces the previous entry."""
        if isinstance(trade_id, ActiveTrade):
            trade = trade_id
        else:
            trade = ActiveTrade(
                id=str(trade_id),
                pair=str(pair or '').upper(),
                direction=Direction.normalize(direction),
                position_size=float(position_size),
                opened_at=ensure_utc(opened_at),
            )

        with self._lock:
            replaced = trade.id in self._trades
            self._trades[trade.id] = trade

        if replaced:
            logger.warning(f"⚠️  Trade {trade.id} re-opened; previous entry replaced")
        logger.info(f"✅ Trade opened: {trade.id} {trade.direction.value} {trade.pair} size={trade.position_size}")
        return trade

    def close_trade(self, trade_id: str) -> Optional[ActiveTrade]:
        with self._lock:
            trade = self._trades.pop(str(trade_id), None)
        if trade is None:
            logger.warning(f"⚠️  close_trade: unknown trade id {trade_id}")
        else:
            logger.info(f"Trade closed: {trade.id} {trade.pair}")
        return trade

    def get(self, trade_id: str) -> Optional[ActiveTrade]:
        with self._lock:
            return self._trades.get(str(trade_id))

    def snapshot(self) -> List[ActiveTrade]:
        """Point-in-time copy of the open trades."""
        with self._lock:
            return list(self._trades.values())

    def clear(self):
        with self._lock:
            self._trades.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._trades)

    def __iter__(self) -> Iterator[ActiveTrade]:
        return iter(self.snapshot())

    def __contains__(self, trade_id: object) -> bool:
        with self._lock:
            return trade_id in self._trades
