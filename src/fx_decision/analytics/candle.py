"""
Candle value type and timeframe validation.

Candles are immutable once constructed. Series are ordered oldest-first;
`normalize_series` sorts and drops malformed rows so every downstream
computation can assume clean, finite OHLC values.
"""

from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Sequence

import numpy as np

from ..errors import UnsupportedTimeframeError
from ..utils.math_utils import to_finite
from ..utils.time_utils import TIMEFRAME_MS, to_epoch_ms

SUPPORTED_TIMEFRAMES = tuple(TIMEFRAME_MS.keys())


def validate_timeframe(timeframe: str) -> str:
    """
    Normalize and validate a timeframe name.

    Raises:
        UnsupportedTimeframeError: if the name is not one of SUPPORTED_TIMEFRAMES
    """
    name = str(timeframe or '').strip().upper()
    if name not in TIMEFRAME_MS:
        raise UnsupportedTimeframeError(timeframe)
    return name


@dataclass(frozen=True)
class Candle:
    """One OHLCV bar. `time` is epoch milliseconds."""
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: Optional[float] = None

    @property
    def body(self) -> float:
        return abs(self.close - self.open)

    @property
    def range(self) -> float:
        return self.high - self.low

    @property
    def upper_shadow(self) -> float:
        return self.high - max(self.open, self.close)

    @property
    def lower_shadow(self) -> float:
        return min(self.open, self.close) - self.low

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Optional['Candle']:
        """Build a candle from a dict; returns None when a price field is unusable."""
        time_ms = to_epoch_ms(data.get('time', data.get('timestamp', data.get('t'))))
        open_ = to_finite(data.get('open', data.get('o')))
        high = to_finite(data.get('high', data.get('h')))
        low = to_finite(data.get('low', data.get('l')))
        close = to_finite(data.get('close', data.get('c')))
        if time_ms is None or None in (open_, high, low, close):
            return None
        return cls(
            time=time_ms,
            open=open_,
            high=high,
            low=low,
            close=close,
            volume=to_finite(data.get('volume', data.get('v'))),
        )

    def to_dict(self) -> dict:
        return {
            'time': self.time,
            'open': self.open,
            'high': self.high,
            'low': self.low,
            'close': self.close,
            'volume': self.volume,
        }


def normalize_series(raw: Optional[Iterable[Any]]) -> List[Candle]:
    """Coerce dicts/candles into a time-sorted list of Candle values."""
    candles: List[Candle] = []
    for item in raw or []:
        if isinstance(item, Candle):
            candles.append(item)
        elif isinstance(item, Mapping):
            candle = Candle.from_mapping(item)
            if candle is not None:
                candles.append(candle)
    candles.sort(key=lambda c: c.time)
    return candles


def closes_of(candles: Sequence[Candle]) -> np.ndarray:
    return np.fromiter((c.close for c in candles), dtype=float, count=len(candles))


def highs_of(candles: Sequence[Candle]) -> np.ndarray:
    return np.fromiter((c.high for c in candles), dtype=float, count=len(candles))


def lows_of(candles: Sequence[Candle]) -> np.ndarray:
    return np.fromiter((c.low for c in candles), dtype=float, count=len(candles))
