"""
Decision input snapshots and shared enums.

Every external collaborator (quote feed, news, macro, intermarket, pair
catalog) hands the core a plain dict. These dataclasses give those dicts a
shape without trusting them: `from_dict` accepts camelCase or snake_case keys,
and any non-finite or missing number becomes None.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from ..utils.math_utils import to_finite


class Direction(str, Enum):
    """Trade direction."""
    BUY = "BUY"
    SELL = "SELL"
    NEUTRAL = "NEUTRAL"

    @classmethod
    def normalize(cls, value: Any) -> "Direction":
        text = str(value.value if isinstance(value, Enum) else value or '').strip().upper()
        if text in ('BUY', 'LONG', 'BULLISH'):
            return cls.BUY
        if text in ('SELL', 'SHORT', 'BEARISH'):
            return cls.SELL
        return cls.NEUTRAL

    @property
    def is_directional(self) -> bool:
        return self is not Direction.NEUTRAL

    @property
    def opposite(self) -> "Direction":
        if self is Direction.BUY:
            return Direction.SELL
        if self is Direction.SELL:
            return Direction.BUY
        return Direction.NEUTRAL


class Availability(str, Enum):
    """How much real data backed a layer's conclusion."""
    AVAILABLE = "available"
    PARTIAL = "partial"
    MISSING = "missing"
    BEST_EFFORT = "best_effort"


class DecisionState(str, Enum):
    """Three-state trade decision."""
    ENTER = "ENTER"
    WAIT_MONITOR = "WAIT_MONITOR"
    NO_TRADE_BLOCKED = "NO_TRADE_BLOCKED"


def _pick(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _num(data: Mapping[str, Any], *keys: str) -> Optional[float]:
    return to_finite(_pick(data, *keys))


def _text(data: Mapping[str, Any], *keys: str) -> Optional[str]:
    value = _pick(data, *keys)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


# ============================================================================
# Market data snapshots
# ============================================================================

@dataclass
class Quote:
    """Latest quote from the price feed. Every field is optional."""
    bid: Optional[float] = None
    ask: Optional[float] = None
    last: Optional[float] = None
    mid: Optional[float] = None
    spread: Optional[float] = None
    spread_pct: Optional[float] = None
    spread_points: Optional[float] = None
    digits: Optional[int] = None
    point: Optional[float] = None
    volume: Optional[float] = None
    liquidity_hint: Optional[str] = None
    mid_delta: Optional[float] = None
    mid_velocity_per_sec: Optional[float] = None
    mid_acceleration_per_sec2: Optional[float] = None
    gap_to_mid: Optional[float] = None
    gap_open: Optional[float] = None
    age_ms: Optional[float] = None
    source: Optional[str] = None
    broker: Optional[str] = None
    symbol: Optional[str] = None
    pending: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["Quote"]:
        if not isinstance(data, Mapping):
            return None
        digits = _num(data, 'digits')
        return cls(
            bid=_num(data, 'bid'),
            ask=_num(data, 'ask'),
            last=_num(data, 'last', 'price'),
            mid=_num(data, 'mid'),
            spread=_num(data, 'spread'),
            spread_pct=_num(data, 'spreadPct', 'spread_pct'),
            spread_points=_num(data, 'spreadPoints', 'spread_points'),
            digits=int(digits) if digits is not None else None,
            point=_num(data, 'point'),
            volume=_num(data, 'volume'),
            liquidity_hint=_text(data, 'liquidityHint', 'liquidity_hint'),
            mid_delta=_num(data, 'midDelta', 'mid_delta'),
            mid_velocity_per_sec=_num(data, 'midVelocityPerSec', 'mid_velocity_per_sec'),
            mid_acceleration_per_sec2=_num(data, 'midAccelerationPerSec2', 'mid_acceleration_per_sec2'),
            gap_to_mid=_num(data, 'gapToMid', 'gap_to_mid'),
            gap_open=_num(data, 'gapOpen', 'gap_open'),
            age_ms=_num(data, 'ageMs', 'age_ms'),
            source=_text(data, 'source'),
            broker=_text(data, 'broker'),
            symbol=_text(data, 'symbol'),
            pending=bool(data.get('pending', False)),
        )

    @property
    def bars_only(self) -> bool:
        """Feed that publishes bars but no live bid/ask."""
        source = (self.source or '').lower()
        return 'ea' in source and ('bars' in source or 'snapshot' in source)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class TimeframeCoverage:
    count: Optional[int] = None
    age_ms: Optional[float] = None


@dataclass
class BarsCoverage:
    """Bar count and age per timeframe as reported by the feed."""
    frames: Dict[str, TimeframeCoverage] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["BarsCoverage"]:
        if not isinstance(data, Mapping):
            return None
        frames = {}
        for tf, info in data.items():
            if not isinstance(info, Mapping):
                continue
            count = _num(info, 'count')
            frames[str(tf).upper()] = TimeframeCoverage(
                count=int(count) if count is not None else None,
                age_ms=_num(info, 'ageMs', 'age_ms'),
            )
        return cls(frames=frames)

    def get(self, timeframe: str) -> Optional[TimeframeCoverage]:
        return self.frames.get(timeframe.upper())

    def __bool__(self) -> bool:
        return bool(self.frames)

    def to_dict(self) -> dict:
        return {tf: asdict(cov) for tf, cov in self.frames.items()}


@dataclass
class MarketDataQuality:
    """Data-quality verdict from the feed monitor."""
    stale: bool = False
    circuit_breaker: bool = False
    recommendation: Optional[str] = None
    modifier: Optional[float] = None
    confidence_floor_breached: bool = False
    spread_pips: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["MarketDataQuality"]:
        if not isinstance(data, Mapping):
            return None
        return cls(
            stale=bool(data.get('stale', False)),
            circuit_breaker=bool(_pick(data, 'circuitBreaker', 'circuit_breaker', default=False)),
            recommendation=_text(data, 'recommendation'),
            modifier=_num(data, 'modifier'),
            confidence_floor_breached=bool(
                _pick(data, 'confidenceFloorBreached', 'confidence_floor_breached', default=False)
            ),
            spread_pips=_num(data, 'spreadPips', 'spread_pips'),
        )

    def to_dict(self) -> dict:
        return asdict(self)


# ============================================================================
# External factor snapshots
# ============================================================================

@dataclass
class EconomicSnapshot:
    direction: Direction = Direction.NEUTRAL
    confidence: Optional[float] = None
    relative_sentiment: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["EconomicSnapshot"]:
        if not isinstance(data, Mapping):
            return None
        return cls(
            direction=Direction.normalize(data.get('direction')),
            confidence=_num(data, 'confidence'),
            relative_sentiment=_num(data, 'relativeSentiment', 'relative_sentiment'),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class CalendarEvent:
    title: Optional[str]
    currency: Optional[str]
    impact: Optional[float]
    time_ms: Optional[int]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CalendarEvent":
        time_value = _num(data, 'timeMs', 'time_ms', 'time', 'timestamp')
        return cls(
            title=_text(data, 'event', 'title', 'name'),
            currency=(_text(data, 'currency') or '').upper() or None,
            impact=_num(data, 'impact'),
            time_ms=int(time_value) if time_value is not None else None,
        )


@dataclass
class NewsSnapshot:
    """
    Aggregated news view for the pair.

    `impact` is the analyzer's 0-100 impact; `impact_score` is the realtime
    feed's 0-5 event-risk score.
    """
    direction: Direction = Direction.NEUTRAL
    confidence: Optional[float] = None
    impact: Optional[float] = None
    impact_score: Optional[float] = None
    upcoming_events: Optional[float] = None
    sentiment: Optional[float] = None
    high_impact_soon: bool = False
    calendar_events: List[CalendarEvent] = field(default_factory=list)
    headlines_count: int = 0

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["NewsSnapshot"]:
        if not isinstance(data, Mapping):
            return None
        events = [
            CalendarEvent.from_dict(evt)
            for evt in data.get('calendarEvents', data.get('calendar_events')) or []
            if isinstance(evt, Mapping)
        ]
        headlines = data.get('headlines')
        headlines_count = _num(data, 'headlinesCount', 'headlines_count')
        if headlines_count is None and isinstance(headlines, list):
            headlines_count = len([h for h in headlines if h])
        return cls(
            direction=Direction.normalize(data.get('direction')),
            confidence=_num(data, 'confidence'),
            impact=_num(data, 'impact'),
            impact_score=_num(data, 'impactScore', 'impact_score'),
            upcoming_events=_num(data, 'upcomingEvents', 'upcoming_events'),
            sentiment=_num(data, 'sentiment'),
            high_impact_soon=bool(_pick(data, 'highImpactSoon', 'high_impact_soon', default=False)),
            calendar_events=events,
            headlines_count=int(headlines_count or 0),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class MacroRelative:
    """Base-vs-quote macro differential."""
    direction: Direction = Direction.NEUTRAL
    differential: Optional[float] = None
    confidence: Optional[float] = None
    note: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["MacroRelative"]:
        if not isinstance(data, Mapping):
            return None
        return cls(
            direction=Direction.normalize(data.get('direction')),
            differential=_num(data, 'differential'),
            confidence=_num(data, 'confidence'),
            note=_text(data, 'note'),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class CorrelationPeer:
    peer: str
    corr: float
    broken: bool = False


@dataclass
class IntermarketCorrelation:
    available: bool = False
    confidence: Optional[float] = None
    top: List[CorrelationPeer] = field(default_factory=list)
    breaks: List[str] = field(default_factory=list)
    timeframe: Optional[str] = None
    window: Optional[int] = None
    stability_score: Optional[float] = None
    breaks_core: Optional[float] = None
    conflicts_core: Optional[float] = None
    warnings: List[str] = field(default_factory=list)
    source: Optional[str] = None
    target: Optional[str] = None
    peers: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["IntermarketCorrelation"]:
        if not isinstance(data, Mapping):
            return None
        top = []
        for item in data.get('top') or []:
            if not isinstance(item, Mapping):
                continue
            peer = _text(item, 'peer', 'symbol')
            corr = _num(item, 'corr')
            if peer and corr is not None:
                top.append(CorrelationPeer(peer=peer, corr=corr, broken=item.get('break') is True))
        stability = _mapping(data.get('stability'))
        window = _num(data, 'window')
        return cls(
            available=bool(data.get('available', False)),
            confidence=_num(data, 'confidence'),
            top=top,
            breaks=[str(b) for b in data.get('breaks') or [] if b],
            timeframe=_text(data, 'timeframe'),
            window=int(window) if window is not None else None,
            stability_score=_num(stability, 'stabilityScore', 'stability_score'),
            breaks_core=_num(stability, 'breaksCore', 'breaks_core'),
            conflicts_core=_num(stability, 'conflictsCore', 'conflicts_core'),
            warnings=[str(w) for w in data.get('warnings') or [] if w],
            source=_text(data, 'source'),
            target=_text(data, 'target'),
            peers=[str(p) for p in data.get('peers') or [] if p],
        )

    def to_dict(self) -> dict:
        return asdict(self)


# ============================================================================
# Pair metadata
# ============================================================================

METALS = ('XAU', 'XAG', 'XPT', 'XPD')
CRYPTO = ('BTC', 'ETH', 'SOL', 'XRP', 'LTC', 'ADA', 'DOGE', 'BNB')


@dataclass
class PairMetadata:
    """Base/quote currencies, asset class and pip size."""
    pair: str
    base: str
    quote: str
    asset_class: str = 'forex'
    pip_size: float = 0.0001

    @classmethod
    def from_pair(cls, pair: str) -> "PairMetadata":
        symbol = ''.join(ch for ch in str(pair or '').upper() if ch.isalnum())
        base, quote = symbol[:3], symbol[3:6]
        if base in METALS:
            return cls(pair=symbol, base=base, quote=quote, asset_class='metals', pip_size=0.1)
        if base in CRYPTO or symbol[:4] in CRYPTO:
            return cls(pair=symbol, base=base, quote=quote, asset_class='crypto', pip_size=1.0)
        pip = 0.01 if 'JPY' in symbol else 0.0001
        return cls(pair=symbol, base=base, quote=quote, asset_class='forex', pip_size=pip)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]], pair: Optional[str] = None) -> "PairMetadata":
        inferred = cls.from_pair(pair or _text(_mapping(data), 'pair', 'symbol') or '')
        if not isinstance(data, Mapping):
            return inferred
        pip = _num(data, 'pipSize', 'pip_size')
        return cls(
            pair=inferred.pair,
            base=(_text(data, 'base') or inferred.base).upper(),
            quote=(_text(data, 'quote') or inferred.quote).upper(),
            asset_class=(_text(data, 'assetClass', 'asset_class') or inferred.asset_class).lower(),
            pip_size=pip if pip is not None and pip > 0 else inferred.pip_size,
        )

    def pips(self, distance: float) -> float:
        return abs(distance) / self.pip_size

    def to_dict(self) -> dict:
        return asdict(self)


# ============================================================================
# Signal
# ============================================================================

@dataclass
class EntryLevels:
    price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    risk_reward: Optional[float] = None
    atr: Optional[float] = None
    stop_loss_pips: Optional[float] = None
    take_profit_pips: Optional[float] = None
    volatility_state: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "EntryLevels":
        if not isinstance(data, Mapping):
            return cls()
        return cls(
            price=_num(data, 'price', 'entryPrice', 'entry_price'),
            stop_loss=_num(data, 'stopLoss', 'stop_loss'),
            take_profit=_num(data, 'takeProfit', 'take_profit'),
            risk_reward=_num(data, 'riskReward', 'risk_reward'),
            atr=_num(data, 'atr'),
            stop_loss_pips=_num(data, 'stopLossPips', 'stop_loss_pips'),
            take_profit_pips=_num(data, 'takeProfitPips', 'take_profit_pips'),
            volatility_state=_text(data, 'volatilityState', 'volatility_state'),
        )

    @property
    def is_complete(self) -> bool:
        return None not in (self.price, self.stop_loss, self.take_profit)

    @property
    def stop_distance(self) -> Optional[float]:
        if self.price is None or self.stop_loss is None:
            return None
        return abs(self.price - self.stop_loss)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PrimarySignal:
    """The directional call being evaluated."""
    pair: str
    direction: Direction = Direction.NEUTRAL
    strength: Optional[float] = None
    confidence: Optional[float] = None
    final_score: Optional[float] = None
    estimated_win_rate: Optional[float] = None
    entry: EntryLevels = field(default_factory=EntryLevels)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]], pair: Optional[str] = None) -> "PrimarySignal":
        data = _mapping(data)
        return cls(
            pair=str(_pick(data, 'pair', default=pair) or ''),
            direction=Direction.normalize(data.get('direction')),
            strength=_num(data, 'strength'),
            confidence=_num(data, 'confidence'),
            final_score=_num(data, 'finalScore', 'final_score'),
            estimated_win_rate=_num(data, 'estimatedWinRate', 'estimated_win_rate'),
            entry=EntryLevels.from_dict(data.get('entry')),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class MarketScenario:
    """Everything the layer builder knows about one evaluation besides candles."""
    pair: str
    primary: PrimarySignal
    quote: Optional[Quote] = None
    bars_coverage: Optional[BarsCoverage] = None
    data_quality: Optional[MarketDataQuality] = None
    economic: Optional[EconomicSnapshot] = None
    news: Optional[NewsSnapshot] = None
    macro: Optional[MacroRelative] = None
    intermarket: Optional[IntermarketCorrelation] = None
    metadata: Optional[PairMetadata] = None
    risk_can_trade: Optional[bool] = None
    active_trades_count: int = 0

    def __post_init__(self):
        if self.metadata is None:
            self.metadata = PairMetadata.from_pair(self.pair)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "MarketScenario":
        data = _mapping(data)
        pair = str(data.get('pair') or _mapping(data.get('primary')).get('pair') or '')
        market = _mapping(data.get('market'))
        factors = _mapping(data.get('factors'))
        return cls(
            pair=pair,
            primary=PrimarySignal.from_dict(data.get('primary'), pair=pair),
            quote=Quote.from_dict(market.get('quote', data.get('quote'))),
            bars_coverage=BarsCoverage.from_dict(market.get('barsCoverage', data.get('bars_coverage'))),
            data_quality=MarketDataQuality.from_dict(market.get('dataQuality', data.get('data_quality'))),
            economic=EconomicSnapshot.from_dict(factors.get('economic', data.get('economic'))),
            news=NewsSnapshot.from_dict(factors.get('news', data.get('news'))),
            macro=MacroRelative.from_dict(_mapping(data.get('fundamentals')).get('relative', data.get('macro'))),
            intermarket=IntermarketCorrelation.from_dict(
                _mapping(data.get('intermarket')).get('correlation', data.get('intermarket_correlation'))
            ),
            metadata=PairMetadata.from_dict(data.get('metadata'), pair=pair),
            risk_can_trade=data.get('riskCanTrade', data.get('risk_can_trade')),
            active_trades_count=int(to_finite(data.get('activeTradesCount', data.get('active_trades_count'))) or 0),
        )

    def to_dict(self) -> dict:
        return asdict(self)
