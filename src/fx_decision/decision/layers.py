"""
Layer envelope and per-layer metrics.

Each of the 18 layers shares one envelope (direction, confidence, score,
availability, evidence, warnings) and carries one typed metrics dataclass.
English and Arabic text are optional presentation fields.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Union

from ..utils.math_utils import pct, to_finite
from .models import Availability, Direction, EntryLevels

LAYER_COUNT = 18

LAYER_NAMES = {
    1: ('Raw Market Data', 'بيانات السوق الخام'),
    2: ('Digital Candlestick (Numeric) Analysis', 'تحليل الشموع الرقمي (أرقام)'),
    3: ('Market Structure', 'الهيكل السعري (Structure)'),
    4: ('Trend & Momentum', 'الاتجاه والزخم'),
    5: ('Liquidity Logic (Sweeps / Order Blocks)', 'سيولة السوق (Sweeps / Order Blocks)'),
    6: ('Volume & Order Flow (Spike/Imbalance)', 'الحجم وتدفق الأوامر (Spike/Imbalance)'),
    7: ('Volatility Regime', 'نظام التذبذب (Volatility)'),
    8: ('Time Intelligence (Sessions/Cycles)', 'ذكاء الوقت (جلسات/دورات)'),
    9: ('Market Memory & Relative Strength', 'ذاكرة السوق والقوة النسبية'),
    10: ('Silent Liquidity & Intermarket Correlation', 'السيولة الصامتة وترابط الأسواق'),
    11: ('Macroeconomics', 'الاقتصاد الكلي (Macro)'),
    12: ('News Impact', 'تأثير الأخبار'),
    13: ('Market Psychology', 'سيكولوجية السوق'),
    14: ('Risk Environment (Risk-on/off + Execution)', 'بيئة المخاطر (Risk-on/off + تنفيذ)'),
    15: ('Statistical Logic', 'المنطق الإحصائي'),
    16: ('Signal Validation (Final Guard)', 'تحقق الإشارة (الحارس الأخير)'),
    17: ('Context Awareness (Confluence)', 'وعي السياق (توافق/Confluence)'),
    18: ('Decision Engine (ENTER / WAIT / BLOCKED)', 'محرك القرار (دخول / انتظار / محجوب)'),
}

ARROWS = {Direction.BUY: '▲', Direction.SELL: '▼', Direction.NEUTRAL: '•'}


# ============================================================================
# Per-layer metrics
# ============================================================================

@dataclass
class RawDataMetrics:
    pair: Optional[str]
    bid: Optional[float]
    ask: Optional[float]
    last: Optional[float]
    mid: Optional[float]
    spread: Optional[float]
    spread_pct: Optional[float]
    spread_points: Optional[float]
    mid_velocity_per_sec: Optional[float]
    mid_acceleration_per_sec2: Optional[float]
    liquidity_hint: Optional[str]
    volume: Optional[float]
    gap_to_mid: Optional[float]
    quote_age_ms: Optional[float]
    pending: bool
    quote_source: Optional[str]
    bars_coverage: Optional[Dict[str, Any]]
    timeframe_focus: Optional[str]


@dataclass
class CandleMetrics:
    timeframe_focus: Optional[str]
    market_phase: str
    trend_pct: Optional[float]
    rsi: Optional[float]
    atr_pct: Optional[float]
    regime_state: Optional[str]
    regime_confidence: Optional[int]
    r2: Optional[int]
    patterns: List[str]


@dataclass
class HtfView:
    d1: Direction
    h4: Direction
    conflict_with_signal: bool


@dataclass
class StructureMetrics:
    timeframe_focus: Optional[str]
    market_phase: str
    htf: HtfView
    state: Optional[str]
    bias: Optional[str]
    confidence: Optional[int]


@dataclass
class MomentumMetrics:
    timeframe_focus: Optional[str]
    trend_pct: Optional[float]
    rsi: Optional[float]
    regime_state: Optional[str]
    quality_score: int
    fomo_risk: bool
    rsi_extreme: bool
    false_strength_flags: List[str]


@dataclass
class LiquidityQuality:
    quality: str  # real / mixed / thin_or_fake
    score: int


@dataclass
class LiquidityMetrics:
    timeframe_focus: Optional[str]
    quality: LiquidityQuality
    sweep: Optional[Dict[str, Any]]
    order_block: Optional[Dict[str, Any]]
    price_imbalance: Optional[Dict[str, Any]]
    patterns: List[str]


@dataclass
class VolumeFlowMetrics:
    timeframe_focus: Optional[str]
    volume: Optional[Dict[str, Any]]
    volume_spike: Optional[Dict[str, Any]]
    volume_imbalance: Optional[Dict[str, Any]]
    accumulation_distribution: Optional[Dict[str, Any]]


@dataclass
class VolatilityMetrics:
    timeframe_focus: Optional[str]
    state: Optional[str]
    atr_pct: Optional[float]
    stdev_returns: Optional[float]


@dataclass
class TimeIntelligenceMetrics:
    utc_hour: int
    utc_day_of_week: int
    session: str
    gate_status: Dict[str, Optional[str]]


@dataclass
class MemoryStrengthMetrics:
    memory_score: int
    memory_flags: List[str]
    memory_confirmed: bool
    trend_score: Optional[float]
    relative_bias: Direction
    macro_differential: Optional[float]
    relative_sentiment: Optional[float]
    relative_confidence: Optional[int]


@dataclass
class SilentLiquidityIntermarketMetrics:
    liquidity_defense_score: int
    sweep_detected: bool
    order_block_detected: bool
    fvg_detected: bool
    volume_imbalance_detected: bool
    intermarket_available: bool
    intermarket_confidence: Optional[float]
    timeframe: Optional[str]
    window: Optional[int]
    breaks_count: int
    stability_score: Optional[float]
    peers: List[str]


@dataclass
class MacroMetrics:
    direction: Direction
    differential: Optional[float]
    confidence: Optional[float]
    note: Optional[str]


@dataclass
class NewsMetrics:
    direction: Direction
    impact: Optional[float]
    impact_score: Optional[float]
    upcoming_events: Optional[float]
    high_event_risk: bool


@dataclass
class PsychologyMetrics:
    doji: bool
    atr_pct: Optional[float]
    patterns: List[str]


@dataclass
class FailureCost:
    available: bool
    invalidation_distance_pips: Optional[float] = None
    time_to_invalidation_sec: Optional[int] = None


@dataclass
class RiskEnvironmentMetrics:
    risk_score: int
    execution_quality_score: int
    spread_points: Optional[float]
    news_impact_score: Optional[float]
    atr_pct: Optional[float]
    failure_cost: FailureCost


@dataclass
class StatisticsMetrics:
    timeframe_focus: Optional[str]
    r2: Optional[int]
    stdev_returns: Optional[float]
    regime_state: Optional[str]


@dataclass
class ValidationMetrics:
    verdict: str  # PASS / FAIL
    is_trade_valid: bool
    failed_checks: List[str]


@dataclass
class WeightedFail:
    id: str
    weight: float
    reason: Optional[str]
    label: str


@dataclass
class ConfluenceMetrics:
    alignment_score: int
    votes: Dict[str, Direction]
    htf_priority: HtfView
    weighted_score: Optional[float]
    min_score: Optional[float]
    passed: bool
    strict: bool
    hard_fails: List[str]
    top_weighted_fails: List[WeightedFail]


@dataclass
class MissingInputs:
    missing: List[str] = field(default_factory=list)
    details: Dict[str, Dict[str, Any]] = field(default_factory=dict)


@dataclass
class DecisionMetrics:
    direction: Direction
    confidence: Optional[float]
    adaptive_confidence: Optional[int]
    final_score: Optional[float]
    state: str
    score: Optional[float]
    blocked: bool
    is_trade_valid: bool
    reason: Optional[str]
    checks: Dict[str, bool]
    missing: List[str]
    what_would_change: List[str]
    missing_inputs: MissingInputs
    next_steps: List[str]
    kill_switch: Dict[str, Any]
    key_gates: List[Dict[str, Any]]
    entry: EntryLevels
    risk_score: int
    sizing_hint: int


@dataclass
class DegradedMetrics:
    error: str


LayerMetrics = Union[
    RawDataMetrics, CandleMetrics, StructureMetrics, MomentumMetrics, LiquidityMetrics,
    VolumeFlowMetrics, VolatilityMetrics, TimeIntelligenceMetrics, MemoryStrengthMetrics,
    SilentLiquidityIntermarketMetrics, MacroMetrics, NewsMetrics, PsychologyMetrics,
    RiskEnvironmentMetrics, StatisticsMetrics, ValidationMetrics, ConfluenceMetrics,
    DecisionMetrics, DegradedMetrics,
]


# ============================================================================
# Envelope
# ============================================================================

@dataclass
class Layer:
    """One analytical layer. `confidence` is an int in [0, 100] or None."""
    index: int
    key: str
    name_en: str
    name_ar: Optional[str]
    direction: Direction
    confidence: Optional[int]
    score: Optional[float]
    availability: Availability
    metrics: LayerMetrics
    summary_en: Optional[str] = None
    summary_ar: Optional[str] = None
    evidence: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def arrow(self) -> str:
        return ARROWS[self.direction]

    @property
    def degraded(self) -> bool:
        return isinstance(self.metrics, DegradedMetrics)

    def to_dict(self) -> dict:
        data = asdict(self)
        data['arrow'] = self.arrow
        return data

    def __repr__(self) -> str:
        return f"Layer({self.key} {self.direction.value} conf={self.confidence} {self.availability.value})"


def build_layer(
    index: int,
    direction: Any,
    confidence: Any,
    metrics: LayerMetrics,
    *,
    score: Any = None,
    availability: Availability = Availability.BEST_EFFORT,
    summary_en: Optional[str] = None,
    summary_ar: Optional[str] = None,
    evidence: Optional[List[Optional[str]]] = None,
    warnings: Optional[List[Optional[str]]] = None,
) -> Layer:
    """The single constructor every layer goes through."""
    name_en, name_ar = LAYER_NAMES[index]
    return Layer(
        index=index,
        key=f"L{index}",
        name_en=name_en,
        name_ar=name_ar,
        direction=Direction.normalize(direction),
        confidence=pct(confidence),
        score=to_finite(score),
        availability=availability,
        metrics=metrics,
        summary_en=summary_en,
        summary_ar=summary_ar,
        evidence=[e for e in (evidence or []) if e],
        warnings=[w for w in (warnings or []) if w],
    )


def degraded_layer(index: int, error: BaseException) -> Layer:
    """Neutral stand-in for a layer whose computation raised."""
    message = f"{type(error).__name__}: {error}"
    return build_layer(
        index,
        Direction.NEUTRAL,
        0,
        DegradedMetrics(error=message),
        availability=Availability.MISSING,
        summary_en='Layer unavailable (computation error).',
        summary_ar='الطبقة غير متوفرة (خطأ في الحساب).',
        warnings=[f"Layer degraded: {message}"],
    )


def layer_by_key(layers: List[Layer], key: str) -> Optional[Layer]:
    for layer in layers:
        if layer.key == key:
            return layer
    return None
