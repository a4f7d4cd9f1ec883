"""
Configuration models using Pydantic for type-safe validation.

This module defines all configuration models for the decision engine:
- AnalyzerSettings: timeframe weights, cache TTL, bar counts
- ValidatorSettings: decision profiles, hard-check limits, confluence
- LayerSettings: thresholds used by the 18-layer builder
- ReadinessSettings: layer readiness gate and strong override floors
- RiskSettings: Kelly sizing, guardrails, exposure limits
- UltraFilterSettings / EnhancerSettings: signal quality gates
- SystemConfig: log level and log output

Invalid numeric values never raise: a None, non-numeric, non-finite or
out-of-bounds number falls back to the field's documented default and a
warning is logged.
"""

import logging
import math
import typing
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

from annotated_types import Ge, Gt, Le, Lt
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic_core import PydanticUndefined

logger = logging.getLogger(__name__)

SettingsT = TypeVar("SettingsT", bound="FallbackModel")


# ============================================================================
# Enums for Configuration
# ============================================================================

class LogLevel(str, Enum):
    """Logging level."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Environment(str, Enum):
    """Deployment environment."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class DecisionMode(str, Enum):
    """How aggressively the validator relaxes its entry thresholds."""
    STANDARD = "standard"
    SMART_STRONG = "smart_strong"
    AGGRESSIVE = "aggressive"


# ============================================================================
# Fallback base model
# ============================================================================

def _numeric_type(annotation: Any) -> Optional[type]:
    """Return int/float when the annotation is a (possibly Optional) number."""
    if annotation in (int, float):
        return annotation
    if typing.get_origin(annotation) is Union:
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        if len(args) == 1 and args[0] in (int, float):
            return args[0]
    return None


def _allows_none(annotation: Any) -> bool:
    return typing.get_origin(annotation) is Union and type(None) in typing.get_args(annotation)


def _violates_bounds(value: float, metadata: List[Any]) -> bool:
    for constraint in metadata:
        if isinstance(constraint, Ge) and not value >= constraint.ge:
            return True
        if isinstance(constraint, Gt) and not value > constraint.gt:
            return True
        if isinstance(constraint, Le) and not value <= constraint.le:
            return True
        if isinstance(constraint, Lt) and not value < constraint.lt:
            return True
    return False


class FallbackModel(BaseModel):
    """
    Base settings model.

    Numeric fields that receive an unusable value are reset to their default
    instead of failing validation, so a bad threshold in YAML or an override
    dict never aborts an evaluation.
    """

    model_config = ConfigDict(use_enum_values=True, extra="ignore")

    @field_validator("*", mode="before")
    @classmethod
    def _fallback_invalid_numbers(cls, value: Any, info: ValidationInfo) -> Any:
        field = cls.model_fields.get(info.field_name)
        if field is None:
            return value
        kind = _numeric_type(field.annotation)
        if kind is None:
            return value

        default = field.default
        if value is None:
            if _allows_none(field.annotation) or default is PydanticUndefined:
                return value
            logger.warning(f"⚠️  {cls.__name__}.{info.field_name}: None is not allowed, using default {default}")
            return default

        if isinstance(value, bool):
            number = None
        else:
            try:
                number = float(value)
            except (TypeError, ValueError):
                number = None
        if number is None or math.isnan(number) or math.isinf(number):
            logger.warning(
                f"⚠️  {cls.__name__}.{info.field_name}: invalid value {value!r}, using default {default}"
            )
            return default

        if _violates_bounds(number, field.metadata):
            logger.warning(
                f"⚠️  {cls.__name__}.{info.field_name}: {number} out of bounds, using default {default}"
            )
            return default

        return int(round(number)) if kind is int else number


def coerce_settings(model: Type[SettingsT], config: Union[SettingsT, Dict[str, Any], None]) -> SettingsT:
    """Accept a settings instance, a plain dict or None."""
    if isinstance(config, model):
        return config
    return model(**(config or {}))


# ============================================================================
# System Configuration
# ============================================================================

class SystemConfig(FallbackModel):
    """System-wide settings."""

    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Deployment environment"
    )

    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level"
    )

    log_file: Optional[str] = Field(
        default=None,
        description="Optional log file path"
    )

    json_logs: bool = Field(
        default=True,
        description="Emit JSON formatted log records"
    )


# ============================================================================
# Technical Analyzer Configuration
# ============================================================================

DEFAULT_TIMEFRAME_WEIGHTS = {'M15': 0.20, 'H1': 0.25, 'H4': 0.25, 'D1': 0.30}

DEFAULT_BAR_COUNTS = {
    'M1': 500, 'M5': 400, 'M15': 300, 'M30': 250, 'H1': 200, 'H4': 150, 'D1': 100,
}


class AnalyzerSettings(FallbackModel):
    """Technical analyzer settings."""

    timeframes: List[str] = Field(
        default_factory=lambda: ['M15', 'H1', 'H4', 'D1'],
        description="Timeframes analyzed by default"
    )

    timeframe_weights: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_TIMEFRAME_WEIGHTS),
        description="Weight of each timeframe in the overall score"
    )

    default_timeframe_weight: float = Field(
        default=0.33,
        gt=0.0,
        le=1.0,
        description="Weight used for timeframes missing from timeframe_weights"
    )

    bar_counts: Dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_BAR_COUNTS),
        description="Bars requested per timeframe from the candle provider"
    )

    cache_ttl_seconds: float = Field(
        default=300.0,
        gt=0.0,
        le=86400.0,
        description="Analysis cache time-to-live"
    )

    cache_max_entries: int = Field(
        default=512,
        ge=1,
        description="Maximum cached analyses before eviction"
    )

    direction_threshold: float = Field(
        default=12.0,
        gt=0.0,
        le=100.0,
        description="|score| above which a timeframe is BUY/SELL"
    )

    signal_threshold: float = Field(
        default=25.0,
        gt=0.0,
        le=100.0,
        description="|score| above which a timeframe emits a signal"
    )


# ============================================================================
# Validator Configuration
# ============================================================================

class ContributorWeights(FallbackModel):
    """Soft-score contributor weights."""

    direction: float = Field(default=0.12, ge=0.0, le=1.0)
    strength: float = Field(default=0.24, ge=0.0, le=1.0)
    probability: float = Field(default=0.22, ge=0.0, le=1.0)
    confidence: float = Field(default=0.16, ge=0.0, le=1.0)
    risk_reward: float = Field(default=0.12, ge=0.0, le=1.0)
    spread_efficiency: float = Field(default=0.14, ge=0.0, le=1.0)


class DecisionProfileSettings(FallbackModel):
    """Per asset-class entry profile."""

    enter_score: float = Field(default=72.0, ge=0.0, le=100.0)
    min_strength: float = Field(default=55.0, ge=0.0, le=100.0)
    min_win_rate: float = Field(default=55.0, ge=0.0, le=100.0)
    min_confidence: float = Field(default=55.0, ge=0.0, le=100.0)
    min_risk_reward: float = Field(default=1.6, gt=0.0)
    target_rr: float = Field(default=2.4, gt=0.0)
    max_spread_to_atr_warn: float = Field(default=0.22, gt=0.0)
    max_spread_to_tp_warn: float = Field(default=0.12, gt=0.0)
    min_momentum_for_enter: float = Field(default=0.04, ge=0.0)
    weights: ContributorWeights = Field(default_factory=ContributorWeights)


def _metals_profile() -> DecisionProfileSettings:
    return DecisionProfileSettings(
        enter_score=75.0,
        min_strength=58.0,
        min_win_rate=57.0,
        min_confidence=56.0,
        target_rr=2.6,
        max_spread_to_atr_warn=0.26,
        weights=ContributorWeights(probability=0.24, spread_efficiency=0.16),
    )


def _crypto_profile() -> DecisionProfileSettings:
    return DecisionProfileSettings(
        enter_score=78.0,
        min_strength=60.0,
        min_win_rate=58.0,
        min_confidence=56.0,
        target_rr=2.9,
        max_spread_to_atr_warn=0.30,
        max_spread_to_tp_warn=0.14,
        weights=ContributorWeights(strength=0.26, probability=0.24),
    )


class ValidatorSettings(FallbackModel):
    """Signal validator: hard checks, soft score and confluence gates."""

    mode: DecisionMode = Field(default=DecisionMode.STANDARD)

    strict_smart_checklist: bool = Field(
        default=False,
        description="Enable kill-switch and treat smart gate failures as hard"
    )

    confluence_min_score: float = Field(default=62.0, ge=0.0, le=100.0)

    max_spread_pips: float = Field(default=3.0, gt=0.0)
    max_quote_age_seconds: float = Field(default=120.0, gt=0.0)
    max_bar_age_minutes: float = Field(default=45.0, gt=0.0)
    high_impact_news_score: float = Field(default=4.0, ge=0.0)
    max_concurrent_trades: int = Field(default=5, ge=1)
    trading_window_start_hour: int = Field(default=0, ge=0, le=23)
    trading_window_end_hour: int = Field(default=24, ge=1, le=24)
    fx_atr_min_pips: float = Field(default=3.0, ge=0.0)
    fx_atr_max_pips: float = Field(default=300.0, gt=0.0)
    crypto_vol_spike_ratio: float = Field(default=2.2, gt=0.0)
    max_spread_to_atr: float = Field(default=0.2, gt=0.0)
    max_spread_to_tp: float = Field(default=0.3, gt=0.0)
    min_m15_bars: int = Field(default=60, ge=0)
    min_h1_bars: int = Field(default=20, ge=0)

    enforce_momentum: bool = False
    enforce_htf_alignment: bool = False
    enforce_execution_cost: bool = False
    require_bars_coverage: bool = False

    min_strength_target: float = Field(default=70.0, ge=0.0, le=100.0)
    min_win_rate_target: float = Field(default=70.0, ge=0.0, le=100.0)

    forex: DecisionProfileSettings = Field(default_factory=DecisionProfileSettings)
    metals: DecisionProfileSettings = Field(default_factory=_metals_profile)
    crypto: DecisionProfileSettings = Field(default_factory=_crypto_profile)


# ============================================================================
# Layer Builder / Readiness Configuration
# ============================================================================

class LayerSettings(FallbackModel):
    """Thresholds used by the 18-layer builder."""

    stale_quote_ms: float = Field(default=60_000.0, gt=0.0)
    wide_spread_points: float = Field(default=30.0, gt=0.0)
    m15_min_bars: int = Field(default=30, ge=0)
    m15_max_age_minutes: float = Field(default=30.0, gt=0.0)
    h1_min_bars: int = Field(default=10, ge=0)
    memory_confirm_score: float = Field(default=70.0, ge=0.0, le=100.0)
    liquidity_defense_min: float = Field(default=65.0, ge=0.0, le=100.0)
    low_alignment: float = Field(default=55.0, ge=0.0, le=100.0)
    low_trend_fit: float = Field(default=55.0, ge=0.0, le=100.0)
    unfavorable_risk_score: float = Field(default=55.0, ge=0.0, le=100.0)
    max_next_steps: int = Field(default=10, ge=1)


class ReadinessSettings(FallbackModel):
    """Layer readiness gate."""

    min_layer17_confidence: float = Field(default=60.0, ge=0.0, le=100.0)
    allow_strong_override: bool = False
    strong_min_confidence: float = Field(default=85.0, ge=0.0, le=100.0)
    strong_min_strength: float = Field(default=70.0, ge=0.0, le=100.0)


# ============================================================================
# Risk Configuration
# ============================================================================

class CorrelationPenalty(FallbackModel):
    """Multipliers applied per open trade sharing the pair or a currency."""

    same_pair: float = Field(default=0.35, ge=0.0, le=1.0)
    shared_currency: float = Field(default=0.65, ge=0.0, le=1.0)


class CorrelationGuardSettings(FallbackModel):
    """Correlation cluster guardrail."""

    enabled: bool = True
    threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    max_cluster_size: int = Field(default=3, ge=1)
    matrix: Dict[str, float] = Field(
        default_factory=dict,
        description="Pair correlation overrides keyed 'EURUSD:GBPUSD'"
    )


class VaRGuardSettings(FallbackModel):
    """Value-at-risk guardrail."""

    enabled: bool = True
    max_loss_pct: float = Field(default=6.0, gt=0.0)
    confidence: float = Field(default=0.95, gt=0.0, lt=1.0)


class RiskSettings(FallbackModel):
    """Risk & position sizing rules."""

    account_balance: float = Field(default=10_000.0, gt=0.0)
    risk_per_trade: float = Field(default=0.02, gt=0.0, le=1.0)
    max_daily_risk: float = Field(default=0.06, gt=0.0, le=1.0)
    min_kelly_fraction: float = Field(default=0.005, gt=0.0, le=1.0)
    max_kelly_fraction: float = Field(default=0.035, gt=0.0, le=1.0)

    volatility_risk_multipliers: Dict[str, float] = Field(
        default_factory=lambda: {
            'calm': 1.15,
            'normal': 1.0,
            'high': 0.72,
            'volatile': 0.72,
            'extreme': 0.55,
        }
    )

    correlation_penalty: CorrelationPenalty = Field(default_factory=CorrelationPenalty)
    max_exposure_per_currency: float = Field(default=180_000.0, gt=0.0)
    currency_limits: Optional[Dict[str, float]] = None
    default_currency_limit: Optional[float] = Field(default=None, gt=0.0)
    correlation: CorrelationGuardSettings = Field(default_factory=CorrelationGuardSettings)
    value_at_risk: VaRGuardSettings = Field(default_factory=VaRGuardSettings)


# ============================================================================
# Signal Quality Configuration
# ============================================================================

class UltraFilterSettings(FallbackModel):
    """Five-stage ultra filter thresholds."""

    min_strength: float = Field(default=75.0, ge=0.0, le=100.0)
    min_confidence: float = Field(default=80.0, ge=0.0, le=100.0)
    min_final_score: float = Field(default=70.0, ge=0.0, le=100.0)
    min_risk_reward: float = Field(default=2.5, gt=0.0)
    min_confluence: int = Field(default=4, ge=0, le=7)
    min_win_probability: float = Field(default=0.85, ge=0.0, le=1.0)

    allowed_regimes: List[str] = Field(default_factory=lambda: ['trending_strong', 'breakout'])
    max_volatility: float = Field(default=2.0, gt=0.0)
    min_volatility: float = Field(default=0.3, ge=0.0)
    min_trend_strength: float = Field(default=60.0, ge=0.0, le=100.0)
    min_liquidity: float = Field(default=70.0, ge=0.0, le=100.0)

    min_expected_value: float = Field(default=0.5)
    kelly_fraction_multiplier: float = Field(
        default=0.25,
        gt=0.0,
        le=1.0,
        description="Fractional Kelly applied before the (0.01, 0.25) sanity band"
    )
    min_stop_pips: float = Field(default=15.0, ge=0.0)
    max_stop_pips: float = Field(default=50.0, gt=0.0)
    min_target_pips: float = Field(default=25.0, ge=0.0)
    max_target_pips: float = Field(default=150.0, gt=0.0)

    enable_pattern_matching: bool = True
    min_historical_win_rate: float = Field(default=0.70, ge=0.0, le=1.0)
    min_similar_patterns: int = Field(default=3, ge=0)
    default_historical_win_rate: float = Field(default=0.70, ge=0.0, le=1.0)
    min_pattern_strength: float = Field(default=70.0, ge=0.0, le=100.0)
    max_history_size: int = Field(default=500, ge=1)


class EnhancerSettings(FallbackModel):
    """Signal enhancer settings."""

    min_pattern_similarity: float = Field(default=0.85, ge=0.0, le=1.0)
    timeframe_weights: Dict[str, float] = Field(
        default_factory=lambda: {'D1': 0.30, 'H4': 0.25, 'H1': 0.25, 'M15': 0.20}
    )
    default_atr: float = Field(default=0.0010, gt=0.0)
    max_similar_patterns: int = Field(default=10, ge=1)
    max_history_size: int = Field(default=1000, ge=1)


# ============================================================================
# Complete Application Configuration
# ============================================================================

class AppConfig(FallbackModel):
    """Complete application configuration."""

    system: SystemConfig = Field(default_factory=SystemConfig)
    analyzer: AnalyzerSettings = Field(default_factory=AnalyzerSettings)
    validator: ValidatorSettings = Field(default_factory=ValidatorSettings)
    layers: LayerSettings = Field(default_factory=LayerSettings)
    readiness: ReadinessSettings = Field(default_factory=ReadinessSettings)
    risk: RiskSettings = Field(default_factory=RiskSettings)
    ultra_filter: UltraFilterSettings = Field(default_factory=UltraFilterSettings)
    enhancer: EnhancerSettings = Field(default_factory=EnhancerSettings)
