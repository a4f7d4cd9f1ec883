"""
Decision package - from validated signal to actionable decision.

Components:
- models: snapshot dataclasses (MarketScenario, PrimarySignal, Quote, ...)
- SignalValidator: hard checks, soft score, weighted confluence, kill-switch
- LayerBuilder: the 18 analytical layers
- readiness: layer gate with strong override
- engine: DecisionEngine orchestrator (import from fx_decision.decision.engine)
"""

from .confluence import Gate, GateStatus, KillSwitch, WeightedConfluence, evaluate_kill_switch, score_confluence
from .layer_builder import LayerBuilder
from .layers import LAYER_COUNT, Layer, layer_by_key
from .models import (
    Availability,
    DecisionState,
    Direction,
    EntryLevels,
    MarketScenario,
    PairMetadata,
    PrimarySignal,
    Quote,
)
from .readiness import ReadinessResult, StrongOverride, evaluate_layers_readiness, evaluate_strong_override
from .validator import SignalValidator, ValidationVerdict

__all__ = [
    # Validator and confluence
    'SignalValidator',
    'ValidationVerdict',
    'Gate',
    'GateStatus',
    'WeightedConfluence',
    'KillSwitch',
    'score_confluence',
    'evaluate_kill_switch',

    # Layers
    'LayerBuilder',
    'Layer',
    'LAYER_COUNT',
    'layer_by_key',

    # Readiness
    'ReadinessResult',
    'StrongOverride',
    'evaluate_layers_readiness',
    'evaluate_strong_override',

    # Models
    'MarketScenario',
    'PrimarySignal',
    'EntryLevels',
    'Quote',
    'PairMetadata',
    'Direction',
    'DecisionState',
    'Availability',
]
