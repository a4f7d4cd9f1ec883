"""
Error taxonomy for the decision engine.

Analytics never raise for data-quality reasons: insufficient candles, missing
collaborator snapshots and out-of-range configuration all degrade to neutral,
partial or default results. These exception types exist so the boundaries that
*do* degrade can name what happened, and so malformed caller input (an
unsupported timeframe) can fail loudly.
"""


class FxDecisionError(Exception):
    """Base class for all engine errors."""


class InsufficientDataError(FxDecisionError):
    """Too few candles or history samples for a computation."""

    def __init__(self, what: str, required: int, available: int):
        self.what = what
        self.required = required
        self.available = available
        super().__init__(f"Insufficient data for {what}: need {required}, got {available}")


class MissingCollaboratorInputError(FxDecisionError):
    """An external snapshot (quote, news, intermarket) was not supplied."""


class ConfigurationError(FxDecisionError):
    """A configured threshold is invalid or non-finite."""


class UnsupportedTimeframeError(FxDecisionError, ValueError):
    """Caller supplied a timeframe name the analyzer does not know."""

    def __init__(self, timeframe: str):
        self.timeframe = timeframe
        super().__init__(f"Unsupported timeframe: {timeframe!r}")


class LayerComputationError(FxDecisionError):
    """Unexpected exception raised while building a single analysis layer."""

    def __init__(self, layer_key: str, cause: Exception):
        self.layer_key = layer_key
        self.cause = cause
        super().__init__(f"{layer_key} failed: {type(cause).__name__}: {cause}")
