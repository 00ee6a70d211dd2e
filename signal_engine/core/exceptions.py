"""Engine-level exceptions.

Per-item failures (one asset, one rule) are folded into cycle counters and
never raised. Only failures that abort a whole cycle surface here.
"""


class SignalEngineError(Exception):
    """Base exception for all Signal Engine errors."""


class CycleCommitError(SignalEngineError):
    """Raised when the single end-of-cycle commit fails.

    The unit of work has been rolled back by the time this is raised; the
    original database error is chained as ``__cause__``.
    """
