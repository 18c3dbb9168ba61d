from __future__ import annotations


class ConfigurationError(ValueError):
    """Raised before streaming starts for unknown identifiers or unresolvable header references."""


class ClassificationStreamError(RuntimeError):
    """Raised when the upstream classification stream is malformed or unreadable."""


class SynchronizerStateError(RuntimeError):
    """Raised when an evaluation is driven out of order (e.g. accumulating after finalize)."""


class EvalCancelled(RuntimeError):
    """Raised when an evaluation is cancelled before its curves were finalized."""
