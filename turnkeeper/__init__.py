"""Turnkeeper - continuation control for long-running agent sessions."""

__version__ = "0.1.0"

from turnkeeper.config import Config
from turnkeeper.driver import SessionCallbacks, SessionDriver
from turnkeeper.policy import ContinuationPolicy, Decision, TurnResult

__all__ = [
    "Config",
    "ContinuationPolicy",
    "Decision",
    "SessionCallbacks",
    "SessionDriver",
    "TurnResult",
    "__version__",
]
