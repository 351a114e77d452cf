"""Device state: typed properties and the bounded change queue."""

from .change_queue import DrainResult, StateChange, StateChangeQueue
from .manager import StateManager
from .package import StatePackage

__all__ = [
    "DrainResult",
    "StateChange",
    "StateChangeQueue",
    "StateManager",
    "StatePackage",
]
