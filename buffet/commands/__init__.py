"""Command definitions, dictionary, instances and queue."""

from .definition import CommandDefinition
from .dictionary import CommandDictionary, CommandSource
from .instance import CommandInstance, CommandOrigin, CommandState, TERMINAL_STATES
from .manager import CommandManager
from .queue import CommandQueue

__all__ = [
    "CommandDefinition",
    "CommandDictionary",
    "CommandInstance",
    "CommandManager",
    "CommandOrigin",
    "CommandQueue",
    "CommandSource",
    "CommandState",
    "TERMINAL_STATES",
]
