"""Command manager: definition loading plus command admission."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, List, Optional

from .. import constants
from ..errors import ParseError
from ..utils import read_json_file
from .dictionary import CommandDictionary, CommandSource
from .instance import CommandInstance, CommandOrigin
from .queue import CommandQueue

LOGGER = logging.getLogger(__name__)


class CommandManager:
    """Owns the command dictionaries and the command queue.

    The standard command set (``gcd.json``) is loaded into a base dictionary.
    Every other ``*.json`` file in the definitions directory is a category
    named after its file stem, merged into the main dictionary on top of the
    base.
    """

    def __init__(
        self,
        *,
        id_prefix: str = "",
        retention: timedelta = CommandQueue.RETENTION,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._base_dictionary = CommandDictionary()
        self._dictionary = CommandDictionary(base=self._base_dictionary)
        self._queue = CommandQueue(id_prefix=id_prefix, retention=retention, clock=clock)

    @property
    def dictionary(self) -> CommandDictionary:
        return self._dictionary

    @property
    def base_dictionary(self) -> CommandDictionary:
        return self._base_dictionary

    @property
    def queue(self) -> CommandQueue:
        return self._queue

    def startup(
        self,
        definitions_path: Optional[Path] = None,
        test_definitions_path: Optional[Path] = None,
    ) -> None:
        """Load the base dictionary and every category file found on disk.

        Previously loaded definitions are dropped first, so calling this again
        reloads the dictionary from disk.
        """

        self._dictionary.clear()
        self._base_dictionary.clear()
        if definitions_path is not None and definitions_path.is_dir():
            base_file = definitions_path / constants.BASE_COMMANDS_FILENAME
            if base_file.exists():
                self.load_base_commands(read_json_file(base_file))
            for path in _iter_definition_files(definitions_path):
                self.load_command_file(path)
        elif definitions_path is not None:
            LOGGER.warning("Command definitions directory %s not found", definitions_path)

        if test_definitions_path is not None and test_definitions_path.is_dir():
            for path in _iter_definition_files(test_definitions_path):
                self.load_command_file(path)

        LOGGER.info(
            "Command dictionary ready: %d command(s) in %d categories",
            len(self._dictionary),
            len(self._dictionary.categories()),
        )

    def load_base_commands(self, definitions: Any) -> None:
        self._base_dictionary.load_commands(definitions, "base")

    def load_command_file(self, path: Path) -> None:
        self.load_commands(read_json_file(path), path.stem)

    def load_commands(self, definitions: Any, category: str) -> None:
        self._dictionary.load_category(CommandSource(category, definitions))

    def add_command(
        self, payload: Any, origin: CommandOrigin = CommandOrigin.LOCAL
    ) -> str:
        """Validate a raw command payload and admit it to the queue."""

        instance = CommandInstance.from_json(payload, origin, self._dictionary)
        command_id = self._queue.add(instance)
        LOGGER.info(
            "Accepted %s command %s (id=%s)", origin.value, instance.name, command_id
        )
        return command_id

    def add_command_json(
        self, text: str, origin: CommandOrigin = CommandOrigin.LOCAL
    ) -> str:
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ParseError(f"Invalid command JSON: {exc}") from exc
        return self.add_command(payload, origin)

    def find_command(self, command_id: str) -> Optional[CommandInstance]:
        return self._queue.find(command_id)

    def list_commands(self) -> List[CommandInstance]:
        return self._queue.list()


def _iter_definition_files(directory: Path) -> List[Path]:
    return [
        path
        for path in sorted(directory.glob("*.json"))
        if path.name != constants.BASE_COMMANDS_FILENAME
    ]
