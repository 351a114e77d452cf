"""Command dictionary merging definitions from several category sources."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..errors import BuffetError, ConflictError, LoadError
from ..schema import ObjectSchema
from .definition import CommandDefinition

LOGGER = logging.getLogger(__name__)

_COMMAND_KEYS = frozenset({"parameters", "progress", "results"})


@dataclass(frozen=True)
class CommandSource:
    """A named set of command definitions, typically one JSON file."""

    name: str
    definitions: Mapping[str, Any]


class CommandDictionary:
    """Maps ``package.command`` names to their definitions.

    Each category is merged atomically: either every command of the source
    lands in the dictionary or none does. A name may only be owned by one
    category; reloading a category replaces what it loaded before.

    When a base dictionary (the standard command set) is given, commands
    that exist in the base inherit its schemas. Vendors may only add
    ``_``-prefixed parameters to standard commands, and new commands in a
    standard package must also be ``_``-prefixed.

    Usage:
        standard = CommandDictionary()
        standard.load_commands(gcd_json, "gcd")

        dictionary = CommandDictionary(base=standard)
        dictionary.load_category(CommandSource("robotd", robot_json))
        definition = dictionary.find("robot.jump")
    """

    def __init__(self, *, base: Optional["CommandDictionary"] = None) -> None:
        self._base = base
        self._definitions: Dict[str, CommandDefinition] = {}
        self._lock = threading.Lock()
        self._on_changed: List[Callable[[], None]] = []

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, name: object) -> bool:
        return name in self._definitions

    def add_on_changed(self, callback: Callable[[], None]) -> None:
        self._on_changed.append(callback)

    def load_category(self, source: CommandSource) -> None:
        self.load_commands(source.definitions, source.name)

    def load_commands(self, definitions: Any, category: str) -> None:
        """Parse ``definitions`` and merge them in as ``category``.

        Raises:
            LoadError: The source is malformed or violates base rules.
            ConflictError: A command is already owned by another category.
        """

        parsed = self._parse_source(definitions, category)

        with self._lock:
            for name in parsed:
                existing = self._definitions.get(name)
                if existing is not None and existing.category != category:
                    raise ConflictError(
                        name,
                        f"already defined by category {existing.category!r}, "
                        f"cannot redefine in {category!r}",
                    )
            self._definitions = _replace_category(self._definitions, category, parsed)

        LOGGER.debug(
            "Loaded %d command definition(s) for category %s", len(parsed), category
        )
        for callback in list(self._on_changed):
            callback()

    def find(self, name: str) -> Optional[CommandDefinition]:
        return self._definitions.get(name)

    def all_names(self) -> List[str]:
        return list(self._definitions)

    def categories(self) -> List[str]:
        seen: Dict[str, None] = {}
        for definition in self._definitions.values():
            seen.setdefault(definition.category, None)
        return list(seen)

    def get_commands_as_json(
        self,
        filter: Optional[Callable[[CommandDefinition], bool]] = None,
        *,
        full: bool = True,
    ) -> Dict[str, Dict[str, Any]]:
        """Return definitions nested by package, for reporting to a registry."""

        payload: Dict[str, Dict[str, Any]] = {}
        for name, definition in list(self._definitions.items()):
            if filter is not None and not filter(definition):
                continue
            package, command = name.split(".", 1)
            payload.setdefault(package, {})[command] = definition.to_json(full)
        return payload

    def clear(self) -> None:
        with self._lock:
            self._definitions = {}
        for callback in list(self._on_changed):
            callback()

    def _has_package(self, package: str) -> bool:
        prefix = f"{package}."
        return any(name.startswith(prefix) for name in self._definitions)

    def _parse_source(
        self, definitions: Any, category: str
    ) -> Dict[str, CommandDefinition]:
        if not isinstance(definitions, Mapping):
            raise LoadError(category, "command definitions must be an object")

        parsed: Dict[str, CommandDefinition] = {}
        for package, commands in definitions.items():
            if not _is_valid_segment(package):
                raise LoadError(category, f"invalid package name {package!r}")
            if not isinstance(commands, Mapping):
                raise LoadError(
                    category, f"package {package!r} must map command names to objects"
                )
            for command, definition in commands.items():
                if not _is_valid_segment(command):
                    raise LoadError(
                        category, f"invalid command name {package}.{command!r}"
                    )
                full_name = f"{package}.{command}"
                parsed[full_name] = self._parse_command(
                    full_name, command, package, definition, category
                )
        return parsed

    def _parse_command(
        self,
        full_name: str,
        command: str,
        package: str,
        definition: Any,
        category: str,
    ) -> CommandDefinition:
        if not isinstance(definition, Mapping):
            raise LoadError(full_name, "command definition must be an object")
        unknown = sorted(str(key) for key in definition if key not in _COMMAND_KEYS)
        if unknown:
            raise LoadError(full_name, f"unknown key(s): {', '.join(unknown)}")

        parent: Optional[CommandDefinition] = None
        if self._base is not None:
            parent = self._base.find(full_name)
            if (
                parent is None
                and self._base._has_package(package)
                and not command.startswith("_")
            ):
                raise LoadError(
                    full_name,
                    f"custom command in standard package {package!r} "
                    "must start with '_'",
                )

        try:
            parameters = ObjectSchema.from_json(
                definition.get("parameters", {}),
                base=parent.parameters if parent is not None else None,
                path=f"{full_name}.parameters",
            )
            progress = _parse_optional_schema(
                definition, "progress", full_name, parent.progress if parent else None
            )
            results = _parse_optional_schema(
                definition, "results", full_name, parent.results if parent else None
            )
        except BuffetError as exc:
            raise LoadError(full_name, exc.message) from exc

        if parent is not None:
            for name in parameters:
                if name not in parent.parameters and not name.startswith("_"):
                    raise LoadError(
                        full_name,
                        f"custom parameter {name!r} of a standard command "
                        "must start with '_'",
                    )

        return CommandDefinition(
            category=category,
            parameters=parameters,
            progress=progress,
            results=results,
        )


def _parse_optional_schema(
    definition: Mapping[str, Any],
    key: str,
    full_name: str,
    inherited: Optional[ObjectSchema],
) -> Optional[ObjectSchema]:
    if key not in definition:
        return inherited
    return ObjectSchema.from_json(
        definition[key], base=inherited, path=f"{full_name}.{key}"
    )


def _replace_category(
    current: Dict[str, CommandDefinition],
    category: str,
    parsed: Dict[str, CommandDefinition],
) -> Dict[str, CommandDefinition]:
    """Swap a category's entries, keeping reloaded names at their position."""

    merged: Dict[str, CommandDefinition] = {}
    for name, definition in current.items():
        if definition.category != category:
            merged[name] = definition
        elif name in parsed:
            merged[name] = parsed[name]
    for name, definition in parsed.items():
        merged.setdefault(name, definition)
    return merged


def _is_valid_segment(value: Any) -> bool:
    return isinstance(value, str) and bool(value) and "." not in value
