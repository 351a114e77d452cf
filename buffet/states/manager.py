"""Device state manager: typed properties plus change publication."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .. import constants
from ..errors import BatchUpdateError, BuffetError, NotFoundError, ParseError
from ..schema import PropType, PropValue
from ..utils import read_json_file, split_full_name
from .change_queue import StateChange, StateChangeQueue
from .package import StatePackage

LOGGER = logging.getLogger(__name__)

SCHEMA_SUFFIX = ".schema.json"
DEFAULTS_SUFFIX = ".defaults.json"


class StateManager:
    """Holds device state properties grouped into packages.

    Every accepted write updates the canonical value and appends a
    timestamped ``StateChange`` to the change queue. Rejected writes leave
    the previous value untouched and append nothing.

    Change callbacks run synchronously after the manager lock is released
    and must not write back into the manager.
    """

    def __init__(
        self,
        change_queue: StateChangeQueue,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._change_queue = change_queue
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._packages: Dict[str, StatePackage] = {}
        self._categories: Dict[str, List[str]] = {}
        self._lock = threading.Lock()
        self._on_changed: List[Callable[[], None]] = []

    @property
    def change_queue(self) -> StateChangeQueue:
        return self._change_queue

    def add_on_changed(self, callback: Callable[[], None]) -> None:
        self._on_changed.append(callback)

    # ------------------------------------------------------------------
    # Definition loading
    # ------------------------------------------------------------------
    def startup(self, definitions_path: Optional[Path] = None) -> None:
        """Load ``base_state`` first, then every other package on disk.

        Schemas are read from ``<category>.schema.json`` and default values
        from ``<category>.defaults.json``.
        """

        if definitions_path is None:
            return
        if not definitions_path.is_dir():
            LOGGER.warning("State definitions directory %s not found", definitions_path)
            return

        base_schema = definitions_path / f"{constants.BASE_STATE_PACKAGE}{SCHEMA_SUFFIX}"
        if base_schema.exists():
            self.load_state_definition(
                read_json_file(base_schema), constants.BASE_STATE_PACKAGE
            )
        for path in sorted(definitions_path.glob(f"*{SCHEMA_SUFFIX}")):
            if path == base_schema:
                continue
            category = path.name[: -len(SCHEMA_SUFFIX)]
            self.load_state_definition(read_json_file(path), category)

        base_defaults = (
            definitions_path / f"{constants.BASE_STATE_PACKAGE}{DEFAULTS_SUFFIX}"
        )
        if base_defaults.exists():
            self.load_state_defaults(read_json_file(base_defaults))
        for path in sorted(definitions_path.glob(f"*{DEFAULTS_SUFFIX}")):
            if path == base_defaults:
                continue
            self.load_state_defaults(read_json_file(path))

        LOGGER.info("State manager ready: %d package(s)", len(self._packages))

    def load_state_definition(self, definitions: Any, category: str) -> None:
        """Add ``{package: {property: type}}`` definitions from ``category``.

        All packages of the source are parsed before any is added.
        """

        if not isinstance(definitions, Mapping):
            raise ParseError(f"State definitions of {category!r} must be an object")

        with self._lock:
            staged: List[Tuple[StatePackage, Dict[str, PropType]]] = []
            for package_name, package_definitions in definitions.items():
                if not isinstance(package_name, str) or not package_name:
                    raise ParseError(f"Invalid state package name {package_name!r}")
                package = self._packages.get(package_name) or StatePackage(package_name)
                staged.append((package, package.parse_definitions(package_definitions)))

            for package, types in staged:
                package.add_definitions(types)
                self._packages.setdefault(package.name, package)
            self._categories.setdefault(category, []).extend(
                package.name for package, _ in staged
            )

        LOGGER.debug("Loaded state definitions for category %s", category)

    def load_state_defaults(self, defaults: Any) -> None:
        """Apply ``{package: {property: value}}`` defaults, all or nothing.

        Defaults describe the initial state and are not recorded as changes.
        """

        if not isinstance(defaults, Mapping):
            raise ParseError("State defaults must be an object")

        with self._lock:
            staged: List[Tuple[StatePackage, str, PropValue]] = []
            for package_name, values in defaults.items():
                package = self._packages.get(package_name)
                if package is None:
                    raise NotFoundError("package", str(package_name))
                if not isinstance(values, Mapping):
                    raise ParseError(f"Defaults for {package_name!r} must be an object")
                for prop_name, value in values.items():
                    staged.append((package, prop_name, package.validate_value(prop_name, value)))

            for package, prop_name, validated in staged:
                package.set_value(prop_name, validated)

    # ------------------------------------------------------------------
    # Property access
    # ------------------------------------------------------------------
    def set_property(
        self, name: str, value: Any, timestamp: Optional[datetime] = None
    ) -> StateChange:
        """Validate and store one property value.

        Raises:
            NotFoundError: The property is not defined.
            ValidationError: The value does not match the property type.
            ParseError: ``timestamp`` carries no timezone.
        """

        when = self._stamp(timestamp)
        with self._lock:
            change = self._set_locked(name, value, when)
        self._notify()
        return change

    def set_properties(
        self, values: Mapping[str, Any], timestamp: Optional[datetime] = None
    ) -> List[StateChange]:
        """Apply a batch of writes on a best-effort basis.

        Each entry is validated and committed independently. When any entry
        fails, ``BatchUpdateError`` is raised after every valid entry has
        been committed and carries one error per failed entry.
        A naive ``timestamp`` raises ``ParseError`` before any entry is applied.
        """

        when = self._stamp(timestamp)
        changes: List[StateChange] = []
        errors: List[BuffetError] = []
        with self._lock:
            for name, value in values.items():
                try:
                    changes.append(self._set_locked(name, value, when))
                except BuffetError as exc:
                    errors.append(exc)

        if changes:
            self._notify()
        if errors:
            LOGGER.debug(
                "Batch state update: %d applied, %d rejected", len(changes), len(errors)
            )
            raise BatchUpdateError(errors)
        return changes

    def get_property(self, name: str) -> Any:
        package, prop_name = self._resolve(name)
        with self._lock:
            value = package.get_value(prop_name)
        return value.to_json() if value is not None else None

    def get_all_as_structured(self) -> Dict[str, Dict[str, Any]]:
        """Return every current value nested by package."""
        with self._lock:
            return {
                name: package.get_values_as_json()
                for name, package in self._packages.items()
            }

    def get_state_values_as_json(self) -> Dict[str, Dict[str, Any]]:
        return self.get_all_as_structured()

    def get_state_definitions_as_json(self, full: bool = True) -> Dict[str, Any]:
        with self._lock:
            return {
                name: package.get_types_as_json(full)
                for name, package in self._packages.items()
            }

    def package_names(self) -> List[str]:
        return list(self._packages)

    def categories(self) -> List[str]:
        return list(self._categories)

    def _resolve(self, name: str) -> Tuple[StatePackage, str]:
        package_name, prop_name = split_full_name(name)
        package = self._packages.get(package_name) if package_name else None
        if package is None:
            raise NotFoundError("property", name)
        return package, prop_name

    def _set_locked(self, name: str, value: Any, timestamp: datetime) -> StateChange:
        package, prop_name = self._resolve(name)
        validated = package.validate_value(prop_name, value)
        stored = self._change_queue.append(
            StateChange(property_name=name, value=validated, timestamp=timestamp)
        )
        package.set_value(prop_name, validated)
        return stored

    def _stamp(self, timestamp: Optional[datetime]) -> datetime:
        if timestamp is None:
            return self._clock()
        if timestamp.tzinfo is None or timestamp.utcoffset() is None:
            raise ParseError("State timestamps must be timezone-aware")
        return timestamp

    def _notify(self) -> None:
        for callback in list(self._on_changed):
            callback()
