"""A single issued command and its lifecycle."""

from __future__ import annotations

import copy
import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..errors import NotFoundError, ParseError, StateConflictError, ValidationError
from ..schema import ObjectSchema, PropValue, values_to_json
from .definition import CommandDefinition
from .dictionary import CommandDictionary

LOGGER = logging.getLogger(__name__)


class CommandState(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "inProgress"
    DONE = "done"
    ERROR = "error"
    ABORTED = "aborted"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {CommandState.DONE, CommandState.ERROR, CommandState.ABORTED, CommandState.CANCELLED}
)


class CommandOrigin(str, Enum):
    LOCAL = "local"
    CLOUD = "cloud"


CommandObserver = Callable[["CommandInstance"], None]


class CommandInstance:
    """A command issued against a definition from the command dictionary.

    Instances start ``queued``. An executor drives them with
    ``set_progress``, ``complete``, ``abort``, ``cancel`` and ``fail``. Once a
    terminal state is reached every mutator raises ``StateConflictError``
    and leaves the instance untouched.

    Progress updates replace the whole progress value. Completing keeps the
    last progress value so late readers still see it.
    """

    def __init__(
        self,
        name: str,
        definition: CommandDefinition,
        parameters: Mapping[str, PropValue],
        *,
        origin: CommandOrigin = CommandOrigin.LOCAL,
        component: str = "",
    ) -> None:
        self._name = name
        self._definition = definition
        self._parameters: Dict[str, PropValue] = dict(parameters)
        self._origin = origin
        self._component = component

        self._id: Optional[str] = None
        self._state = CommandState.QUEUED
        self._progress: Dict[str, PropValue] = {}
        self._results: Dict[str, PropValue] = {}
        self._error: Optional[Dict[str, str]] = None
        self._observers: List[CommandObserver] = []
        self._lock = threading.Lock()

    @classmethod
    def from_json(
        cls,
        payload: Any,
        origin: CommandOrigin,
        dictionary: CommandDictionary,
    ) -> "CommandInstance":
        """Build an instance from a raw ``{name, component, parameters}`` payload.

        Raises:
            ParseError: The payload is not a well-formed command object.
            NotFoundError: No definition exists for the command name.
            ValidationError: The parameters do not match the definition.
        """

        if not isinstance(payload, Mapping):
            raise ParseError("Command payload must be an object")

        name = payload.get("name")
        if not isinstance(name, str) or not name:
            raise ParseError("Command payload is missing a 'name'")

        component = payload.get("component", "")
        if not isinstance(component, str):
            raise ParseError("Command 'component' must be a string")

        raw_parameters = payload.get("parameters", {})
        if not isinstance(raw_parameters, Mapping):
            raise ParseError("Command 'parameters' must be an object")

        definition = dictionary.find(name)
        if definition is None:
            raise NotFoundError("command", name)

        try:
            parameters = definition.parameters.validate(raw_parameters)
        except ValidationError as exc:
            raise exc.prefixed("parameters") from None

        return cls(
            name,
            definition,
            parameters,
            origin=origin,
            component=component,
        )

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------
    @property
    def id(self) -> Optional[str]:
        return self._id

    @property
    def name(self) -> str:
        return self._name

    @property
    def category(self) -> str:
        return self._definition.category

    @property
    def component(self) -> str:
        return self._component

    @property
    def origin(self) -> CommandOrigin:
        return self._origin

    @property
    def definition(self) -> CommandDefinition:
        return self._definition

    @property
    def state(self) -> CommandState:
        return self._state

    @property
    def parameters(self) -> Dict[str, Any]:
        return values_to_json(self._parameters)

    @property
    def progress(self) -> Dict[str, Any]:
        return values_to_json(self._progress)

    @property
    def results(self) -> Dict[str, Any]:
        return values_to_json(self._results)

    @property
    def error(self) -> Optional[Dict[str, str]]:
        return copy.deepcopy(self._error)

    def to_json(self) -> Dict[str, Any]:
        with self._lock:
            payload: Dict[str, Any] = {
                "id": self._id,
                "name": self._name,
                "component": self._component,
                "state": self._state.value,
                "origin": self._origin.value,
                "parameters": values_to_json(self._parameters),
                "progress": values_to_json(self._progress),
                "results": values_to_json(self._results),
            }
            if self._error is not None:
                payload["error"] = dict(self._error)
        return payload

    # ------------------------------------------------------------------
    # Ownership hooks used by the command queue
    # ------------------------------------------------------------------
    def assign_id(self, command_id: str) -> None:
        self._id = command_id

    def add_observer(self, observer: CommandObserver) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: CommandObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    # ------------------------------------------------------------------
    # Mutators
    # ------------------------------------------------------------------
    def set_progress(self, progress: Any) -> None:
        with self._lock:
            self._ensure_active()
            validated = _validate_payload(
                self._definition.progress, progress, "progress"
            )
            self._progress = validated
            self._state = CommandState.IN_PROGRESS
        self._notify()

    def complete(self, results: Any) -> None:
        with self._lock:
            self._ensure_active()
            validated = _validate_payload(self._definition.results, results, "results")
            self._results = validated
            self._finish(CommandState.DONE)
        self._notify()

    def abort(self, code: str, message: str) -> None:
        with self._lock:
            self._ensure_active()
            self._error = {"code": code, "message": message}
            self._finish(CommandState.ABORTED)
        self._notify()

    def fail(self, code: str, message: str) -> None:
        with self._lock:
            self._ensure_active()
            self._error = {"code": code, "message": message}
            self._finish(CommandState.ERROR)
        self._notify()

    def cancel(self) -> None:
        with self._lock:
            self._ensure_active()
            self._finish(CommandState.CANCELLED)
        self._notify()

    def _ensure_active(self) -> None:
        if self._state.is_terminal:
            raise StateConflictError(self._id, self._state.value)

    def _finish(self, state: CommandState) -> None:
        self._state = state
        LOGGER.debug("Command %s (%s) finished: %s", self._id, self._name, state.value)

    def _notify(self) -> None:
        for observer in list(self._observers):
            observer(self)


def _validate_payload(
    schema: Optional[ObjectSchema], payload: Any, field: str
) -> Dict[str, PropValue]:
    if not isinstance(payload, Mapping):
        raise ValidationError(field, "expected object")
    try:
        if schema is None:
            return dict(PropValue.from_json(payload).value)
        return schema.validate(payload)
    except ValidationError as exc:
        raise exc.prefixed(field) from None
