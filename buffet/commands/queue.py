"""In-memory registry of live command instances."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from .. import constants
from .instance import CommandInstance

LOGGER = logging.getLogger(__name__)

CommandCallback = Callable[[CommandInstance], None]


class CommandQueue:
    """Owns every admitted command, keyed by its queue-assigned id.

    Ids are ``<prefix><n>`` where ``n`` counts up from 1 for the lifetime of
    the queue, so an id is never handed out twice. Commands that reach a
    terminal state stay listed for ``retention`` so late readers can observe
    the final state; they are reaped lazily on the next listing pass.

    Callbacks run synchronously, outside the queue lock, and must not call
    back into the queue that invoked them.
    """

    RETENTION = timedelta(seconds=constants.DEFAULT_COMMAND_RETENTION_SECONDS)

    def __init__(
        self,
        *,
        id_prefix: str = "",
        retention: timedelta = RETENTION,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._id_prefix = id_prefix
        self._retention = retention
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._commands: Dict[str, CommandInstance] = {}
        self._finished_at: Dict[str, datetime] = {}
        self._next_id = 0
        self._lock = threading.Lock()

        self._on_changed: Optional[CommandCallback] = None
        self._change_listeners: List[CommandCallback] = []
        self._on_added: List[CommandCallback] = []
        self._on_removed: List[CommandCallback] = []

    def __len__(self) -> int:
        return len(self._commands)

    def set_callback(self, on_changed: Optional[CommandCallback]) -> None:
        """Register the observer notified after every command state change."""
        self._on_changed = on_changed

    def add_on_command_changed(self, callback: CommandCallback) -> None:
        self._change_listeners.append(callback)

    def add_on_command_added(self, callback: CommandCallback) -> None:
        self._on_added.append(callback)

    def add_on_command_removed(self, callback: CommandCallback) -> None:
        self._on_removed.append(callback)

    def add(self, instance: CommandInstance) -> str:
        with self._lock:
            if instance.id is not None and instance.id in self._commands:
                raise ValueError(f"Command {instance.id} is already queued")
            self._next_id += 1
            command_id = f"{self._id_prefix}{self._next_id}"
            instance.assign_id(command_id)
            self._commands[command_id] = instance
            if instance.state.is_terminal:
                self._finished_at[command_id] = self._clock()

        instance.add_observer(self._handle_instance_changed)
        LOGGER.debug("Queued command %s (%s)", command_id, instance.name)
        for callback in list(self._on_added):
            callback(instance)
        return command_id

    def find(self, command_id: str) -> Optional[CommandInstance]:
        return self._commands.get(command_id)

    def list(self) -> List[CommandInstance]:
        """Return commands in admission order, reaping expired ones first."""
        self.reap()
        with self._lock:
            return list(self._commands.values())

    def remove(self, command_id: str) -> bool:
        with self._lock:
            instance = self._commands.pop(command_id, None)
            self._finished_at.pop(command_id, None)
        if instance is None:
            return False
        self._detach(instance)
        return True

    def reap(self, now: Optional[datetime] = None) -> int:
        """Drop terminal commands that finished more than ``retention`` ago."""

        current = now or self._clock()
        cutoff = current - self._retention
        with self._lock:
            expired_ids = [
                command_id
                for command_id, finished_at in self._finished_at.items()
                if finished_at <= cutoff
            ]
            expired = []
            for command_id in expired_ids:
                del self._finished_at[command_id]
                instance = self._commands.pop(command_id, None)
                if instance is not None:
                    expired.append(instance)

        for instance in expired:
            self._detach(instance)
        if expired:
            LOGGER.debug("Reaped %d finished command(s)", len(expired))
        return len(expired)

    def _detach(self, instance: CommandInstance) -> None:
        instance.remove_observer(self._handle_instance_changed)
        for callback in list(self._on_removed):
            callback(instance)

    def _handle_instance_changed(self, instance: CommandInstance) -> None:
        command_id = instance.id
        if command_id is not None and instance.state.is_terminal:
            with self._lock:
                if command_id in self._commands:
                    self._finished_at.setdefault(command_id, self._clock())

        if self._on_changed is not None:
            self._on_changed(instance)
        for callback in list(self._change_listeners):
            callback(instance)
