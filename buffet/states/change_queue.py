"""Bounded, ordered log of device state changes."""

from __future__ import annotations

import dataclasses
import itertools
import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Deque, Dict, Tuple

from .. import constants
from ..errors import GapError, ParseError
from ..schema import PropValue

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class StateChange:
    """Immutable record of one accepted property write.

    ``sequence`` is assigned by the queue on append; records built by
    writers carry ``-1`` until then.
    """

    property_name: str
    value: PropValue
    timestamp: datetime
    sequence: int = -1

    def to_json(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "name": self.property_name,
            "value": self.value.to_json(),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class DrainResult:
    changes: Tuple[StateChange, ...]
    cursor: int


class StateChangeQueue:
    """Keeps the most recent ``capacity`` state changes for observers.

    Appending to a full queue evicts the oldest record. Consumers track a
    cursor (the sequence number of the next change they have not seen) and
    call ``drain_since``. If the changes after their cursor were evicted,
    ``drain_since`` raises ``GapError`` and the consumer must resync from
    the current state instead of assuming a complete history.

    Usage:
        queue = StateChangeQueue(capacity=100)
        cursor = queue.next_cursor
        ...
        try:
            result = queue.drain_since(cursor)
        except GapError:
            snapshot = state_manager.get_all_as_structured()
            cursor = queue.next_cursor
        else:
            cursor = result.cursor
    """

    def __init__(self, capacity: int = constants.DEFAULT_STATE_QUEUE_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("State change queue capacity must be positive")
        self._capacity = capacity
        self._changes: Deque[StateChange] = deque(maxlen=capacity)
        self._next_sequence = 0
        self._last_timestamp: datetime | None = None
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def size(self) -> int:
        return len(self._changes)

    def __len__(self) -> int:
        return len(self._changes)

    @property
    def next_cursor(self) -> int:
        """Cursor positioned after every change appended so far."""
        return self._next_sequence

    @property
    def oldest_cursor(self) -> int:
        with self._lock:
            return self._next_sequence - len(self._changes)

    def append(self, change: StateChange) -> StateChange:
        """Append ``change`` and return the stored, sequenced record.

        A timestamp older than the previous record is clamped to it so that
        timestamps never decrease in append order.
        """

        if change.timestamp.utcoffset() is None:
            raise ParseError("State change timestamps must be timezone-aware")
        with self._lock:
            timestamp = change.timestamp
            if self._last_timestamp is not None and timestamp < self._last_timestamp:
                timestamp = self._last_timestamp
            stored = dataclasses.replace(
                change, timestamp=timestamp, sequence=self._next_sequence
            )
            if len(self._changes) == self._capacity:
                LOGGER.debug(
                    "State change queue full; evicting change %d",
                    self._changes[0].sequence,
                )
            self._changes.append(stored)
            self._next_sequence += 1
            self._last_timestamp = timestamp
        return stored

    def drain_since(self, cursor: int) -> DrainResult:
        """Return every change at or after ``cursor`` and the advanced cursor.

        Raises:
            GapError: ``cursor`` points at evicted history or past the end.
        """

        with self._lock:
            oldest = self._next_sequence - len(self._changes)
            if cursor < oldest or cursor > self._next_sequence:
                raise GapError(cursor, oldest, self._next_sequence)
            changes = tuple(itertools.islice(self._changes, cursor - oldest, None))
            return DrainResult(changes, self._next_sequence)

    def snapshot(self) -> Tuple[StateChange, ...]:
        with self._lock:
            return tuple(self._changes)

    def reset(self) -> None:
        """Drop every retained change; cursors that had not caught up become gaps."""
        with self._lock:
            self._changes.clear()
