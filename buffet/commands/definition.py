"""Command definitions loaded into a command dictionary."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..schema import ObjectSchema


@dataclass(frozen=True)
class CommandDefinition:
    """One command: its category plus parameter, progress and result schemas.

    The category names the source the command was loaded from, e.g.
    ``powerd`` for ``base.reboot``. A missing progress or result schema
    means any object is accepted.
    """

    category: str
    parameters: ObjectSchema
    progress: Optional[ObjectSchema] = None
    results: Optional[ObjectSchema] = None

    def to_json(self, full: bool = True) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"parameters": self.parameters.to_json(full)}
        if self.progress is not None:
            payload["progress"] = self.progress.to_json(full)
        if self.results is not None:
            payload["results"] = self.results.to_json(full)
        return payload
