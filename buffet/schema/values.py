"""Typed values produced by schema validation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Tuple

from ..errors import ValidationError


class ValueType(str, Enum):
    INTEGER = "integer"
    NUMBER = "number"
    STRING = "string"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"


SCALAR_TYPES = frozenset(
    {ValueType.INTEGER, ValueType.NUMBER, ValueType.STRING, ValueType.BOOLEAN}
)


@dataclass(frozen=True)
class PropValue:
    """A validated value tagged with its schema type.

    Scalars hold the plain Python value. Arrays hold a tuple of ``PropValue``
    and objects hold a read-only mapping of ``PropValue``.
    """

    type: ValueType
    value: Any

    @classmethod
    def array(cls, items: Tuple["PropValue", ...]) -> "PropValue":
        return cls(ValueType.ARRAY, tuple(items))

    @classmethod
    def object(cls, members: Mapping[str, "PropValue"]) -> "PropValue":
        return cls(ValueType.OBJECT, MappingProxyType(dict(members)))

    @classmethod
    def from_json(cls, value: Any) -> "PropValue":
        """Tag an untyped JSON value, for payloads without a declared schema."""

        if isinstance(value, bool):
            return cls(ValueType.BOOLEAN, value)
        if isinstance(value, int):
            return cls(ValueType.INTEGER, value)
        if isinstance(value, float):
            return cls(ValueType.NUMBER, value)
        if isinstance(value, str):
            return cls(ValueType.STRING, value)
        if isinstance(value, (list, tuple)):
            items = []
            for index, item in enumerate(value):
                try:
                    items.append(cls.from_json(item))
                except ValidationError as exc:
                    raise exc.prefixed(f"[{index}]") from None
            return cls.array(tuple(items))
        if isinstance(value, Mapping):
            members = {}
            for key, item in value.items():
                if not isinstance(key, str):
                    raise ValidationError("", f"object key {key!r} is not a string")
                try:
                    members[key] = cls.from_json(item)
                except ValidationError as exc:
                    raise exc.prefixed(key) from None
            return cls.object(members)
        raise ValidationError("", f"unsupported value of type {type(value).__name__}")

    def to_json(self) -> Any:
        if self.type is ValueType.OBJECT:
            return {key: member.to_json() for key, member in self.value.items()}
        if self.type is ValueType.ARRAY:
            return [item.to_json() for item in self.value]
        if self.type in SCALAR_TYPES:
            return self.value
        raise TypeError(f"Unhandled value type: {self.type!r}")


def values_to_json(values: Mapping[str, PropValue]) -> dict[str, Any]:
    return {name: value.to_json() for name, value in values.items()}
