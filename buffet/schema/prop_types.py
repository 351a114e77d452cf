"""Property type definitions and their validators."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple, Union

from ..errors import ValidationError
from .values import PropValue, ValueType

if TYPE_CHECKING:
    from .object_schema import ObjectSchema

Number = Union[int, float]


@dataclass(frozen=True)
class PropType:
    """Type and constraints of a single property.

    ``default`` holds an already validated value. ``required`` is the explicit
    ``isRequired`` flag; when unset a property is required unless it declares
    a default.
    """

    type: ValueType
    minimum: Optional[Number] = None
    maximum: Optional[Number] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    enum: Optional[Tuple[Any, ...]] = None
    default: Optional[PropValue] = None
    required: Optional[bool] = None
    items: Optional["PropType"] = None
    object_schema: Optional["ObjectSchema"] = None

    @property
    def has_default(self) -> bool:
        return self.default is not None

    @property
    def is_required(self) -> bool:
        if self.required is not None:
            return self.required
        return not self.has_default

    @property
    def has_constraints(self) -> bool:
        return any(
            value is not None
            for value in (
                self.minimum,
                self.maximum,
                self.min_length,
                self.max_length,
                self.enum,
                self.default,
                self.required,
                self.items,
                self.object_schema,
            )
        )

    def validate(self, value: Any) -> PropValue:
        """Validate ``value`` and return it tagged with this type.

        Raises ``ValidationError`` with an empty field path; containers
        prefix the path as the error propagates outwards.
        """

        kind = self.type
        if kind is ValueType.BOOLEAN:
            if not isinstance(value, bool):
                raise _mismatch(kind, value)
            result = PropValue(kind, value)
        elif kind is ValueType.INTEGER:
            if isinstance(value, bool) or not isinstance(value, int):
                raise _mismatch(kind, value)
            self._check_range(value)
            result = PropValue(kind, value)
        elif kind is ValueType.NUMBER:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise _mismatch(kind, value)
            if isinstance(value, float) and not math.isfinite(value):
                raise ValidationError("", f"number {value!r} is not finite")
            self._check_range(value)
            result = PropValue(kind, value)
        elif kind is ValueType.STRING:
            if not isinstance(value, str):
                raise _mismatch(kind, value)
            self._check_length(value)
            result = PropValue(kind, value)
        elif kind is ValueType.ARRAY:
            result = self._validate_array(value)
        elif kind is ValueType.OBJECT:
            result = self._validate_object(value)
        else:
            raise TypeError(f"Unhandled value type: {kind!r}")

        if self.enum is not None and not _enum_contains(self.enum, value):
            allowed = ", ".join(repr(item) for item in self.enum)
            raise ValidationError("", f"value {value!r} is not one of [{allowed}]")
        return result

    def to_json(self, full: bool = True) -> Union[str, Dict[str, Any]]:
        if not full and not self.has_constraints:
            return self.type.value

        payload: Dict[str, Any] = {"type": self.type.value}
        if self.minimum is not None:
            payload["minimum"] = self.minimum
        if self.maximum is not None:
            payload["maximum"] = self.maximum
        if self.min_length is not None:
            payload["minLength"] = self.min_length
        if self.max_length is not None:
            payload["maxLength"] = self.max_length
        if self.enum is not None:
            payload["enum"] = list(self.enum)
        if self.default is not None:
            payload["default"] = self.default.to_json()
        if self.required is not None:
            payload["isRequired"] = self.required
        if self.items is not None:
            payload["items"] = self.items.to_json(full)
        if self.object_schema is not None:
            payload["properties"] = self.object_schema.to_json(full)
            payload["additionalProperties"] = self.object_schema.extra_properties
        return payload

    def _check_range(self, value: Number) -> None:
        if self.minimum is not None and value < self.minimum:
            raise ValidationError(
                "", f"value {value!r} is below the minimum of {self.minimum!r}"
            )
        if self.maximum is not None and value > self.maximum:
            raise ValidationError(
                "", f"value {value!r} is above the maximum of {self.maximum!r}"
            )

    def _check_length(self, value: str) -> None:
        if self.min_length is not None and len(value) < self.min_length:
            raise ValidationError(
                "", f"string is shorter than {self.min_length} character(s)"
            )
        if self.max_length is not None and len(value) > self.max_length:
            raise ValidationError(
                "", f"string is longer than {self.max_length} character(s)"
            )

    def _validate_array(self, value: Any) -> PropValue:
        if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple)):
            raise _mismatch(ValueType.ARRAY, value)

        items = []
        for index, item in enumerate(value):
            try:
                if self.items is None:
                    items.append(PropValue.from_json(item))
                else:
                    items.append(self.items.validate(item))
            except ValidationError as exc:
                raise exc.prefixed(f"[{index}]") from None
        return PropValue.array(tuple(items))

    def _validate_object(self, value: Any) -> PropValue:
        if self.object_schema is None:
            if not isinstance(value, dict):
                raise _mismatch(ValueType.OBJECT, value)
            return PropValue.from_json(value)
        return PropValue.object(self.object_schema.validate(value))


def _mismatch(expected: ValueType, value: Any) -> ValidationError:
    return ValidationError(
        "", f"expected {expected.value}, got {_describe(value)}"
    )


def _describe(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _enum_contains(allowed: Tuple[Any, ...], value: Any) -> bool:
    # True == 1 in Python; booleans only match booleans.
    for candidate in allowed:
        if isinstance(candidate, bool) != isinstance(value, bool):
            continue
        if candidate == value:
            return True
    return False
