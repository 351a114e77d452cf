"""A named group of typed state properties."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from ..errors import NotFoundError, ParseError, ValidationError
from ..schema import PropType, PropValue, parse_prop_type


class StatePackage:
    """Properties of one state package, e.g. ``base`` or a vendor package.

    Property types may be contributed by several definition sources, but a
    property can only be defined once. Values always satisfy their types.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._types: Dict[str, PropType] = {}
        self._values: Dict[str, PropValue] = {}

    def parse_definitions(self, definitions: Any) -> Dict[str, PropType]:
        """Parse property definitions without adding them to the package."""

        if not isinstance(definitions, Mapping):
            raise ParseError(f"State package {self.name!r} must be an object")
        parsed: Dict[str, PropType] = {}
        for prop_name, definition in definitions.items():
            if not isinstance(prop_name, str) or not prop_name or "." in prop_name:
                raise ParseError(f"Invalid state property name {prop_name!r}")
            full_name = f"{self.name}.{prop_name}"
            if prop_name in self._types:
                raise ParseError(f"State property {full_name!r} is already defined")
            parsed[prop_name] = parse_prop_type(definition, path=full_name)
        return parsed

    def add_definitions(self, types: Mapping[str, PropType]) -> None:
        for prop_name, prop_type in types.items():
            self._types[prop_name] = prop_type
            if prop_type.default is not None:
                self._values[prop_name] = prop_type.default

    def validate_value(self, prop_name: str, value: Any) -> PropValue:
        prop_type = self._types.get(prop_name)
        if prop_type is None:
            raise NotFoundError("property", f"{self.name}.{prop_name}")
        try:
            return prop_type.validate(value)
        except ValidationError as exc:
            raise exc.prefixed(f"{self.name}.{prop_name}") from None

    def set_value(self, prop_name: str, value: PropValue) -> None:
        self._values[prop_name] = value

    def get_value(self, prop_name: str) -> Optional[PropValue]:
        if prop_name not in self._types:
            raise NotFoundError("property", f"{self.name}.{prop_name}")
        return self._values.get(prop_name)

    def get_values_as_json(self) -> Dict[str, Any]:
        return {name: value.to_json() for name, value in self._values.items()}

    def get_types_as_json(self, full: bool = True) -> Dict[str, Any]:
        return {name: prop.to_json(full) for name, prop in self._types.items()}
