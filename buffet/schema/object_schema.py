"""Object schemas: parsing from JSON definitions, inheritance and validation.

Definitions accept the compact forms used by device command and state files::

    "integer"                                  # bare type name
    ["_withKick", "_plain"]                    # enum, type inferred
    {"minimum": 0, "maximum": 100}             # constraints, type inferred
    {"type": "string", "maxLength": 32}        # explicit type

A schema may be parsed against a parent schema. Parent properties are kept,
child properties override them, and a child property given without an
explicit ``type`` refines the parent's constraints instead of replacing them.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional

from ..errors import ParseError, ValidationError
from .prop_types import PropType
from .values import PropValue, ValueType

_DEFINITION_KEYS = frozenset(
    {
        "type",
        "minimum",
        "maximum",
        "minLength",
        "maxLength",
        "enum",
        "default",
        "isRequired",
        "items",
        "properties",
        "additionalProperties",
    }
)


@dataclass(frozen=True)
class ObjectSchema:
    """Immutable set of named property types."""

    properties: Mapping[str, PropType] = field(default_factory=dict)
    extra_properties: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "properties", MappingProxyType(dict(self.properties))
        )

    def __contains__(self, name: object) -> bool:
        return name in self.properties

    def __iter__(self) -> Iterator[str]:
        return iter(self.properties)

    def __len__(self) -> int:
        return len(self.properties)

    def get(self, name: str) -> Optional[PropType]:
        return self.properties.get(name)

    @classmethod
    def from_json(
        cls,
        definition: Any,
        *,
        base: Optional["ObjectSchema"] = None,
        path: str = "",
    ) -> "ObjectSchema":
        """Parse a ``{name: prop-definition}`` mapping into a schema."""

        if not isinstance(definition, Mapping):
            raise ParseError(f"{path or 'schema'}: expected an object definition")

        parsed: Dict[str, PropType] = {}
        for name, prop_definition in definition.items():
            if not isinstance(name, str) or not name:
                raise ParseError(f"{path or 'schema'}: invalid property name {name!r}")
            prop_path = f"{path}.{name}" if path else name
            parent = base.get(name) if base is not None else None
            parsed[name] = parse_prop_type(prop_definition, path=prop_path, base=parent)

        child = cls(parsed, base.extra_properties if base is not None else False)
        if base is None:
            return child
        return merge_schemas(base, child)

    def validate(self, value: Any) -> Dict[str, PropValue]:
        """Validate an object value, filling defaults for absent properties.

        Returns the validated members in schema order followed by any
        additional properties the schema allows.
        """

        if not isinstance(value, Mapping):
            raise ValidationError("", "expected object")

        for key in value:
            if not isinstance(key, str):
                raise ValidationError("", f"object key {key!r} is not a string")
            if key not in self.properties and not self.extra_properties:
                raise ValidationError(key, "unexpected property")

        result: Dict[str, PropValue] = {}
        for name, prop in self.properties.items():
            if name in value:
                try:
                    result[name] = prop.validate(value[name])
                except ValidationError as exc:
                    raise exc.prefixed(name) from None
            elif prop.is_required:
                raise ValidationError(name, "required property is missing")
            elif prop.default is not None:
                result[name] = prop.default

        for key, item in value.items():
            if key in self.properties:
                continue
            try:
                result[key] = PropValue.from_json(item)
            except ValidationError as exc:
                raise exc.prefixed(key) from None
        return result

    def to_json(self, full: bool = True) -> Dict[str, Any]:
        return {name: prop.to_json(full) for name, prop in self.properties.items()}


def merge_schemas(parent: ObjectSchema, child: ObjectSchema) -> ObjectSchema:
    """Return a new schema with parent properties overridden by the child's."""

    merged: Dict[str, PropType] = dict(parent.properties)
    merged.update(child.properties)
    return ObjectSchema(merged, child.extra_properties)


def parse_prop_type(
    definition: Any, *, path: str, base: Optional[PropType] = None
) -> PropType:
    """Parse a single property definition in any of the accepted forms."""

    if isinstance(definition, str):
        return PropType(type=_parse_type_name(definition, path))
    if isinstance(definition, list):
        return _parse_mapping({"enum": definition}, path, base)
    if isinstance(definition, Mapping):
        return _parse_mapping(definition, path, base)
    raise ParseError(f"{path}: unsupported property definition {definition!r}")


def _parse_mapping(
    definition: Mapping[str, Any], path: str, base: Optional[PropType]
) -> PropType:
    unknown = sorted(str(key) for key in definition if key not in _DEFINITION_KEYS)
    if unknown:
        raise ParseError(f"{path}: unknown schema keyword(s): {', '.join(unknown)}")

    if "type" in definition:
        kind = _parse_type_name(definition["type"], path)
    elif base is not None:
        kind = base.type
    else:
        kind = _infer_type(definition, path)

    # An explicit type replaces the parent definition; otherwise refine it.
    inherit = base is not None and base.type is kind and "type" not in definition
    prop = base if inherit and base is not None else PropType(type=kind)
    prop = dataclasses.replace(prop, default=None, enum=None)

    if "minimum" in definition or "maximum" in definition:
        if kind not in (ValueType.INTEGER, ValueType.NUMBER):
            raise ParseError(f"{path}: minimum/maximum apply to numbers only")
        prop = dataclasses.replace(
            prop,
            minimum=_parse_bound(definition, "minimum", kind, path, prop.minimum),
            maximum=_parse_bound(definition, "maximum", kind, path, prop.maximum),
        )
    if prop.minimum is not None and prop.maximum is not None:
        if prop.minimum > prop.maximum:
            raise ParseError(f"{path}: minimum is greater than maximum")

    if "minLength" in definition or "maxLength" in definition:
        if kind is not ValueType.STRING:
            raise ParseError(f"{path}: minLength/maxLength apply to strings only")
        prop = dataclasses.replace(
            prop,
            min_length=_parse_length(definition, "minLength", path, prop.min_length),
            max_length=_parse_length(definition, "maxLength", path, prop.max_length),
        )
    if prop.min_length is not None and prop.max_length is not None:
        if prop.min_length > prop.max_length:
            raise ParseError(f"{path}: minLength is greater than maxLength")

    if "items" in definition:
        if kind is not ValueType.ARRAY:
            raise ParseError(f"{path}: items applies to arrays only")
        prop = dataclasses.replace(
            prop,
            items=parse_prop_type(
                definition["items"], path=f"{path}[]", base=prop.items
            ),
        )

    if "properties" in definition or "additionalProperties" in definition:
        if kind is not ValueType.OBJECT:
            raise ParseError(f"{path}: properties apply to objects only")
        inherited_extra = (
            prop.object_schema.extra_properties if prop.object_schema else False
        )
        extra = definition.get("additionalProperties", inherited_extra)
        if not isinstance(extra, bool):
            raise ParseError(f"{path}: additionalProperties must be a boolean")
        nested = ObjectSchema.from_json(
            definition.get("properties", {}), base=prop.object_schema, path=path
        )
        prop = dataclasses.replace(
            prop, object_schema=ObjectSchema(nested.properties, extra)
        )

    if "isRequired" in definition:
        required = definition["isRequired"]
        if not isinstance(required, bool):
            raise ParseError(f"{path}: isRequired must be a boolean")
        prop = dataclasses.replace(prop, required=required)

    enum = definition["enum"] if "enum" in definition else (
        base.enum if inherit and base is not None else None
    )
    if enum is not None:
        if not isinstance(enum, list) and not isinstance(enum, tuple):
            raise ParseError(f"{path}: enum must be a list")
        if not enum:
            raise ParseError(f"{path}: enum must not be empty")
        for index, item in enumerate(enum):
            try:
                prop.validate(item)
            except ValidationError as exc:
                raise ParseError(f"{path}: enum[{index}] {exc.reason}") from None
        prop = dataclasses.replace(prop, enum=tuple(enum))

    if "default" in definition:
        default_json = definition["default"]
    elif inherit and base is not None and base.default is not None:
        default_json = base.default.to_json()
    else:
        default_json = None
    if default_json is not None:
        try:
            default = prop.validate(default_json)
        except ValidationError as exc:
            raise ParseError(f"{path}: invalid default value: {exc.message}") from None
        prop = dataclasses.replace(prop, default=default)

    return prop


def _parse_type_name(name: Any, path: str) -> ValueType:
    try:
        return ValueType(name)
    except ValueError:
        raise ParseError(f"{path}: unknown type {name!r}") from None


def _infer_type(definition: Mapping[str, Any], path: str) -> ValueType:
    if "enum" in definition and isinstance(definition["enum"], list) and definition["enum"]:
        return _infer_value_type(definition["enum"], path)
    if "default" in definition:
        return _infer_value_type([definition["default"]], path)
    if "minimum" in definition or "maximum" in definition:
        bounds = [definition[key] for key in ("minimum", "maximum") if key in definition]
        return _infer_value_type(bounds, path)
    if "minLength" in definition or "maxLength" in definition:
        return ValueType.STRING
    if "properties" in definition or "additionalProperties" in definition:
        return ValueType.OBJECT
    if "items" in definition:
        return ValueType.ARRAY
    raise ParseError(f"{path}: unable to determine the property type")


def _infer_value_type(samples: list[Any], path: str) -> ValueType:
    try:
        kinds = {PropValue.from_json(sample).type for sample in samples}
    except ValidationError as exc:
        raise ParseError(f"{path}: {exc.message}") from None
    if kinds == {ValueType.INTEGER, ValueType.NUMBER}:
        return ValueType.NUMBER
    if len(kinds) != 1:
        raise ParseError(f"{path}: values of mixed types cannot infer a type")
    return kinds.pop()


def _parse_bound(
    definition: Mapping[str, Any],
    key: str,
    kind: ValueType,
    path: str,
    inherited: Any,
) -> Any:
    if key not in definition:
        return inherited
    value = definition[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ParseError(f"{path}: {key} must be a number")
    if kind is ValueType.INTEGER and not isinstance(value, int):
        raise ParseError(f"{path}: {key} must be an integer")
    return value


def _parse_length(
    definition: Mapping[str, Any], key: str, path: str, inherited: Any
) -> Any:
    if key not in definition:
        return inherited
    value = definition[key]
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ParseError(f"{path}: {key} must be a non-negative integer")
    return value
