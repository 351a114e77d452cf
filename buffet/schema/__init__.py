"""Object-schema type system used by commands and device state."""

from .object_schema import ObjectSchema, merge_schemas, parse_prop_type
from .prop_types import PropType
from .values import PropValue, ValueType, values_to_json

__all__ = [
    "ObjectSchema",
    "PropType",
    "PropValue",
    "ValueType",
    "merge_schemas",
    "parse_prop_type",
    "values_to_json",
]
