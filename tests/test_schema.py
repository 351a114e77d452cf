"""Tests for property types, object schemas and schema inheritance."""

import pytest

from buffet.errors import ParseError, ValidationError
from buffet.schema import ObjectSchema, PropValue, ValueType, merge_schemas, parse_prop_type


def _schema(definition, base=None) -> ObjectSchema:
    return ObjectSchema.from_json(definition, base=base)


class TestPropTypeParsing:
    def test_bare_type_name(self) -> None:
        prop = parse_prop_type("integer", path="p")
        assert prop.type is ValueType.INTEGER
        assert not prop.has_constraints

    def test_enum_list_infers_type(self) -> None:
        prop = parse_prop_type(["_withKick", "_plain"], path="p")
        assert prop.type is ValueType.STRING
        assert prop.enum == ("_withKick", "_plain")

    def test_mixed_numbers_infer_number(self) -> None:
        prop = parse_prop_type({"minimum": 0, "maximum": 1.5}, path="p")
        assert prop.type is ValueType.NUMBER

    def test_default_makes_property_optional(self) -> None:
        prop = parse_prop_type({"type": "integer", "default": 3}, path="p")
        assert prop.default == PropValue(ValueType.INTEGER, 3)
        assert prop.is_required is False

    def test_is_required_overrides_default(self) -> None:
        prop = parse_prop_type(
            {"type": "integer", "default": 3, "isRequired": True}, path="p"
        )
        assert prop.is_required is True

    @pytest.mark.parametrize(
        "definition",
        [
            "complex",
            {"type": "integer", "minimum": 5, "maximum": 1},
            {"type": "string", "minimum": 1},
            {"type": "string", "minLength": -1},
            {"type": "integer", "enum": []},
            {"type": "integer", "enum": [1, "two"]},
            {"type": "integer", "maximum": 10, "default": 11},
            {"type": "integer", "pattern": "x"},
            {"isRequired": True},
            ["a", 1],
            42,
        ],
    )
    def test_invalid_definitions_raise_parse_error(self, definition) -> None:
        with pytest.raises(ParseError):
            parse_prop_type(definition, path="p")

    def test_to_json_short_form_for_unconstrained(self) -> None:
        prop = parse_prop_type("string", path="p")
        assert prop.to_json(full=False) == "string"
        assert prop.to_json(full=True) == {"type": "string"}


class TestValidation:
    def test_integer_rejects_bool_and_float(self) -> None:
        prop = parse_prop_type("integer", path="p")
        assert prop.validate(7) == PropValue(ValueType.INTEGER, 7)
        with pytest.raises(ValidationError):
            prop.validate(True)
        with pytest.raises(ValidationError):
            prop.validate(53.0)

    def test_number_accepts_int_and_rejects_nan(self) -> None:
        prop = parse_prop_type("number", path="p")
        assert prop.validate(2).type is ValueType.NUMBER
        with pytest.raises(ValidationError):
            prop.validate(float("nan"))

    def test_range_bounds_are_inclusive(self) -> None:
        prop = parse_prop_type({"minimum": 0, "maximum": 100}, path="p")
        prop.validate(0)
        prop.validate(100)
        with pytest.raises(ValidationError, match="below the minimum"):
            prop.validate(-1)
        with pytest.raises(ValidationError, match="above the maximum"):
            prop.validate(101)

    def test_string_length(self) -> None:
        prop = parse_prop_type({"minLength": 2, "maxLength": 3}, path="p")
        prop.validate("ab")
        with pytest.raises(ValidationError):
            prop.validate("a")
        with pytest.raises(ValidationError):
            prop.validate("abcd")

    def test_enum_keeps_booleans_apart_from_integers(self) -> None:
        prop = parse_prop_type({"type": "integer", "enum": [0, 1]}, path="p")
        prop.validate(1)
        with pytest.raises(ValidationError):
            prop.validate(True)
        with pytest.raises(ValidationError, match="is not one of"):
            prop.validate(2)

    def test_array_items_report_index(self) -> None:
        prop = parse_prop_type({"type": "array", "items": "integer"}, path="p")
        value = prop.validate([1, 2])
        assert value.to_json() == [1, 2]
        with pytest.raises(ValidationError) as excinfo:
            prop.validate([1, "x"])
        assert excinfo.value.field == "[1]"

    def test_array_rejects_string(self) -> None:
        prop = parse_prop_type("array", path="p")
        with pytest.raises(ValidationError):
            prop.validate("abc")

    def test_free_form_object(self) -> None:
        prop = parse_prop_type("object", path="p")
        assert prop.validate({"a": [1, {"b": True}]}).to_json() == {"a": [1, {"b": True}]}
        with pytest.raises(ValidationError):
            prop.validate([1])


class TestObjectSchema:
    def test_fills_defaults_and_checks_required(self) -> None:
        schema = _schema(
            {
                "height": {"type": "integer", "minimum": 0, "maximum": 100},
                "_jumpType": {"enum": ["_withKick", "_plain"], "default": "_plain"},
            }
        )

        values = schema.validate({"height": 53})
        assert values["_jumpType"] == PropValue(ValueType.STRING, "_plain")

        with pytest.raises(ValidationError) as excinfo:
            schema.validate({"_jumpType": "_plain"})
        assert excinfo.value.field == "height"
        assert excinfo.value.reason == "required property is missing"

    def test_required_property_ignores_default_when_missing(self) -> None:
        schema = _schema({"duration": {"type": "integer", "default": 3, "isRequired": True}})

        with pytest.raises(ValidationError) as excinfo:
            schema.validate({})
        assert excinfo.value.field == "duration"
        assert excinfo.value.reason == "required property is missing"

        assert schema.validate({"duration": 7})["duration"] == PropValue(ValueType.INTEGER, 7)

    def test_rejects_unknown_property(self) -> None:
        schema = _schema({"height": "integer"})
        with pytest.raises(ValidationError) as excinfo:
            schema.validate({"height": 1, "speed": 2})
        assert excinfo.value.field == "speed"

    def test_additional_properties_are_tagged(self) -> None:
        schema = _schema(
            {
                "settings": {
                    "type": "object",
                    "properties": {"name": "string"},
                    "additionalProperties": True,
                }
            }
        )
        value = schema.validate({"settings": {"name": "a", "extra": 1.5}})
        members = value["settings"].value
        assert members["extra"] == PropValue(ValueType.NUMBER, 1.5)

    def test_nested_error_path(self) -> None:
        schema = _schema(
            {"position": {"type": "object", "properties": {"x": "number"}}}
        )
        with pytest.raises(ValidationError) as excinfo:
            schema.validate({"position": {"x": "far"}})
        assert excinfo.value.field == "position.x"
        assert "position.x" in str(excinfo.value)

    def test_to_json_round_trips_definition(self) -> None:
        definition = {
            "height": {"type": "integer", "minimum": 0, "maximum": 100},
            "name": {"type": "string"},
        }
        schema = _schema(definition)
        assert _schema(schema.to_json()).to_json() == definition


class TestInheritance:
    def test_child_refines_parent_constraints(self) -> None:
        parent = _schema({"level": {"type": "integer", "minimum": 0, "maximum": 100}})
        child = _schema({"level": {"maximum": 10}}, base=parent)

        level = child.get("level")
        assert level is not None
        assert level.minimum == 0
        assert level.maximum == 10
        # The parent is left untouched.
        assert parent.get("level").maximum == 100

    def test_explicit_type_replaces_parent(self) -> None:
        parent = _schema({"level": {"type": "integer", "minimum": 0}})
        child = _schema({"level": {"type": "string"}}, base=parent)
        level = child.get("level")
        assert level.type is ValueType.STRING
        assert level.minimum is None

    def test_parent_properties_are_kept(self) -> None:
        parent = _schema({"a": "integer"})
        child = _schema({"_b": "string"}, base=parent)
        assert list(child) == ["a", "_b"]

    def test_merge_schemas_child_wins(self) -> None:
        parent = _schema({"a": "integer", "b": "string"})
        child = _schema({"b": "boolean"})
        merged = merge_schemas(parent, child)
        assert merged.get("a").type is ValueType.INTEGER
        assert merged.get("b").type is ValueType.BOOLEAN

    def test_nested_object_inherits_additional_properties(self) -> None:
        parent = _schema(
            {
                "settings": {
                    "type": "object",
                    "properties": {"name": "string"},
                    "additionalProperties": True,
                }
            }
        )
        child = _schema(
            {"settings": {"properties": {"_vendor": "integer"}}}, base=parent
        )
        nested = child.get("settings").object_schema
        assert nested.extra_properties is True
        assert list(nested) == ["name", "_vendor"]
