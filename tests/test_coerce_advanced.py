from __future__ import annotations

from typing import Annotated, Any

import pytest
from pydantic import AliasChoices, BaseModel, Field, TypeAdapter

from healjson.api import coerce, parse, parse_debug
from healjson.coerce import CoerceOptions, coerce_value
from healjson.errors import DepthExceededError, MissingRequiredFieldError, TypeMismatchError
from healjson.flags import FlagKind
from healjson.schema import (
    FieldSpec,
    PrimitiveKind,
    PrimitiveSchema,
    StreamPolicy,
    StructSchema,
    schema_for,
)
from healjson.types import CompletionState, StringKind
from healjson.value import Array, Null, Number, Object, String

_STR = PrimitiveSchema(PrimitiveKind.STRING)

# ---------------------------------------------------------------------------
# Field resolution
# ---------------------------------------------------------------------------


class Person(BaseModel):
    name: str
    age: int


class Place(BaseModel):
    name: str
    address: str


class Hair(BaseModel):
    hair_color: str


class User(BaseModel):
    user_id: int = Field(alias="userId")
    email: str = Field(validation_alias=AliasChoices("mail", "e_mail"))


class Pair(BaseModel):
    user_name: str
    username: str


def _kinds(result) -> list[FlagKind]:
    return [f.kind for f in result.flags]


class TestFieldResolution:
    def test_exact_keys_are_clean(self):
        res = parse('{"name": "Ann", "age": 31}', Person)
        assert res.value == Person(name="Ann", age=31)
        assert res.flags == ()

    def test_case_insensitive(self):
        res = parse('{"NAME": "Ann", "Age": 31}', Person)
        assert res.value.name == "Ann"
        assert _kinds(res).count(FlagKind.CASE_INSENSITIVE_FIELD_MATCH) == 2

    def test_alias_and_validation_alias(self):
        res = parse('{"userId": 5, "e_mail": "a@b.c"}', User)
        assert res.value.user_id == 5
        assert res.value.email == "a@b.c"
        assert _kinds(res) == [FlagKind.ALIAS_FIELD_MATCH, FlagKind.ALIAS_FIELD_MATCH]

    def test_naming_convention(self):
        res = parse('{"hair color": "Grey"}', Hair)
        assert res.value.hair_color == "Grey"
        assert _kinds(res) == [FlagKind.CONVENTION_FIELD_MATCH]

    def test_fuzzy_typo(self):
        res = parse('{"name": "Home", "adress": "1 Main St"}', Place)
        assert res.value.address == "1 Main St"
        fuzzy = [f for f in res.flags if f.kind is FlagKind.FUZZY_FIELD_MATCH]
        assert [(f.expected, f.found) for f in fuzzy] == [("address", "adress")]

    def test_ambiguous_fuzzy_match_is_rejected(self):
        with pytest.raises(MissingRequiredFieldError) as info:
            parse('{"name": "Home", "adress": "a", "addres": "b"}', Place)
        assert info.value.field == "address"

    def test_stronger_level_wins_across_fields(self):
        res = parse('{"userName": "a", "username": "b"}', Pair)
        assert res.value.user_name == "a"
        assert res.value.username == "b"

    def test_exact_beats_case_insensitive(self):
        res = parse('{"NAME": "x", "name": "Ann", "age": 1}', Person)
        assert res.value.name == "Ann"
        assert FlagKind.EXTRA_KEY in _kinds(res)
        assert FlagKind.CASE_INSENSITIVE_FIELD_MATCH not in _kinds(res)

    def test_last_duplicate_key_wins(self):
        res = parse('{"name": "a", "name": "b", "age": 1,}', Person)
        assert res.value.name == "b"
        extra = [f.field for f in res.flags if f.kind is FlagKind.EXTRA_KEY]
        assert extra == ["name"]

    def test_extra_keys_are_flagged(self):
        res = parse('{"name": "Ann", "age": 3, "role": "x"}', Person)
        extra = [f for f in res.flags if f.kind is FlagKind.EXTRA_KEY]
        assert [f.field for f in extra] == ["role"]


# ---------------------------------------------------------------------------
# Defaults, missing fields and implied keys
# ---------------------------------------------------------------------------


class Contact(BaseModel):
    name: str
    email: str | None = None
    tags: list[str] = Field(default_factory=list)


class Wrapper(BaseModel):
    n: int


def test_defaults_are_used_and_flagged():
    res = parse('{"name": "Ann"}', Contact)
    assert res.value == Contact(name="Ann")
    assert _kinds(res) == [FlagKind.USED_DEFAULT_VALUE, FlagKind.USED_DEFAULT_VALUE]
    assert res.confidence == pytest.approx(0.8 * 0.8)


def test_default_factory_values_are_fresh():
    schema = schema_for(Contact)
    first = coerce_value(Object((("name", String("a")),)), schema).value
    second = coerce_value(Object((("name", String("b")),)), schema).value
    first["tags"].append("x")
    assert second["tags"] == []


def test_missing_required_field():
    with pytest.raises(MissingRequiredFieldError, match="missing required field 'age'") as info:
        parse('{"name": "Ann"}', Person)
    assert info.value.field == "age"


def test_nested_missing_field_reports_path():
    class Team(BaseModel):
        lead: Person

    with pytest.raises(MissingRequiredFieldError) as info:
        parse('{"lead": {"name": "Ann"}}', Team)
    assert info.value.path == "lead"


def test_implied_key_single_field_model_from_scalar():
    res = parse("123", Wrapper)
    assert res.value.n == 123
    assert _kinds(res) == [FlagKind.IMPLIED_KEY]


def test_singleton_object_list_unwraps_into_model():
    res = parse('[{"name": "Ann", "age": 3}]', Person)
    assert res.value.name == "Ann"
    assert _kinds(res) == [FlagKind.UNWRAPPED_FROM_ARRAY]


def test_scalar_into_multi_field_model():
    with pytest.raises(TypeMismatchError, match="Person"):
        parse("123", Person)


# ---------------------------------------------------------------------------
# Nested and recursive models
# ---------------------------------------------------------------------------


class Node(BaseModel):
    value: int
    children: list[Node] = Field(default_factory=list)


class Order(BaseModel):
    customer: Person
    items: list[str]
    totals: dict[str, float]


def test_nested_models():
    text = '{"customer": {"name": "Ann", "age": "40"}, "items": "book", "totals": {"eur": "9.5"}}'
    res = parse(text, Order)
    assert res.value.customer.age == 40
    assert res.value.items == ["book"]
    assert res.value.totals == {"eur": 9.5}
    assert FlagKind.WRAPPED_IN_ARRAY in _kinds(res)


def test_recursive_model():
    res = parse('{"value": 1, "children": [{"value": "2", "children": [{"value": 3}]}]}', Node)
    assert res.value.children[0].value == 2
    assert res.value.children[0].children[0].value == 3


def test_multi_object_to_list():
    res = parse('{"name": "a", "age": 1}\n{"name": "b", "age": 2}', list[Person])
    assert [p.name for p in res.value] == ["a", "b"]
    assert FlagKind.MULTIPLE_OBJECTS in _kinds(res)


# ---------------------------------------------------------------------------
# Partial coercion
# ---------------------------------------------------------------------------


class TestPartial:
    def test_missing_required_fields_are_omitted(self):
        value = Object((("name", String("Ann")),))
        res = coerce_value(value, schema_for(Person), allow_partial=True)
        assert res.value == {"name": "Ann"}
        missing = [f.field for f in res.flags if f.kind is FlagKind.MISSING_REQUIRED_FIELD]
        assert missing == ["age"]

    def test_defaults_are_not_filled_in(self):
        value = Object((("name", String("Ann")),))
        res = coerce_value(value, schema_for(Contact), allow_partial=True)
        assert res.value == {"name": "Ann"}
        assert res.flags == ()

    def test_failing_field_is_dropped(self):
        value = Object((("name", String("Ann")), ("age", String("old"))))
        res = coerce_value(value, schema_for(Person), allow_partial=True)
        assert res.value == {"name": "Ann"}
        mismatch = [f for f in res.flags if f.kind is FlagKind.TYPE_MISMATCH]
        assert [(f.field, f.expected, f.found) for f in mismatch] == [("age", "int", "string")]

    def test_failing_list_element_is_dropped(self):
        value = Array((Number(1), String("x"), Number(3)))
        res = coerce_value(value, schema_for(list[int]), allow_partial=True)
        assert res.value == [1, 3]
        mismatch = [f for f in res.flags if f.kind is FlagKind.TYPE_MISMATCH]
        assert [f.index for f in mismatch] == [1]

    def test_failing_map_value_is_dropped(self):
        value = Object((("a", Number(1)), ("b", Object(()))))
        res = coerce_value(value, schema_for(dict[str, int]), allow_partial=True)
        assert res.value == {"a": 1}

    def test_strict_mode_fails_instead(self):
        with pytest.raises(TypeMismatchError):
            parse('[1, "x", 3]', list[int])

    def test_hold_until_complete(self):
        schema = StructSchema(
            "S",
            (
                FieldSpec("a", _STR),
                FieldSpec("b", _STR, stream=StreamPolicy.HOLD_UNTIL_COMPLETE),
            ),
        )
        partial = String("x", completion=CompletionState.INCOMPLETE)
        value = Object((("a", partial), ("b", partial)), CompletionState.INCOMPLETE)
        res = coerce_value(value, schema, allow_partial=True)
        assert res.value == {"a": "x"}
        assert FlagKind.INCOMPLETE in _kinds(res)

    @pytest.mark.parametrize(
        "child",
        [
            pytest.param(Null(), id="null"),
            pytest.param(
                String("nu", StringKind.UNQUOTED, CompletionState.INCOMPLETE), id="null-prefix"
            ),
        ],
    )
    def test_hold_until_non_null(self, child):
        schema = StructSchema(
            "S",
            (
                FieldSpec(
                    "a",
                    _STR,
                    required=False,
                    default=None,
                    stream=StreamPolicy.HOLD_UNTIL_NON_NULL,
                ),
            ),
        )
        res = coerce_value(Object((("a", child),)), schema, allow_partial=True)
        assert res.value == {}

    def test_non_null_prefix_is_emitted(self):
        schema = StructSchema(
            "S",
            (FieldSpec("a", _STR, stream=StreamPolicy.HOLD_UNTIL_NON_NULL),),
        )
        child = String("nope", StringKind.UNQUOTED, CompletionState.INCOMPLETE)
        res = coerce_value(Object((("a", child),)), schema, allow_partial=True)
        assert res.value == {"a": "nope"}


# ---------------------------------------------------------------------------
# Targets and APIs
# ---------------------------------------------------------------------------


class Positive(BaseModel):
    n: int = Field(gt=0)


def test_schema_target_returns_plain_data():
    schema = StructSchema("S", (FieldSpec("a", PrimitiveSchema(PrimitiveKind.INT)),))
    res = parse('{"a": "1"}', schema)
    assert res.value == {"a": 1}


def test_type_adapter_target():
    res = parse('"1"', TypeAdapter(int))
    assert res.value == 1


def test_any_target_keeps_data_and_replays_fixes():
    res = parse("{'a': [1,]}", Any)
    assert res.value == {"a": [1]}
    assert set(_kinds(res)) == {FlagKind.FIXED_QUOTE_STYLE, FlagKind.FIXED_TRAILING_COMMA}


def test_annotated_target():
    res = parse('"5"', Annotated[int, "meta"])
    assert res.value == 5


def test_validation_errors_become_type_mismatch():
    with pytest.raises(TypeMismatchError) as info:
        parse('{"n": -1}', Positive)
    assert info.value.path == "n"


class TestCoerceAPI:
    def test_python_data(self):
        res = coerce({"name": "Ann", "age": "3"}, Person)
        assert res.value == Person(name="Ann", age=3)
        assert _kinds(res) == [FlagKind.TYPE_COERCION]

    def test_value_tree(self):
        res = coerce(Number(2.0), int)
        assert res.value == 2
        assert isinstance(res.value, int)

    def test_options(self):
        opts = CoerceOptions(flag_factors={FlagKind.WRAPPED_IN_ARRAY: 1.0})
        res = coerce("x", list[str], options=opts)
        assert res.value == ["x"]
        assert res.confidence == 1.0


class TestParseDebugAPI:
    def test_reports_every_candidate(self):
        dbg = parse_debug('Here: {"name": "Ann", "age": 3}', Person)
        assert dbg.raw_text == 'Here: {"name": "Ann", "age": 3}'
        assert len(dbg.candidates) == 2
        obj, raw = dbg.candidates
        assert obj.value_preview == {"name": "Ann", "age": 3}
        assert obj.confidence == pytest.approx(0.98)
        assert obj.error is None
        assert raw.confidence == 0.0
        assert raw.error is not None
        assert dbg.chosen is not None
        assert dbg.chosen.confidence == pytest.approx(0.98)
        assert dbg.value == Person(name="Ann", age=3)

    def test_failure_leaves_chosen_empty(self):
        dbg = parse_debug("hello", int)
        assert dbg.chosen is None
        assert dbg.value is None
        assert len(dbg.candidates) == 1
        assert "expected int" in dbg.candidates[0].error

    def test_long_previews_are_truncated(self):
        dbg = parse_debug("x" * 500, str)
        assert len(dbg.candidates[0].value_preview) == 200
        assert dbg.value == "x" * 500


# ---------------------------------------------------------------------------
# Recursion depth limit
# ---------------------------------------------------------------------------


class TestRecursionDepthLimit:
    def test_depth_limit_raises(self):
        opts = CoerceOptions(max_depth=2)
        with pytest.raises(DepthExceededError):
            parse("[[[1]]]", list[list[list[int]]], coerce_options=opts)

    def test_depth_within_limit(self):
        opts = CoerceOptions(max_depth=3)
        res = parse("[[[1]]]", list[list[list[int]]], coerce_options=opts)
        assert res.value == [[[1]]]

    def test_depth_error_is_not_swallowed_by_unions(self):
        opts = CoerceOptions(max_depth=1)
        with pytest.raises(DepthExceededError):
            parse("[[1]]", list[list[int]] | str, coerce_options=opts)
