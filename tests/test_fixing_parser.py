"""Character-level repair parser."""

from __future__ import annotations

import pytest

from healjson.errors import DepthExceededError
from healjson.fixing_parser import parse_fixing
from healjson.flags import FlagKind
from healjson.types import CompletionState, StringKind
from healjson.value import Array, Object, String, to_python


def _single(text: str):
    result = parse_fixing(text)
    assert result is not None
    assert len(result.values) == 1, result
    assert result.discarded == 0
    return result.values[0]


def _kinds(value) -> set[FlagKind]:
    return {f.kind for f in value.fixes}


# ---------------------------------------------------------------------------
# Repairs
# ---------------------------------------------------------------------------


def test_unquoted_keys_single_quotes_and_trailing_comma():
    v = _single("{a: 1, b: 'two', c: [true, null,]}")
    assert to_python(v) == {"a": 1, "b": "two", "c": [True, None]}
    assert FlagKind.FIXED_QUOTE_STYLE in _kinds(v)
    assert FlagKind.FIXED_TRAILING_COMMA in _kinds(v.get("c"))
    b = v.get("b")
    assert isinstance(b, String) and b.kind is StringKind.SINGLE_QUOTED


def test_double_quoted_keys_record_no_quote_fix():
    v = _single('{"a": 1, "b": 2,}')
    assert _kinds(v) == {FlagKind.FIXED_TRAILING_COMMA}


def test_comments_are_stripped():
    v = _single("{\n  // c\n  a: 1, /* x */ b: 2}")
    assert to_python(v) == {"a": 1, "b": 2}
    assert FlagKind.FIXED_JSON in _kinds(v)


def test_missing_comma_between_entries():
    v = _single('{"a": 1 "b": 2}')
    assert to_python(v) == {"a": 1, "b": 2}
    assert FlagKind.FIXED_JSON in _kinds(v)


def test_missing_commas_in_array():
    v = _single("[1 2 3]")
    assert to_python(v) == [1, 2, 3]
    assert FlagKind.FIXED_JSON in _kinds(v)


def test_missing_commas_between_literals():
    v = _single("[1 true null -2.5]")
    assert to_python(v) == [1, True, None, -2.5]


@pytest.mark.parametrize(
    "text, expected",
    [
        ("[New York, Los Angeles]", ["New York", "Los Angeles"]),
        ('{"cities": [New York, San Jose]}', {"cities": ["New York", "San Jose"]}),
        ("[Main St 4, 12 Elm]", ["Main St 4", "12 Elm"]),
        ("[3 apples]", ["3 apples"]),
    ],
)
def test_free_text_array_elements_stay_whole(text, expected):
    assert to_python(_single(text)) == expected


def test_dangling_key_is_dropped():
    v = _single('{"a": 1, "b"}')
    assert to_python(v) == {"a": 1}
    assert FlagKind.FIXED_JSON in _kinds(v)


def test_mismatched_closer_closes_inner_frames():
    v = _single('{"a": [1, 2}')
    assert to_python(v) == {"a": [1, 2]}
    assert v.completion is CompletionState.COMPLETE
    assert FlagKind.FIXED_JSON in _kinds(v.get("a"))


def test_unmatched_closer_is_ignored():
    v = _single("{]}")
    assert to_python(v) == {}
    assert FlagKind.FIXED_JSON in _kinds(v)


# ---------------------------------------------------------------------------
# Auto-completion
# ---------------------------------------------------------------------------


def test_unterminated_collections_are_incomplete():
    v = _single('{"a": [1, 2')
    assert isinstance(v, Object)
    assert v.completion is CompletionState.INCOMPLETE
    arr = v.get("a")
    assert isinstance(arr, Array)
    assert arr.completion is CompletionState.INCOMPLETE
    assert arr.items[0].completion is CompletionState.COMPLETE
    assert arr.items[1].completion is CompletionState.INCOMPLETE
    assert to_python(v) == {"a": [1, 2]}


def test_unterminated_string_is_incomplete():
    v = _single('{"name": "Ali')
    s = v.get("name")
    assert isinstance(s, String)
    assert s.value == "Ali"
    assert s.completion is CompletionState.INCOMPLETE


def test_dangling_backslash_is_kept():
    v = _single('["a\\')
    assert to_python(v) == ["a\\"]


# ---------------------------------------------------------------------------
# Strings and escapes
# ---------------------------------------------------------------------------


def test_json_escapes_and_surrogate_pairs():
    v = _single(r'{"s": "line\nnext \u00e9 \ud83d\ude00"}')
    assert to_python(v) == {"s": "line\nnext \u00e9 \U0001f600"}


def test_escaped_delimiter_in_single_quotes():
    v = _single(r"{'s': 'it\'s'}")
    assert to_python(v) == {"s": "it's"}


def test_unknown_escape_is_kept_verbatim():
    v = _single(r'["a\qb"]')
    assert to_python(v) == ["a\\qb"]


def test_escaped_quote_does_not_close():
    v = _single(r'{"q": "she said \"hi\"",}')
    assert to_python(v) == {"q": 'she said "hi"'}


def test_unescaped_inner_quotes_are_kept_as_content():
    v = _single('{"q": "say "hi" now"}')
    q = v.get("q")
    assert q.value == 'say "hi" now'
    assert FlagKind.FIXED_QUOTE_STYLE in _kinds(q)


def test_adjacent_strings_are_closed_independently():
    v = _single('{"q": "a" "b"}')
    assert to_python(v) == {"q": "a"}
    assert FlagKind.FIXED_JSON in _kinds(v)


def test_triple_quoted_string_is_dedented():
    v = _single('{"code": """\n    x = 1\n    y = 2\n"""}')
    code = v.get("code")
    assert code.kind is StringKind.TRIPLE_QUOTED
    assert code.value == "x = 1\ny = 2"


def test_triple_backtick_string_splits_language():
    v = _single('{"code": ```python\nprint(1)\n```}')
    code = v.get("code")
    assert code.kind is StringKind.TRIPLE_BACKTICK
    assert code.lang == "python"
    assert code.value == "print(1)"


# ---------------------------------------------------------------------------
# Unquoted values
# ---------------------------------------------------------------------------


def test_unquoted_scalars_are_converted():
    v = _single("[1, -2.5, 1e3, +4, .5, True, NULL, abc]")
    assert to_python(v) == [1, -2.5, 1000.0, 4, 0.5, True, None, "abc"]
    abc = v.items[-1]
    assert abc.kind is StringKind.UNQUOTED
    assert FlagKind.FIXED_QUOTE_STYLE in _kinds(abc)


def test_unquoted_values_split_on_quoted_key():
    v = _single('{"city": Seattle, "state": WA}')
    assert to_python(v) == {"city": "Seattle", "state": "WA"}


def test_unquoted_free_text_keeps_inner_commas():
    v = _single('{"addr": 123 Main St, Apt 4, "zip": 98101}')
    assert to_python(v) == {"addr": "123 Main St, Apt 4", "zip": 98101}


def test_unquoted_free_text_closes_before_identifier_key():
    v = _single("{note: hello there, next: 1}")
    assert to_python(v) == {"note": "hello there", "next": 1}


def test_huge_integer_literal_stays_text():
    digits = "9" * 5000
    v = _single(f"[{digits}]")
    assert to_python(v) == [digits]


# ---------------------------------------------------------------------------
# Top level
# ---------------------------------------------------------------------------


def test_empty_input_yields_nothing():
    assert parse_fixing("") is None
    assert parse_fixing("   \n") is None
    assert parse_fixing("// just a comment") is None


def test_stray_closers_at_top_level_are_ignored():
    v = _single('}, {"a": 1}')
    assert to_python(v) == {"a": 1}


def test_several_structures_are_all_kept():
    result = parse_fixing('{"a": 1} {"b": 2}')
    assert result is not None
    assert [to_python(v) for v in result.values] == [{"a": 1}, {"b": 2}]


def test_prose_around_structure_is_discarded():
    result = parse_fixing('hello {"a": 1} world')
    assert result is not None
    assert [to_python(v) for v in result.values] == [{"a": 1}]
    assert result.discarded == 2


def test_several_top_level_strings_become_inferred_array():
    v = _single("'x' 'y'")
    assert to_python(v) == ["x", "y"]
    assert FlagKind.INFERRED_ARRAY in _kinds(v)


def test_bare_prose_is_one_unquoted_string():
    v = _single("hello world")
    assert isinstance(v, String)
    assert v.kind is StringKind.UNQUOTED
    assert v.value == "hello world"


# ---------------------------------------------------------------------------
# Limits
# ---------------------------------------------------------------------------


def test_depth_limit():
    assert parse_fixing("[" * 3, max_depth=3) is not None
    with pytest.raises(DepthExceededError, match="depth limit"):
        parse_fixing("[" * 4, max_depth=3)


def test_strings_do_not_count_toward_depth():
    v = parse_fixing('[["x"]]', max_depth=2)
    assert v is not None
    assert to_python(v.values[0]) == [["x"]]
