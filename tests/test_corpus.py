"""Corpus of malformed model output.

Covers: JSON repairs, code-as-string edge cases, truncated streams and
international text.
"""

from __future__ import annotations

import enum

import pytest
from pydantic import BaseModel

from healjson import parse
from healjson.jsonish import ParseOptions, parse_jsonish
from healjson.value import AnyOf, to_python

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _candidates(v):
    return v.candidates if isinstance(v, AnyOf) else (v,)


def _assert_has_candidate(v, expected):
    values = [to_python(c) for c in _candidates(v)]
    assert expected in values, values


def _assert_has_code_candidate(v, expected_code: str) -> None:
    dicts = [to_python(c) for c in _candidates(v)]
    dicts = [d for d in dicts if isinstance(d, dict)]
    assert any(d.get("type") == "code" and d.get("code") == expected_code for d in dicts), dicts


# ===========================================================================
# Basics
# ===========================================================================


@pytest.mark.parametrize(
    ("raw", "expected", "is_done"),
    [
        pytest.param("[1, 2, 3,]", [1, 2, 3], True, id="trailing-comma-array"),
        pytest.param('{"key": "value",}', {"key": "value"}, True, id="trailing-comma-object"),
        pytest.param("[1, 2, 3", [1, 2, 3], False, id="unterminated-array"),
        pytest.param(
            '{"key": [1, 2, 3',
            {"key": [1, 2, 3]},
            False,
            id="unterminated-array-in-object",
        ),
        pytest.param(
            '{"key": "value', {"key": "value"}, False, id="unterminated-string-in-object"
        ),
        pytest.param('{"a": 1, "b', {"a": 1}, False, id="unterminated-key"),
        pytest.param('{"a": 1, "b": ', {"a": 1}, False, id="key-without-value"),
        pytest.param(
            '[{"a": 1}, {"a": 2',
            [{"a": 1}, {"a": 2}],
            False,
            id="unterminated-object-in-array",
        ),
        pytest.param(
            "{first name: Ann}", {"first name": "Ann"}, True, id="unquoted-key-with-space"
        ),
        pytest.param('// result\n{"a": 1}', {"a": 1}, True, id="leading-comment"),
    ],
)
def test_corpus_basics_malformed_json_repairs(raw: str, expected: object, is_done: bool):
    v = parse_jsonish(raw, ParseOptions(is_done=is_done))
    _assert_has_candidate(v, expected)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        pytest.param(
            r"""
some text
```json
{
  "key": "value",
  "array": [1, 2, 3,],
  "object": {
    "key": "value"
  }
}
```
""",
            {"key": "value", "array": [1, 2, 3], "object": {"key": "value"}},
            id="markdown-fence-inner-trailing-comma",
        ),
        pytest.param(
            r"""
some text
```json
{
  key: "value",
  array: [1, 2, 3, 'some stinrg'   with quotes' /* test */],
  object: { // Test comment
    key: "value"
  },
}
```
""",
            {
                "key": "value",
                "array": [1, 2, 3, "some stinrg'   with quotes"],
                "object": {"key": "value"},
            },
            id="unquoted-keys-single-quotes-and-comments",
        ),
        pytest.param(
            r"""
{
  key: value with space,
  array: [1, 2, 3],
  object: {
    key: value
  }
}
""",
            {"key": "value with space", "array": [1, 2, 3], "object": {"key": "value"}},
            id="unquoted-values-with-spaces",
        ),
        pytest.param(
            r"""
{
  key: "test a long
thing with new

lines",
  array: [1, 2, 3],
  object: {
    key: value
  }
}
""",
            {
                "key": "test a long\nthing with new\n\nlines",
                "array": [1, 2, 3],
                "object": {"key": "value"},
            },
            id="quoted-multiline-string-in-unquoted-jsonish",
        ),
        pytest.param(
            r"""
{
  "my_field_0": true,
  "my_field_1": **First fragment, Another fragment**

Frag 2, frag 3. Frag 4, Frag 5, Frag 5.

Frag 6, the rest, of the sentence. Then i would quote something "like this" or this.

Then would add a summary of sorts.
}
""",
            {
                "my_field_0": True,
                "my_field_1": (
                    "**First fragment, Another fragment**\n\n"
                    "Frag 2, frag 3. Frag 4, Frag 5, Frag 5.\n\n"
                    "Frag 6, the rest, of the sentence. "
                    'Then i would quote something "like this" or this.\n\n'
                    "Then would add a summary of sorts."
                ),
            },
            id="markdown-text-value-without-quotes",
        ),
        pytest.param(
            "Here's the result: {\"a\": 1}. Note: use {braces} carefully.",
            {"a": 1},
            id="prose-with-stray-braces",
        ),
    ],
)
def test_corpus_basics_unquoted_and_markdown_values(raw: str, expected: object):
    v = parse_jsonish(raw)
    _assert_has_candidate(v, expected)


# ===========================================================================
# Code
# ===========================================================================


@pytest.mark.parametrize(
    ("raw", "expected_code"),
    [
        pytest.param(
            r"""
{
  "type": "code",
  "code": `print("Hello, world!")`
}
""",
            'print("Hello, world!")',
            id="backticks",
        ),
        pytest.param(
            r"""
{
  "type": "code",
  "code": 'print("Hello, world!")'
}
""",
            'print("Hello, world!")',
            id="single-quotes",
        ),
        pytest.param(
            r"""
{
  "type": "code",
  "code": "print(\"Hello, world!\")"
}
""",
            'print("Hello, world!")',
            id="escaped-double-quotes",
        ),
        pytest.param(
            """
{
  "type": "code",
  "code": ```
def main():
    print("Hello")
```
}
""",
            'def main():\n    print("Hello")',
            id="triple-backticks",
        ),
        pytest.param(
            '{"type": "code", "code": """\n    if x:\n        return {"a": 1}\n"""}',
            'if x:\n    return {"a": 1}',
            id="triple-quotes-with-braces",
        ),
    ],
)
def test_corpus_code_values(raw: str, expected_code: str):
    v = parse_jsonish(raw)
    _assert_has_code_candidate(v, expected_code)


# ===========================================================================
# International text
# ===========================================================================


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        pytest.param(
            '{"name": "José", "city": "São Paulo"}',
            {"name": "José", "city": "São Paulo"},
            id="accents",
        ),
        pytest.param(
            "{name: José García, city: 東京}",
            {"name": "José García", "city": "東京"},
            id="unquoted-unicode",
        ),
        pytest.param('{"mood": "🙂", }', {"mood": "🙂"}, id="emoji"),
        pytest.param(
            "{'greeting': 'Привет, мир'}",
            {"greeting": "Привет, мир"},
            id="cyrillic-single-quoted",
        ),
    ],
)
def test_corpus_international(raw: str, expected: object):
    v = parse_jsonish(raw)
    _assert_has_candidate(v, expected)


# ===========================================================================
# End to end
# ===========================================================================


class Sentiment(enum.Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"


class Review(BaseModel):
    title: str
    rating: float
    sentiment: Sentiment
    tags: list[str]


class Flags(BaseModel):
    ok: bool
    missing: int | None


class Parcel(BaseModel):
    weight: float


def test_markdown_answer_with_prose_into_model():
    text = """Sure! Here is the review:

```json
{
  "title": "Great phone",
  "rating": "4.5",
  "sentiment": "Positive",
  "tags": "battery",
}
```

Let me know if you need anything else."""
    res = parse(text, Review)
    assert res.value == Review(
        title="Great phone", rating=4.5, sentiment=Sentiment.POSITIVE, tags=["battery"]
    )
    assert {"stripped_markdown", "type_coercion", "enum_match", "wrapped_in_array"} <= set(
        res.flag_names
    )
    assert 0.0 < res.confidence < 0.7


def test_python_style_literals():
    res = parse("{'ok': True, 'missing': None}", Flags)
    assert res.value == Flags(ok=True, missing=None)


def test_number_with_unit():
    res = parse('{"weight": 12 kg}', Parcel)
    assert res.value.weight == 12.0


class Trip(BaseModel):
    cities: list[str]


def test_multi_word_array_elements():
    res = parse("{cities: [New York, San Jose]}", Trip)
    assert res.value == Trip(cities=["New York", "San Jose"])
