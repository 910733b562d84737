"""Transformation flags and the multiplicative confidence tracker.

Every repair the parser makes and every conversion the coercer applies is
recorded as a :class:`Flag`.  Confidence starts at ``1.0`` for a coercion pass
and is multiplied by a fixed per-kind factor each time a flag is recorded, so
several small repairs compound into a noticeably lower score.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum


class FlagKind(str, Enum):
    # parse-time repairs
    STRIPPED_MARKDOWN = "stripped_markdown"
    FIXED_TRAILING_COMMA = "fixed_trailing_comma"
    FIXED_QUOTE_STYLE = "fixed_quote_style"
    FIXED_JSON = "fixed_json"
    INFERRED_ARRAY = "inferred_array"
    MULTIPLE_OBJECTS = "multiple_objects"
    EXTRACTED_JSON = "extracted_json"
    # coercion
    TYPE_COERCION = "type_coercion"
    ENUM_MATCH = "enum_match"
    CASE_INSENSITIVE_FIELD_MATCH = "case_insensitive_field_match"
    ALIAS_FIELD_MATCH = "alias_field_match"
    CONVENTION_FIELD_MATCH = "convention_field_match"
    FUZZY_FIELD_MATCH = "fuzzy_field_match"
    IMPLIED_KEY = "implied_key"
    EXTRA_KEY = "extra_key"
    USED_DEFAULT_VALUE = "used_default_value"
    UNION_VARIANT_SELECTED = "union_variant_selected"
    WRAPPED_IN_ARRAY = "wrapped_in_array"
    UNWRAPPED_FROM_ARRAY = "unwrapped_from_array"
    INCOMPLETE = "incomplete"
    MISSING_REQUIRED_FIELD = "missing_required_field"
    TYPE_MISMATCH = "type_mismatch"


DEFAULT_FACTORS: Mapping[FlagKind, float] = {
    FlagKind.STRIPPED_MARKDOWN: 0.98,
    FlagKind.FIXED_TRAILING_COMMA: 0.95,
    FlagKind.FIXED_QUOTE_STYLE: 0.95,
    FlagKind.FIXED_JSON: 0.95,
    FlagKind.INFERRED_ARRAY: 0.9,
    FlagKind.MULTIPLE_OBJECTS: 0.9,
    FlagKind.EXTRACTED_JSON: 0.98,
    FlagKind.TYPE_COERCION: 0.9,
    FlagKind.ENUM_MATCH: 0.9,
    FlagKind.CASE_INSENSITIVE_FIELD_MATCH: 0.95,
    FlagKind.ALIAS_FIELD_MATCH: 0.95,
    FlagKind.CONVENTION_FIELD_MATCH: 0.92,
    FlagKind.FUZZY_FIELD_MATCH: 0.85,
    FlagKind.IMPLIED_KEY: 0.9,
    FlagKind.EXTRA_KEY: 0.98,
    FlagKind.USED_DEFAULT_VALUE: 0.8,
    FlagKind.UNION_VARIANT_SELECTED: 1.0,
    FlagKind.WRAPPED_IN_ARRAY: 0.9,
    FlagKind.UNWRAPPED_FROM_ARRAY: 0.9,
    FlagKind.INCOMPLETE: 0.7,
    FlagKind.MISSING_REQUIRED_FIELD: 0.9,
    FlagKind.TYPE_MISMATCH: 0.5,
}

# Kinds produced by the parser rather than by schema alignment.
PARSE_KINDS: frozenset[FlagKind] = frozenset(
    {
        FlagKind.STRIPPED_MARKDOWN,
        FlagKind.FIXED_TRAILING_COMMA,
        FlagKind.FIXED_QUOTE_STYLE,
        FlagKind.FIXED_JSON,
        FlagKind.INFERRED_ARRAY,
        FlagKind.MULTIPLE_OBJECTS,
        FlagKind.EXTRACTED_JSON,
        FlagKind.INCOMPLETE,
    }
)

# Recorded at most once per pass.
_ONCE_KINDS: frozenset[FlagKind] = frozenset({FlagKind.INCOMPLETE})


@dataclass(frozen=True, slots=True)
class Flag:
    """A single transformation applied while parsing or coercing."""

    kind: FlagKind
    expected: str | None = None
    found: str | None = None
    field: str | None = None
    index: int | None = None

    def __str__(self) -> str:
        if self.expected is not None or self.found is not None:
            return f"{self.kind.value}({self.found}->{self.expected})"
        if self.field is not None:
            return f"{self.kind.value}({self.field})"
        if self.index is not None:
            return f"{self.kind.value}({self.index})"
        return self.kind.value


def type_coercion(found: str, expected: str) -> Flag:
    return Flag(FlagKind.TYPE_COERCION, expected=expected, found=found)


def resolve_factors(overrides: Mapping[FlagKind, float] | None) -> Mapping[FlagKind, float]:
    if not overrides:
        return DEFAULT_FACTORS
    for kind, factor in overrides.items():
        if not 0.0 <= factor <= 1.0:
            raise ValueError(f"confidence factor for {kind.value} must be in [0, 1], got {factor}")
    return {**DEFAULT_FACTORS, **overrides}


def score_flags(
    flags: Iterable[Flag], factors: Mapping[FlagKind, float] = DEFAULT_FACTORS
) -> float:
    confidence = 1.0
    for f in flags:
        confidence *= factors.get(f.kind, 1.0)
    return max(confidence, 0.0)


def only_parse_flags(flags: Iterable[Flag]) -> bool:
    return all(f.kind in PARSE_KINDS for f in flags)


class FlagTracker:
    """Accumulates flags for one coercion pass and keeps the running confidence."""

    __slots__ = ("_factors", "_flags", "_confidence", "_seen_once")

    def __init__(self, factors: Mapping[FlagKind, float] = DEFAULT_FACTORS) -> None:
        self._factors = factors
        self._flags: list[Flag] = []
        self._confidence = 1.0
        self._seen_once: set[FlagKind] = set()

    @property
    def flags(self) -> tuple[Flag, ...]:
        return tuple(self._flags)

    @property
    def confidence(self) -> float:
        return self._confidence

    def has(self, kind: FlagKind) -> bool:
        return any(f.kind is kind for f in self._flags)

    def record(self, flag: Flag) -> None:
        if flag.kind in _ONCE_KINDS:
            if flag.kind in self._seen_once:
                return
            self._seen_once.add(flag.kind)
        self._flags.append(flag)
        self._confidence = max(self._confidence * self._factors.get(flag.kind, 1.0), 0.0)

    def extend(self, flags: Iterable[Flag]) -> None:
        for f in flags:
            self.record(f)

    def fork(self) -> FlagTracker:
        return FlagTracker(self._factors)

    def absorb(self, other: FlagTracker) -> None:
        self.extend(other._flags)
