from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .flags import Flag


class CompletionState(str, Enum):
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"


class StringKind(str, Enum):
    """How a string was delimited in the source text."""

    DOUBLE_QUOTED = "double_quoted"
    SINGLE_QUOTED = "single_quoted"
    BACKTICK = "backtick"
    TRIPLE_QUOTED = "triple_quoted"
    TRIPLE_BACKTICK = "triple_backtick"
    UNQUOTED = "unquoted"
    RAW = "raw"


@dataclass(frozen=True, slots=True)
class CoercionResult[T]:
    value: T
    flags: tuple[Flag, ...]
    confidence: float

    @property
    def flag_names(self) -> tuple[str, ...]:
        return tuple(f.kind.value for f in self.flags)


@dataclass(frozen=True, slots=True)
class CandidateDebug:
    """Debug info for a single coercion candidate."""

    value_preview: Any
    flags: tuple[Flag, ...]
    confidence: float
    error: str | None = None


@dataclass(frozen=True, slots=True)
class ParseDebug[T]:
    """Full debug trace for a parse/coerce operation."""

    raw_text: str | None
    candidates: list[CandidateDebug] = field(default_factory=list)
    chosen: CandidateDebug | None = None
    value: T | None = None
