import logging
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("healjson")
except PackageNotFoundError:  # pragma: no cover - local source tree without installed metadata
    __version__ = "0.1.0"

from .api import coerce, parse, parse_debug, parse_stream, parse_value
from .coerce import CoerceOptions, coerce_value
from .errors import (
    CoercionError,
    DepthExceededError,
    HealError,
    InputTooLargeError,
    MissingRequiredFieldError,
    NoMatchingVariantError,
    NoValueError,
    ParseError,
    TypeMismatchError,
)
from .flags import Flag, FlagKind, FlagTracker, score_flags
from .jsonish import ParseOptions, parse_jsonish
from .schema import (
    AnySchema,
    EnumSchema,
    FieldSpec,
    ListSchema,
    MapSchema,
    PrimitiveKind,
    PrimitiveSchema,
    Schema,
    StreamPolicy,
    StructSchema,
    UnionSchema,
    schema_for,
)
from .streaming import StreamingExtractor
from .types import CandidateDebug, CoercionResult, CompletionState, ParseDebug, StringKind
from .value import AnyOf, Array, Bool, Markdown, Null, Number, Object, String, Value

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "AnyOf",
    "AnySchema",
    "Array",
    "Bool",
    "CandidateDebug",
    "CoerceOptions",
    "CoercionError",
    "CoercionResult",
    "CompletionState",
    "DepthExceededError",
    "EnumSchema",
    "FieldSpec",
    "Flag",
    "FlagKind",
    "FlagTracker",
    "HealError",
    "InputTooLargeError",
    "ListSchema",
    "MapSchema",
    "Markdown",
    "MissingRequiredFieldError",
    "NoMatchingVariantError",
    "NoValueError",
    "Null",
    "Number",
    "Object",
    "ParseDebug",
    "ParseError",
    "ParseOptions",
    "PrimitiveKind",
    "PrimitiveSchema",
    "Schema",
    "StreamPolicy",
    "StreamingExtractor",
    "String",
    "StringKind",
    "StructSchema",
    "TypeMismatchError",
    "UnionSchema",
    "Value",
    "coerce",
    "coerce_value",
    "parse",
    "parse_debug",
    "parse_jsonish",
    "parse_stream",
    "parse_value",
    "schema_for",
    "score_flags",
]
