from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from typing import Any

from pydantic import TypeAdapter

from .coerce import CoerceOptions, coerce_value, resolve_target, validate_typed
from .errors import CoercionError
from .jsonish import ParseOptions, parse_jsonish
from .schema import Schema
from .streaming import StreamingExtractor, StreamPolicy
from .types import CandidateDebug, CoercionResult, ParseDebug
from .value import VALUE_TYPES, AnyOf, Value, from_python, to_python

_PREVIEW_CHARS = 200


def _parse_options(options: ParseOptions | None, is_done: bool | None) -> ParseOptions:
    opts = options or ParseOptions()
    if is_done is not None and is_done != opts.is_done:
        opts = dataclasses.replace(opts, is_done=is_done)
    return opts


def parse_value(text: str, options: ParseOptions | None = None) -> Value:
    """Run only the parse stage and return the value tree."""
    return parse_jsonish(text, options)


def parse[T](
    text: str,
    target: type[T] | TypeAdapter[T] | Schema,
    *,
    is_done: bool | None = None,
    parse_options: ParseOptions | None = None,
    coerce_options: CoerceOptions | None = None,
) -> CoercionResult[T]:
    """
    Parse raw model output and align it to ``target``.

    ``target`` may be a Python type, a ``TypeAdapter`` or a :data:`Schema`.
    Types are validated with pydantic at the end, so models come back as model
    instances; a bare schema yields plain data.
    """
    schema, adapter = resolve_target(target)
    value = parse_jsonish(text, _parse_options(parse_options, is_done))
    result = coerce_value(value, schema, options=coerce_options)
    return validate_typed(adapter, result)


def coerce[T](
    value: Any,
    target: type[T] | TypeAdapter[T] | Schema,
    *,
    options: CoerceOptions | None = None,
) -> CoercionResult[T]:
    """
    Coerce an already parsed value to match the target schema.

    Use this when you already have python objects (e.g., tool call args)
    but still want schema-aligned coercions + scoring.
    """
    schema, adapter = resolve_target(target)
    node = value if isinstance(value, VALUE_TYPES) else from_python(value)
    result = coerce_value(node, schema, options=options)
    return validate_typed(adapter, result)


def parse_debug[T](
    text: str,
    target: type[T] | TypeAdapter[T] | Schema,
    *,
    is_done: bool | None = None,
    parse_options: ParseOptions | None = None,
    coerce_options: CoerceOptions | None = None,
) -> ParseDebug[T]:
    """
    Parse raw model output with full debug trace.

    Every interpretation the parser produced is coerced on its own and
    reported with its confidence (or the error that rejected it), next to the
    candidate that won.
    """
    schema, adapter = resolve_target(target)
    value = parse_jsonish(text, _parse_options(parse_options, is_done))
    candidates = value.candidates if isinstance(value, AnyOf) else (value,)

    candidates_debug: list[CandidateDebug] = []
    for cand in candidates:
        try:
            result = coerce_value(cand, schema, options=coerce_options)
        except CoercionError as exc:
            candidates_debug.append(
                CandidateDebug(
                    value_preview=_preview(to_python(cand)),
                    flags=cand.fixes,
                    confidence=0.0,
                    error=str(exc),
                )
            )
            continue
        candidates_debug.append(
            CandidateDebug(
                value_preview=_preview(result.value),
                flags=result.flags,
                confidence=result.confidence,
            )
        )

    try:
        final = validate_typed(adapter, coerce_value(value, schema, options=coerce_options))
    except CoercionError:
        return ParseDebug(raw_text=text, candidates=candidates_debug)
    chosen = CandidateDebug(
        value_preview=_preview(final.value), flags=final.flags, confidence=final.confidence
    )
    return ParseDebug(raw_text=text, candidates=candidates_debug, chosen=chosen, value=final.value)


def parse_stream[T](
    target: type[T] | TypeAdapter[T] | Schema,
    *,
    policies: Mapping[str, StreamPolicy | str] | None = None,
    parse_options: ParseOptions | None = None,
    coerce_options: CoerceOptions | None = None,
) -> StreamingExtractor[T]:
    """
    Create a streaming extractor. Feed text chunks into the returned object.
    """
    return StreamingExtractor(
        target,
        policies=policies,
        parse_options=parse_options,
        coerce_options=coerce_options,
    )


def _preview(obj: Any) -> Any:
    if isinstance(obj, str) and len(obj) > _PREVIEW_CHARS:
        return obj[:_PREVIEW_CHARS]
    return obj
