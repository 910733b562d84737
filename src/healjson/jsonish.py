from __future__ import annotations

import dataclasses
import json
import logging
import math
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from .errors import DepthExceededError, InputTooLargeError, NoValueError
from .fixing_parser import FixingResult, parse_fixing
from .flags import Flag, FlagKind
from .types import CompletionState, StringKind
from .value import Array, AnyOf, Markdown, Object, String, Value, from_python, with_fixes

logger = logging.getLogger(__name__)

_STRIPPED_MARKDOWN = Flag(FlagKind.STRIPPED_MARKDOWN)
_EXTRACTED_JSON = Flag(FlagKind.EXTRACTED_JSON)
_MULTIPLE_OBJECTS = Flag(FlagKind.MULTIPLE_OBJECTS)

_FENCE = "```"
_TAG_CHARS = frozenset("_+-./")

_FAILED = object()


@dataclass(slots=True)
class ParseOptions:
    allow_markdown: bool = True
    allow_multi_object: bool = True
    allow_fixes: bool = True
    allow_string_fallback: bool = True
    # False while the text may still grow (streaming)
    is_done: bool = True
    max_depth: int = 100
    max_input_size: int = 16 * 1024 * 1024

    def __post_init__(self) -> None:
        if self.max_depth <= 0:
            raise ValueError("max_depth must be > 0")
        if self.max_input_size <= 0:
            raise ValueError("max_input_size must be > 0")


def parse_jsonish(text: str, options: ParseOptions | None = None) -> Value:
    """
    Best-effort parse for LLM output.

    Strategies are tried in order and the first one that produces a value wins:
    - strict JSON
    - markdown fenced blocks
    - balanced ``{...}`` / ``[...]`` regions embedded in prose
    - fixing/repair parser
    - the whole text as a string

    Ambiguous results are returned as :class:`AnyOf` so coercion can pick the
    interpretation the target schema wants; the raw text is always the last
    candidate.
    """
    opts = options or ParseOptions()
    if len(text) > opts.max_input_size:
        raise InputTooLargeError(len(text), opts.max_input_size)

    # 1) strict JSON
    parsed = _strict(text)
    if parsed is not _FAILED:
        logger.debug("parsed %d chars as strict JSON", len(text))
        return _from_strict(parsed, opts, top_level=True)

    # 2) markdown fenced blocks
    if opts.allow_markdown:
        value = _parse_markdown(text, opts)
        if value is not None:
            logger.debug("parsed %d chars from markdown fences", len(text))
            return value

    # 3) balanced JSON regions
    if opts.allow_multi_object:
        value = _parse_multi_object(text, opts)
        if value is not None:
            logger.debug("parsed %d chars from embedded JSON regions", len(text))
            return value

    # 4) fixing parser
    if opts.allow_fixes:
        value = _parse_fixing(text, opts)
        if value is not None:
            logger.debug("parsed %d chars with the fixing parser", len(text))
            return value

    # 5) fallback string
    if opts.allow_string_fallback:
        logger.debug("no structure found in %d chars, using raw text", len(text))
        return _raw_anchor(text, opts)

    raise NoValueError()


# ----------------------------
# Strict
# ----------------------------


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard JSON constant {name}")


def _finite_float(literal: str) -> float:
    value = float(literal)
    if not math.isfinite(value):
        raise ValueError(f"number out of range: {literal}")
    return value


def _strict(text: str) -> Any:
    try:
        return json.loads(text, parse_constant=_reject_constant, parse_float=_finite_float)
    except (ValueError, RecursionError):
        return _FAILED


def _from_strict(obj: Any, options: ParseOptions, *, top_level: bool = False) -> Value:
    if _nesting_depth(obj) > options.max_depth:
        raise DepthExceededError(options.max_depth)
    completion = CompletionState.COMPLETE
    numeric = isinstance(obj, (int, float)) and not isinstance(obj, bool)
    if top_level and numeric and not options.is_done:
        # more digits may still arrive
        completion = CompletionState.INCOMPLETE
    return from_python(obj, completion)


def _nesting_depth(obj: Any) -> int:
    deepest = 0
    stack: list[tuple[Any, int]] = [(obj, 1)]
    while stack:
        node, depth = stack.pop()
        if isinstance(node, dict):
            children = node.values()
        elif isinstance(node, list):
            children = node
        else:
            continue
        deepest = max(deepest, depth)
        stack.extend((child, depth + 1) for child in children)
    return deepest


# ----------------------------
# Markdown
# ----------------------------


def _parse_markdown(text: str, options: ParseOptions) -> Value | None:
    blocks: list[Markdown] = []
    outside: list[str] = []
    pos = 0
    start = text.find(_FENCE)
    while start != -1:
        outside.append(text[pos:start])
        block, resume = _read_block(text, start, options)
        if isinstance(block.inner, String) and block.inner.kind is StringKind.RAW:
            # fenced prose or code: nothing to extract
            outside.append(text[start:resume])
        else:
            blocks.append(block)
        if resume is None:
            pos = len(text)
            break
        pos = resume
        start = text.find(_FENCE, resume)
    else:
        outside.append(text[pos:])

    if not blocks:
        return None
    prose = any(chunk.strip() for chunk in outside)
    if len(blocks) == 1:
        if not prose:
            return blocks[0]
        return _any_of([blocks[0]], text, options)
    arr = Array(tuple(blocks), _joint_completion(blocks), (_MULTIPLE_OBJECTS,))
    return _any_of([*blocks, arr], text, options)


def _read_block(text: str, start: int, options: ParseOptions) -> tuple[Markdown, int | None]:
    """Read one fenced block starting at ``start``; returns the block and where to resume."""
    n = len(text)
    tag_end = start + len(_FENCE)
    while tag_end < n and (text[tag_end].isalnum() or text[tag_end] in _TAG_CHARS):
        tag_end += 1
    tag = text[start + len(_FENCE) : tag_end]
    body_start = tag_end
    newline = text.find("\n", tag_end)
    if newline != -1 and not text[tag_end:newline].strip():
        body_start = newline + 1

    # Prefer the nearest closing fence whose content parses cleanly, so fences
    # inside string values are not mistaken for the end of the block.
    nearest: int | None = None
    chosen: int | None = None
    close = text.find(_FENCE, body_start)
    while close != -1:
        if not _opens_block(text, close):
            if nearest is None:
                nearest = close
            if _parses_cleanly(text[body_start:close].strip(), options):
                chosen = close
                break
        close = text.find(_FENCE, close + len(_FENCE))
    if chosen is None:
        chosen = nearest

    if chosen is None:
        inner_text = text[body_start:].strip()
        inner = parse_jsonish(inner_text, _inner_options(options, is_done=options.is_done))
        block = Markdown(tag, inner, CompletionState.INCOMPLETE, (_STRIPPED_MARKDOWN,))
        return block, None

    inner_text = text[body_start:chosen].strip()
    inner = parse_jsonish(inner_text, _inner_options(options, is_done=True))
    block = Markdown(tag, inner, inner.completion, (_STRIPPED_MARKDOWN,))
    return block, chosen + len(_FENCE)


def _opens_block(text: str, idx: int) -> bool:
    # ```json directly after a fence is the start of another block
    after = text[idx + len(_FENCE) : idx + len(_FENCE) + 1]
    return bool(after) and (after.isalnum() or after == "_")


def _inner_options(options: ParseOptions, *, is_done: bool) -> ParseOptions:
    return dataclasses.replace(
        options, allow_markdown=False, allow_string_fallback=True, is_done=is_done
    )


def _parses_cleanly(inner: str, options: ParseOptions) -> bool:
    if _strict(inner) is not _FAILED:
        return True
    try:
        result = parse_fixing(inner, max_depth=options.max_depth)
    except DepthExceededError:
        return False
    if result is None or result.discarded or len(result.values) != 1:
        return False
    value = result.values[0]
    return isinstance(value, (Object, Array)) and value.completion is CompletionState.COMPLETE


# ----------------------------
# Embedded / concatenated JSON
# ----------------------------


def _parse_multi_object(text: str, options: ParseOptions) -> Value | None:
    """
    Collect balanced {...} and [...] regions. Complete regions must parse
    strictly; an unterminated tail region goes through the fixing parser.
    """
    values: list[Value] = []
    prose = False
    pos = 0
    for start, end, complete in _balanced_regions(text):
        if text[pos:start].strip():
            prose = True
        pos = end
        region = text[start:end]
        if complete:
            parsed = _strict(region)
            if parsed is _FAILED:
                return None
            values.append(_from_strict(parsed, options))
            continue
        result = parse_fixing(region, max_depth=options.max_depth)
        if result is None or result.discarded:
            return None
        values.extend(result.values)
    if text[pos:].strip():
        prose = True

    if not values:
        return None
    if len(values) == 1 and not prose:
        return values[0]
    return _combine(values, text, options, prose=prose)


def _balanced_regions(text: str) -> Iterator[tuple[int, int, bool]]:
    """
    Yield (start, end, is_complete) for balanced brace/bracket regions.

    Braces inside double-quoted strings are ignored.
    """
    stack: list[str] = []
    start_idx: int | None = None
    in_string = False
    escape = False
    for i, ch in enumerate(text):
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            if stack:
                in_string = True
            continue
        if ch in "{[":
            if not stack:
                start_idx = i
            stack.append(ch)
        elif ch in "]}":
            if not stack:
                continue
            expected = "{" if ch == "}" else "["
            if stack[-1] != expected:
                # mismatched, reset
                stack.clear()
                start_idx = None
                continue
            stack.pop()
            if not stack and start_idx is not None:
                yield start_idx, i + 1, True
                start_idx = None
    # Incomplete tail region
    if stack and start_idx is not None:
        yield start_idx, len(text), False


# ----------------------------
# Fixing parser
# ----------------------------


def _parse_fixing(text: str, options: ParseOptions) -> Value | None:
    result: FixingResult | None = parse_fixing(text, max_depth=options.max_depth)
    if result is None:
        return None
    values = result.values
    if len(values) == 1 and not result.discarded:
        value = values[0]
        if (
            options.allow_string_fallback
            and isinstance(value, String)
            and value.kind is StringKind.UNQUOTED
        ):
            # bare prose: no structure was found
            return None
        return value
    return _combine(values, text, options, prose=result.discarded > 0)


# ----------------------------
# Helpers
# ----------------------------


def _combine(values: list[Value], text: str, options: ParseOptions, *, prose: bool) -> Value:
    if prose:
        values = [with_fixes(v, _EXTRACTED_JSON) for v in values]
    if len(values) == 1:
        return _any_of([values[0]], text, options)
    arr = Array(tuple(values), _joint_completion(values), (_MULTIPLE_OBJECTS,))
    return _any_of([arr, *values], text, options)


def _any_of(candidates: list[Value], text: str, options: ParseOptions) -> Value:
    if options.allow_string_fallback:
        candidates = [*candidates, _raw_anchor(text, options)]
    if len(candidates) == 1:
        return candidates[0]
    return AnyOf(tuple(candidates), text)


def _raw_anchor(text: str, options: ParseOptions) -> String:
    completion = CompletionState.COMPLETE if options.is_done else CompletionState.INCOMPLETE
    return String(text, StringKind.RAW, completion)


def _joint_completion(values: list[Value] | list[Markdown]) -> CompletionState:
    if any(v.completion is CompletionState.INCOMPLETE for v in values):
        return CompletionState.INCOMPLETE
    return CompletionState.COMPLETE
