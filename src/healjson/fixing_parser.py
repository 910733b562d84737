from __future__ import annotations

import math
import re
import textwrap
from dataclasses import dataclass, field
from typing import Literal

from .errors import DepthExceededError
from .flags import Flag, FlagKind
from .quote_tracker import QuoteTracker
from .types import CompletionState, StringKind
from .value import Array, Bool, Null, Number, Object, String, Value, to_python

# Character-level state machine for *invalid* JSON-ish text.
#
# - one frame per open collection/string/comment on an explicit stack
# - tolerates missing commas/colons, comments, mixed quoting, unquoted keys and
#   values, and unterminated collections/strings (auto-closed as INCOMPLETE)
# - linear in the input: lookahead through whitespace uses a precomputed
#   next-significant-character table instead of rescanning

_FIXED_JSON = Flag(FlagKind.FIXED_JSON)
_QUOTE_STYLE = Flag(FlagKind.FIXED_QUOTE_STYLE)
_TRAILING_COMMA = Flag(FlagKind.FIXED_TRAILING_COMMA)
_INFERRED_ARRAY = Flag(FlagKind.INFERRED_ARRAY)

_QUOTE_CHARS = frozenset({'"', "'", "`"})
_COMMENT_OPENERS = ("//", "/*")

_NUMBER = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_LITERALS = frozenset({"true", "false", "null"})
_TOKEN_ENDS = frozenset(",:{}[]\"'`")

_JSON_ESCAPES = {
    '"': '"',
    "\\": "\\",
    "/": "/",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
}
_LOOSE_ESCAPES = {"\\": "\\", "n": "\n", "r": "\r", "t": "\t", '"': '"', "'": "'", "`": "`"}

_QUOTE_KINDS = {
    '"': StringKind.DOUBLE_QUOTED,
    "'": StringKind.SINGLE_QUOTED,
    "`": StringKind.BACKTICK,
}


@dataclass(slots=True)
class FixingResult:
    values: list[Value]
    # top-level fragments (prose, stray scalars) dropped in favour of structures
    discarded: int = 0


@dataclass(slots=True)
class _Object:
    keys: list[str] = field(default_factory=list)
    values: list[Value] = field(default_factory=list)
    fixes: list[Flag] = field(default_factory=list)
    sep: str | None = None


@dataclass(slots=True)
class _Array:
    values: list[Value] = field(default_factory=list)
    fixes: list[Flag] = field(default_factory=list)
    sep: str | None = None


@dataclass(slots=True)
class _QuotedString:
    delimiter: str
    tracker: QuoteTracker
    buf: list[str] = field(default_factory=list)


@dataclass(slots=True)
class _TripleQuotedString:
    delimiter: str
    buf: list[str] = field(default_factory=list)


@dataclass(slots=True)
class _UnquotedString:
    buf: list[str] = field(default_factory=list)
    pending_ws: bool = False
    inner_ws: bool = False

    def append(self, ch: str) -> None:
        if ch.isspace():
            self.pending_ws = True
        else:
            if self.pending_ws:
                self.inner_ws = True
            self.pending_ws = False
        self.buf.append(ch)

    @property
    def primitive_like(self) -> bool:
        # numbers, booleans, null and identifiers never contain inner whitespace
        return not self.inner_ws


@dataclass(slots=True)
class _LineComment:
    pass


@dataclass(slots=True)
class _BlockComment:
    pass


_Frame = (
    _Object
    | _Array
    | _QuotedString
    | _TripleQuotedString
    | _UnquotedString
    | _LineComment
    | _BlockComment
)

_Context = Literal["none", "object_key", "object_value", "array"]


class FixingParser:
    def __init__(self, text: str, *, max_depth: int = 100) -> None:
        self.text = text
        self.max_depth = max_depth
        self.stack: list[_Frame] = []
        # completed top-level values, in order of appearance
        self.completed: list[Value] = []
        self._next_sig = _next_significant(text)

    def parse(self) -> FixingResult | None:
        text = self.text
        n = len(text)
        i = 0
        while i < n:
            i += 1 + self._process_char(text[i], i)

        # Close anything still open as incomplete
        while self.stack:
            self._complete_top(CompletionState.INCOMPLETE)

        return self._select()

    def _select(self) -> FixingResult | None:
        if not self.completed:
            return None
        if len(self.completed) == 1:
            return FixingResult(values=[self.completed[0]])

        structured = [v for v in self.completed if isinstance(v, (Object, Array))]
        if not structured:
            # Several top-level scalars/strings: treat them as one inferred array.
            completion = (
                CompletionState.COMPLETE
                if all(v.completion is CompletionState.COMPLETE for v in self.completed)
                else CompletionState.INCOMPLETE
            )
            return FixingResult(
                values=[Array(tuple(self.completed), completion, (_INFERRED_ARRAY,))]
            )
        return FixingResult(
            values=structured, discarded=len(self.completed) - len(structured)
        )

    # ----------------------------
    # Parsing
    # ----------------------------

    def _process_char(self, token: str, idx: int) -> int:
        if not self.stack:
            return self._start_value(token, idx, None)

        top = self.stack[-1]

        if isinstance(top, _Object):
            if token == "}":
                self._close_collection(top)
                return 0
            if token == "]":
                self._close_mismatched(token)
                return 0
            if token in {",", ":"}:
                top.sep = token
                return 0
            return self._start_value(token, idx, top)

        if isinstance(top, _Array):
            if token == "]":
                self._close_collection(top)
                return 0
            if token == "}":
                self._close_mismatched(token)
                return 0
            if token in {",", ":"}:
                top.sep = token
                return 0
            return self._start_value(token, idx, top)

        if isinstance(top, _QuotedString):
            tracker = top.tracker
            if tracker.escaping:
                tracker.feed(token)
                return self._append_escape(top, token, idx)
            tracker.feed(token)
            if token == "\\":
                return 0
            if token == top.delimiter and self._should_close_quoted(idx):
                self._complete_top(CompletionState.COMPLETE)
                return 0
            top.buf.append(token)
            return 0

        if isinstance(top, _TripleQuotedString):
            if token == top.delimiter and self.text.startswith(top.delimiter * 2, idx + 1):
                # For triple-backticks, avoid closing on sequences like ```json
                # which commonly appear inside the content.
                if top.delimiter == "`":
                    after = self.text[idx + 3 : idx + 4]
                    if after and (after.isalnum() or after in {"_", "-"}):
                        top.buf.append(token)
                        return 0
                self._complete_top(CompletionState.COMPLETE)
                return 2
            top.buf.append(token)
            return 0

        if isinstance(top, _UnquotedString):
            top.append(token)
            if self._should_close_unquoted(top, idx):
                self._complete_top(CompletionState.COMPLETE)
            return 0

        if isinstance(top, _LineComment):
            if token == "\n":
                self._complete_top(CompletionState.COMPLETE)
            return 0

        if isinstance(top, _BlockComment):
            if token == "*" and self.text.startswith("/", idx + 1):
                self._complete_top(CompletionState.COMPLETE)
                return 1
            return 0

        raise AssertionError(f"unhandled token {token!r} in {top!r}")

    def _start_value(self, token: str, idx: int, parent: _Object | _Array | None) -> int:
        if token.isspace():
            return 0
        if parent is None and token in {",", ":", "}", "]"}:
            return 0

        text = self.text
        if token == "/" and text.startswith(("/", "*"), idx + 1):
            if parent is not None:
                _add_fix(parent.fixes, _FIXED_JSON)
            if text[idx + 1] == "/":
                self._push(_LineComment())
            else:
                self._push(_BlockComment())
            return 1

        if parent is not None:
            self._note_child_start(parent)

        if token == "{":
            self._push(_Object())
            return 0
        if token == "[":
            self._push(_Array())
            return 0
        if token in {'"', "`"} and text.startswith(token * 2, idx + 1):
            self._push(_TripleQuotedString(delimiter=token))
            return 2
        if token in _QUOTE_CHARS:
            self._push(_QuotedString(delimiter=token, tracker=QuoteTracker(token)))
            return 0

        # default: start unquoted token (numbers, identifiers, paths, prose, ...)
        unq = _UnquotedString()
        unq.append(token)
        self._push(unq)
        # A single-character token may be complete immediately if the next
        # character is a structural delimiter.
        if self._should_close_unquoted(unq, idx):
            self._complete_top(CompletionState.COMPLETE)
        return 0

    def _push(self, frame: _Frame) -> None:
        # Only collections count toward nesting; strings and comments are leaves.
        if isinstance(frame, (_Object, _Array)) and len(self.stack) >= self.max_depth:
            raise DepthExceededError(self.max_depth)
        self.stack.append(frame)

    def _note_child_start(self, parent: _Object | _Array) -> None:
        if isinstance(parent, _Object):
            if len(parent.keys) == len(parent.values):
                if parent.keys and parent.sep != ",":
                    _add_fix(parent.fixes, _FIXED_JSON)  # missing comma
            elif parent.sep != ":":
                _add_fix(parent.fixes, _FIXED_JSON)  # missing colon
        elif parent.values and parent.sep != ",":
            _add_fix(parent.fixes, _FIXED_JSON)
        parent.sep = None

    def _close_collection(self, frame: _Object | _Array) -> None:
        if frame.sep == ",":
            _add_fix(frame.fixes, _TRAILING_COMMA)
        if isinstance(frame, _Object) and len(frame.keys) > len(frame.values):
            _add_fix(frame.fixes, _FIXED_JSON)  # dangling key is dropped
        self._complete_top(CompletionState.COMPLETE)

    def _close_mismatched(self, token: str) -> None:
        wanted = _Object if token == "}" else _Array
        for pos in range(len(self.stack) - 1, -1, -1):
            if isinstance(self.stack[pos], wanted):
                break
        else:
            top = self.stack[-1]
            if isinstance(top, (_Object, _Array)):
                _add_fix(top.fixes, _FIXED_JSON)
            return
        while len(self.stack) > pos + 1:
            inner = self.stack[-1]
            if isinstance(inner, (_Object, _Array)):
                _add_fix(inner.fixes, _FIXED_JSON)
            self._complete_top(CompletionState.COMPLETE)
        target = self.stack[-1]
        if isinstance(target, (_Object, _Array)):
            self._close_collection(target)

    def _append_escape(self, top: _QuotedString, token: str, idx: int) -> int:
        if top.delimiter == '"':
            simple = _JSON_ESCAPES.get(token)
            if simple is not None:
                top.buf.append(simple)
                return 0
            if token == "u":
                return self._append_unicode_escape(top, idx)
        else:
            simple = _LOOSE_ESCAPES.get(token)
            if simple is not None:
                top.buf.append(simple)
                return 0
        # unknown escape: keep it verbatim
        top.buf.append("\\" + token)
        return 0

    def _append_unicode_escape(self, top: _QuotedString, idx: int) -> int:
        text = self.text
        code = _hex4(text, idx + 1)
        if code is None:
            top.buf.append("\\u")
            return 0
        skip = 4
        if 0xD800 <= code < 0xDC00 and text.startswith("\\u", idx + 5):
            low = _hex4(text, idx + 7)
            if low is not None and 0xDC00 <= low < 0xE000:
                code = 0x10000 + ((code - 0xD800) << 10) + (low - 0xDC00)
                skip = 10
        top.buf.append(chr(code))
        return skip

    # ----------------------------
    # Close heuristics
    # ----------------------------

    def _parent_context(self) -> _Context:
        if len(self.stack) < 2:
            return "none"
        parent = self.stack[-2]
        if isinstance(parent, _Object):
            return "object_key" if len(parent.keys) == len(parent.values) else "object_value"
        return "array"

    def _should_close_quoted(self, idx: int) -> bool:
        text = self.text
        j = self._next_sig[idx + 1]
        if j >= len(text):
            return True
        nxt = text[j]
        had_ws = j > idx + 1
        if had_ws and (nxt in _QUOTE_CHARS or text.startswith(_COMMENT_OPENERS, j)):
            return True
        ctx = self._parent_context()
        if ctx == "object_key":
            return nxt in {":", "}"}
        if ctx in {"object_value", "array"}:
            # any closer ends a value; mismatched ones are repaired afterwards
            return nxt in {",", "}", "]"}
        return had_ws or nxt in {",", ":", "}", "]", "{", "["}

    def _should_close_unquoted(self, current: _UnquotedString, idx: int) -> bool:
        text = self.text
        n = len(text)
        j = self._next_sig[idx + 1]
        if j >= n:
            # end of input: auto-completion decides
            return False
        nxt = text[j]
        had_ws = j > idx + 1
        ctx = self._parent_context()

        if ctx == "none":
            return nxt in {"{", "["}
        if ctx == "object_key":
            return nxt in {":", "}"}

        if nxt in {"}", "]"}:
            return True

        if nxt == ",":
            # array elements are comma separated even when they are free text
            if current.primitive_like or ctx == "array":
                return True
            # Free text: the comma only separates if a new key follows.
            k = self._next_sig[j + 1]
            if k >= n:
                return False
            after = text[k]
            if after in _QUOTE_CHARS or after in {"}", "]"}:
                return True
            if text.startswith(_COMMENT_OPENERS, k):
                return True
            return self._looks_like_key(k)

        # Whitespace alone never closes; it must be followed by something that
        # starts a new token.
        if not had_ws:
            return False
        if text.startswith(_COMMENT_OPENERS, j):
            return True
        if not current.primitive_like:
            return False
        if nxt in _QUOTE_CHARS or nxt in {"{", "["}:
            return True
        if ctx == "object_value":
            return self._looks_like_key(j)
        # missing comma between literals (`[1 2 3]`); words stay together
        return _is_literal("".join(current.buf).strip()) and _is_literal(self._token_at(j))

    def _token_at(self, start: int) -> str:
        text = self.text
        n = len(text)
        i = start
        while i < n and not text[i].isspace() and text[i] not in _TOKEN_ENDS:
            i += 1
        return text[start:i]

    def _looks_like_key(self, start: int) -> bool:
        """`identifier:` starting at ``start`` (bounded by the identifier length)."""
        text = self.text
        n = len(text)
        i = start
        while i < n and (text[i].isalnum() or text[i] in {"_", "-", "$"}):
            i += 1
        if i == start:
            return False
        while i < n and text[i] in {" ", "\t"}:
            i += 1
        return i < n and text[i] == ":"

    # ----------------------------
    # Completion / conversion
    # ----------------------------

    def _complete_top(self, completion: CompletionState) -> None:
        frame = self.stack.pop()
        if isinstance(frame, (_LineComment, _BlockComment)):
            # Comments are discarded.
            return

        parent = self.stack[-1] if self.stack else None
        key_slot = isinstance(parent, _Object) and len(parent.keys) == len(parent.values)

        value: Value
        if isinstance(frame, _Object):
            value = Object(
                tuple(zip(frame.keys, frame.values, strict=False)),
                completion,
                tuple(frame.fixes),
            )
        elif isinstance(frame, _Array):
            value = Array(tuple(frame.values), completion, tuple(frame.fixes))
        elif isinstance(frame, _QuotedString):
            value = _finish_quoted(frame, completion)
        elif isinstance(frame, _TripleQuotedString):
            value = _finish_triple_quoted(frame, completion)
        else:
            raw = "".join(frame.buf).strip()
            if key_slot:
                value = String(raw, StringKind.UNQUOTED, completion)
            else:
                value = _convert_unquoted(raw, completion)

        if parent is None:
            self.completed.append(value)
            return
        if isinstance(parent, _Object):
            if key_slot:
                parent.keys.append(_as_key_string(value))
                if not (isinstance(value, String) and value.kind is StringKind.DOUBLE_QUOTED):
                    _add_fix(parent.fixes, _QUOTE_STYLE)
            else:
                parent.values.append(value)
            return
        if isinstance(parent, _Array):
            parent.values.append(value)
            return
        raise AssertionError(f"value completed inside non-collection frame {parent!r}")


def parse_fixing(text: str, *, max_depth: int = 100) -> FixingResult | None:
    return FixingParser(text, max_depth=max_depth).parse()


def _add_fix(fixes: list[Flag], flag: Flag) -> None:
    if flag not in fixes:
        fixes.append(flag)


def _next_significant(text: str) -> list[int]:
    """``out[i]`` is the index of the first non-whitespace char at or after ``i``."""
    n = len(text)
    out = [n] * (n + 1)
    nxt = n
    for i in range(n - 1, -1, -1):
        if not text[i].isspace():
            nxt = i
        out[i] = nxt
    return out


def _hex4(text: str, start: int) -> int | None:
    chunk = text[start : start + 4]
    if len(chunk) != 4:
        return None
    try:
        return int(chunk, 16)
    except ValueError:
        return None


def _finish_quoted(frame: _QuotedString, completion: CompletionState) -> String:
    tracker = frame.tracker
    text = "".join(frame.buf)
    if tracker.escaping:
        # dangling backslash at end of input
        text += "\\"
    fixes: list[Flag] = []
    kind = _QUOTE_KINDS[frame.delimiter]
    if kind is not StringKind.DOUBLE_QUOTED:
        fixes.append(_QUOTE_STYLE)
    stray = tracker.unescaped_delimiters
    if completion is CompletionState.COMPLETE:
        stray -= 1
    if stray > 0:
        _add_fix(fixes, _QUOTE_STYLE)
    return String(text, kind, completion, tuple(fixes))


def _finish_triple_quoted(frame: _TripleQuotedString, completion: CompletionState) -> String:
    raw = "".join(frame.buf)
    if frame.delimiter == '"':
        return String(
            textwrap.dedent(raw).strip("\n"),
            StringKind.TRIPLE_QUOTED,
            completion,
            (_QUOTE_STYLE,),
        )
    # triple backticks: the first line is a language tag, like fenced code blocks.
    if "\n" not in raw:
        return String(
            raw.strip("\n"), StringKind.TRIPLE_BACKTICK, completion, (_QUOTE_STYLE,)
        )
    info, rest = raw.split("\n", 1)
    return String(
        textwrap.dedent(rest).strip("\n"),
        StringKind.TRIPLE_BACKTICK,
        completion,
        (_QUOTE_STYLE,),
        lang=info.strip() or None,
    )


def _as_key_string(value: Value) -> str:
    if isinstance(value, String):
        return value.value
    if isinstance(value, Null):
        return "null"
    if isinstance(value, Bool):
        return "true" if value.value else "false"
    if isinstance(value, Number):
        return str(value.value)
    return str(to_python(value))


def _is_literal(raw: str) -> bool:
    return raw.lower() in _LITERALS or _NUMBER.fullmatch(raw) is not None


def _convert_unquoted(raw: str, completion: CompletionState) -> Value:
    lowered = raw.lower()
    if lowered == "true":
        return Bool(True, completion)
    if lowered == "false":
        return Bool(False, completion)
    if lowered == "null":
        return Null()
    if _NUMBER.fullmatch(raw):
        try:
            if any(ch in raw for ch in ".eE"):
                number = float(raw)
                if math.isfinite(number):
                    return Number(number, completion)
            else:
                return Number(int(raw), completion)
        except ValueError:
            # too many digits for int(); keep the text
            pass
    return String(raw, StringKind.UNQUOTED, completion, (_QUOTE_STYLE,))
