from __future__ import annotations

import logging
import math
import re
import unicodedata
from collections.abc import Mapping
from dataclasses import dataclass
from difflib import SequenceMatcher
from typing import Any

from pydantic import TypeAdapter, ValidationError

from .errors import (
    CoercionError,
    DepthExceededError,
    MissingRequiredFieldError,
    NoMatchingVariantError,
    TypeMismatchError,
)
from .flags import Flag, FlagKind, FlagTracker, only_parse_flags, resolve_factors, type_coercion
from .schema import (
    SCHEMA_TYPES,
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
from .types import CoercionResult, CompletionState, StringKind
from .value import (
    AnyOf,
    Array,
    Bool,
    Markdown,
    Null,
    Number,
    Object,
    String,
    Value,
    kind_name,
    to_python,
)

logger = logging.getLogger(__name__)

_INCOMPLETE = Flag(FlagKind.INCOMPLETE)
_WRAPPED = Flag(FlagKind.WRAPPED_IN_ARRAY)
_UNWRAPPED = Flag(FlagKind.UNWRAPPED_FROM_ARRAY)


@dataclass(slots=True)
class CoerceOptions:
    """
    Options for coercion & scoring.
    """

    # minimum SequenceMatcher ratio for a fuzzy key match
    fuzzy_threshold: float = 0.8
    allow_substring_enum_match: bool = False
    max_depth: int = 100
    flag_factors: Mapping[FlagKind, float] | None = None

    def __post_init__(self) -> None:
        if not 0.0 < self.fuzzy_threshold <= 1.0:
            raise ValueError("fuzzy_threshold must be in (0, 1]")
        if self.max_depth <= 0:
            raise ValueError("max_depth must be > 0")
        resolve_factors(self.flag_factors)


def _adapter_target_type(adapter: TypeAdapter[Any]) -> Any | None:
    # Pydantic does not expose this as a stable public API yet.
    return getattr(adapter, "_type", None)


def resolve_target(target: Any) -> tuple[Schema, TypeAdapter[Any] | None]:
    """
    Accept a Python type, a ``TypeAdapter`` or a ready-made schema.

    Schemas are used as-is and produce plain data; types also get an adapter
    for the final typed validation.
    """
    if isinstance(target, SCHEMA_TYPES):
        return target, None
    if isinstance(target, TypeAdapter):
        tp = _adapter_target_type(target)
        return (AnySchema() if tp is None else schema_for(tp)), target
    return schema_for(target), TypeAdapter(target)


def validate_typed(
    adapter: TypeAdapter[Any] | None, result: CoercionResult[Any]
) -> CoercionResult[Any]:
    """Validate coerced plain data into the adapter's type (models, enum members, ...)."""
    if adapter is None:
        return result
    try:
        # Accept both aliases and field names: coerced dicts are keyed by field name.
        validated = adapter.validate_python(result.value, by_alias=True, by_name=True)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        loc = ".".join(str(part) for part in first.get("loc", ()))
        expected = getattr(_adapter_target_type(adapter), "__name__", None) or str(
            _adapter_target_type(adapter)
        )
        raise TypeMismatchError(expected, first.get("msg", str(exc)), loc) from exc
    return CoercionResult(value=validated, flags=result.flags, confidence=result.confidence)


def coerce_value(
    value: Value,
    schema: Schema,
    *,
    options: CoerceOptions | None = None,
    allow_partial: bool = False,
) -> CoercionResult[Any]:
    """
    Align a parsed value tree to ``schema``.

    Returns plain Python data (dicts for structs, enum values for enums) along
    with every flag recorded on the way and the resulting confidence.

    With ``allow_partial`` (streaming), missing or failing fields and list
    elements are omitted instead of failing the whole value, and fields held by
    their :class:`StreamPolicy` are left out.
    """
    opts = options or CoerceOptions()
    tracker = FlagTracker(resolve_factors(opts.flag_factors))
    coercer = _Coercer(opts, allow_partial=allow_partial)
    out = coercer.coerce(value, schema, tracker, "", 0)
    return CoercionResult(value=out, flags=tracker.flags, confidence=tracker.confidence)


class _Coercer:
    def __init__(self, options: CoerceOptions, *, allow_partial: bool) -> None:
        self.options = options
        self.allow_partial = allow_partial
        # union identity -> index of the last winning variant (for this pass)
        self._union_hints: dict[int, int] = {}

    # ----------------------------
    # Entry points
    # ----------------------------

    def coerce(
        self, value: Value, schema: Schema, tracker: FlagTracker, path: str, depth: int
    ) -> Any:
        """Visit a node: replay its parse fixes, then dispatch."""
        tracker.extend(value.fixes)
        if not isinstance(value, AnyOf) and value.completion is CompletionState.INCOMPLETE:
            tracker.record(_INCOMPLETE)
        return self._dispatch(value, schema, tracker, path, depth)

    def _dispatch(
        self, value: Value, schema: Schema, tracker: FlagTracker, path: str, depth: int
    ) -> Any:
        if depth > self.options.max_depth:
            raise DepthExceededError(self.options.max_depth)

        if isinstance(value, AnyOf):
            return self._coerce_any_of(value, schema, tracker, path, depth)
        if isinstance(value, Markdown):
            return self.coerce(value.inner, schema, tracker, path, depth + 1)

        if isinstance(schema, AnySchema):
            _replay_subtree(value, tracker)
            return to_python(value)

        if (
            isinstance(value, Array)
            and len(value.items) == 1
            and (
                isinstance(schema, (PrimitiveSchema, EnumSchema))
                or (isinstance(schema, StructSchema) and isinstance(value.items[0], Object))
            )
        ):
            tracker.record(_UNWRAPPED)
            return self.coerce(value.items[0], schema, tracker, path, depth + 1)

        if isinstance(schema, PrimitiveSchema):
            return self._coerce_primitive(value, schema, tracker, path)
        if isinstance(schema, EnumSchema):
            return self._coerce_enum(value, schema, tracker, path)
        if isinstance(schema, StructSchema):
            return self._coerce_struct(value, schema, tracker, path, depth)
        if isinstance(schema, UnionSchema):
            return self._coerce_union(value, schema, tracker, path, depth)
        if isinstance(schema, ListSchema):
            return self._coerce_list(value, schema, tracker, path, depth)
        if isinstance(schema, MapSchema):
            return self._coerce_map(value, schema, tracker, path, depth)
        raise TypeError(f"unsupported schema: {schema!r}")

    # ----------------------------
    # AnyOf / union selection
    # ----------------------------

    def _coerce_any_of(
        self, value: AnyOf, schema: Schema, tracker: FlagTracker, path: str, depth: int
    ) -> Any:
        if not value.candidates:
            raise TypeMismatchError(_describe(schema), "nothing", path)
        if isinstance(schema, AnySchema):
            return self.coerce(value.candidates[0], schema, tracker, path, depth + 1)

        best: tuple[Any, FlagTracker] | None = None
        errors: list[CoercionError] = []
        for cand in value.candidates:
            fork = tracker.fork()
            try:
                out = self.coerce(cand, schema, fork, path, depth + 1)
            except DepthExceededError:
                raise
            except CoercionError as exc:
                errors.append(exc)
                continue
            # ties keep candidate order
            if best is None or fork.confidence > best[1].confidence:
                best = (out, fork)
            if fork.confidence >= 1.0:
                break
        if best is None:
            raise errors[0]
        out, fork = best
        tracker.absorb(fork)
        return out

    def _coerce_union(
        self, value: Value, schema: UnionSchema, tracker: FlagTracker, path: str, depth: int
    ) -> Any:
        variants = schema.variants
        key = id(schema)

        hint = self._union_hints.get(key)
        if hint is not None:
            fork = tracker.fork()
            try:
                out = self._dispatch(value, variants[hint], fork, path, depth + 1)
            except DepthExceededError:
                raise
            except CoercionError:
                pass
            else:
                if only_parse_flags(fork.flags):
                    tracker.absorb(fork)
                    return out

        best: tuple[int, Any, FlagTracker] | None = None
        errors: list[CoercionError] = []
        for idx, variant in enumerate(variants):
            fork = tracker.fork()
            try:
                out = self._dispatch(value, variant, fork, path, depth + 1)
            except DepthExceededError:
                raise
            except CoercionError as exc:
                errors.append(exc)
                continue
            # ties go to declaration order
            if best is None or fork.confidence > best[2].confidence:
                best = (idx, out, fork)
        if best is None:
            raise NoMatchingVariantError(path, errors)

        idx, out, fork = best
        self._union_hints[key] = idx
        tracker.absorb(fork)
        if not only_parse_flags(fork.flags):
            tracker.record(Flag(FlagKind.UNION_VARIANT_SELECTED, index=idx))
        logger.debug(
            "union at %r resolved to variant %d (%s) with confidence %.3f",
            path,
            idx,
            _describe(variants[idx]),
            fork.confidence,
        )
        return out

    # ----------------------------
    # Scalars
    # ----------------------------

    def _coerce_primitive(
        self, value: Value, schema: PrimitiveSchema, tracker: FlagTracker, path: str
    ) -> Any:
        kind = schema.kind
        found = kind_name(value)

        if kind is PrimitiveKind.NULL:
            if isinstance(value, Null):
                return None
            if isinstance(value, String) and value.value.strip().lower() in {"null", "none"}:
                tracker.record(type_coercion(found, "null"))
                return None
            raise TypeMismatchError("null", found, path)

        if kind is PrimitiveKind.STRING:
            if isinstance(value, String):
                return value.value
            if isinstance(value, Number):
                tracker.record(type_coercion(found, "string"))
                return str(value.value)
            if isinstance(value, Bool):
                tracker.record(type_coercion(found, "string"))
                return "true" if value.value else "false"
            raise TypeMismatchError("string", found, path)

        if kind is PrimitiveKind.INT:
            if isinstance(value, Number):
                if isinstance(value.value, int):
                    return value.value
                if math.isfinite(value.value):
                    tracker.record(type_coercion("float", "int"))
                    return round(value.value)
            elif isinstance(value, String):
                s = value.value.strip()
                i = _try_int(s)
                if i is not None:
                    tracker.record(type_coercion(found, "int"))
                    return i
                f = _try_float(s)
                if f is not None:
                    tracker.record(type_coercion(found, "int"))
                    return round(f)
            raise TypeMismatchError("int", found, path)

        if kind is PrimitiveKind.FLOAT:
            if isinstance(value, Number):
                if isinstance(value.value, float):
                    return value.value
                tracker.record(type_coercion("int", "float"))
                return float(value.value)
            if isinstance(value, String):
                f = _try_float(value.value.strip())
                if f is not None:
                    tracker.record(type_coercion(found, "float"))
                    return f
            raise TypeMismatchError("float", found, path)

        # bool
        if isinstance(value, Bool):
            return value.value
        if isinstance(value, String):
            b = _try_bool(value.value.strip())
            if b is not None:
                tracker.record(type_coercion(found, "bool"))
                return b
        if isinstance(value, Number) and value.value in (0, 1):
            tracker.record(type_coercion(found, "bool"))
            return bool(value.value)
        raise TypeMismatchError("bool", found, path)

    def _coerce_enum(
        self, value: Value, schema: EnumSchema, tracker: FlagTracker, path: str
    ) -> Any:
        if isinstance(value, String):
            label = value.value
        elif isinstance(value, Bool):
            label = "true" if value.value else "false"
        elif isinstance(value, Number):
            label = str(value.value)
        else:
            raise TypeMismatchError(schema.name, kind_name(value), path)

        choices = schema.choices()
        matched, exact = _match_enum_value(label, list(choices), self.options)
        if matched is None:
            raise TypeMismatchError(schema.name, repr(label), path)
        if not exact or matched not in schema.labels():
            tracker.record(Flag(FlagKind.ENUM_MATCH, expected=matched, found=label))
        return choices[matched]

    # ----------------------------
    # Structs
    # ----------------------------

    def _coerce_struct(
        self, value: Value, schema: StructSchema, tracker: FlagTracker, path: str, depth: int
    ) -> dict[str, Any]:
        if isinstance(value, Object):
            return self._coerce_object(value, schema, tracker, path, depth)

        # Single-field struct: treat the whole value as that field.
        if len(schema.fields) == 1:
            spec = schema.fields[0]
            inner = self._dispatch(value, spec.schema, tracker, _join(path, spec.name), depth + 1)
            tracker.record(Flag(FlagKind.IMPLIED_KEY, field=spec.name))
            return {spec.name: inner}

        raise TypeMismatchError(schema.name, kind_name(value), path)

    def _coerce_object(
        self, obj: Object, schema: StructSchema, tracker: FlagTracker, path: str, depth: int
    ) -> dict[str, Any]:
        keys = [k for k, _ in obj.entries]
        matches = _resolve_fields(keys, schema.fields, self.options.fuzzy_threshold)
        claimed = {idx for idx, _ in matches.values()}

        out: dict[str, Any] = {}
        for spec in schema.fields:
            fpath = _join(path, spec.name)
            hit = matches.get(spec.name)
            if hit is None:
                if self.allow_partial:
                    # not streamed yet
                    if spec.required:
                        tracker.record(Flag(FlagKind.MISSING_REQUIRED_FIELD, field=spec.name))
                    continue
                if spec.has_default:
                    tracker.record(Flag(FlagKind.USED_DEFAULT_VALUE, field=spec.name))
                    out[spec.name] = spec.make_default()
                    continue
                raise MissingRequiredFieldError(spec.name, path)

            idx, flag = hit
            if flag is not None:
                tracker.record(flag)
            child = obj.entries[idx][1]
            if not self.allow_partial:
                out[spec.name] = self.coerce(child, spec.schema, tracker, fpath, depth + 1)
                continue
            if _held(spec, child):
                continue
            ok, result = self._try_partial(child, spec.schema, tracker, fpath, depth)
            if ok:
                out[spec.name] = result
            else:
                tracker.record(
                    Flag(
                        FlagKind.TYPE_MISMATCH,
                        expected=_describe(spec.schema),
                        found=kind_name(child),
                        field=spec.name,
                    )
                )

        for idx, key in enumerate(keys):
            if idx not in claimed:
                tracker.record(Flag(FlagKind.EXTRA_KEY, field=key))
        return out

    def _try_partial(
        self, value: Value, schema: Schema, tracker: FlagTracker, path: str, depth: int
    ) -> tuple[bool, Any]:
        fork = tracker.fork()
        try:
            out = self.coerce(value, schema, fork, path, depth + 1)
        except DepthExceededError:
            raise
        except CoercionError as exc:
            logger.debug("dropping %s from partial value: %s", path or "<root>", exc)
            return False, None
        tracker.absorb(fork)
        return True, out

    # ----------------------------
    # Containers
    # ----------------------------

    def _coerce_list(
        self, value: Value, schema: ListSchema, tracker: FlagTracker, path: str, depth: int
    ) -> list[Any]:
        if isinstance(value, Array):
            out: list[Any] = []
            for i, item in enumerate(value.items):
                ipath = f"{path}[{i}]"
                if not self.allow_partial:
                    out.append(self.coerce(item, schema.item, tracker, ipath, depth + 1))
                    continue
                ok, result = self._try_partial(item, schema.item, tracker, ipath, depth)
                if ok:
                    out.append(result)
                else:
                    tracker.record(
                        Flag(
                            FlagKind.TYPE_MISMATCH,
                            expected=_describe(schema.item),
                            found=kind_name(item),
                            index=i,
                        )
                    )
            return out
        if isinstance(value, Null):
            raise TypeMismatchError(_describe(schema), "null", path)
        item = self._dispatch(value, schema.item, tracker, f"{path}[0]", depth + 1)
        tracker.record(_WRAPPED)
        return [item]

    def _coerce_map(
        self, value: Value, schema: MapSchema, tracker: FlagTracker, path: str, depth: int
    ) -> dict[str, Any]:
        if not isinstance(value, Object):
            raise TypeMismatchError(_describe(schema), kind_name(value), path)
        out: dict[str, Any] = {}
        for key, child in value.entries:
            kpath = _join(path, key)
            if not self.allow_partial:
                out[key] = self.coerce(child, schema.value, tracker, kpath, depth + 1)
                continue
            ok, result = self._try_partial(child, schema.value, tracker, kpath, depth)
            if ok:
                out[key] = result
            else:
                tracker.record(
                    Flag(
                        FlagKind.TYPE_MISMATCH,
                        expected=_describe(schema.value),
                        found=kind_name(child),
                        field=key,
                    )
                )
        return out


# ---------------------------------------------------------------------------
# Field resolution
# ---------------------------------------------------------------------------


def _resolve_fields(
    keys: list[str], fields: tuple[FieldSpec, ...], fuzzy_threshold: float
) -> dict[str, tuple[int, Flag | None]]:
    """
    Map field name -> (entry index, match flag).

    Matching runs one level at a time across all fields, so a weaker match for
    one field can never take a key that a stronger match of another field
    wants. Within a level the last matching key wins, like a JSON object.
    """
    matches: dict[str, tuple[int, Flag | None]] = {}
    claimed: set[int] = set()
    lowered = [k.lower() for k in keys]
    normalized = [normalize_key(k) for k in keys]

    def claim(spec: FieldSpec, predicate: Any, kind: FlagKind | None) -> None:
        for idx in range(len(keys) - 1, -1, -1):
            if idx in claimed or not predicate(idx):
                continue
            claimed.add(idx)
            flag = None if kind is None else Flag(kind, expected=spec.name, found=keys[idx])
            matches[spec.name] = (idx, flag)
            return

    levels: list[tuple[FlagKind | None, Any]] = [
        (None, lambda spec: lambda i: keys[i] == spec.name),
        (
            FlagKind.CASE_INSENSITIVE_FIELD_MATCH,
            lambda spec: lambda i: lowered[i] == spec.name.lower(),
        ),
        (FlagKind.ALIAS_FIELD_MATCH, lambda spec: lambda i: keys[i] in spec.aliases),
        (
            FlagKind.CONVENTION_FIELD_MATCH,
            lambda spec: lambda i: normalized[i] in _normalized_names(spec),
        ),
    ]
    for kind, make_predicate in levels:
        for spec in fields:
            if spec.name not in matches:
                claim(spec, make_predicate(spec), kind)

    # Fuzzy: accepted only when exactly one unclaimed key clears the threshold.
    for spec in fields:
        if spec.name in matches:
            continue
        target = normalize_key(spec.name)
        if not target:
            continue
        close = [
            idx
            for idx in range(len(keys))
            if idx not in claimed
            and normalized[idx]
            and SequenceMatcher(None, normalized[idx], target).ratio() >= fuzzy_threshold
        ]
        if len(close) == 1:
            idx = close[0]
            claimed.add(idx)
            matches[spec.name] = (
                idx,
                Flag(FlagKind.FUZZY_FIELD_MATCH, expected=spec.name, found=keys[idx]),
            )
        elif len(close) > 1:
            logger.debug(
                "ambiguous fuzzy match for field %r: %s",
                spec.name,
                [keys[i] for i in close],
            )
    return matches


def _normalized_names(spec: FieldSpec) -> set[str]:
    return {normalize_key(n) for n in (spec.name, *spec.aliases)}


def _held(spec: FieldSpec, child: Value) -> bool:
    if spec.stream is StreamPolicy.HOLD_UNTIL_COMPLETE:
        return child.completion is CompletionState.INCOMPLETE
    if spec.stream is StreamPolicy.HOLD_UNTIL_NON_NULL:
        if isinstance(child, Null):
            return True
        # "nu" may still become null
        return (
            isinstance(child, String)
            and child.kind is StringKind.UNQUOTED
            and child.completion is CompletionState.INCOMPLETE
            and "null".startswith(child.value.lower())
        )
    return False


def _replay_subtree(value: Value, tracker: FlagTracker) -> None:
    stack: list[Value] = list(_children(value))
    while stack:
        node = stack.pop()
        tracker.extend(node.fixes)
        if not isinstance(node, AnyOf) and node.completion is CompletionState.INCOMPLETE:
            tracker.record(_INCOMPLETE)
        stack.extend(_children(node))


def _children(value: Value) -> tuple[Value, ...]:
    if isinstance(value, Array):
        return value.items
    if isinstance(value, Object):
        return tuple(v for _, v in value.entries)
    if isinstance(value, Markdown):
        return (value.inner,)
    if isinstance(value, AnyOf):
        return value.candidates[:1]
    return ()


def _join(path: str, name: str) -> str:
    return f"{path}.{name}" if path else name


def _describe(schema: Schema) -> str:
    if isinstance(schema, PrimitiveSchema):
        return schema.kind.value
    if isinstance(schema, (StructSchema, EnumSchema)):
        return schema.name
    if isinstance(schema, UnionSchema):
        return " | ".join(_describe(v) for v in schema.variants)
    if isinstance(schema, ListSchema):
        return f"list[{_describe(schema.item)}]"
    if isinstance(schema, MapSchema):
        return f"dict[str, {_describe(schema.value)}]"
    return "any"


# ---------------------------------------------------------------------------
# Enum/Literal matching
# ---------------------------------------------------------------------------

_PUNCT_RE = re.compile(r"[^\w\s]", re.UNICODE)


def _strip_accents(s: str) -> str:
    """Remove diacritical marks / combining characters."""
    nfd = unicodedata.normalize("NFD", s)
    return "".join(ch for ch in nfd if not unicodedata.combining(ch))


def _strip_punct(s: str) -> str:
    """Strip punctuation (non-word, non-space) characters."""
    return _PUNCT_RE.sub("", s)


def _match_enum_value(
    input_str: str, candidates: list[str], options: CoerceOptions
) -> tuple[str | None, bool]:
    """
    Graduated enum/literal matching.

    Returns ``(matched_label, exact)`` or ``(None, False)`` if nothing matched.

    Matching levels (in priority order):
    1. Exact match
    2. Case-insensitive match (surrounding whitespace ignored)
    3. Punctuation-stripped match
    4. Accent-insensitive match
    5. Substring match, only if ``options.allow_substring_enum_match``

    Several candidates at one level resolve to the alphabetically first one.
    """
    # Level 1: exact match
    if input_str in candidates:
        return input_str, True

    levels = [
        lambda s: s.strip().lower(),
        lambda s: _strip_punct(s).strip().lower(),
        lambda s: _strip_accents(_strip_punct(s)).strip().lower(),
    ]
    for norm in levels:
        wanted = norm(input_str)
        if not wanted:
            continue
        matches = [c for c in candidates if norm(c) == wanted]
        if matches:
            return _pick(input_str, matches), False

    if options.allow_substring_enum_match:
        input_lower = input_str.strip().lower()
        if input_lower:
            matches = [
                c
                for c in candidates
                if c and (input_lower in c.lower() or c.lower() in input_lower)
            ]
            if matches:
                return _pick(input_str, matches), False

    return None, False


def _pick(input_str: str, matches: list[str]) -> str:
    if len(matches) > 1:
        logger.debug("ambiguous enum value %r matches %s", input_str, matches)
    return sorted(matches)[0]


# ---------------------------------------------------------------------------
# Scalar coercion helpers
# ---------------------------------------------------------------------------


def _try_int(s: str) -> int | None:
    """
    Safe int coercion.
    - Direct int parse (e.g. "123")
    - Float-ish only when within epsilon of an integer (e.g. "3.0" -> 3, but "1.4" -> None)
    """
    s = s.rstrip(",")
    try:
        return int(s)
    except ValueError:
        pass
    try:
        fval = float(s)
    except ValueError:
        return None
    if math.isfinite(fval) and abs(fval - round(fval)) < 1e-9:
        return int(round(fval))
    return None


_FRACTION = re.compile(r"^\s*([+-]?\d+(?:\.\d+)?)\s*/\s*([+-]?\d+(?:\.\d+)?)\s*$")


def _try_float(s: str) -> float | None:
    fval = _parse_float(s.rstrip(","))
    if fval is None or not math.isfinite(fval):
        return None
    return fval


def _parse_float(s: str) -> float | None:
    try:
        return float(s)
    except ValueError:
        pass
    m = _FRACTION.match(s)
    if m:
        num = float(m.group(1))
        den = float(m.group(2))
        if den == 0:
            return None
        return num / den
    return _float_from_comma_separated(s)


def _try_bool(s: str) -> bool | None:
    sl = s.lower()
    if sl in {"true", "yes", "y", "1"}:
        return True
    if sl in {"false", "no", "n", "0"}:
        return False
    return None


def normalize_key(s: str) -> str:
    """
    Collapse naming conventions: ``userName``, ``user_name``, ``User-Name`` and
    ``user name`` all normalize to ``username``. Accents and common ligatures
    are folded too.
    """
    s = "".join(ch for ch in s.strip() if ch.isalnum())
    s = (
        s.replace("ß", "ss")
        .replace("æ", "ae")
        .replace("Æ", "AE")
        .replace("ø", "o")
        .replace("Ø", "O")
        .replace("œ", "oe")
        .replace("Œ", "OE")
    )
    s = unicodedata.normalize("NFKD", s)
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    return s.lower()


_NUM_WITH_COMMAS = re.compile(
    r"([-+]?)\$?(?:\d+(?:,\d+)*(?:\.\d+)?|\d+\.\d+|\d+|\.\d+)(?:e[-+]?\d+)?"
)


def _strip_currency_symbols(s: str) -> str:
    return "".join(ch for ch in s if unicodedata.category(ch) != "Sc")


def _float_from_comma_separated(text: str) -> float | None:
    """
    Pull a single number out of text such as ``"$1,234.50"`` or ``"about 42 items"``.

    Exactly one number-ish match must exist; commas and currency symbols are
    removed before parsing.
    """
    matches = list(_NUM_WITH_COMMAS.finditer(text))
    if len(matches) != 1:
        return None
    number_str = matches[0].group(0)
    without_commas = number_str.replace(",", "")
    without_currency = _strip_currency_symbols(without_commas)
    try:
        return float(without_currency)
    except ValueError:
        return None
