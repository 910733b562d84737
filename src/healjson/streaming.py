from __future__ import annotations

import dataclasses
import logging
import threading
import types as py_types
from collections.abc import Mapping, Sequence
from typing import Annotated, Any, ForwardRef, Optional, Union, get_args, get_origin

from pydantic import BaseModel, TypeAdapter, ValidationError, create_model

from .coerce import (
    CoerceOptions,
    _adapter_target_type,
    coerce_value,
    resolve_target,
    validate_typed,
)
from .errors import (
    MissingRequiredFieldError,
    NoMatchingVariantError,
    NoValueError,
    TypeMismatchError,
)
from .jsonish import ParseOptions, parse_jsonish
from .schema import ListSchema, MapSchema, Schema, StreamPolicy, StructSchema, UnionSchema
from .types import CoercionResult

__all__ = ["StreamPolicy", "StreamingExtractor", "apply_policies"]

logger = logging.getLogger(__name__)

# Raised while the buffer is not yet coercible; the next chunk may fix it.
_NOT_YET = (NoValueError, MissingRequiredFieldError, TypeMismatchError, NoMatchingVariantError)

_NOTHING = object()


# finished partial models, shared by every extractor
_PARTIALS: dict[type[BaseModel], type[BaseModel]] = {}
_PARTIALS_LOCK = threading.Lock()


class _PartialBuilder:
    """
    Builds the partial counterparts of one model and the models it reaches.

    Recursive references stay forward refs until the whole group exists, so
    the bookkeeping lives on the builder and is never shared across threads.
    """

    def __init__(self) -> None:
        self._pending: dict[type[BaseModel], str] = {}
        self._built: dict[type[BaseModel], type[BaseModel]] = {}
        self._namespace: dict[str, type[BaseModel]] = {}

    def build(self, model_type: type[BaseModel]) -> type[BaseModel]:
        self._model(model_type)
        for model in self._namespace.values():
            model.model_rebuild(_types_namespace=self._namespace)
        with _PARTIALS_LOCK:
            for source, built in self._built.items():
                _PARTIALS.setdefault(source, built)
            return _PARTIALS[model_type]

    def _model(self, model_type: type[BaseModel]) -> Any:
        cached = _PARTIALS.get(model_type) or self._built.get(model_type)
        if cached is not None:
            return cached
        pending = self._pending.get(model_type)
        if pending is not None:
            return ForwardRef(pending)
        ref = f"_partial_{id(model_type)}"
        self._pending[model_type] = ref
        fields: dict[str, tuple[Any, Any]] = {}
        for field_name, field in model_type.model_fields.items():
            annotation = field.annotation if field.annotation is not None else Any
            fields[field_name] = (Optional[self._annotation(annotation)], None)
        partial = create_model(f"{model_type.__name__}Partial", __base__=BaseModel, **fields)
        del self._pending[model_type]
        self._built[model_type] = partial
        self._namespace[ref] = partial
        return partial

    def _annotation(self, tp: Any) -> Any:
        """Swap nested models for their partial counterparts."""
        if isinstance(tp, type) and issubclass(tp, BaseModel):
            return self._model(tp)
        origin = get_origin(tp)
        args = get_args(tp)
        if origin is Annotated:
            return self._annotation(args[0])
        if origin in {Union, py_types.UnionType}:
            return Union[tuple(self._annotation(a) for a in args)]
        if origin in {list, Sequence} and args:
            return list[self._annotation(args[0])]  # type: ignore[misc]
        if origin in {dict, Mapping} and len(args) == 2:
            return dict[args[0], self._annotation(args[1])]  # type: ignore[misc]
        return tp


def _partial_model_for(model_type: type[BaseModel]) -> type[BaseModel]:
    cached = _PARTIALS.get(model_type)
    if cached is not None:
        return cached
    return _PartialBuilder().build(model_type)


def apply_policies(schema: Schema, policies: Mapping[str, StreamPolicy | str]) -> Schema:
    """
    Return a copy of ``schema`` with per-field stream policies overridden.

    Keys are dotted field paths (``"items.name"``); lists, maps and unions are
    looked through, so the path names struct fields only.
    """
    for path, policy in policies.items():
        parts = path.split(".")
        if not all(parts):
            raise ValueError(f"invalid field path: {path!r}")
        schema = _override(schema, parts, StreamPolicy(policy), path)
    return schema


def _override(schema: Schema, parts: list[str], policy: StreamPolicy, path: str) -> Schema:
    if isinstance(schema, StructSchema):
        name, rest = parts[0], parts[1:]
        if schema.field(name) is None:
            raise ValueError(f"unknown field {name!r} in policy path {path!r}")
        fields = []
        for spec in schema.fields:
            if spec.name == name:
                if rest:
                    spec = dataclasses.replace(
                        spec, schema=_override(spec.schema, rest, policy, path)
                    )
                else:
                    spec = dataclasses.replace(spec, stream=policy)
            fields.append(spec)
        return StructSchema(schema.name, tuple(fields), schema.model)
    if isinstance(schema, ListSchema):
        return ListSchema(_override(schema.item, parts, policy, path))
    if isinstance(schema, MapSchema):
        return MapSchema(_override(schema.value, parts, policy, path))
    if isinstance(schema, UnionSchema):
        variants = []
        applied = False
        for variant in schema.variants:
            try:
                variants.append(_override(variant, parts, policy, path))
                applied = True
            except ValueError:
                variants.append(variant)
        if not applied:
            raise ValueError(f"no union variant has the field path {path!r}")
        return UnionSchema(tuple(variants))
    raise ValueError(f"policy path {path!r} does not address a struct field")


class StreamingExtractor[T]:
    """
    Incremental schema-aligned parser.

    - callers feed chunks (as strings); the whole buffer is re-parsed each time
    - :meth:`feed` returns a partial projection only when it changed since the
      last emission; fields that are missing, failing or held by their
      :class:`StreamPolicy` are left out
    - :meth:`finalize` runs one strict pass over the complete buffer
    """

    def __init__(
        self,
        target: Any,
        *,
        policies: Mapping[str, StreamPolicy | str] | None = None,
        parse_options: ParseOptions | None = None,
        coerce_options: CoerceOptions | None = None,
    ) -> None:
        schema, adapter = resolve_target(target)
        if policies:
            schema = apply_policies(schema, policies)
        self._schema = schema
        self._adapter = adapter
        base = parse_options or ParseOptions()
        self._partial_options = dataclasses.replace(base, is_done=False)
        self._final_options = dataclasses.replace(base, is_done=True)
        self._coerce_options = coerce_options or CoerceOptions()

        self._partial_adapter: TypeAdapter[Any] | None = None
        model_type = _adapter_target_type(adapter) if adapter is not None else None
        if isinstance(model_type, type) and issubclass(model_type, BaseModel):
            self._partial_adapter = TypeAdapter(_partial_model_for(model_type))

        self._buffer = ""
        self._last_data: Any = _NOTHING
        self._last_emitted: Any = None
        self._finalized = False

    @property
    def buffer(self) -> str:
        return self._buffer

    @property
    def last_emitted(self) -> Any:
        """The most recent projection returned by :meth:`feed` (``None`` before the first)."""
        return self._last_emitted

    @property
    def partial_type(self) -> type[BaseModel] | None:
        """Type of the projections returned by :meth:`feed` (if the target is a model)."""
        if self._partial_adapter is None:
            return None
        return _adapter_target_type(self._partial_adapter)

    def feed(self, chunk: str) -> CoercionResult[Any] | None:
        if self._finalized:
            raise RuntimeError("feed() called after finalize()")
        self._buffer += chunk
        try:
            value = parse_jsonish(self._buffer, self._partial_options)
            result = coerce_value(
                value, self._schema, options=self._coerce_options, allow_partial=True
            )
        except _NOT_YET as exc:
            logger.debug("nothing to emit after %d chars: %s", len(self._buffer), exc)
            return None

        if self._last_data is not _NOTHING and result.value == self._last_data:
            return None
        self._last_data = result.value
        projected = self._project(result.value)
        self._last_emitted = projected
        logger.debug(
            "emitting partial value after %d chars (confidence %.3f)",
            len(self._buffer),
            result.confidence,
        )
        return CoercionResult(value=projected, flags=result.flags, confidence=result.confidence)

    def finalize(self) -> CoercionResult[T]:
        if self._finalized:
            raise RuntimeError("finalize() already called")
        self._finalized = True
        value = parse_jsonish(self._buffer, self._final_options)
        result = coerce_value(value, self._schema, options=self._coerce_options)
        return validate_typed(self._adapter, result)

    def _project(self, data: Any) -> Any:
        if self._partial_adapter is None or not isinstance(data, dict):
            return data
        # The coercer only keeps values that coerced, so this normally succeeds.
        try:
            return self._partial_adapter.validate_python(data)
        except ValidationError as exc:
            logger.debug("partial model validation failed, emitting plain data: %s", exc)
            return data
