"""Target schemas for coercion.

A schema is a small closed set of descriptor dataclasses.  They can be built by
hand, but are usually derived from Python typing with :func:`schema_for`,
which understands builtins, ``Literal``, ``Enum``, unions, containers and
pydantic models (including recursive ones).
"""

from __future__ import annotations

import copy
import enum
import types as py_types
from collections.abc import Callable, Mapping, Sequence
from collections.abc import Set as AbstractSet
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Annotated, Any, Literal, TypeAliasType, Union, get_args, get_origin

from pydantic import AliasChoices, BaseModel
from pydantic.fields import PydanticUndefined


class PrimitiveKind(str, Enum):
    STRING = "string"
    INT = "int"
    FLOAT = "float"
    BOOL = "bool"
    NULL = "null"


class StreamPolicy(str, Enum):
    """When a partially streamed field may be emitted."""

    EMIT_IMMEDIATELY = "emit_immediately"
    HOLD_UNTIL_NON_NULL = "hold_until_non_null"
    HOLD_UNTIL_COMPLETE = "hold_until_complete"


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


@dataclass(frozen=True, slots=True)
class PrimitiveSchema:
    kind: PrimitiveKind


@dataclass(frozen=True, slots=True)
class FieldSpec:
    name: str
    schema: Schema
    required: bool = True
    default: Any = MISSING
    default_factory: Callable[[], Any] | None = None
    aliases: tuple[str, ...] = ()
    stream: StreamPolicy = StreamPolicy.EMIT_IMMEDIATELY

    @property
    def has_default(self) -> bool:
        return self.default is not MISSING or self.default_factory is not None

    def make_default(self) -> Any:
        if self.default_factory is not None:
            return self.default_factory()
        return copy.deepcopy(self.default)


# Not frozen: recursive models are built through a placeholder whose fields are
# filled in afterwards. Identity equality keeps hashing cheap for cycles.
@dataclass(eq=False, slots=True)
class StructSchema:
    name: str
    fields: tuple[FieldSpec, ...] = ()
    model: type[BaseModel] | None = None

    def field(self, name: str) -> FieldSpec | None:
        for spec in self.fields:
            if spec.name == name:
                return spec
        return None


@dataclass(frozen=True, slots=True)
class EnumSchema:
    name: str
    variants: tuple[Any, ...]
    enum_type: type[Enum] | None = None

    def labels(self) -> tuple[str, ...]:
        return tuple(v if isinstance(v, str) else _label(v) for v in self.variants)

    def choices(self) -> dict[str, Any]:
        """Label -> output value. Member names are accepted after the values."""
        out: dict[str, Any] = {}
        for label, v in zip(self.labels(), self.variants, strict=True):
            out.setdefault(label, v)
        if self.enum_type is not None:
            for member in self.enum_type:
                out.setdefault(member.name, member.value)
        return out


@dataclass(frozen=True, slots=True)
class UnionSchema:
    variants: tuple[Schema, ...]


@dataclass(frozen=True, slots=True)
class ListSchema:
    item: Schema


@dataclass(frozen=True, slots=True)
class MapSchema:
    value: Schema


@dataclass(frozen=True, slots=True)
class AnySchema:
    pass


Schema = (
    PrimitiveSchema | StructSchema | EnumSchema | UnionSchema | ListSchema | MapSchema | AnySchema
)

SCHEMA_TYPES: tuple[type, ...] = (
    PrimitiveSchema,
    StructSchema,
    EnumSchema,
    UnionSchema,
    ListSchema,
    MapSchema,
    AnySchema,
)

_PRIMITIVES: dict[Any, PrimitiveKind] = {
    bool: PrimitiveKind.BOOL,
    int: PrimitiveKind.INT,
    float: PrimitiveKind.FLOAT,
    str: PrimitiveKind.STRING,
    None: PrimitiveKind.NULL,
    type(None): PrimitiveKind.NULL,
}

_LIST_ORIGINS = (list, set, frozenset, tuple, Sequence, AbstractSet)
_MAP_ORIGINS = (dict, Mapping)


def _label(v: Any) -> str:
    if isinstance(v, bool):
        return "true" if v else "false"
    return str(v)


def schema_for(tp: Any) -> Schema:
    """Derive a :data:`Schema` from a Python type annotation."""
    if isinstance(tp, SCHEMA_TYPES):
        return tp
    try:
        hash(tp)
    except TypeError:
        return _SchemaBuilder().build(tp)
    return _schema_for_cached(tp)


@lru_cache(maxsize=256)
def _schema_for_cached(tp: Any) -> Schema:
    return _SchemaBuilder().build(tp)


class _SchemaBuilder:
    def __init__(self) -> None:
        # models currently being built, for recursive references
        self._building: dict[type[BaseModel], StructSchema] = {}

    def build(self, tp: Any) -> Schema:
        if tp is Any:
            return AnySchema()
        if isinstance(tp, TypeAliasType):
            return self.build(tp.__value__)
        if isinstance(tp, type) and issubclass(tp, enum.Enum):
            return EnumSchema(tp.__name__, tuple(m.value for m in tp), tp)
        if isinstance(tp, type) and issubclass(tp, BaseModel):
            return self._build_model(tp)
        if tp is None or isinstance(tp, type):
            kind = _PRIMITIVES.get(tp)
            if kind is not None:
                return PrimitiveSchema(kind)

        origin = get_origin(tp)
        args = get_args(tp)

        if origin is Annotated:
            return self.build(args[0])
        if origin is Literal:
            return EnumSchema("Literal", tuple(args))
        if origin in {Union, py_types.UnionType}:
            return UnionSchema(tuple(self.build(a) for a in args))

        container = origin if origin is not None else tp
        if container in _LIST_ORIGINS:
            if not args:
                return ListSchema(AnySchema())
            if container is tuple:
                return ListSchema(self._tuple_item(args))
            return ListSchema(self.build(args[0]))
        if container in _MAP_ORIGINS:
            if len(args) == 2:
                return MapSchema(self.build(args[1]))
            return MapSchema(AnySchema())

        return AnySchema()

    def _tuple_item(self, args: tuple[Any, ...]) -> Schema:
        if len(args) == 2 and args[1] is Ellipsis:
            return self.build(args[0])
        # Fixed-length tuples: elements may be any of the declared types.
        unique: list[Any] = []
        for a in args:
            if a not in unique:
                unique.append(a)
        if len(unique) == 1:
            return self.build(unique[0])
        return UnionSchema(tuple(self.build(a) for a in unique))

    def _build_model(self, model: type[BaseModel]) -> StructSchema:
        existing = self._building.get(model)
        if existing is not None:
            return existing
        struct = StructSchema(name=model.__name__, model=model)
        self._building[model] = struct
        specs: list[FieldSpec] = []
        for name, info in model.model_fields.items():
            extra = info.json_schema_extra if isinstance(info.json_schema_extra, dict) else {}
            stream = extra.get("stream", StreamPolicy.EMIT_IMMEDIATELY)
            specs.append(
                FieldSpec(
                    name=name,
                    schema=self.build(info.annotation),
                    required=info.is_required(),
                    default=MISSING if info.default is PydanticUndefined else info.default,
                    default_factory=info.default_factory,  # type: ignore[arg-type]
                    aliases=_field_aliases(name, info.alias, info.validation_alias),
                    stream=StreamPolicy(stream),
                )
            )
        struct.fields = tuple(specs)
        return struct


def _field_aliases(name: str, alias: str | None, validation_alias: Any) -> tuple[str, ...]:
    out: list[str] = []
    candidates: list[Any] = [alias]
    if isinstance(validation_alias, AliasChoices):
        candidates.extend(validation_alias.choices)
    else:
        candidates.append(validation_alias)
    for cand in candidates:
        # AliasPath entries address nested data and cannot name a key
        if isinstance(cand, str) and cand != name and cand not in out:
            out.append(cand)
    return tuple(out)
