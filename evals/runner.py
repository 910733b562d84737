from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, StrictBool, StrictFloat, StrictInt

from healjson.api import parse, parse_value
from healjson.coerce import CoerceOptions
from healjson.errors import HealError
from healjson.jsonish import ParseOptions
from healjson.types import CompletionState
from healjson.value import AnyOf, Array, Markdown, Object, Value, to_python


class EvalColor(enum.Enum):
    RED = "red"
    GREEN = "green"
    BLUE = "blue"


class EvalDessert(enum.Enum):
    ICECREAM = "icecream"
    CAKE = "cake"


class EvalAccented(enum.Enum):
    CAFE = "café"


class EvalPerson(BaseModel):
    name: str
    age: int


class EvalAddress(BaseModel):
    street: str
    zip_code: str = Field(validation_alias="postalCode")


class EvalContact(BaseModel):
    full_name: str
    email: str | None = None
    tags: list[str] = Field(default_factory=list)


_TYPE_REGISTRY: dict[str, Any] = {
    "int": int,
    "float": float,
    "str": str,
    "bool": bool,
    "None": None,
    "StrictInt": StrictInt,
    "StrictFloat": StrictFloat,
    "StrictBool": StrictBool,
    "EvalColor": EvalColor,
    "EvalDessert": EvalDessert,
    "EvalAccented": EvalAccented,
    "EvalPerson": EvalPerson,
    "EvalAddress": EvalAddress,
    "EvalContact": EvalContact,
}

_LIST_RE = re.compile(r"^list\[(.+)\]$")
_DICT_RE = re.compile(r"^dict\[(.+),(.+)\]$")


def load_dataset(path: str | Path) -> dict[str, Any]:
    dataset_path = Path(path)
    with dataset_path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict) or not isinstance(data.get("cases"), list):
        raise ValueError(f"Invalid dataset format: {dataset_path}")
    return data


def resolve_target(spec: str) -> Any:
    spec = spec.strip()
    if spec in _TYPE_REGISTRY:
        return _TYPE_REGISTRY[spec]

    if "|" in spec and not spec.startswith(("list[", "dict[")):
        parts = [resolve_target(p) for p in spec.split("|")]
        out = parts[0]
        for p in parts[1:]:
            out = out | p
        return out

    m_list = _LIST_RE.match(spec)
    if m_list:
        inner = resolve_target(m_list.group(1))
        return list[inner]

    m_dict = _DICT_RE.match(spec)
    if m_dict:
        k = resolve_target(m_dict.group(1).strip())
        v = resolve_target(m_dict.group(2).strip())
        return dict[k, v]

    raise KeyError(f"Unknown target type spec: {spec!r}")


def _parse_evaluator(item: Any) -> tuple[str, Any]:
    if isinstance(item, str):
        return item, True
    if isinstance(item, dict) and len(item) == 1:
        ((k, v),) = item.items()
        return str(k), v
    raise ValueError(f"Invalid evaluator: {item!r}")


def _as_list(params: Any) -> list[str] | None:
    want = params or []
    if isinstance(want, str):
        want = [want]
    if not isinstance(want, list) or not all(isinstance(x, str) for x in want):
        return None
    return want


def _safe_equals(actual: Any, expected: Any) -> bool:
    # Avoid common Python footgun where True == 1.
    if isinstance(expected, bool):
        return isinstance(actual, bool) and actual is expected
    if isinstance(expected, int) and isinstance(actual, bool):
        return False
    return actual == expected


def _coercion_value_for_compare(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value if isinstance(value.value, str) else value.name
    if isinstance(value, BaseModel):
        return value.model_dump()
    if isinstance(value, list):
        return [_coercion_value_for_compare(v) for v in value]
    return value


def _preview(value: Any, *, limit: int = 200) -> str:
    s = repr(value)
    if len(s) > limit:
        return s[:limit] + "…"
    return s


def _fix_names(value: Value) -> set[str]:
    """Every parse fix recorded anywhere in the tree."""
    names: set[str] = set()
    stack: list[Value] = [value]
    while stack:
        node = stack.pop()
        names.update(f.kind.value for f in node.fixes)
        if isinstance(node, AnyOf):
            stack.extend(node.candidates)
        elif isinstance(node, Markdown):
            stack.append(node.inner)
        elif isinstance(node, Array):
            stack.extend(node.items)
        elif isinstance(node, Object):
            stack.extend(v for _, v in node.entries)
    return names


@dataclass(slots=True)
class EvalResult:
    name: str
    passed: bool
    errors: list[str]
    output: Any = None


def run_parsing_case(case: dict[str, Any]) -> EvalResult:
    name = str(case.get("name") or "<unnamed>")
    inputs = case.get("inputs") or {}
    if not isinstance(inputs, dict):
        raise ValueError(f"Case {name!r} has invalid inputs")

    text = inputs.get("text")
    if not isinstance(text, str):
        raise ValueError(f"Case {name!r} inputs.text must be a string")
    is_done = bool(inputs.get("is_done", True))

    parse_options = ParseOptions(**(inputs.get("parse_options") or {}), is_done=is_done)
    actual = parse_value(text, parse_options)
    candidates = actual.candidates if isinstance(actual, AnyOf) else ()
    expected = case.get("expected_output")

    errors: list[str] = []
    for ev in case.get("evaluators") or []:
        ev_name, ev_params = _parse_evaluator(ev)

        if ev_name == "HasCandidates":
            want = bool(ev_params)
            got = bool(candidates)
            if got != want:
                errors.append(f"HasCandidates: expected {want}, got {got}")

        elif ev_name == "MatchesExpected":
            if not ev_params:
                continue
            if "expected_output" not in case:
                errors.append("MatchesExpected: missing expected_output")
                continue
            if candidates:
                if not any(_safe_equals(to_python(c), expected) for c in candidates):
                    errors.append(
                        "MatchesExpected: expected output not found in candidates "
                        f"(expected={_preview(expected)}, "
                        f"candidates={[_preview(to_python(c)) for c in candidates[:8]]})"
                    )
            elif not _safe_equals(to_python(actual), expected):
                errors.append(
                    "MatchesExpected: expected output did not match parsed value "
                    f"(expected={_preview(expected)}, actual={_preview(to_python(actual))})"
                )

        elif ev_name == "CompletionIs":
            want = str(ev_params).upper()
            if want not in {"COMPLETE", "INCOMPLETE"}:
                errors.append(f"CompletionIs: invalid expected state {ev_params!r}")
                continue
            got = actual.completion
            expected_state = (
                CompletionState.COMPLETE if want == "COMPLETE" else CompletionState.INCOMPLETE
            )
            if got != expected_state:
                errors.append(f"CompletionIs: expected {want}, got {got.name}")

        elif ev_name == "CandidateCountAtLeast":
            try:
                want_count = int(ev_params)
            except (TypeError, ValueError):
                errors.append(f"CandidateCountAtLeast: invalid value {ev_params!r}")
                continue
            if len(candidates) < want_count:
                errors.append(
                    f"CandidateCountAtLeast: expected >= {want_count}, got {len(candidates)}"
                )

        elif ev_name == "FixesInclude":
            want_fixes = _as_list(ev_params)
            if want_fixes is None:
                errors.append(f"FixesInclude: invalid value {ev_params!r}")
                continue
            found = _fix_names(actual)
            missing = [f for f in want_fixes if f not in found]
            if missing:
                errors.append(f"FixesInclude: missing {missing!r} (fixes={sorted(found)!r})")

        else:
            errors.append(f"Unknown evaluator: {ev_name}")

    output = {
        "completion": actual.completion.name,
        "candidate_count": len(candidates),
        "value": to_python(actual),
    }
    return EvalResult(name=name, passed=not errors, errors=errors, output=output)


def run_coercion_case(case: dict[str, Any]) -> EvalResult:
    name = str(case.get("name") or "<unnamed>")
    inputs = case.get("inputs") or {}
    if not isinstance(inputs, dict):
        raise ValueError(f"Case {name!r} has invalid inputs")

    text = inputs.get("text")
    if not isinstance(text, str):
        raise ValueError(f"Case {name!r} inputs.text must be a string")
    target_spec = inputs.get("target")
    if not isinstance(target_spec, str):
        raise ValueError(f"Case {name!r} inputs.target must be a string")
    is_done = bool(inputs.get("is_done", True))

    parse_options = ParseOptions(**(inputs.get("parse_options") or {}))
    coerce_options = CoerceOptions(**(inputs.get("coerce_options") or {}))
    target = resolve_target(target_spec)
    evaluators = [_parse_evaluator(ev) for ev in case.get("evaluators") or []]

    raises = next((params for ev_name, params in evaluators if ev_name == "Raises"), None)
    try:
        result = parse(
            text,
            target,
            is_done=is_done,
            parse_options=parse_options,
            coerce_options=coerce_options,
        )
    except HealError as exc:
        if raises is not None and type(exc).__name__ == raises:
            return EvalResult(name=name, passed=True, errors=[], output={"error": str(exc)})
        return EvalResult(
            name=name,
            passed=False,
            errors=[f"unexpected {type(exc).__name__}: {exc}"],
            output={"error": str(exc)},
        )

    expected = case.get("expected_output")
    flag_names = result.flag_names

    errors: list[str] = []
    for ev_name, ev_params in evaluators:
        if ev_name == "Raises":
            errors.append(f"Raises: expected {ev_params}, got a value")

        elif ev_name == "MatchesExpected":
            if not ev_params:
                continue
            if "expected_output" not in case:
                errors.append("MatchesExpected: missing expected_output")
                continue
            actual_value = _coercion_value_for_compare(result.value)
            if not _safe_equals(actual_value, expected):
                errors.append(
                    "MatchesExpected: output mismatch "
                    f"(expected={_preview(expected)}, actual={_preview(actual_value)})"
                )

        elif ev_name == "FlagsInclude":
            want = _as_list(ev_params)
            if want is None:
                errors.append(f"FlagsInclude: invalid value {ev_params!r}")
                continue
            missing = [f for f in want if f not in flag_names]
            if missing:
                errors.append(f"FlagsInclude: missing {missing!r} (flags={flag_names!r})")

        elif ev_name == "FlagsExclude":
            want = _as_list(ev_params)
            if want is None:
                errors.append(f"FlagsExclude: invalid value {ev_params!r}")
                continue
            present = [f for f in want if f in flag_names]
            if present:
                errors.append(
                    f"FlagsExclude: unexpectedly present {present!r} (flags={flag_names!r})"
                )

        elif ev_name in {"ConfidenceMin", "ConfidenceMax"}:
            try:
                bound = float(ev_params)
            except (TypeError, ValueError):
                errors.append(f"{ev_name}: invalid value {ev_params!r}")
                continue
            if ev_name == "ConfidenceMin" and result.confidence < bound:
                errors.append(f"ConfidenceMin: expected >= {bound}, got {result.confidence}")
            if ev_name == "ConfidenceMax" and result.confidence > bound:
                errors.append(f"ConfidenceMax: expected <= {bound}, got {result.confidence}")

        else:
            errors.append(f"Unknown evaluator: {ev_name}")

    output = {"value": result.value, "flags": flag_names, "confidence": result.confidence}
    return EvalResult(name=name, passed=not errors, errors=errors, output=output)


def run_dataset(path: str | Path, *, task: str) -> list[EvalResult]:
    dataset = load_dataset(path)
    cases = dataset["cases"]
    out: list[EvalResult] = []
    for case in cases:
        if not isinstance(case, dict):
            raise ValueError(f"Invalid case: {case!r}")
        if task == "parsing":
            out.append(run_parsing_case(case))
        elif task == "coercion":
            out.append(run_coercion_case(case))
        else:
            raise ValueError(f"Unknown task: {task!r}")
    return out
