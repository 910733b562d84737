from __future__ import annotations

import argparse
import json
import platform
import statistics
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import NamedTuple

import pydantic
from pydantic import BaseModel, TypeAdapter

from healjson import parse, parse_stream
from healjson.fixing_parser import parse_fixing
from healjson.jsonish import ParseOptions, parse_jsonish


class BenchResult(NamedTuple):
    name: str
    iters: int
    seconds_per_iter: float


def _run_bench(
    name: str,
    fn: Callable[[], object],
    *,
    target_total_seconds: float = 0.25,
    repeats: int = 7,
    max_iters: int = 1_000_000,
) -> BenchResult:
    iters = 1
    while True:
        start = time.perf_counter()
        for _ in range(iters):
            fn()
        elapsed = time.perf_counter() - start
        if elapsed >= target_total_seconds or iters >= max_iters:
            break
        iters *= 2

    per_iter_samples: list[float] = []
    for _ in range(repeats):
        start = time.perf_counter()
        for _ in range(iters):
            fn()
        elapsed = time.perf_counter() - start
        per_iter_samples.append(elapsed / iters)

    return BenchResult(name=name, iters=iters, seconds_per_iter=statistics.median(per_iter_samples))


def _fmt_seconds(s: float) -> str:
    if s < 1e-6:
        return f"{s * 1e9:.1f} ns"
    if s < 1e-3:
        return f"{s * 1e6:.1f} us"
    if s < 1:
        return f"{s * 1e3:.3f} ms"
    return f"{s:.3f} s"


def _print_table(results: list[BenchResult]) -> None:
    name_w = max(len(r.name) for r in results)
    it_w = max(len(str(r.iters)) for r in results)
    header = (
        f"{'scenario'.ljust(name_w)}  {'iters'.rjust(it_w)}  "
        f"{'median/op'.rjust(12)}  {'ops/s'.rjust(12)}"
    )
    print(header)
    print(f"{'-' * name_w}  {'-' * it_w}  {'-' * 12}  {'-' * 12}")
    for r in results:
        ops = 1.0 / r.seconds_per_iter if r.seconds_per_iter else float("inf")
        print(
            f"{r.name.ljust(name_w)}  {str(r.iters).rjust(it_w)}  "
            f"{_fmt_seconds(r.seconds_per_iter).rjust(12)}  {ops:12.0f}"
        )


@dataclass(frozen=True, slots=True)
class Payloads:
    strict_small: str
    strict_medium: str
    markdown: str
    fixing_simple: str
    fixing_heavy: str
    multi_objects: str
    prose: str


def _payloads() -> Payloads:
    strict_small = '{"a": 1, "b": 2}'
    strict_medium = (
        '{"user": {"id": 123, "name": "Ada Lovelace", "email": "ada@example.com", '
        '"tags": ["math", "programming", "history"], '
        '"prefs": {"newsletter": true, "theme": "dark"}}, '
        '"events": [{"type": "click", "ts": 1700000000, "meta": {"x": 1, "y": 2}},'
        '{"type": "scroll", "ts": 1700000001, "meta": {"dx": 3, "dy": 4}}]}'
    )
    markdown = f"Here you go:\n```json\n{strict_medium}\n```\n"
    fixing_simple = "{a: 1, b: 2,}"
    fixing_heavy = r"""
// comment
{
  a: "1",
  b: 2,
  // missing comma
  c: 1/2
  d: "$1,234.56",
  nested: {
    msg: "hello \"world\"\nnext",
    ok: true,
  },
}
""".strip()
    multi_objects = '{"a": 1}\n{"a": 2}\n{"a": 3}'
    prose = f"I think the answer is:\n\n{fixing_heavy}\n\nThanks!"
    return Payloads(
        strict_small=strict_small,
        strict_medium=strict_medium,
        markdown=markdown,
        fixing_simple=fixing_simple,
        fixing_heavy=fixing_heavy,
        multi_objects=multi_objects,
        prose=prose,
    )


def _repaired_document(entries: int) -> str:
    """Unquoted keys, single quotes, comments and trailing commas, ``entries`` times."""
    body = "".join(f"  k{i}: 'value {i}', // note\n  n{i}: [1, 2, 3,],\n" for i in range(entries))
    return "{\n" + body + "}"


class ObjSmall(BaseModel):
    a: int
    b: int


class ObjMedium(BaseModel):
    user: dict
    events: list[dict]


class ObjA(BaseModel):
    a: int


class FixingNested(BaseModel):
    msg: str
    ok: bool


class ObjFixingHeavy(BaseModel):
    a: int
    b: int
    c: float
    d: float
    nested: FixingNested


def _scaling(args: argparse.Namespace) -> list[BenchResult]:
    results: list[BenchResult] = []
    for entries in (100, 1_000, 10_000):
        text = _repaired_document(entries)
        results.append(
            _run_bench(
                f"fixing parser, {len(text):>8} chars",
                lambda text=text: parse_fixing(text),
                target_total_seconds=args.target_seconds,
                repeats=args.repeats,
            )
        )
    return results


def main() -> None:
    parser = argparse.ArgumentParser(description="Microbenchmarks for healjson.")
    parser.add_argument("--target-seconds", type=float, default=0.25)
    parser.add_argument("--repeats", type=int, default=7)
    parser.add_argument(
        "--scaling", action="store_true", help="only time the fixing parser on growing inputs"
    )
    args = parser.parse_args()

    print("Environment")
    print(f"- python: {platform.python_version()} ({platform.python_implementation()})")
    print(f"- platform: {platform.platform()}")
    print(f"- pydantic: {pydantic.__version__}")
    print()

    if args.scaling:
        # time per char should stay flat as inputs grow
        results = _scaling(args)
        _print_table(results)
        for r, entries in zip(results, (100, 1_000, 10_000), strict=True):
            per_char = r.seconds_per_iter / len(_repaired_document(entries))
            print(f"{entries:>6} entries: {_fmt_seconds(per_char)}/char")
        return

    payloads = _payloads()

    adapter_small = TypeAdapter(ObjSmall)
    adapter_medium = TypeAdapter(ObjMedium)
    adapter_fixing = TypeAdapter(ObjFixingHeavy)

    parse_opts = ParseOptions()

    def streaming_small() -> object:
        stream = parse_stream(adapter_small)
        s = payloads.strict_small
        for i in range(0, len(s), 3):
            stream.feed(s[i : i + 3])
        return stream.finalize().value

    scenarios: list[tuple[str, Callable[[], object]]] = [
        (
            "parse strict_small (TypeAdapter reuse)",
            lambda: parse(payloads.strict_small, adapter_small).value,
        ),
        (
            "parse strict_small (type -> adapter each call)",
            lambda: parse(payloads.strict_small, ObjSmall).value,
        ),
        (
            "pydantic.validate_json strict_small",
            lambda: adapter_small.validate_json(payloads.strict_small),
        ),
        (
            "json.loads + validate_python strict_small",
            lambda: adapter_small.validate_python(json.loads(payloads.strict_small)),
        ),
        (
            "parse strict_medium (TypeAdapter reuse)",
            lambda: parse(payloads.strict_medium, adapter_medium).value,
        ),
        (
            "pydantic.validate_json strict_medium",
            lambda: adapter_medium.validate_json(payloads.strict_medium),
        ),
        ("parse markdown fenced JSON", lambda: parse(payloads.markdown, adapter_medium).value),
        (
            "parse fixing_simple (unquoted keys, trailing comma)",
            lambda: parse(payloads.fixing_simple, adapter_small).value,
        ),
        (
            "parse fixing_heavy (comments, fractions, nesting)",
            lambda: parse(payloads.fixing_heavy, adapter_fixing).value,
        ),
        ("parse prose (prefix+suffix)", lambda: parse(payloads.prose, adapter_fixing).value),
        (
            "parse multi_objects -> list[ObjA]",
            lambda: parse(payloads.multi_objects, list[ObjA]).value,
        ),
        (
            "parse_jsonish only: fixing_heavy",
            lambda: parse_jsonish(payloads.fixing_heavy, parse_opts),
        ),
        ("streaming: 3-char chunks + finalize (strict_small)", streaming_small),
    ]

    results = [
        _run_bench(
            name, fn, target_total_seconds=args.target_seconds, repeats=args.repeats
        )
        for name, fn in scenarios
    ]
    _print_table(results)


if __name__ == "__main__":
    main()
