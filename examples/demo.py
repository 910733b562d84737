"""healjson demo: turn messy model output into typed Python objects."""

from enum import Enum

from pydantic import BaseModel, Field

import healjson as hj

# ── Define a schema ──────────────────────────────────────────────────


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Task(BaseModel):
    title: str
    priority: Priority
    done: bool = False
    notes: str = Field(default="", json_schema_extra={"stream": "hold_until_complete"})


# ── 1. Parse: messy text → typed object ─────────────────────────────
#
# Markdown fences, trailing commas, wrong-case keys and loose enum values
# are all repaired, and every repair lowers the confidence a little.

llm_output = """
Here is your task:
```json
{
    "Title": "Fix the login bug",
    "priority": "HIGH",
    "done": false,
}
```
"""

result = hj.parse(llm_output, Task)
print("1) parse: messy text → Task")
print(f"   {result.value!r}")
print(f"   flags={[str(f) for f in result.flags]}")
print(f"   confidence={result.confidence:.3f}")
print()


# ── 2. Broken JSON without markdown ──────────────────────────────────

broken_json = "{title: 'Deploy v2', priority: Medium, done: yes,}"
result2 = hj.parse(broken_json, Task)
print("2) parse: unquoted keys, single quotes, trailing comma")
print(f"   {result2.value!r}")
print(f"   flags={list(result2.flag_names)}")
print()


# ── 3. Debug: every interpretation and why one won ──────────────────

debug = hj.parse_debug(
    'Sure! {"title": "Review PR", "priority": "Critical", "done": true}',
    Task,
)
print("3) parse_debug: inspect candidates")
for c in debug.candidates:
    status = f" (failed: {c.error})" if c.error else ""
    print(f"   confidence={c.confidence:.3f}  flags={len(c.flags)}{status}")
print(f"   value={debug.value!r}")
print()


# ── 4. Value tree: the parse stage on its own ───────────────────────

tree = hj.parse_value('{"a": [1, 2', hj.ParseOptions(is_done=False))
print("4) parse_value: auto-completed tree")
print(f"   {tree!r}")
print()


# ── 5. Coerce: already-decoded data (e.g. tool call arguments) ──────

coerced = hj.coerce({"TITLE": "Write docs", "priority": "low", "done": "no"}, Task)
print("5) coerce: python data → Task")
print(f"   {coerced.value!r}")
print(f"   flags={list(coerced.flag_names)}")
print()


# ── 6. Streaming: token by token ─────────────────────────────────────
#
# feed() returns a partial object only when something new can be shown.
# `notes` is held until its string is complete.

stream = hj.parse_stream(Task)
tokens = [
    '{"title": "Stre',
    'aming task", "pr',
    'iority": "low", "notes": "half',
    ' done"}',
]
print("6) parse_stream: incremental parsing")
for tok in tokens:
    update = stream.feed(tok)
    shown = update.value if update is not None else "(no change)"
    print(f"   feed {tok!r:34s} → {shown!r}")
final = stream.finalize()
print(f"   final: {final.value!r}")
