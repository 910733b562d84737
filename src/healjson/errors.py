from __future__ import annotations

from collections.abc import Sequence

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class HealError(Exception):
    """Base exception for everything raised by healjson."""


class ParseError(HealError):
    """Raised when no value can be extracted from the input text."""


class CoercionError(HealError):
    """Raised when a parsed value cannot be aligned to the target schema."""


# ---------------------------------------------------------------------------
# Parse failures
# ---------------------------------------------------------------------------


class NoValueError(ParseError):
    def __init__(self, message: str = "no value could be extracted from the input") -> None:
        super().__init__(message)


# ---------------------------------------------------------------------------
# Coercion failures
# ---------------------------------------------------------------------------


class MissingRequiredFieldError(CoercionError):
    def __init__(self, field: str, path: str = "") -> None:
        self.field = field
        self.path = path
        where = f" at {path}" if path else ""
        super().__init__(f"missing required field {field!r}{where}")


class TypeMismatchError(CoercionError):
    def __init__(self, expected: str, found: str, path: str = "") -> None:
        self.expected = expected
        self.found = found
        self.path = path
        where = f" at {path}" if path else ""
        super().__init__(f"expected {expected}, found {found}{where}")


class NoMatchingVariantError(CoercionError):
    def __init__(self, path: str, errors: Sequence[CoercionError]) -> None:
        self.path = path
        self.errors = list(errors)
        where = f" at {path}" if path else ""
        details = "; ".join(str(e) for e in self.errors)
        super().__init__(f"no union variant matched{where}: {details}")


# ---------------------------------------------------------------------------
# Resource limits (raised by both the parser and the coercer)
# ---------------------------------------------------------------------------


class DepthExceededError(ParseError, CoercionError):
    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"nesting depth limit ({limit}) exceeded")


class InputTooLargeError(ParseError, CoercionError):
    def __init__(self, size: int, limit: int) -> None:
        self.size = size
        self.limit = limit
        super().__init__(f"input of {size} characters exceeds the limit of {limit}")
