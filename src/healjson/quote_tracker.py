from __future__ import annotations


class QuoteTracker:
    """
    Running backslash/delimiter bookkeeping for one open quoted string.

    Each character is fed exactly once, so deciding whether a delimiter is
    escaped never requires scanning backwards over the buffer.
    """

    __slots__ = ("delimiter", "consecutive_backslashes", "unescaped_delimiters")

    def __init__(self, delimiter: str) -> None:
        self.delimiter = delimiter
        self.consecutive_backslashes = 0
        self.unescaped_delimiters = 0

    @property
    def escaping(self) -> bool:
        """True when the next character is preceded by an odd run of backslashes."""
        return self.consecutive_backslashes % 2 == 1

    def feed(self, ch: str) -> None:
        if ch == "\\":
            self.consecutive_backslashes += 1
            return
        if ch == self.delimiter and not self.escaping:
            self.unescaped_delimiters += 1
        self.consecutive_backslashes = 0
