from __future__ import annotations

from typing import Sequence

import httpx

from ..ports.rpc import ErrorClassifier

# Substrings providers use when a getLogs range is too wide or too slow
DEFAULT_RANGE_PATTERNS: tuple[str, ...] = (
    "range",
    "too many",
    "query returned more than",
    "timeout",
    "limit exceeded",
)


class PatternErrorClassifier(ErrorClassifier):
    """Case-insensitive substring match on the error text."""

    def __init__(self, patterns: Sequence[str] = DEFAULT_RANGE_PATTERNS) -> None:
        self.patterns = tuple(p.lower() for p in patterns if p)

    def is_range_error(self, exc: BaseException) -> bool:
        if isinstance(exc, httpx.TimeoutException):
            return True
        text = str(exc).lower()
        return any(p in text for p in self.patterns)
