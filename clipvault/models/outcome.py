"""Explicit result values for best-effort side effects.

Thumbnailing, probing, cache bookkeeping and progress notifications must never
break a flow. They report through ``Outcome`` instead of raising, so callers may
ignore the value while tests can still assert on it.
"""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of a best-effort operation."""

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Outcome[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str) -> "Outcome[T]":
        return cls(ok=False, error=error)

    def unwrap_or(self, default: T) -> T:
        """Return the value on success, ``default`` otherwise."""
        if self.ok and self.value is not None:
            return self.value
        return default
