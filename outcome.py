"""
Tagged result for steps that may degrade to a default value.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Either a real value (``ok``) or a fallback value with the reason it was used."""

    value: T
    degraded: bool = False
    reason: Optional[str] = None

    @classmethod
    def ok(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def fallback(cls, value: T, reason: str) -> "Outcome[T]":
        return cls(value=value, degraded=True, reason=reason)

    def unwrap(self) -> T:
        """Collapse to the plain value at a component boundary."""
        return self.value
