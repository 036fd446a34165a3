"""
Result envelope for migration operations.

Every public migration operation returns ``Ok`` on success or ``Err`` on
failure instead of raising, so startup code never has to guess which
exceptions to catch and tests assert on the error class they got back.

Examples:
    >>> Ok(["id", "theme"]).unwrap()
    ['id', 'theme']
    >>> Err(ValueError("no such table")).unwrap_or([])
    []
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar


T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """The operation produced ``value``."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[T]):
    """The operation failed with ``error``; ``unwrap()`` re-raises it."""

    error: Exception

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        raise self.error

    def unwrap_or(self, default: T) -> T:
        return default

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


Result = Ok[T] | Err[T]


__all__ = ["Ok", "Err", "Result"]
