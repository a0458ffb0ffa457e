"""
Result envelope for stages whose failure is an expected outcome.

``Ok[T]`` wraps a value, ``Err[T]`` wraps an exception. The image fetcher
returns ``Result[ImageSet]`` so the driver decides what a failed pull means
instead of unwinding through an exception.

Examples:
    >>> Ok(10).map(lambda x: x * 2).unwrap()
    20
    >>> Err(ValueError("nope")).unwrap_or(0)
    0
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful result containing a value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Get the value. Safe for Ok."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value

    def map(self, f: Callable[[T], U]) -> Result[U]:
        """Transform the value, catching exceptions into Err."""
        try:
            return Ok(f(self.value))
        except Exception as e:
            return Err(e)

    def inspect(self, f: Callable[[T], None]) -> Result[T]:
        f(self.value)
        return self

    def to_dict(self) -> dict[str, Any]:
        return {"ok": True, "value": self.value}

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[T]):
    """Failed result containing the error."""

    error: Exception

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Raise the contained error."""
        raise self.error

    def unwrap_or(self, default: T) -> T:
        return default

    def map(self, f: Callable[[T], U]) -> Result[U]:
        return Err(self.error)

    def inspect(self, f: Callable[[T], None]) -> Result[T]:
        return self

    def to_dict(self) -> dict[str, Any]:
        error = self.error
        if hasattr(error, "to_dict"):
            return {"ok": False, "error": error.to_dict()}
        return {"ok": False, "error": {"message": str(error), "error_type": type(error).__name__}}

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


Result = Ok[T] | Err[T]


__all__ = ["Ok", "Err", "Result"]
