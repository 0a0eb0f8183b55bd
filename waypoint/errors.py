"""Result types and error values for Waypoint.

Storage operations return ``Ok(value)`` or ``Err(error)`` instead of raising,
so callers decide how to surface a failure. Error values share one shape
(code, message, context); the subclass names the failure category:

- ValidationError: malformed save request or scope, rejected before any I/O
- NotFoundError: unknown scope or checkpoint id
- StorageError: a document could not be read, decoded or written
- MigrationPartialFailure: one record skipped during a migration run

Example:
    result = store.get(checkpoint_id)
    if result.is_err():
        print(format_error(result.unwrap_err()))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Generic, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E")
U = TypeVar("U")


@dataclass(frozen=True)
class WaypointError:
    """Base error value carried by ``Err``."""

    code: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message


class ValidationError(WaypointError):
    """Malformed or incomplete request; nothing was persisted."""


class NotFoundError(WaypointError):
    """The referenced scope or checkpoint does not exist."""


class StorageError(WaypointError):
    """Reading, decoding or writing a document failed."""


class MigrationPartialFailure(WaypointError):
    """A single record was skipped during migration."""


class UnwrapError(Exception):
    """Raised when unwrapping the wrong side of a Result."""

    def __init__(self, message: str, error: Any = None):
        super().__init__(message)
        self.error = error


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful result."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_err(self):
        raise UnwrapError(f"Called unwrap_err() on Ok: {self.value!r}")

    def unwrap_or(self, default: Any) -> T:
        return self.value

    def map(self, fn: Callable[[T], U]) -> "Ok[U]":
        return Ok(fn(self.value))


@dataclass(frozen=True)
class Err(Generic[E]):
    """Failed result."""

    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self):
        raise UnwrapError(f"Called unwrap() on Err: {self.error}", self.error)

    def unwrap_err(self) -> E:
        return self.error

    def unwrap_or(self, default: Any) -> Any:
        return default

    def map(self, fn: Callable[[Any], Any]) -> "Err[E]":
        return self


Result = Union[Ok[T], Err[E]]


def ok(value: T) -> Ok[T]:
    """Wrap a value in Ok."""
    return Ok(value)


def err(error: E) -> Err[E]:
    """Wrap an error value in Err."""
    return Err(error)


def format_error(error: WaypointError) -> str:
    """Format an error for display to a human."""
    kind = {
        ValidationError: "Invalid request",
        NotFoundError: "Not found",
        StorageError: "Storage error",
        MigrationPartialFailure: "Skipped",
    }.get(type(error), "Error")
    return f"{kind}: {error.message}"
