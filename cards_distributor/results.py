"""
Result values passed from the protocol components to the phase controller.

The controller alone decides on retry and fallback, so query and execution
paths hand back Ok or Err instead of raising.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, List, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E")


class ErrorKind(str, Enum):
    MISSING_SHARES = "missing_shares"
    UNAUTHORIZED = "unauthorized"
    MALFORMED_RESPONSE = "malformed_response"
    QUERY_UNAVAILABLE = "query_unavailable"
    TIMEOUT = "timeout"
    FALLBACK_FAILED = "fallback_failed"
    INCOMPLETE_SHOWDOWN = "incomplete_showdown"

    @property
    def transient(self) -> bool:
        """Transient failures get exactly one attempt on the execution path."""
        return self in (ErrorKind.QUERY_UNAVAILABLE, ErrorKind.TIMEOUT)


@dataclass(frozen=True)
class QueryFailure:
    kind: ErrorKind
    message: str = ""

    def __str__(self):
        return f"{self.kind.value}: {self.message}" if self.message else self.kind.value


@dataclass(frozen=True)
class MissingShares:
    """Reconstruction was refused because some dealt participants are absent."""

    phase: Any
    absent_identities: List[str] = field(default_factory=list)

    @property
    def kind(self) -> ErrorKind:
        return ErrorKind.MISSING_SHARES

    def __str__(self):
        return f"missing shares for {self.phase}: {', '.join(self.absent_identities)}"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def is_ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err(Generic[E]):
    error: E

    @property
    def is_ok(self) -> bool:
        return False

    def unwrap(self):
        raise ValueError(f"unwrap() called on Err: {self.error}")


Result = Union[Ok[T], Err[E]]
