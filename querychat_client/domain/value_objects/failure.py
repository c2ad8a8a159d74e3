"""Structured failure payload returned by client operations."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class FailureKind(str, Enum):
    LOCAL_PRECONDITION = "local_precondition"
    TRANSIENT = "transient"
    NOT_FOUND = "not_found"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Failure:
    """Why an operation did not succeed.

    ``message`` is always safe to show to the user.
    """

    kind: FailureKind
    message: str
    status_code: int | None = None

    @property
    def retryable(self) -> bool:
        return self.kind is FailureKind.TRANSIENT

    @property
    def is_not_found(self) -> bool:
        return self.kind is FailureKind.NOT_FOUND

    @property
    def is_cancelled(self) -> bool:
        return self.kind is FailureKind.CANCELLED

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "status_code": self.status_code,
            "retryable": self.retryable,
        }


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Either a value or a failure, never an exception."""

    value: T | None = None
    failure: Failure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: T | None = None) -> OperationResult[T]:
        return cls(value=value)

    @classmethod
    def failed(cls, failure: Failure) -> OperationResult[T]:
        return cls(failure=failure)
