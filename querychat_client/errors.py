"""Typed client exceptions.

The transport and the request coordinator raise these; the chat service
turns them into ``Failure`` values so callers never see an exception for a
recoverable problem.
"""

from __future__ import annotations

from querychat_client.domain.value_objects.failure import Failure, FailureKind

NOT_FOUND_MARKERS = ("not found", "404")
MISSING_TOKEN_MESSAGE = "No authorization token found. Please log in."


class ChatClientError(Exception):
    """Base exception for all client errors."""

    kind: FailureKind = FailureKind.TRANSIENT

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def to_failure(self) -> Failure:
        return Failure(kind=self.kind, message=self.message, status_code=self.status_code)


class LocalPreconditionError(ChatClientError):
    """Request rejected before reaching the network (no token, bad id)."""

    kind = FailureKind.LOCAL_PRECONDITION


class TransientRequestError(ChatClientError):
    """Non-2xx response, unparseable body or connection problem."""

    kind = FailureKind.TRANSIENT


class ConversationNotFoundError(ChatClientError):
    """The conversation no longer exists server-side."""

    kind = FailureKind.NOT_FOUND


class RequestCancelledError(ChatClientError):
    """The request was aborted, or superseded by a newer one."""

    kind = FailureKind.CANCELLED

    def __init__(self, message: str = "Request cancelled") -> None:
        super().__init__(message)


def looks_like_not_found(message: str | None) -> bool:
    if not message:
        return False
    lowered = message.lower()
    return any(marker in lowered for marker in NOT_FOUND_MARKERS)

