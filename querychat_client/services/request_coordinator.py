"""
Single in-flight request coordination.

Only one ask/generate-visualization call may be outstanding. Issuing a new
one aborts the previous one, and a generation counter makes sure a reply
for an aborted call is thrown away even when the transport still delivers
it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Optional, TypeVar

from querychat.utils.logger import get_logger
from querychat_client.domain.repositories.chat_backend import ChatBackend
from querychat_client.errors import (
    MISSING_TOKEN_MESSAGE,
    LocalPreconditionError,
    RequestCancelledError,
)
from querychat_client.models.turn import SendTurnResponse, VisualizationResponse

logger = get_logger(__name__)

T = TypeVar("T")

TokenProvider = Callable[[], Optional[str]]


class RequestCoordinator:
    def __init__(self, backend: ChatBackend, token_provider: TokenProvider) -> None:
        self._backend = backend
        self._token_provider = token_provider
        self._task: asyncio.Task | None = None
        self._generation = 0
        self._aborted: set[int] = set()

    @property
    def in_flight(self) -> bool:
        return self._task is not None

    @property
    def generation(self) -> int:
        return self._generation

    async def send(
        self,
        query: str,
        conversation_id: str | None,
        project_id: str | None,
    ) -> SendTurnResponse:
        return await self._issue(
            "ask", lambda: self._backend.ask(query, conversation_id, project_id)
        )

    async def generate_visualization(
        self,
        query: str,
        conversation_id: str | None,
        project_id: str | None,
    ) -> VisualizationResponse:
        return await self._issue(
            "generate-visualization",
            lambda: self._backend.generate_visualization(query, conversation_id, project_id),
        )

    def cancel(self) -> bool:
        """Abort the outstanding call. Returns False when nothing was in flight.

        ``_task`` stays set until ``_issue`` has consumed the result, so a call
        whose transport already finished still counts as in flight and its
        reply is discarded.
        """
        task = self._task
        if task is None:
            return False
        self._aborted.add(self._generation)
        self._task = None
        if not task.done():
            task.cancel()
        logger.debug(f"Aborted request generation {self._generation}")
        return True

    def _is_stale(self, generation: int) -> bool:
        return generation in self._aborted or generation != self._generation

    async def _issue(self, label: str, factory: Callable[[], Awaitable[T]]) -> T:
        if not self._token_provider():
            raise LocalPreconditionError(MISSING_TOKEN_MESSAGE)

        self.cancel()
        self._generation += 1
        generation = self._generation
        task: asyncio.Task = asyncio.ensure_future(factory())
        self._task = task
        logger.debug(f"Issued {label} request generation {generation}")

        try:
            result = await task
        except asyncio.CancelledError:
            if not self._is_stale(generation):
                # Our caller was cancelled, not the request
                task.cancel()
                raise
            self._aborted.discard(generation)
            raise RequestCancelledError() from None
        except Exception:
            if self._is_stale(generation):
                self._aborted.discard(generation)
                raise RequestCancelledError() from None
            raise
        finally:
            if self._task is task:
                self._task = None

        if self._is_stale(generation):
            self._aborted.discard(generation)
            logger.info(f"Discarding {label} response for superseded request {generation}")
            raise RequestCancelledError("Response for a superseded request discarded")
        return result
