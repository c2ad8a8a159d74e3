from __future__ import annotations

from querychat.config import Settings, get_settings
from querychat_client.infrastructure.http.chat_api_client import ChatApiClient
from querychat_client.services.chat_service import ChatService
from querychat_client.services.conversation_registry import ConversationRegistry
from querychat_client.services.conversation_session import ConversationSession
from querychat_client.services.message_normalizer import MessageNormalizer
from querychat_client.services.request_coordinator import RequestCoordinator, TokenProvider
from querychat_client.services.visualization_resolver import VisualizationResolver


def settings_token_provider(settings: Settings) -> TokenProvider:
    return lambda: settings.api_token


def create_chat_service(
    settings: Settings | None = None,
    token_provider: TokenProvider | None = None,
    project_id: str | None = None,
    backend: ChatApiClient | None = None,
) -> ChatService:
    """Build a ``ChatService`` with its session, registry and transport."""
    settings = settings or get_settings()
    token_provider = token_provider or settings_token_provider(settings)
    backend = backend or ChatApiClient(
        base_url=settings.api_base,
        token_provider=token_provider,
        timeout=settings.request_timeout,
    )

    registry = ConversationRegistry(
        recent_window_seconds=settings.recent_conversation_window_seconds
    )
    resolver = VisualizationResolver(min_payload_length=settings.visualization_min_payload_length)
    coordinator = RequestCoordinator(backend, token_provider)
    session = ConversationSession(
        registry,
        resolver=resolver,
        normalizer=MessageNormalizer(),
        coordinator=coordinator,
        title_max_length=settings.conversation_title_max_length,
    )
    return ChatService(
        backend,
        session,
        coordinator,
        project_id=project_id,
        settings=settings,
    )
