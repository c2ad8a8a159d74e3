"""
Client services.
"""

from querychat_client.services.chat_service import ChatService
from querychat_client.services.conversation_registry import ConversationRegistry
from querychat_client.services.conversation_session import (
    ConversationSession,
    SessionSnapshot,
    StatusTrack,
)
from querychat_client.services.message_normalizer import MessageNormalizer
from querychat_client.services.request_coordinator import RequestCoordinator
from querychat_client.services.visualization_resolver import VisualizationResolver

__all__ = [
    "ChatService",
    "ConversationRegistry",
    "ConversationSession",
    "SessionSnapshot",
    "StatusTrack",
    "MessageNormalizer",
    "RequestCoordinator",
    "VisualizationResolver",
]
