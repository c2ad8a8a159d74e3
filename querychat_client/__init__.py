"""
QueryChat client module.

Conversation state reconciliation on top of the analysis backend's REST API.
"""

from querychat_client.deps import create_chat_service

__all__ = ["create_chat_service"]
