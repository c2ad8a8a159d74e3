from querychat_client.infrastructure.http.chat_api_client import ChatApiClient

__all__ = ["ChatApiClient"]
