from querychat_client.domain.repositories.chat_backend import ChatBackend

__all__ = ["ChatBackend"]
