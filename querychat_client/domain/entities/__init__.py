from querychat_client.domain.entities.conversation import Conversation
from querychat_client.domain.entities.message import Message, MessageRole
from querychat_client.domain.entities.visualization import Visualization

__all__ = ["Conversation", "Message", "MessageRole", "Visualization"]
