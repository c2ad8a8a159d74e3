"""Domain layer exports."""

from querychat_client.domain.entities.conversation import Conversation
from querychat_client.domain.entities.message import Message, MessageRole
from querychat_client.domain.entities.visualization import Visualization
from querychat_client.domain.value_objects.failure import Failure, FailureKind, OperationResult
from querychat_client.domain.value_objects.operation_status import OperationStatus

__all__ = [
    "Conversation",
    "Message",
    "MessageRole",
    "Visualization",
    "Failure",
    "FailureKind",
    "OperationResult",
    "OperationStatus",
]
