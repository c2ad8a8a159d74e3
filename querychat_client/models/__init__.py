"""
Wire models for backend payloads.
"""

from querychat_client.models.conversation import ConversationRecord, HistoryPayload
from querychat_client.models.turn import ImportanceResponse, SendTurnResponse, VisualizationResponse
from querychat_client.models.visualization import VisualizationRecord

__all__ = [
    "ConversationRecord",
    "HistoryPayload",
    "ImportanceResponse",
    "SendTurnResponse",
    "VisualizationRecord",
    "VisualizationResponse",
]
