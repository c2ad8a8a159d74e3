from __future__ import annotations

from datetime import datetime, timedelta, timezone

from querychat_client.domain.value_objects.failure import Failure, FailureKind
from querychat_client.domain.value_objects.operation_status import OperationStatus
from querychat_client.services.conversation_registry import ConversationRegistry
from querychat_client.services.conversation_session import (
    ConversationSession,
    SessionSnapshot,
    StatusTrack,
)
from querychat_client.services.visualization_resolver import VisualizationResolver

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class TickingClock:
    def __init__(self) -> None:
        self.current = NOW

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


def _session() -> ConversationSession:
    clock = TickingClock()
    return ConversationSession(ConversationRegistry(clock=clock), clock=clock)


def _turn(conversation_id: str, user_id: str, ai_id: str, analysis: str) -> dict:
    return {
        "conversationId": conversation_id,
        "userMessageId": user_id,
        "aiMessageId": ai_id,
        "analysis": analysis,
    }


def test_new_thread_happy_path() -> None:
    session = _session()
    assert session.active_conversation_id is None

    optimistic = session.begin_new_turn("What were Q1 sales?")
    assert optimistic.id is None
    assert [m.id for m in session.messages] == [None]
    assert session.is_responding

    applied = session.complete_turn(_turn("c1", "m1", "m2", "Q1 sales were $1.2M"))

    assert applied is True
    assert session.active_conversation_id == "c1"
    messages = session.messages
    assert [(m.id, m.role.value) for m in messages] == [("m1", "human"), ("m2", "ai")]
    assert messages[1].content == "Q1 sales were $1.2M"
    assert all(m.conversation_id == "c1" for m in messages)
    assert "c1" in session.registry
    assert session.registry.get("c1").title == "What were Q1 sales?"
    assert session.current_conversation.id == "c1"
    assert session.status.send is OperationStatus.SUCCEEDED


def test_same_response_applied_twice_yields_one_ai_message() -> None:
    session = _session()
    session.begin_new_turn("q")
    response = _turn("c1", "m1", "m2", "answer")

    session.complete_turn(response)
    session.complete_turn(response)

    assert [m.id for m in session.messages].count("m2") == 1
    assert len(session.messages) == 2


def test_reply_for_other_conversation_is_discarded() -> None:
    session = _session()
    session.begin_new_turn("q")
    session.complete_turn(_turn("A", "m1", "m2", "answer"))
    before = session.messages

    assert session.complete_turn(_turn("B", "m3", "m4", "other")) is False
    assert session.load_history({"id": "B"}, [{"id": "x", "role": "ai", "content": "x"}]) is False

    assert session.messages == before
    assert session.active_conversation_id == "A"


def test_ai_reply_is_inserted_after_its_human_message() -> None:
    session = _session()
    session.switch_conversation("c1")
    session.begin_new_turn("first")
    session.begin_new_turn("second")

    session.complete_turn(_turn("c1", "h2", "a2", "second answer"))
    session.complete_turn(_turn("c1", "h1", "a1", "first answer"))

    assert [m.id for m in session.messages] == ["h1", "a1", "h2", "a2"]


def test_long_question_title_is_truncated() -> None:
    session = _session()
    session.begin_new_turn("x" * 200)

    session.complete_turn(_turn("c1", "m1", "m2", "ok"))

    assert session.registry.get("c1").title == "x" * 60


def test_failed_send_appends_error_message() -> None:
    session = _session()
    session.begin_new_turn("q")

    session.fail_turn(Failure(FailureKind.TRANSIENT, "Server exploded", status_code=500))

    messages = session.messages
    assert len(messages) == 2
    assert messages[1].is_error
    assert messages[1].content == "Sorry, an error occurred: Server exploded"
    assert session.status.send is OperationStatus.FAILED
    assert session.error_for(StatusTrack.SEND).status_code == 500


def test_cancel_before_reply_leaves_only_optimistic_message() -> None:
    session = _session()
    session.begin_new_turn("slow query")

    session.cancel_in_flight()

    messages = session.messages
    assert len(messages) == 1
    assert messages[0].id is None
    assert not any(m.is_error for m in messages)
    assert session.status.send is OperationStatus.IDLE
    assert session.error_for(StatusTrack.SEND) is None


def test_cancelled_failure_is_not_an_error() -> None:
    session = _session()
    session.begin_new_turn("q")

    assert session.fail_turn(Failure(FailureKind.CANCELLED, "Request cancelled")) is None
    assert len(session.messages) == 1
    assert session.status.send is OperationStatus.IDLE


def test_history_orders_human_first_on_equal_timestamps() -> None:
    session = _session()
    stamp = "2024-04-01T09:00:00Z"

    session.load_history(
        {"id": "c1", "title": "Sales"},
        [
            {"id": "b", "role": "ai", "content": "answer", "created_at": stamp},
            {"id": "z", "role": "human", "content": "question", "createdAt": stamp},
            {"id": "a", "role": "ai", "content": "other answer", "created_at": stamp},
            {"id": "early", "role": "ai", "content": "hello", "created_at": "2024-04-01T08:00:00Z"},
        ],
    )

    assert [m.id for m in session.messages] == ["early", "z", "a", "b"]
    assert session.status.history is OperationStatus.SUCCEEDED
    assert session.current_conversation.title == "Sales"


def test_stale_history_fetch_is_discarded_after_switch() -> None:
    session = _session()
    session.switch_conversation("c1")
    session.begin_history_fetch("c1")

    session.switch_conversation("c2")
    applied = session.load_history({"id": "c1"}, [{"id": "m1", "role": "human"}])

    assert applied is False
    assert session.active_conversation_id == "c2"
    assert session.messages == ()


def test_history_drops_messages_of_another_conversation() -> None:
    session = _session()
    session.switch_conversation("c1")

    session.load_history(
        {"id": "c1"},
        [
            {"id": "m1", "role": "human", "conversation_id": "c1"},
            {"id": "m2", "role": "ai", "conversationId": "c9"},
            {"id": "m3", "role": "ai"},
        ],
    )

    assert [m.id for m in session.messages] == ["m1", "m3"]


def test_history_merges_side_loaded_visualizations() -> None:
    clock = TickingClock()
    resolver = VisualizationResolver()
    resolver.ingest([{"message_id": "m2", "chart_data": "P" * 300}])
    session = ConversationSession(ConversationRegistry(clock=clock), resolver=resolver, clock=clock)

    session.load_history(
        {"id": "c1"},
        [
            {"id": "m1", "role": "human", "created_at": "2024-04-01T09:00:00Z"},
            {"id": "m2", "role": "ai", "created_at": "2024-04-01T09:00:01Z", "chart_data": "tiny"},
        ],
    )

    assert session.messages[1].visualization.data == "P" * 300


def test_not_found_history_clears_conversation() -> None:
    session = _session()
    session.switch_conversation("c1")
    session.begin_history_fetch("c1")

    session.fail_history("c1", Failure(FailureKind.NOT_FOUND, "Conversation not found", 404))

    assert session.active_conversation_id is None
    assert session.messages == ()
    assert session.status.history is OperationStatus.FAILED
    assert session.error_for(StatusTrack.HISTORY).is_not_found


def test_switch_conversation_clears_transcript_and_status() -> None:
    session = _session()
    session.begin_new_turn("q")
    session.complete_turn(_turn("c1", "m1", "m2", "a"))

    session.switch_conversation("c2")

    assert session.messages == ()
    assert session.active_conversation_id == "c2"
    assert session.current_conversation is None
    assert session.status.send is OperationStatus.IDLE
    assert session.status.history is OperationStatus.IDLE


def test_attach_visualization_by_message_id_and_fallback() -> None:
    session = _session()
    session.begin_new_turn("q")
    session.complete_turn(_turn("c1", "m1", "m2", "a"))

    assert session.attach_visualization(
        {"conversationId": "c1", "aiMessageId": "m2", "visualization": {"type": "bar", "data": "XYZ"}}
    )
    assert session.messages[1].visualization.data == "XYZ"

    # Without an id the last AI message is used; an empty chart keeps the old one
    session.attach_visualization({"conversationId": "c1", "visualization": {"type": "pie"}})
    assert session.messages[1].visualization.data == "XYZ"

    assert session.attach_visualization(
        {"conversationId": "other", "visualization": {"type": "bar", "data": "NOPE"}}
    ) is False
    assert session.messages[1].visualization.data == "XYZ"


def test_importance_toggle_rolls_back_on_failure() -> None:
    session = _session()
    session.load_history({"id": "c1"}, [{"id": "m1", "role": "ai", "content": "a"}])

    prior = session.toggle_importance("m1", True)
    assert prior is False
    assert session.messages[0].is_important is True
    assert session.status.importance_operation is OperationStatus.LOADING
    assert session.status.send is OperationStatus.IDLE

    session.reject_importance("m1", prior, Failure(FailureKind.TRANSIENT, "nope"))

    assert session.messages[0].is_important is False
    assert session.status.importance_operation is OperationStatus.FAILED
    assert session.error_for(StatusTrack.IMPORTANCE_OPERATION).message == "nope"


def test_unmarking_importance_drops_from_important_list() -> None:
    session = _session()
    session.load_history({"id": "c1"}, [{"id": "m1", "role": "ai", "is_important": True}])
    session.set_important_messages([{"id": "m1", "role": "ai"}, {"id": "m9", "role": "ai"}])

    session.toggle_importance("m1", False)
    session.resolve_importance("m1", False)

    assert [m.id for m in session.important_messages] == ["m9"]
    assert session.messages[0].is_important is False
    assert session.status.importance_operation is OperationStatus.SUCCEEDED


def test_listeners_receive_snapshots_until_unsubscribed() -> None:
    session = _session()
    seen: list[SessionSnapshot] = []
    unsubscribe = session.subscribe(seen.append)

    session.begin_new_turn("q")
    assert seen and seen[-1].is_responding
    count = len(seen)

    unsubscribe()
    session.mark_send_cancelled()

    assert len(seen) == count


def test_snapshot_is_detached_from_session_state() -> None:
    session = _session()
    session.begin_new_turn("q")

    snapshot = session.snapshot()
    snapshot.messages[0].content = "changed"

    assert session.messages[0].content == "q"


def test_remove_message_and_forget_conversation() -> None:
    session = _session()
    session.load_history(
        {"id": "c1"},
        [{"id": "m1", "role": "human"}, {"id": "m2", "role": "ai"}],
    )

    assert session.remove_message("m2") is True
    assert [m.id for m in session.messages] == ["m1"]

    assert session.forget_conversation("other") is False
    assert session.forget_conversation("c1") is True
    assert session.active_conversation_id is None
    assert session.messages == ()
