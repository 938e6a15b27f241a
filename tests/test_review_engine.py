import pytest
from datetime import datetime, timezone
from chartreview.analysis.outcome_resolver import OutcomeResolver
from chartreview.analysis.review_engine import ReviewEngine
from chartreview.errors import (
    AlreadyExistsError,
    CollaboratorError,
    ConcurrencyError,
    IncompleteDataError,
    NotFoundError,
    ReviewStateError,
    ValidationError
)
from chartreview.models.prediction import Direction
from chartreview.models.review import Conversation, Message, SessionStatus, SourceKind, USER, ASSISTANT
from chartreview.utils.ai_base import VisionResult


class TestCreate:
    def test_create_for_conversation(self, engine, storage):
        session = engine.create_for_conversation("conv-1")

        assert session.source_kind == SourceKind.CONVERSATION
        assert session.status == SessionStatus.ONGOING
        assert [r.source_message_id for r in session.prediction_reviews] == ["msg-1", "msg-3"]
        assert session.prediction_reviews[1].prediction.direction == Direction.HOLD
        assert len(session.messages) == 1
        assert session.messages[0].role == ASSISTANT
        assert "2 prediction(s)" in session.messages[0].content
        assert storage.get_by_source_id("conv-1").id == session.id

    def test_create_twice_fails(self, engine):
        engine.create_for_conversation("conv-1")

        with pytest.raises(AlreadyExistsError):
            engine.create_for_conversation("conv-1")

    def test_get_or_create_returns_existing(self, engine):
        first = engine.get_or_create_for_conversation("conv-1")
        second = engine.get_or_create_for_conversation("conv-1")

        assert first.id == second.id

    def test_unknown_conversation(self, engine):
        with pytest.raises(NotFoundError):
            engine.create_for_conversation("nope")

    def test_conversation_without_predictions(self, engine, storage):
        storage.save_conversation(Conversation(
            id="conv-empty",
            title="Chit-chat",
            messages=[Message(role=ASSISTANT, content="Markets are closed today.")]
        ))

        session = engine.create_for_conversation("conv-empty")

        assert session.prediction_reviews == []
        assert "0 prediction(s)" in session.messages[0].content

    def test_create_for_analysis_is_idempotent(self, engine):
        session = engine.create_for_analysis("analysis-1")
        again = engine.create_for_analysis("analysis-1")

        assert session.id == again.id
        assert session.source_kind == SourceKind.ANALYSIS
        assert len(session.prediction_reviews) == 1
        assert session.prediction_reviews[0].prediction.target == 270.0
        assert "Original prediction" in session.messages[0].content

    def test_unknown_analysis(self, engine):
        with pytest.raises(NotFoundError):
            engine.create_for_analysis("nope")


class TestPostMessage:
    def test_image_attaches_outcome_to_all_predictions(self, engine, mock_chat):
        session = engine.create_for_conversation("conv-1")

        result = engine.post_message(session.id, "Here is the close", image=b"png", image_ref="close.png")

        assert result.resolved is not None
        accuracies = [r.accuracy for r in result.session.prediction_reviews]
        assert accuracies == [100, 40]
        assert "Prediction #1: 100%" in result.reply
        assert "Prediction #2: 40%" in result.reply
        assert "Daily candle, strong close" in result.reply
        mock_chat.converse.assert_not_called()

        stored = engine.get_session(session.id)
        assert [m.role for m in stored.messages] == [ASSISTANT, USER, ASSISTANT]
        assert stored.messages[1].image_ref == "close.png"

    def test_vision_uses_first_prediction_as_reference(self, engine, mock_vision):
        session = engine.create_for_conversation("conv-1")

        engine.post_message(session.id, "chart", image=b"png")

        _, reference = mock_vision.extract_outcome.call_args[0]
        assert reference.source_message_id == "msg-1"

    def test_text_goes_to_chat(self, engine, mock_chat):
        session = engine.create_for_conversation("conv-1")

        result = engine.post_message(session.id, "How did my calls do?")

        assert result.resolved is None
        assert result.reply == "Please share the actual high, low and close."
        args, kwargs = mock_chat.converse.call_args
        assert args[1] == "How did my calls do?"
        assert "support 100.0" in kwargs['context']
        assert "could not be read" not in kwargs['context']

        stored = engine.get_session(session.id)
        assert len(stored.messages) == 3
        assert stored.messages[-1].content == result.reply
        assert stored.pending_reviews() == stored.prediction_reviews

    def test_failed_recognition_falls_back_to_chat(self, engine, mock_vision, mock_chat):
        mock_vision.extract_outcome.side_effect = CollaboratorError("unreadable")
        session = engine.create_for_conversation("conv-1")

        result = engine.post_message(session.id, "chart attached", image=b"png")

        assert result.resolved is None
        assert "could not be read" in mock_chat.converse.call_args.kwargs['context']
        stored = engine.get_session(session.id)
        assert len(stored.messages) == 3
        assert all(not r.is_resolved for r in stored.prediction_reviews)

    def test_chat_failure_leaves_session_unchanged(self, engine, mock_chat):
        mock_chat.converse.side_effect = CollaboratorError("down")
        session = engine.create_for_conversation("conv-1")

        with pytest.raises(CollaboratorError):
            engine.post_message(session.id, "hello?")

        stored = engine.get_session(session.id)
        assert len(stored.messages) == 1
        assert stored.version == session.version

    def test_second_outcome_does_not_overwrite_first(self, engine, mock_vision):
        session = engine.create_for_conversation("conv-1")
        engine.post_message(session.id, "first chart", image=b"png")

        mock_vision.extract_outcome.return_value = VisionResult(
            actual_high=140.0, actual_low=80.0, actual_close=85.0
        )
        result = engine.post_message(session.id, "second chart", image=b"png")

        reviews = result.session.prediction_reviews
        assert [r.accuracy for r in reviews] == [100, 40]
        assert reviews[0].outcome.actual_close == 125.0
        assert "not applied" in result.reply
        assert not result.reply.startswith("✅")

    def test_image_without_predictions_is_not_a_failed_recognition(self, engine, storage, mock_vision, mock_chat):
        storage.save_conversation(Conversation(id="conv-empty", title="", messages=[]))
        session = engine.create_for_conversation("conv-empty")

        result = engine.post_message(session.id, "chart", image=b"png")

        assert result.resolved is None
        mock_vision.extract_outcome.assert_not_called()
        assert "could not be read" not in mock_chat.converse.call_args.kwargs['context']

    def test_unknown_session(self, engine):
        with pytest.raises(NotFoundError):
            engine.post_message("missing", "hi")


class TestSubmitOutcome:
    def test_typed_outcome(self, engine, mock_chat):
        session = engine.create_for_conversation("conv-1")

        result = engine.submit_outcome(session.id, "119", "99", "125")

        assert [r.accuracy for r in result.session.prediction_reviews] == [100, 40]
        assert result.reply.startswith("✅ Actual prices recorded!")
        mock_chat.converse.assert_not_called()

    def test_invalid_outcome_does_not_touch_session(self, engine):
        session = engine.create_for_conversation("conv-1")

        with pytest.raises(ValidationError):
            engine.submit_outcome(session.id, 90, 110, 100)

        stored = engine.get_session(session.id)
        assert len(stored.messages) == 1
        assert stored.version == session.version


class TestComplete:
    def test_incomplete_session(self, engine):
        session = engine.create_for_conversation("conv-1")

        with pytest.raises(IncompleteDataError) as exc_info:
            engine.complete(session.id)

        assert exc_info.value.missing == 2
        assert engine.get_session(session.id).status == SessionStatus.ONGOING

    def test_complete_conversation_review(self, engine, storage):
        session = engine.create_for_conversation("conv-1")
        engine.submit_outcome(session.id, 119, 99, 125)

        completed = engine.complete(session.id)

        # accuracies 100 and 40: 60 * 70 / 100 = 42, variance 900 -> 0, both stops compliant -> 20
        assert completed.overall_accuracy == 70
        assert completed.quality_score == 62
        assert completed.status == SessionStatus.COMPLETED
        assert storage.get_session(session.id).quality_score == 62
        assert storage.get_reviews() == []

    def test_complete_touches_updated_at(self, engine, storage, mocker):
        session = engine.create_for_conversation("conv-1")
        engine.submit_outcome(session.id, 119, 99, 125)
        completed_at = datetime(2030, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        mocker.patch('chartreview.analysis.review_engine.utc_now', return_value=completed_at)

        completed = engine.complete(session.id)

        assert completed.updated_at == completed_at
        assert storage.get_session(session.id).updated_at == completed_at

    def test_completed_session_is_frozen(self, engine):
        session = engine.create_for_conversation("conv-1")
        engine.submit_outcome(session.id, 119, 99, 125)
        engine.complete(session.id)

        with pytest.raises(ReviewStateError):
            engine.complete(session.id)
        with pytest.raises(ReviewStateError):
            engine.post_message(session.id, "one more thing")
        with pytest.raises(ReviewStateError):
            engine.submit_outcome(session.id, 119, 99, 125)

    def test_complete_without_predictions(self, engine, storage):
        storage.save_conversation(Conversation(id="conv-empty", title="", messages=[]))
        session = engine.create_for_conversation("conv-empty")

        completed = engine.complete(session.id)

        assert completed.overall_accuracy == 0
        assert completed.quality_score == 0

    def test_complete_analysis_review_records_review(self, engine, storage):
        session = engine.create_for_analysis("analysis-1")
        engine.submit_outcome(session.id, 265, 245, 262)

        completed = engine.complete(session.id)

        # directional preset: 70 + 265 / 270 * 30
        assert completed.prediction_reviews[0].accuracy == 99
        assert completed.overall_accuracy == 99
        reviews = storage.get_reviews()
        assert len(reviews) == 1
        assert reviews[0].analysis_id == "analysis-1"
        assert reviews[0].accuracy == 99
        assert reviews[0].feedback.startswith("✅ Actual prices recorded!")
        assert storage.get_analysis("analysis-1").status == "reviewed"

    def test_concurrent_write_aborts_completion(self, engine, storage, mocker):
        session = engine.create_for_conversation("conv-1")
        engine.submit_outcome(session.id, 119, 99, 125)
        mocker.patch.object(storage, 'save', side_effect=ConcurrencyError("changed"))

        with pytest.raises(ConcurrencyError):
            engine.complete(session.id)

        assert storage.get_session(session.id).status == SessionStatus.ONGOING


def test_engine_without_vision_client(storage, mock_chat):
    engine = ReviewEngine(repository=storage, resolver=OutcomeResolver(), chat=mock_chat)
    session = engine.create_for_conversation("conv-1")

    result = engine.post_message(session.id, "chart", image=b"png")

    assert result.resolved is None
    mock_chat.converse.assert_called_once()
