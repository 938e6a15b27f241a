"""
Review session lifecycle.

A session is created from a chat conversation (every prediction found in
the assistant's replies) or from one stored analysis. Users then post
messages, optionally with a closing chart, until every prediction has an
actual outcome, and finally complete the review to freeze the scores.

Slow collaborator calls (vision, chat) run before the session is re-read
and changed, so the write that follows is short and version-checked by the
repository.
"""

import logging
import traceback
from dataclasses import dataclass
from typing import Optional
from chartreview.analysis.accuracy_scorer import AccuracyScorer, scorer_for
from chartreview.analysis.historical_context import accuracy_marker
from chartreview.analysis.outcome_resolver import OutcomeResolver, ResolvedOutcome
from chartreview.analysis.prediction_extractor import (
    PredictionExtractor,
    LabeledTextExtractor,
    prediction_from_analysis
)
from chartreview.database.base import ReviewRepository
from chartreview.errors import (
    AlreadyExistsError,
    IncompleteDataError,
    NotFoundError,
    ReviewStateError
)
from chartreview.models.prediction import Outcome, Prediction
from chartreview.models.review import (
    ReviewSession,
    PredictionReview,
    SessionStatus,
    SourceKind,
    Review,
    utc_now,
    USER,
    ASSISTANT
)
from chartreview.utils.ai_base import ChatInterface

logger = logging.getLogger(__name__)


@dataclass
class PostResult:
    session: ReviewSession
    reply: str
    resolved: Optional[ResolvedOutcome] = None


class ReviewEngine:
    """Creates, advances and completes review sessions"""

    def __init__(self, repository: ReviewRepository, resolver: OutcomeResolver,
                 chat: ChatInterface, extractor: Optional[PredictionExtractor] = None):
        self.repository = repository
        self.resolver = resolver
        self.chat = chat
        self.extractor = extractor or LabeledTextExtractor()

    # Lookup

    def get_session(self, session_id: str) -> ReviewSession:
        session = self.repository.get_session(session_id)
        if session is None:
            raise NotFoundError(f"Review session {session_id} not found")
        return session

    def _load_ongoing(self, session_id: str) -> ReviewSession:
        session = self.get_session(session_id)
        if session.is_completed:
            raise ReviewStateError(f"Review session {session_id} is already completed")
        return session

    # Creation

    def create_for_conversation(self, conversation_id: str) -> ReviewSession:
        """Start reviewing every prediction in a chat conversation"""
        if self.repository.get_by_source_id(conversation_id) is not None:
            raise AlreadyExistsError(f"Review session for conversation {conversation_id} already exists")

        conversation = self.repository.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")

        predictions = self.extractor.extract(conversation.messages)
        session = ReviewSession(
            source_id=conversation_id,
            source_kind=SourceKind.CONVERSATION,
            prediction_reviews=[PredictionReview(prediction=p) for p in predictions]
        )
        session.add_message(
            ASSISTANT,
            f"Welcome to the review! I found {len(predictions)} prediction(s) in this conversation.\n\n"
            "Please provide the actual prices: upload a closing chart and I will read it, "
            "or type the actual high, low and close. I will then grade each prediction."
        )

        logger.info(f"Extracted {len(predictions)} predictions from conversation {conversation_id}")
        return self.repository.create(session)

    def get_or_create_for_conversation(self, conversation_id: str) -> ReviewSession:
        existing = self.repository.get_by_source_id(conversation_id)
        if existing is not None:
            return existing
        try:
            return self.create_for_conversation(conversation_id)
        except AlreadyExistsError:
            # Another request created it first
            return self.repository.get_by_source_id(conversation_id)

    def create_for_analysis(self, analysis_id: str) -> ReviewSession:
        """Start (or resume) the review of one stored analysis"""
        existing = self.repository.get_by_source_id(analysis_id)
        if existing is not None:
            return existing

        analysis = self.repository.get_analysis(analysis_id)
        if analysis is None:
            raise NotFoundError(f"Analysis {analysis_id} not found")

        prediction = prediction_from_analysis(analysis)
        session = ReviewSession(
            source_id=analysis_id,
            source_kind=SourceKind.ANALYSIS,
            prediction_reviews=[PredictionReview(prediction=prediction)]
        )
        session.add_message(
            ASSISTANT,
            "Hello! Let's review this analysis together.\n\n"
            "**Original prediction:**\n"
            f"- Direction: {prediction.direction.value}\n"
            f"- Support: {prediction.support_level}\n"
            f"- Resistance: {prediction.resistance_level}\n"
            f"- Target: {prediction.target}\n\n"
            "Please either:\n"
            "1. Upload the chart after the close and I will read the actual prices\n"
            "2. Or tell me the actual high, low and close\n\n"
            "Then we can discuss what went right, what went wrong and how to improve."
        )

        try:
            return self.repository.create(session)
        except AlreadyExistsError:
            return self.repository.get_by_source_id(analysis_id)

    # Messages and outcomes

    def post_message(self, session_id: str, user_text: str,
                     image: Optional[bytes] = None, image_ref: Optional[str] = None) -> PostResult:
        """
        Add a user turn and exactly one assistant reply.

        With a chart image, a recognized outcome is attached to every
        prediction still lacking one and the reply is a generated accuracy
        summary. Otherwise the text goes to the chat assistant. A failing chat
        call raises CollaboratorError and leaves the session unchanged.
        """
        snapshot = self._load_ongoing(session_id)

        resolved = None
        attempted = False
        if image:
            reference = self._reference_prediction(snapshot)
            if reference is None:
                logger.info(f"Session {session_id} has no predictions, skipping chart recognition")
            else:
                attempted = True
                resolved = self.resolver.resolve_from_image(image, reference)

        reply = None
        if resolved is None:
            context = self._chat_context(snapshot, recognition_failed=attempted)
            reply = self.chat.converse(snapshot.messages, user_text, context=context)

        session = self._load_ongoing(session_id)
        session.add_message(USER, user_text, image_ref=image_ref)
        if resolved is not None:
            attached = self._attach_all(session, resolved.outcome)
            logger.info(f"Attached recognized outcome to {attached} prediction(s) in session {session_id}")
            reply = self._summary_message(
                session, resolved.outcome, resolved.rationale_text, recognized=True,
                applied=attached > 0 or not session.prediction_reviews
            )
        session.add_message(ASSISTANT, reply)

        self.repository.save(session)
        return PostResult(session=session, reply=reply, resolved=resolved)

    def submit_outcome(self, session_id: str, actual_high, actual_low, actual_close) -> PostResult:
        """Record manually typed actual prices. Raises ValidationError before any change."""
        outcome = self.resolver.resolve_direct(actual_high, actual_low, actual_close)

        session = self._load_ongoing(session_id)
        session.add_message(
            USER,
            f"Actual prices: high {outcome.actual_high}, low {outcome.actual_low}, close {outcome.actual_close}"
        )
        attached = self._attach_all(session, outcome)
        logger.info(f"Attached typed outcome to {attached} prediction(s) in session {session_id}")
        reply = self._summary_message(
            session, outcome, recognized=False,
            applied=attached > 0 or not session.prediction_reviews
        )
        session.add_message(ASSISTANT, reply)

        self.repository.save(session)
        return PostResult(session=session, reply=reply, resolved=ResolvedOutcome(outcome=outcome))

    def _attach_all(self, session: ReviewSession, outcome: Outcome) -> int:
        scorer = scorer_for(session.source_kind)
        attached = 0
        for review in session.prediction_reviews:
            if review.is_resolved:
                continue
            if review.attach(outcome, scorer.score(review.prediction, outcome)):
                attached += 1
        return attached

    @staticmethod
    def _reference_prediction(session: ReviewSession) -> Optional[Prediction]:
        if not session.prediction_reviews:
            return None
        return session.prediction_reviews[0].prediction

    @staticmethod
    def _chat_context(session: ReviewSession, recognition_failed: bool = False) -> str:
        lines = [
            "The user is reviewing earlier predictions. If the message contains actual prices "
            "(high, low, close), extract them and confirm them back. If the data is incomplete, "
            "ask the user for the missing values.",
            "",
            "Predictions under review:"
        ]
        for index, review in enumerate(session.prediction_reviews, start=1):
            p = review.prediction
            lines.append(
                f"#{index}: support {p.support_level}, resistance {p.resistance_level}, "
                f"direction {p.direction.value}, stop loss {p.stop_loss}, target {p.target}"
            )
            if review.outcome is not None:
                o = review.outcome
                lines.append(
                    f"    confirmed actual: high {o.actual_high}, low {o.actual_low}, "
                    f"close {o.actual_close}, accuracy {review.accuracy}%"
                )
        if not session.prediction_reviews:
            lines.append("(none found)")
        if recognition_failed:
            lines.append("")
            lines.append(
                "The chart the user just sent could not be read automatically. "
                "Tell them and ask them to type the actual high, low and close."
            )
        return '\n'.join(lines)

    @staticmethod
    def _summary_message(session: ReviewSession, outcome: Outcome,
                         rationale_text: str = "", recognized: bool = True, applied: bool = True) -> str:
        if applied:
            headline = "✅ Actual prices recognized!" if recognized else "✅ Actual prices recorded!"
        else:
            headline = ("⚠️ Every prediction already has actual prices. "
                        "These new prices were not applied and the scores below are unchanged.")
        lines = [
            headline,
            "",
            "📊 Actual data:" if applied else "📊 Prices received (not applied):",
            f"• High: {outcome.actual_high}",
            f"• Low: {outcome.actual_low}",
            f"• Close: {outcome.actual_close}",
            ""
        ]
        if rationale_text:
            lines.extend([f"🔎 Chart notes: {rationale_text}", ""])

        lines.extend(["📈 Accuracy per prediction:", ""])
        for index, review in enumerate(session.prediction_reviews, start=1):
            if review.accuracy is None:
                continue
            p = review.prediction
            lines.append(f"{accuracy_marker(review.accuracy)} Prediction #{index}: {review.accuracy}%")
            lines.append(f"  Support {p.support_level} | Resistance {p.resistance_level}")
            lines.append(f"  Direction: {p.direction.value} | Target: {p.target}")
            lines.append("")

        lines.append("💡 Ask follow-up questions, or complete the review to see the final score.")
        return '\n'.join(lines)

    # Completion

    def complete(self, session_id: str) -> ReviewSession:
        """
        Freeze the review. Every prediction must have an outcome, otherwise
        IncompleteDataError is raised and nothing changes.
        """
        session = self._load_ongoing(session_id)

        pending = session.pending_reviews()
        if pending:
            raise IncompleteDataError(len(pending))

        overall_accuracy = AccuracyScorer.overall_accuracy(session.prediction_reviews)
        quality_score = AccuracyScorer.quality_score(session.prediction_reviews)

        session.overall_accuracy = overall_accuracy
        session.quality_score = quality_score
        session.status = SessionStatus.COMPLETED
        session.updated_at = utc_now()
        self.repository.save(session)

        logger.info(
            f"Completed review session {session_id}: accuracy {overall_accuracy}%, quality {quality_score}"
        )

        if session.source_kind == SourceKind.ANALYSIS:
            self._record_analysis_review(session)
        return session

    def _record_analysis_review(self, session: ReviewSession):
        review = session.prediction_reviews[0]
        last_reply = next((m.content for m in reversed(session.messages) if m.role == ASSISTANT), "")
        try:
            self.repository.save_review(Review(
                analysis_id=session.source_id,
                actual_high=review.outcome.actual_high,
                actual_low=review.outcome.actual_low,
                actual_close=review.outcome.actual_close,
                accuracy=review.accuracy,
                feedback=last_reply
            ))
            self.repository.mark_analysis_reviewed(session.source_id)
        except Exception as e:
            logger.error(f"Error recording review for analysis {session.source_id}: {str(e)}")
            logger.debug(f"Traceback: {traceback.format_exc()}")
