from abc import ABC, abstractmethod
from typing import List, Optional
from chartreview.models.review import ReviewSession, Conversation, Analysis, Review, utc_now
from chartreview.models.metrics import ReviewStatistics


class ReviewRepository(ABC):
    @abstractmethod
    def get_session(self, session_id: str) -> Optional[ReviewSession]:
        """Get review session by id"""
        pass

    @abstractmethod
    def get_by_source_id(self, source_id: str) -> Optional[ReviewSession]:
        """Get the review session for a conversation or analysis"""
        pass

    @abstractmethod
    def create(self, session: ReviewSession) -> ReviewSession:
        """Insert a new session. Raises AlreadyExistsError if its source already has one."""
        pass

    @abstractmethod
    def save(self, session: ReviewSession) -> ReviewSession:
        """Persist the whole session or nothing.

        Raises ConcurrencyError if the stored version differs from
        session.version. Bumps the version on success.
        """
        pass

    @abstractmethod
    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        """Get source chat conversation"""
        pass

    @abstractmethod
    def save_conversation(self, conversation: Conversation):
        """Insert or replace a chat conversation"""
        pass

    @abstractmethod
    def get_analysis(self, analysis_id: str) -> Optional[Analysis]:
        """Get stored chart analysis"""
        pass

    @abstractmethod
    def save_analysis(self, analysis: Analysis):
        """Insert or replace a chart analysis"""
        pass

    @abstractmethod
    def mark_analysis_reviewed(self, analysis_id: str):
        """Flag an analysis as reviewed"""
        pass

    @abstractmethod
    def save_review(self, review: Review) -> Review:
        """Save a completed analysis review"""
        pass

    @abstractmethod
    def get_reviews(self, limit: int = None) -> List[Review]:
        """Get reviews, newest first"""
        pass

    def get_recent_statistics(self, limit: int = 10) -> ReviewStatistics:
        """Statistics over the most recent reviews"""
        return build_statistics(self.get_reviews(limit=limit))


def build_statistics(reviews: List[Review]) -> ReviewStatistics:
    accuracies = [r.accuracy for r in reviews]
    total = len(accuracies)
    return ReviewStatistics(
        timestamp=utc_now(),
        total_reviews=total,
        accurate_reviews=len([a for a in accuracies if a >= 60]),
        average_accuracy=(sum(accuracies) / total) if total > 0 else 0.0,
        best_accuracy=max(accuracies, default=0),
        worst_accuracy=min(accuracies, default=0)
    )
