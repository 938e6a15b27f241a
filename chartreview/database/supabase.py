import logging
import traceback
from typing import List, Optional, Dict, Any
from supabase import create_client
from postgrest.exceptions import APIError
from chartreview.database.base import ReviewRepository
from chartreview.errors import AlreadyExistsError, ConcurrencyError, NotFoundError
from chartreview.models.review import ReviewSession, Conversation, Analysis, Review

# Configure logger
logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = '23505'
SESSIONS_TABLE = 'review_conversations'


class SupabaseClient(ReviewRepository):
    """
    Review repository on Supabase.

    Expected tables: conversations, analyses, reviews and review_conversations.
    review_conversations.source_id carries a unique constraint so that only one
    session can exist per conversation or analysis.
    """

    def __init__(self, url: str, key: str):
        """Initialize database connection"""
        try:
            self.supabase = create_client(url, key)

            # Check connection
            self.supabase.table(SESSIONS_TABLE).select('id').limit(1).execute()
            logger.info("Successfully connected to Supabase")

        except Exception as e:
            logger.error(f"Error initializing Supabase connection: {str(e)}")
            logger.debug(f"Traceback: {traceback.format_exc()}")
            raise

    def _select_one(self, table: str, column: str, value) -> Optional[Dict[str, Any]]:
        result = self.supabase.table(table).select('*').eq(column, value).limit(1).execute()
        return result.data[0] if result.data else None

    def get_session(self, session_id: str) -> Optional[ReviewSession]:
        try:
            row = self._select_one(SESSIONS_TABLE, 'id', session_id)
            return ReviewSession.from_dict(row) if row else None
        except Exception as e:
            logger.error(f"Error getting review session {session_id}: {str(e)}")
            logger.debug(f"Traceback: {traceback.format_exc()}")
            return None

    def get_by_source_id(self, source_id: str) -> Optional[ReviewSession]:
        try:
            row = self._select_one(SESSIONS_TABLE, 'source_id', source_id)
            return ReviewSession.from_dict(row) if row else None
        except Exception as e:
            logger.error(f"Error getting review session for source {source_id}: {str(e)}")
            logger.debug(f"Traceback: {traceback.format_exc()}")
            return None

    def create(self, session: ReviewSession) -> ReviewSession:
        record = session.to_dict()
        record['version'] = 1
        try:
            self.supabase.table(SESSIONS_TABLE).insert(record).execute()
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                raise AlreadyExistsError(
                    f"Review session for {session.source_id} already exists"
                ) from e
            logger.error(f"Error creating review session: {str(e)}")
            raise

        session.version = 1
        logger.info(f"Created review session {session.id} for {session.source_kind.value} {session.source_id}")
        return session

    def save(self, session: ReviewSession) -> ReviewSession:
        record = session.to_dict()
        record['version'] = session.version + 1

        # One conditional update keeps the write all-or-nothing
        result = self.supabase.table(SESSIONS_TABLE)\
            .update(record)\
            .eq('id', session.id)\
            .eq('version', session.version)\
            .execute()

        if not result.data:
            if self._select_one(SESSIONS_TABLE, 'id', session.id) is None:
                raise NotFoundError(f"Review session {session.id} not found")
            raise ConcurrencyError(f"Review session {session.id} was modified by another writer")

        session.version += 1
        logger.debug(f"Saved review session {session.id} v{session.version}")
        return session

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        try:
            row = self._select_one('conversations', 'id', conversation_id)
            return Conversation.from_dict(row) if row else None
        except Exception as e:
            logger.error(f"Error getting conversation {conversation_id}: {str(e)}")
            return None

    def save_conversation(self, conversation: Conversation):
        self.supabase.table('conversations').upsert(conversation.to_dict()).execute()

    def get_analysis(self, analysis_id: str) -> Optional[Analysis]:
        try:
            row = self._select_one('analyses', 'id', analysis_id)
            return Analysis.from_dict(row) if row else None
        except Exception as e:
            logger.error(f"Error getting analysis {analysis_id}: {str(e)}")
            return None

    def save_analysis(self, analysis: Analysis):
        self.supabase.table('analyses').upsert(analysis.to_dict()).execute()

    def mark_analysis_reviewed(self, analysis_id: str):
        try:
            self.supabase.table('analyses').update({'status': 'reviewed'}).eq('id', analysis_id).execute()
        except Exception as e:
            logger.error(f"Error updating analysis status: {str(e)}")

    def save_review(self, review: Review) -> Review:
        self.supabase.table('reviews').insert(review.to_dict()).execute()
        logger.info(f"Saved review {review.id} for analysis {review.analysis_id}: {review.accuracy}%")
        return review

    def get_reviews(self, limit: int = None) -> List[Review]:
        try:
            query = self.supabase.table('reviews')\
                .select('*')\
                .order('reviewed_at', desc=True)
            if limit:
                query = query.limit(limit)
            result = query.execute()
            return [Review.from_dict(row) for row in result.data or []]
        except Exception as e:
            logger.error(f"Error getting reviews: {str(e)}")
            logger.debug(f"Traceback: {traceback.format_exc()}")
            return []
