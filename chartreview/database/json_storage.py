import json
import logging
import os
import tempfile
import traceback
from pathlib import Path
from threading import Lock
from typing import List, Dict, Any, Optional
from config.settings import DATA_DIR
from chartreview.database.base import ReviewRepository
from chartreview.errors import AlreadyExistsError, ConcurrencyError, NotFoundError
from chartreview.models.review import ReviewSession, Conversation, Analysis, Review

logger = logging.getLogger(__name__)

EMPTY_DATA = {
    "conversations": [],
    "analyses": [],
    "reviews": [],
    "review_sessions": []
}


class JsonStorageClient(ReviewRepository):
    """Review repository backed by a local JSON file"""

    def __init__(self, data_dir: str = DATA_DIR, filename: str = 'reviews.json'):
        """Initialize JSON storage"""
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.file_path = self.data_dir / filename
        self.lock = Lock()
        self.ensure_file_exists()

    def ensure_file_exists(self):
        """Create JSON file if it doesn't exist"""
        if not self.file_path.exists():
            self.save_data(dict(EMPTY_DATA))
            logger.info(f"Created new storage file: {self.file_path}")
        else:
            logger.info(f"Using existing storage file: {self.file_path}")

    def load_data(self) -> Dict[str, List]:
        """Load data from JSON file"""
        data = json.loads(self.file_path.read_text(encoding='utf-8'))
        for key in EMPTY_DATA:
            data.setdefault(key, [])
        return data

    def save_data(self, data: Dict[str, List]):
        """Write the whole document to a temp file, then swap it in"""
        fd, tmp_path = tempfile.mkstemp(dir=self.data_dir, suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False, default=str)
            os.replace(tmp_path, self.file_path)
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def _find(self, records: List[Dict[str, Any]], key: str, value) -> Optional[Dict[str, Any]]:
        return next((r for r in records if r.get(key) == value), None)

    # Review sessions

    def get_session(self, session_id: str) -> Optional[ReviewSession]:
        try:
            record = self._find(self.load_data()['review_sessions'], 'id', session_id)
            return ReviewSession.from_dict(record) if record else None
        except Exception as e:
            logger.error(f"Error getting review session {session_id}: {str(e)}")
            logger.debug(f"Traceback: {traceback.format_exc()}")
            return None

    def get_by_source_id(self, source_id: str) -> Optional[ReviewSession]:
        try:
            record = self._find(self.load_data()['review_sessions'], 'source_id', source_id)
            return ReviewSession.from_dict(record) if record else None
        except Exception as e:
            logger.error(f"Error getting review session for source {source_id}: {str(e)}")
            logger.debug(f"Traceback: {traceback.format_exc()}")
            return None

    def create(self, session: ReviewSession) -> ReviewSession:
        with self.lock:
            data = self.load_data()
            if self._find(data['review_sessions'], 'source_id', session.source_id):
                raise AlreadyExistsError(f"Review session for {session.source_id} already exists")

            session.version = 1
            data['review_sessions'].append(session.to_dict())
            self.save_data(data)

        logger.info(f"Created review session {session.id} for {session.source_kind.value} {session.source_id}")
        return session

    def save(self, session: ReviewSession) -> ReviewSession:
        with self.lock:
            data = self.load_data()
            sessions = data['review_sessions']
            index = next((i for i, r in enumerate(sessions) if r['id'] == session.id), None)
            if index is None:
                raise NotFoundError(f"Review session {session.id} not found")

            stored_version = sessions[index].get('version', 0)
            if stored_version != session.version:
                raise ConcurrencyError(
                    f"Review session {session.id} changed (stored v{stored_version}, have v{session.version})"
                )

            record = session.to_dict()
            record['version'] = session.version + 1
            sessions[index] = record
            self.save_data(data)
            session.version += 1

        logger.debug(f"Saved review session {session.id} v{session.version}")
        return session

    # Source records

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        try:
            record = self._find(self.load_data()['conversations'], 'id', conversation_id)
            return Conversation.from_dict(record) if record else None
        except Exception as e:
            logger.error(f"Error getting conversation {conversation_id}: {str(e)}")
            return None

    def save_conversation(self, conversation: Conversation):
        with self.lock:
            data = self.load_data()
            data['conversations'] = [c for c in data['conversations'] if c['id'] != conversation.id]
            data['conversations'].append(conversation.to_dict())
            self.save_data(data)

    def get_analysis(self, analysis_id: str) -> Optional[Analysis]:
        try:
            record = self._find(self.load_data()['analyses'], 'id', analysis_id)
            return Analysis.from_dict(record) if record else None
        except Exception as e:
            logger.error(f"Error getting analysis {analysis_id}: {str(e)}")
            return None

    def save_analysis(self, analysis: Analysis):
        with self.lock:
            data = self.load_data()
            data['analyses'] = [a for a in data['analyses'] if a['id'] != analysis.id]
            data['analyses'].append(analysis.to_dict())
            self.save_data(data)

    def mark_analysis_reviewed(self, analysis_id: str):
        with self.lock:
            data = self.load_data()
            record = self._find(data['analyses'], 'id', analysis_id)
            if not record:
                logger.error(f"Analysis {analysis_id} not found")
                return
            record['status'] = 'reviewed'
            self.save_data(data)

    # Reviews

    def save_review(self, review: Review) -> Review:
        with self.lock:
            data = self.load_data()
            data['reviews'].append(review.to_dict())
            self.save_data(data)

        logger.info(f"Saved review {review.id} for analysis {review.analysis_id}: {review.accuracy}%")
        return review

    def get_reviews(self, limit: int = None) -> List[Review]:
        try:
            reviews = [Review.from_dict(r) for r in self.load_data()['reviews']]
            reviews.sort(key=lambda r: r.reviewed_at, reverse=True)
            if limit:
                reviews = reviews[:limit]
            return reviews
        except Exception as e:
            logger.error(f"Error getting reviews: {str(e)}")
            logger.debug(f"Traceback: {traceback.format_exc()}")
            return []
