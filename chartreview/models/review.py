import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any
from chartreview.models.prediction import Prediction, Outcome

USER = "user"
ASSISTANT = "assistant"


class SessionStatus(str, Enum):
    ONGOING = "ongoing"
    COMPLETED = "completed"


class SourceKind(str, Enum):
    CONVERSATION = "conversation"
    ANALYSIS = "analysis"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _outcome_from_dict(data: Optional[Dict[str, Any]]) -> Optional[Outcome]:
    return Outcome(**data) if data else None


@dataclass
class Message:
    role: str
    content: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=utc_now)
    image_ref: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'role': self.role,
            'content': self.content,
            'timestamp': self.timestamp.isoformat(),
            'image_ref': self.image_ref
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            id=data['id'],
            role=data['role'],
            content=data['content'],
            timestamp=_parse_time(data['timestamp']),
            image_ref=data.get('image_ref')
        )


@dataclass
class PredictionReview:
    """A prediction paired with its (eventual) outcome and accuracy"""
    prediction: Prediction
    outcome: Optional[Outcome] = None
    accuracy: Optional[int] = None

    @property
    def source_message_id(self) -> str:
        return self.prediction.source_message_id

    @property
    def is_resolved(self) -> bool:
        return self.outcome is not None

    def attach(self, outcome: Outcome, accuracy: int) -> bool:
        """Attach an outcome once. Returns False if one was already attached."""
        if self.outcome is not None:
            return False
        self.outcome = outcome
        self.accuracy = accuracy
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'prediction': self.prediction.to_dict(),
            'outcome': self.outcome.model_dump() if self.outcome else None,
            'accuracy': self.accuracy
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PredictionReview":
        return cls(
            prediction=Prediction.from_dict(data['prediction']),
            outcome=_outcome_from_dict(data.get('outcome')),
            accuracy=data.get('accuracy')
        )


@dataclass
class ReviewSession:
    """Stateful review conversation wrapping one or more prediction reviews"""
    source_id: str
    source_kind: SourceKind = SourceKind.CONVERSATION
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    messages: List[Message] = field(default_factory=list)
    prediction_reviews: List[PredictionReview] = field(default_factory=list)
    overall_accuracy: Optional[int] = None
    quality_score: Optional[int] = None
    status: SessionStatus = SessionStatus.ONGOING
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    version: int = 0

    @property
    def is_completed(self) -> bool:
        return self.status == SessionStatus.COMPLETED

    def pending_reviews(self) -> List[PredictionReview]:
        return [r for r in self.prediction_reviews if not r.is_resolved]

    def get_review(self, source_message_id: str) -> Optional[PredictionReview]:
        return next(
            (r for r in self.prediction_reviews if r.source_message_id == source_message_id),
            None
        )

    def add_message(self, role: str, content: str, image_ref: Optional[str] = None) -> Message:
        message = Message(role=role, content=content, image_ref=image_ref)
        self.messages.append(message)
        self.updated_at = message.timestamp
        return message

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'source_id': self.source_id,
            'source_kind': self.source_kind.value,
            'messages': [m.to_dict() for m in self.messages],
            'prediction_reviews': [r.to_dict() for r in self.prediction_reviews],
            'overall_accuracy': self.overall_accuracy,
            'quality_score': self.quality_score,
            'status': self.status.value,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'version': self.version
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReviewSession":
        return cls(
            id=data['id'],
            source_id=data['source_id'],
            source_kind=SourceKind(data.get('source_kind', SourceKind.CONVERSATION.value)),
            messages=[Message.from_dict(m) for m in data.get('messages') or []],
            prediction_reviews=[
                PredictionReview.from_dict(r) for r in data.get('prediction_reviews') or []
            ],
            overall_accuracy=data.get('overall_accuracy'),
            quality_score=data.get('quality_score'),
            status=SessionStatus(data.get('status', SessionStatus.ONGOING.value)),
            created_at=_parse_time(data['created_at']),
            updated_at=_parse_time(data['updated_at']),
            version=data.get('version', 0)
        )


@dataclass
class Conversation:
    """Source chat conversation whose assistant replies carry predictions"""
    id: str
    title: str
    messages: List[Message] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Conversation":
        return cls(
            id=data['id'],
            title=data.get('title', ''),
            messages=[Message.from_dict(m) for m in data.get('messages') or []],
            created_at=_parse_time(data['created_at']),
            updated_at=_parse_time(data['updated_at'])
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'messages': [m.to_dict() for m in self.messages],
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat()
        }


@dataclass
class Analysis:
    """A single stored chart analysis"""
    id: str
    date: str
    image_ref: str
    user_input: str
    support_level: float
    resistance_level: float
    direction: str
    stop_loss: float
    target: float
    reasoning: str
    stock_code: Optional[str] = None
    status: str = "pending_review"
    created_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Analysis":
        return cls(
            id=data['id'],
            date=data['date'],
            image_ref=data.get('image_ref', ''),
            user_input=data.get('user_input', ''),
            support_level=float(data['support_level']),
            resistance_level=float(data['resistance_level']),
            direction=data['direction'],
            stop_loss=float(data.get('stop_loss') or 0),
            target=float(data.get('target') or 0),
            reasoning=data.get('reasoning', ''),
            stock_code=data.get('stock_code'),
            status=data.get('status', 'pending_review'),
            created_at=_parse_time(data['created_at'])
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'date': self.date,
            'image_ref': self.image_ref,
            'user_input': self.user_input,
            'support_level': self.support_level,
            'resistance_level': self.resistance_level,
            'direction': self.direction,
            'stop_loss': self.stop_loss,
            'target': self.target,
            'reasoning': self.reasoning,
            'stock_code': self.stock_code,
            'status': self.status,
            'created_at': self.created_at.isoformat()
        }


@dataclass
class Review:
    """Flat review record written when an analysis review completes"""
    analysis_id: str
    actual_high: float
    actual_low: float
    actual_close: float
    accuracy: int
    feedback: str = ""
    id: str = field(default_factory=lambda: f"review_{uuid.uuid4().hex[:12]}")
    reviewed_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Review":
        return cls(
            id=data['id'],
            analysis_id=data['analysis_id'],
            actual_high=float(data['actual_high']),
            actual_low=float(data['actual_low']),
            actual_close=float(data['actual_close']),
            accuracy=int(data['accuracy']),
            feedback=data.get('feedback') or '',
            reviewed_at=_parse_time(data['reviewed_at'])
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'analysis_id': self.analysis_id,
            'actual_high': self.actual_high,
            'actual_low': self.actual_low,
            'actual_close': self.actual_close,
            'accuracy': self.accuracy,
            'feedback': self.feedback,
            'reviewed_at': self.reviewed_at.isoformat()
        }
