from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional
from chartreview.models.prediction import Prediction
from chartreview.models.review import Message


@dataclass
class VisionResult:
    actual_high: float
    actual_low: float
    actual_close: float
    rationale_text: str = ""


class VisionInterface(ABC):
    @abstractmethod
    def extract_outcome(self, image_bytes: bytes, reference_prediction: Prediction) -> VisionResult:
        """Read actual high/low/close from a chart image.

        Raises CollaboratorError on transport or parse failures.
        """
        pass


class ChatInterface(ABC):
    @abstractmethod
    def converse(self, prior_messages: List[Message], new_user_text: str,
                 image: Optional[bytes] = None, context: Optional[str] = None) -> str:
        """Get the assistant reply for a new user turn.

        Stateless given the passed history. Raises CollaboratorError on failure.
        """
        pass
