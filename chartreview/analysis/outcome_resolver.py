import logging
import traceback
from dataclasses import dataclass
from typing import Optional
import pydantic
from chartreview.errors import ValidationError, CollaboratorError
from chartreview.models.prediction import Outcome, Prediction
from chartreview.utils.ai_base import VisionInterface

logger = logging.getLogger(__name__)


@dataclass
class ResolvedOutcome:
    outcome: Outcome
    rationale_text: str = ""


class OutcomeResolver:
    """Normalizes typed or image-extracted actual prices into an Outcome"""

    def __init__(self, vision: Optional[VisionInterface] = None):
        self.vision = vision

    def resolve_direct(self, actual_high, actual_low, actual_close) -> Outcome:
        """Validate manually entered values. Raises ValidationError."""
        try:
            return Outcome(
                actual_high=float(actual_high),
                actual_low=float(actual_low),
                actual_close=float(actual_close)
            )
        except (TypeError, ValueError, pydantic.ValidationError) as e:
            raise ValidationError(f"Invalid outcome values: {str(e)}") from e

    def resolve_from_image(self, image_bytes: bytes, reference_prediction: Prediction) -> Optional[ResolvedOutcome]:
        """Extract an outcome from a chart image; None on any failure"""
        if self.vision is None:
            logger.warning("No vision client configured, cannot read chart image")
            return None

        try:
            result = self.vision.extract_outcome(image_bytes, reference_prediction)
        except CollaboratorError as e:
            logger.warning(f"Chart recognition failed: {str(e)}")
            return None
        except Exception as e:
            logger.error(f"Unexpected error from vision client: {str(e)}")
            logger.debug(f"Traceback: {traceback.format_exc()}")
            return None

        try:
            outcome = self.resolve_direct(result.actual_high, result.actual_low, result.actual_close)
        except ValidationError as e:
            logger.warning(f"Recognized prices rejected: {str(e)}")
            return None

        logger.info(
            f"Recognized outcome: high={outcome.actual_high} low={outcome.actual_low} "
            f"close={outcome.actual_close}"
        )
        return ResolvedOutcome(outcome=outcome, rationale_text=result.rationale_text or "")
