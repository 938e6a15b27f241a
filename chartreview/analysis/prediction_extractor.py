import logging
import re
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Dict
from chartreview.models.prediction import Prediction, Direction
from chartreview.models.review import Message, Analysis, ASSISTANT

logger = logging.getLogger(__name__)

_SEPARATOR = r'\s*[:：]\s*'
_NUMBER_TOKEN = r'([\d.,]+)'
# Plain or comma-grouped digits; a trailing period or comma is punctuation
_VALID_NUMBER = re.compile(r"^(?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d+)?[.,]?$")

# Labels are case-sensitive; the Chinese aliases are what the assistant emits
# when it answers in Chinese.
LABELS = {
    'support': ('Support', '支撑'),
    'resistance': ('Resistance', '阻力'),
    'stop_loss': ('Stop Loss', '止损'),
    'target': ('Target', '目标'),
}
DIRECTION_LABELS = ('Direction', '方向')
DIRECTION_WORDS = {
    'long': Direction.LONG,
    'short': Direction.SHORT,
    'hold': Direction.HOLD,
    '做多': Direction.LONG,
    '做空': Direction.SHORT,
    '观望': Direction.HOLD,
}


def _label_group(labels) -> str:
    return '(?:' + '|'.join(re.escape(label) for label in labels) + ')'


class PredictionExtractor(ABC):
    """Turns assistant messages into structured predictions"""

    @abstractmethod
    def extract(self, messages: Iterable[Message]) -> List[Prediction]:
        """Return predictions in message order, skipping messages without one"""
        pass


class LabeledTextExtractor(PredictionExtractor):
    """
    Finds predictions written as labeled fields in free text, e.g.

        Support: 100  Resistance: 120  Direction: long
        Stop Loss: 90  Target: 130

    Support, resistance and direction are required, stop loss and target
    default to 0. The first occurrence of each label wins. A malformed number
    under any label drops the whole message.
    """

    def __init__(self):
        self.number_patterns: Dict[str, re.Pattern] = {
            field: re.compile(_label_group(labels) + _SEPARATOR + _NUMBER_TOKEN)
            for field, labels in LABELS.items()
        }
        self.direction_pattern = re.compile(
            _label_group(DIRECTION_LABELS) + _SEPARATOR +
            r'((?i:long|short|hold)(?![A-Za-z])|做多|做空|观望)'
        )

    def extract(self, messages: Iterable[Message]) -> List[Prediction]:
        predictions = []
        seen_ids = set()

        for message in messages:
            if message.role != ASSISTANT or message.id in seen_ids:
                continue

            prediction = self.parse_message(message)
            if prediction:
                seen_ids.add(message.id)
                predictions.append(prediction)

        logger.debug(f"Extracted {len(predictions)} predictions")
        return predictions

    def parse_message(self, message: Message) -> Optional[Prediction]:
        """Parse one message, returning None when it is not a prediction source"""
        text = message.content or ''

        direction_match = self.direction_pattern.search(text)
        if not direction_match:
            return None

        values = {}
        for field, pattern in self.number_patterns.items():
            match = pattern.search(text)
            if not match:
                values[field] = None
                continue
            token = match.group(1)
            if not _VALID_NUMBER.match(token):
                logger.debug(f"Skipping message {message.id}: malformed {field} value '{token}'")
                return None
            values[field] = float(token.rstrip('.,').replace(',', ''))

        if values['support'] is None or values['resistance'] is None:
            return None

        return Prediction(
            support_level=values['support'],
            resistance_level=values['resistance'],
            direction=DIRECTION_WORDS[direction_match.group(1).lower()],
            stop_loss=values['stop_loss'] or 0.0,
            target=values['target'] or 0.0,
            rationale_text=text,
            source_message_id=message.id,
            source_image_ref=message.image_ref
        )


def prediction_from_analysis(analysis: Analysis) -> Prediction:
    """Build the single prediction reviewed by an analysis review session"""
    direction = DIRECTION_WORDS.get(analysis.direction.lower()) if analysis.direction else None
    if direction is None:
        logger.warning(f"Analysis {analysis.id} has unknown direction '{analysis.direction}', treating as hold")
        direction = Direction.HOLD

    return Prediction(
        support_level=analysis.support_level,
        resistance_level=analysis.resistance_level,
        direction=direction,
        stop_loss=analysis.stop_loss,
        target=analysis.target,
        rationale_text=analysis.reasoning,
        source_message_id=analysis.id,
        source_image_ref=analysis.image_ref or None
    )
