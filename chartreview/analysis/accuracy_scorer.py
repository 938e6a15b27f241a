"""
Accuracy scoring for reviewed predictions.

Two presets exist because the two review entry points grade differently:

* LEVEL_BANDS grades support, resistance and direction of predictions
  extracted from a chat conversation.
* DIRECTIONAL grades a single stored analysis on its direction call only.

They disagree on the same input. Keep both until product decides which one
is intended.
"""

import logging
import math
from enum import Enum
from typing import Sequence
import numpy as np
from chartreview.models.prediction import Prediction, Outcome, Direction
from chartreview.models.review import PredictionReview, SourceKind

logger = logging.getLogger(__name__)

SUPPORT_WEIGHT = 30
RESISTANCE_WEIGHT = 30
DIRECTION_WEIGHT = 40
DIRECTION_PARTIAL = 10

# (relative tolerance, points)
LEVEL_BANDS = ((0.02, 30), (0.05, 20), (0.10, 10))

# Aggregate quality score weights
QUALITY_ACCURACY_WEIGHT = 60
QUALITY_CONSISTENCY_WEIGHT = 20
QUALITY_RISK_WEIGHT = 20
VARIANCE_DIVISOR = 5
STOP_LOSS_TOLERANCE = 1.1

# Directional preset
DIRECTIONAL_BASE = 70
DIRECTIONAL_MAX_BONUS = 30
HOLD_MOVE_THRESHOLD = 10  # absolute price units
HOLD_STEADY_SCORE = 80
HOLD_MOVED_SCORE = 50
WRONG_DIRECTION_SCORE = 30


class ScoringPreset(str, Enum):
    LEVEL_BANDS = "level_bands"
    DIRECTIONAL = "directional"


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def band_points(level: float, actual: float) -> int:
    """Points for how close an actual price landed to a predicted level"""
    for tolerance, points in LEVEL_BANDS:
        if level * (1 - tolerance) <= actual <= level * (1 + tolerance):
            return points
    return 0


class AccuracyScorer:
    """Scores predictions against outcomes with one of the named presets"""

    def __init__(self, preset: ScoringPreset = ScoringPreset.LEVEL_BANDS):
        self.preset = ScoringPreset(preset)

    def score(self, prediction: Prediction, outcome: Outcome) -> int:
        """Accuracy of one prediction, integer in [0, 100]"""
        if self.preset == ScoringPreset.DIRECTIONAL:
            accuracy = self._directional_score(prediction, outcome)
        else:
            accuracy = self._level_band_score(prediction, outcome)
        logger.debug(
            f"Scored prediction {prediction.source_message_id} ({self.preset.value}): {accuracy}"
        )
        return accuracy

    def _level_band_score(self, prediction: Prediction, outcome: Outcome) -> int:
        support = prediction.support_level
        resistance = prediction.resistance_level
        close = outcome.actual_close

        score = band_points(support, outcome.actual_low)
        score += band_points(resistance, outcome.actual_high)

        in_range = support <= close <= resistance
        if prediction.direction == Direction.LONG and close > prediction.midpoint:
            score += DIRECTION_WEIGHT
        elif prediction.direction == Direction.SHORT and close < prediction.midpoint:
            score += DIRECTION_WEIGHT
        elif prediction.direction == Direction.HOLD and in_range:
            score += DIRECTION_WEIGHT
        elif prediction.direction != Direction.HOLD and in_range:
            score += DIRECTION_PARTIAL

        total_weight = SUPPORT_WEIGHT + RESISTANCE_WEIGHT + DIRECTION_WEIGHT
        return round_half_up(100 * score / total_weight)

    def _directional_score(self, prediction: Prediction, outcome: Outcome) -> int:
        high, low, close = outcome.actual_high, outcome.actual_low, outcome.actual_close
        move = close - (high + low) / 2

        if prediction.direction == Direction.LONG and move > 0:
            # A missing target leaves the bonus unbounded, capped below
            ratio = high / prediction.target if prediction.target > 0 else math.inf
            accuracy = DIRECTIONAL_BASE + min(DIRECTIONAL_MAX_BONUS, ratio * DIRECTIONAL_MAX_BONUS)
        elif prediction.direction == Direction.SHORT and move < 0:
            accuracy = DIRECTIONAL_BASE + min(
                DIRECTIONAL_MAX_BONUS, prediction.target / low * DIRECTIONAL_MAX_BONUS
            )
        elif prediction.direction == Direction.HOLD:
            accuracy = HOLD_STEADY_SCORE if abs(move) < HOLD_MOVE_THRESHOLD else HOLD_MOVED_SCORE
        else:
            accuracy = WRONG_DIRECTION_SCORE

        return round_half_up(max(0, min(100, accuracy)))

    @staticmethod
    def overall_accuracy(reviews: Sequence[PredictionReview]) -> int:
        accuracies = [r.accuracy for r in reviews if r.accuracy is not None]
        if not accuracies:
            return 0
        return round_half_up(float(np.mean(accuracies)))

    @staticmethod
    def quality_score(reviews: Sequence[PredictionReview]) -> int:
        """
        Aggregate 0-100 score over every prediction in a session:
        accuracy (60), consistency across predictions (20) and
        stop-loss placement (20).
        """
        if not reviews:
            return 0

        accuracies = np.array([r.accuracy for r in reviews if r.accuracy is not None], dtype=float)
        mean_accuracy = float(accuracies.mean()) if accuracies.size else 0.0
        total = QUALITY_ACCURACY_WEIGHT * mean_accuracy / 100

        if len(reviews) > 1:
            variance = float(np.var(accuracies)) if accuracies.size else 0.0
            total += max(0.0, QUALITY_CONSISTENCY_WEIGHT - variance / VARIANCE_DIVISOR)
        else:
            total += QUALITY_CONSISTENCY_WEIGHT

        risk_compliant = [
            r for r in reviews
            if r.outcome is not None
            and 0 < r.prediction.stop_loss < r.outcome.actual_low * STOP_LOSS_TOLERANCE
        ]
        total += QUALITY_RISK_WEIGHT * len(risk_compliant) / len(reviews)

        return round_half_up(total)


CONVERSATION_SCORER = AccuracyScorer(ScoringPreset.LEVEL_BANDS)
ANALYSIS_SCORER = AccuracyScorer(ScoringPreset.DIRECTIONAL)


def scorer_for(source_kind: SourceKind) -> AccuracyScorer:
    if source_kind == SourceKind.ANALYSIS:
        return ANALYSIS_SCORER
    return CONVERSATION_SCORER
