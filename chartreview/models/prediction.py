from dataclasses import dataclass, asdict
from enum import Enum
from typing import Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, model_validator


class Direction(str, Enum):
    LONG = "long"
    SHORT = "short"
    HOLD = "hold"


@dataclass(frozen=True)
class Prediction:
    support_level: float
    resistance_level: float
    direction: Direction
    stop_loss: float
    target: float
    rationale_text: str
    source_message_id: str
    source_image_ref: Optional[str] = None

    @property
    def midpoint(self) -> float:
        return (self.support_level + self.resistance_level) / 2

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['direction'] = self.direction.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Prediction":
        return cls(
            support_level=float(data['support_level']),
            resistance_level=float(data['resistance_level']),
            direction=Direction(data['direction']),
            stop_loss=float(data.get('stop_loss') or 0),
            target=float(data.get('target') or 0),
            rationale_text=data.get('rationale_text', ''),
            source_message_id=data['source_message_id'],
            source_image_ref=data.get('source_image_ref')
        )


class Outcome(BaseModel):
    """Realized market high/low/close used to grade a prediction"""
    model_config = ConfigDict(frozen=True)

    actual_high: float = Field(gt=0, allow_inf_nan=False)
    actual_low: float = Field(gt=0, allow_inf_nan=False)
    actual_close: float = Field(gt=0, allow_inf_nan=False)

    @model_validator(mode='after')
    def check_low_not_above_high(self) -> "Outcome":
        if self.actual_low > self.actual_high:
            raise ValueError(
                f"actual_low ({self.actual_low}) must not exceed actual_high ({self.actual_high})"
            )
        return self
