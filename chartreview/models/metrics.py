from datetime import datetime
from typing import Dict, Any
from pydantic import BaseModel


class ReviewStatistics(BaseModel):
    timestamp: datetime
    total_reviews: int
    accurate_reviews: int  # accuracy >= 60
    average_accuracy: float
    best_accuracy: int
    worst_accuracy: int

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary with ISO format datetime"""
        data = self.model_dump()
        data['timestamp'] = self.timestamp.isoformat()
        return data
