"""
hired/models/score.py

Per-technology aggregate maintained by the scoring collaborator.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from hired.models.common import ensure_utc


class TechnicalScore(BaseModel):
    model_config = ConfigDict(frozen=True)

    identity_id: str
    technology_id: str
    average_score: float = 0.0
    total_attempts: int = 0
    last_attempted_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("last_attempted_at", "updated_at")
    @classmethod
    def normalize_utc(cls, value):
        return ensure_utc(value)
