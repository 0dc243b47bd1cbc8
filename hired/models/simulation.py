"""
hired/models/simulation.py

Simulation catalogue models (read-only reference data).
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from hired.models.common import ensure_utc


class Technology(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    slug: str
    icon_url: Optional[str] = None
    category: Optional[str] = None


class Simulation(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: Optional[str] = None
    technology_id: str
    difficulty: str
    duration_minutes: int
    question_count: int = 0
    is_active: bool = True
    created_at: Optional[datetime] = None

    @field_validator("created_at")
    @classmethod
    def normalize_utc(cls, value):
        return ensure_utc(value)


class SimulationWithTechnology(BaseModel):
    model_config = ConfigDict(frozen=True)

    simulation: Simulation
    technology: Optional[Technology] = None
