"""
hired/models/attempt.py

Simulation attempt models.

An Attempt is one candidate run through a simulation. It is created
in_progress by the admission gate and moved exactly once to a terminal
status by the lifecycle manager.
"""

from datetime import datetime
from enum import Enum
from typing import Iterable, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from hired.models.common import ensure_utc


class AttemptStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self is not AttemptStatus.IN_PROGRESS


class AttemptAnswer(BaseModel):
    model_config = ConfigDict(frozen=True)

    question_id: str
    answer: str


def dedupe_answers(answers: Iterable[AttemptAnswer]) -> Tuple[AttemptAnswer, ...]:
    """
    Collapse duplicate question_ids, last write wins.

    The surviving entry keeps the position of the first occurrence so the
    answer order follows the order questions were first answered.
    """
    latest = {}
    for item in answers:
        latest[item.question_id] = item
    return tuple(latest.values())


class Attempt(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    identity_id: str
    simulation_id: str
    status: AttemptStatus
    answers: Tuple[AttemptAnswer, ...] = ()
    started_at: datetime
    created_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    score: Optional[int] = Field(default=None, ge=0, le=100)

    @field_validator("started_at", "created_at", "completed_at")
    @classmethod
    def normalize_utc(cls, value):
        return ensure_utc(value)

    @model_validator(mode="after")
    def check_terminal_fields(self):
        open_fields = self.completed_at is None and self.score is None
        if (self.status is AttemptStatus.IN_PROGRESS) != open_fields:
            raise ValueError("in_progress attempts have no completed_at or score; terminal attempts have completed_at")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class SimulationSummary(BaseModel):
    """Lightweight simulation projection joined onto attempt history."""
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    difficulty: str
    technology_id: str


class AttemptWithSimulation(BaseModel):
    model_config = ConfigDict(frozen=True)

    attempt: Attempt
    simulation: Optional[SimulationSummary] = None
