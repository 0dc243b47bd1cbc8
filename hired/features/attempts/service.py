"""
hired/features/attempts/service.py

Attempt lifecycle manager.

States: in_progress -> {completed, timed_out, abandoned}. Terminal states
are final. Every mutation is an owner-scoped UPDATE conditional on
status = in_progress, so when two transitions race exactly one wins and
the loser sees InvalidTransitionError.

Timeouts and abandonment are driven by an external scheduler; this module
only exposes the transitions and list_overdue() for it to poll.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import select, update

from hired.core.database import Database, simulation_attempts, simulations
from hired.core.errors import (
    AttemptNotFoundError,
    InvalidTransitionError,
    NotAuthenticatedError,
    ValidationError,
)
from hired.core.logging import log_event
from hired.core.metrics import attempt_transitions_total
from hired.models.attempt import (
    Attempt,
    AttemptAnswer,
    AttemptStatus,
    AttemptWithSimulation,
    SimulationSummary,
    dedupe_answers,
)
from hired.models.common import ensure_utc, utc_now
from hired.models.identity import Identity

logger = logging.getLogger(__name__)

_ATTEMPT_COLUMNS = tuple(simulation_attempts.c)


def attempt_from_row(row) -> Attempt:
    return Attempt(
        id=row.id,
        identity_id=row.user_id,
        simulation_id=row.simulation_id,
        status=AttemptStatus(row.status),
        answers=tuple(AttemptAnswer(**item) for item in (row.answers or ())),
        started_at=row.started_at,
        created_at=row.created_at,
        completed_at=row.completed_at,
        duration_seconds=row.duration_seconds,
        score=row.score,
    )


def answers_to_json(answers: Sequence[AttemptAnswer]) -> list:
    return [item.model_dump() for item in answers]


def in_progress_query(identity_id: str, simulation_id: str):
    """Oldest in-progress attempt of an identity for one simulation."""
    return (
        select(simulation_attempts)
        .where(simulation_attempts.c.user_id == identity_id)
        .where(simulation_attempts.c.simulation_id == simulation_id)
        .where(simulation_attempts.c.status == AttemptStatus.IN_PROGRESS.value)
        .order_by(simulation_attempts.c.created_at.asc())
        .limit(1)
    )


def _require_identity(identity: Optional[Identity]) -> Identity:
    if identity is None:
        raise NotAuthenticatedError()
    return identity


class AttemptLifecycleManager:
    def __init__(self, db: Database, scores=None):
        self.db = db
        # ScoreService; None disables the recalculation trigger
        self.scores = scores

    async def get_attempt(self, identity: Optional[Identity], attempt_id: str) -> Attempt:
        identity = _require_identity(identity)
        async with self.db.session() as session:
            row = (await session.execute(self._owned(identity, attempt_id))).first()
        if row is None:
            raise AttemptNotFoundError(f"Attempt {attempt_id} not found")
        return attempt_from_row(row)

    async def find_in_progress(self, identity: Optional[Identity], simulation_id: str) -> Optional[Attempt]:
        identity = _require_identity(identity)
        async with self.db.session() as session:
            row = (await session.execute(in_progress_query(identity.id, simulation_id))).first()
        return attempt_from_row(row) if row else None

    async def save_answer(
        self,
        identity: Optional[Identity],
        attempt_id: str,
        question_id: str,
        answer: str,
    ) -> Attempt:
        """Record one answer on an in-progress attempt. Last write per question wins."""
        identity = _require_identity(identity)
        async with self.db.session() as session:
            row, question_count = await self._load_for_transition(session, identity, attempt_id, "answer")
            merged = dedupe_answers(
                attempt_from_row(row).answers + (AttemptAnswer(question_id=question_id, answer=answer),)
            )
            _check_answer_count(merged, question_count)
            updated = (
                await session.execute(
                    self._conditional_update(identity, attempt_id)
                    .values(answers=answers_to_json(merged))
                    .returning(*_ATTEMPT_COLUMNS)
                )
            ).first()
            if updated is None:
                raise InvalidTransitionError(f"Attempt {attempt_id} is no longer in progress")
        return attempt_from_row(updated)

    async def submit(
        self,
        identity: Optional[Identity],
        attempt_id: str,
        answers: Iterable[AttemptAnswer],
        duration_seconds: Optional[int],
        now: Optional[datetime] = None,
    ) -> Attempt:
        """
        Complete an in-progress attempt.

        Submitted answers are merged over previously saved ones (last write
        wins per question). score stays None until the scoring collaborator
        writes it; recalculation is triggered without waiting for it.

        Raises:
            InvalidTransitionError: attempt is terminal or not owned by identity
            ValidationError: more distinct answers than the simulation has questions
        """
        identity = _require_identity(identity)
        if duration_seconds is not None and duration_seconds < 0:
            raise ValidationError("duration_seconds must not be negative")
        completed_at = ensure_utc(now) if now is not None else utc_now()

        async with self.db.session() as session:
            row, question_count = await self._load_for_transition(session, identity, attempt_id, "submit")
            merged = dedupe_answers(attempt_from_row(row).answers + tuple(answers))
            _check_answer_count(merged, question_count)
            updated = (
                await session.execute(
                    self._conditional_update(identity, attempt_id)
                    .values(
                        status=AttemptStatus.COMPLETED.value,
                        answers=answers_to_json(merged),
                        completed_at=completed_at,
                        duration_seconds=duration_seconds,
                    )
                    .returning(*_ATTEMPT_COLUMNS)
                )
            ).first()
            if updated is None:
                raise InvalidTransitionError(f"Attempt {attempt_id} is no longer in progress")

        attempt = attempt_from_row(updated)
        self._record_transition(identity, attempt)
        if self.scores is not None:
            self.scores.refresh_after_attempt(identity)
        return attempt

    async def time_out(self, identity: Optional[Identity], attempt_id: str, now: Optional[datetime] = None) -> Attempt:
        return await self._terminate(identity, attempt_id, AttemptStatus.TIMED_OUT, now)

    async def abandon(self, identity: Optional[Identity], attempt_id: str, now: Optional[datetime] = None) -> Attempt:
        return await self._terminate(identity, attempt_id, AttemptStatus.ABANDONED, now)

    async def list_for_identity(self, identity: Optional[Identity]) -> List[AttemptWithSimulation]:
        """Attempt history, newest first, for display only."""
        identity = _require_identity(identity)
        query = (
            select(
                simulation_attempts,
                simulations.c.title.label("sim_title"),
                simulations.c.difficulty.label("sim_difficulty"),
                simulations.c.technology_id.label("sim_technology_id"),
            )
            .select_from(
                simulation_attempts.outerjoin(simulations, simulations.c.id == simulation_attempts.c.simulation_id)
            )
            .where(simulation_attempts.c.user_id == identity.id)
            .order_by(simulation_attempts.c.created_at.desc(), simulation_attempts.c.id.desc())
        )
        async with self.db.session() as session:
            rows = (await session.execute(query)).all()

        history = []
        for row in rows:
            summary = None
            if row.sim_title is not None:
                summary = SimulationSummary(
                    id=row.simulation_id,
                    title=row.sim_title,
                    difficulty=row.sim_difficulty,
                    technology_id=row.sim_technology_id,
                )
            history.append(AttemptWithSimulation(attempt=attempt_from_row(row), simulation=summary))
        return history

    async def list_overdue(self, now: Optional[datetime] = None) -> List[Attempt]:
        """In-progress attempts whose time budget has run out, oldest first."""
        current = ensure_utc(now) if now is not None else utc_now()
        query = (
            select(simulation_attempts, simulations.c.duration_minutes.label("sim_duration_minutes"))
            .join(simulations, simulations.c.id == simulation_attempts.c.simulation_id)
            .where(simulation_attempts.c.status == AttemptStatus.IN_PROGRESS.value)
            .where(simulation_attempts.c.started_at < current)
            .order_by(simulation_attempts.c.started_at.asc())
        )
        async with self.db.session() as session:
            rows = (await session.execute(query)).all()

        overdue = []
        for row in rows:
            attempt = attempt_from_row(row)
            if attempt.started_at + timedelta(minutes=row.sim_duration_minutes) <= current:
                overdue.append(attempt)
        return overdue

    async def _terminate(
        self,
        identity: Optional[Identity],
        attempt_id: str,
        status: AttemptStatus,
        now: Optional[datetime],
    ) -> Attempt:
        identity = _require_identity(identity)
        ended_at = ensure_utc(now) if now is not None else utc_now()
        async with self.db.session() as session:
            row, _ = await self._load_for_transition(session, identity, attempt_id, status.value)
            elapsed = max(int((ended_at - attempt_from_row(row).started_at).total_seconds()), 0)
            updated = (
                await session.execute(
                    self._conditional_update(identity, attempt_id)
                    .values(status=status.value, completed_at=ended_at, duration_seconds=elapsed)
                    .returning(*_ATTEMPT_COLUMNS)
                )
            ).first()
            if updated is None:
                raise InvalidTransitionError(f"Attempt {attempt_id} is no longer in progress")
        attempt = attempt_from_row(updated)
        self._record_transition(identity, attempt)
        return attempt

    async def _load_for_transition(self, session, identity: Identity, attempt_id: str, action: str):
        """Return (attempt row, simulation question count) or raise InvalidTransitionError."""
        row = (
            await session.execute(
                select(simulation_attempts, simulations.c.questions.label("sim_questions"))
                .select_from(
                    simulation_attempts.outerjoin(simulations, simulations.c.id == simulation_attempts.c.simulation_id)
                )
                .where(simulation_attempts.c.id == attempt_id)
                .where(simulation_attempts.c.user_id == identity.id)
            )
        ).first()
        if row is None:
            logger.info(
                "[attempts] transition on unknown or foreign attempt",
                extra={"identity_id": identity.id, "attempt_id": attempt_id, "action": action},
            )
            raise InvalidTransitionError(f"Cannot {action} attempt {attempt_id}: not found for this identity")
        if row.status != AttemptStatus.IN_PROGRESS.value:
            raise InvalidTransitionError(f"Cannot {action} attempt {attempt_id}: status is {row.status}")
        return row, len(row.sim_questions or ())

    @staticmethod
    def _owned(identity: Identity, attempt_id: str):
        return (
            select(simulation_attempts)
            .where(simulation_attempts.c.id == attempt_id)
            .where(simulation_attempts.c.user_id == identity.id)
        )

    @staticmethod
    def _conditional_update(identity: Identity, attempt_id: str):
        return (
            update(simulation_attempts)
            .where(simulation_attempts.c.id == attempt_id)
            .where(simulation_attempts.c.user_id == identity.id)
            .where(simulation_attempts.c.status == AttemptStatus.IN_PROGRESS.value)
        )

    @staticmethod
    def _record_transition(identity: Identity, attempt: Attempt) -> None:
        attempt_transitions_total.inc(labels={"status": attempt.status.value})
        log_event(
            "info",
            "attempts.transition",
            identity_id=identity.id,
            attempt_id=attempt.id,
            event_type=f"attempts.{attempt.status.value}",
        )


def _check_answer_count(answers: Sequence[AttemptAnswer], question_count: int) -> None:
    if len(answers) > question_count:
        raise ValidationError(
            f"Attempt has {len(answers)} answers but the simulation has only {question_count} questions"
        )
