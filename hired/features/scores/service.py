"""
hired/features/scores/service.py

Technical score reads and the fire-and-forget recalculation trigger.

The scoring algorithm itself lives outside this package; a collaborator
recomputes the per-technology aggregates and writes attempt scores.
"""

import asyncio
import logging
import re
from typing import List, Optional, Protocol, Set

from sqlalchemy import select, text

from hired.core.config import settings
from hired.core.database import Database, technical_scores
from hired.core.errors import NotAuthenticatedError
from hired.core.logging import log_event
from hired.models.identity import Identity
from hired.models.score import TechnicalScore

logger = logging.getLogger(__name__)

_PROCEDURE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


class ScoringCollaborator(Protocol):
    """Recomputes scores for one identity. Results are observed through later reads."""

    async def recalculate(self, identity_id: str) -> None:
        ...


class SqlProcedureScoring:
    """
    Calls the score recalculation stored procedure on PostgreSQL.

    Other dialects have no such procedure; the call is skipped there.
    """

    def __init__(self, db: Database, procedure: Optional[str] = None):
        procedure = procedure or settings.SCORE_REFRESH_PROCEDURE
        if not _PROCEDURE_NAME.match(procedure):
            raise ValueError(f"Invalid procedure name: {procedure!r}")
        self.db = db
        self.procedure = procedure

    async def recalculate(self, identity_id: str) -> None:
        if self.db.dialect_name != "postgresql":
            logger.debug("[scores] procedure call skipped", extra={"dialect": self.db.dialect_name})
            return
        async with self.db.session() as session:
            await session.execute(text(f"SELECT {self.procedure}(:p_user_id)"), {"p_user_id": identity_id})


class ScoreService:
    def __init__(self, db: Database, scoring: ScoringCollaborator):
        self.db = db
        self.scoring = scoring
        self._pending: Set[asyncio.Task] = set()

    async def list_technical_scores(self, identity: Optional[Identity]) -> List[TechnicalScore]:
        """Per-technology aggregates for an identity, best first."""
        if identity is None:
            raise NotAuthenticatedError()
        async with self.db.session() as session:
            rows = (
                await session.execute(
                    select(technical_scores)
                    .where(technical_scores.c.user_id == identity.id)
                    .order_by(technical_scores.c.average_score.desc())
                )
            ).all()
        return [
            TechnicalScore(
                identity_id=row.user_id,
                technology_id=row.technology_id,
                average_score=row.average_score,
                total_attempts=row.total_attempts,
                last_attempted_at=row.last_attempted_at,
                updated_at=row.updated_at,
            )
            for row in rows
        ]

    def refresh_after_attempt(self, identity: Identity) -> asyncio.Task:
        """
        Schedule a recalculation without waiting for it.

        Failures are logged and never reach the caller.
        """
        task = asyncio.get_running_loop().create_task(self._refresh(identity.id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _refresh(self, identity_id: str) -> None:
        try:
            await self.scoring.recalculate(identity_id)
        except Exception as exc:
            log_event(
                "warning",
                "scores.refresh_failed",
                identity_id=identity_id,
                event_type="scores.refresh",
                extra={"error": exc},
            )

    async def drain(self) -> None:
        """Wait for scheduled recalculations to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
