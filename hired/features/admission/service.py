"""
hired/features/admission/service.py

Admission gate: decides whether a new simulation attempt may be created.

Flow: resolve plan -> count period usage -> compare -> atomic create.

The pre-check count only short-circuits the common rejection. The create
step re-validates the count inside the store, in the same statement as the
insert, while holding a lock on the identity's profile row:

    SELECT id FROM profiles WHERE id = :identity FOR UPDATE;
    INSERT INTO simulation_attempts (...)
    SELECT :id, :identity, ... WHERE (SELECT count(*) ... in period) < :limit
    RETURNING *;

On PostgreSQL the row lock serializes concurrent admissions of one
identity. SQLite ignores FOR UPDATE; there the INSERT takes the database
write lock before evaluating its SELECT, which gives the same result.
"""

import logging
from datetime import datetime
from typing import Literal, Optional, Tuple
from uuid import uuid4

from sqlalchemy import JSON, DateTime, String, insert, literal, select

from hired.core.config import Settings, settings
from hired.core.database import Database, profiles, simulation_attempts
from hired.core.errors import (
    AttemptAlreadyInProgressError,
    NotAuthenticatedError,
    ProfileNotFoundError,
    QuotaExceededError,
)
from hired.core.logging import log_event
from hired.core.metrics import admissions_total
from hired.features.attempts.service import attempt_from_row, in_progress_query
from hired.features.entitlements.service import EntitlementResolver
from hired.features.simulations.service import SimulationCatalog
from hired.features.usage.service import QuotaAccountant, accounting_period, period_count_query
from hired.models.attempt import Attempt, AttemptStatus
from hired.models.common import ensure_utc, utc_now
from hired.models.identity import Identity
from hired.models.plan import Plan

logger = logging.getLogger(__name__)

DuplicatePolicy = Literal["allow", "resume", "reject"]

_INSERT_COLUMNS = (
    "id",
    "user_id",
    "simulation_id",
    "status",
    "answers",
    "started_at",
    "created_at",
)


class AdmissionGate:
    def __init__(
        self,
        db: Database,
        resolver: EntitlementResolver,
        accountant: QuotaAccountant,
        catalog: SimulationCatalog,
        cfg: Settings = settings,
        duplicate_policy: Optional[DuplicatePolicy] = None,
    ):
        self.db = db
        self.resolver = resolver
        self.accountant = accountant
        self.catalog = catalog
        self.duplicate_policy: DuplicatePolicy = duplicate_policy or cfg.DUPLICATE_ATTEMPT_POLICY

    async def admit(
        self,
        identity: Optional[Identity],
        simulation_id: str,
        now: Optional[datetime] = None,
    ) -> Attempt:
        """
        Create a new in-progress attempt if the identity's quota allows it.

        Raises:
            NotAuthenticatedError: identity is None
            ProfileNotFoundError / PlanNotFoundError: entitlement cannot be resolved
            SimulationNotFoundError: simulation missing or inactive
            QuotaExceededError: used >= monthly quota
            AttemptAlreadyInProgressError: policy "reject" and one is already open
            StoreUnavailableError: the insert could not be performed
        """
        if identity is None:
            raise NotAuthenticatedError()
        current = ensure_utc(now) if now is not None else utc_now()

        resolved = await self.resolver.resolve_plan(identity)
        plan = resolved.plan
        await self.catalog.get_simulation(simulation_id, active_only=True)

        if self.duplicate_policy != "allow":
            async with self.db.session() as session:
                existing = await self._check_duplicate(session, identity, simulation_id)
            if existing is not None:
                return self._admitted(identity, plan, existing, "resumed")

        limit = plan.monthly_quota
        if limit is not None:
            used = await self.accountant.count_this_period(identity, current)
            if used >= limit:
                raise self._rejection(identity, plan, used, simulation_id)

        attempt, created = await self._create(identity, simulation_id, limit, current)
        if attempt is None:
            # Lost the race, or the pre-check count was degraded
            recount = await self.accountant.count_this_period(identity, current)
            raise self._rejection(identity, plan, max(recount, limit), simulation_id)
        return self._admitted(identity, plan, attempt, "admitted" if created else "resumed")

    @staticmethod
    def _admitted(identity: Identity, plan: Plan, attempt: Attempt, outcome: str) -> Attempt:
        admissions_total.inc(labels={"outcome": outcome})
        log_event(
            "info",
            f"admission.{outcome}",
            identity_id=identity.id,
            attempt_id=attempt.id,
            event_type=f"admission.{outcome}",
            extra={"simulation_id": attempt.simulation_id, "plan_slug": plan.slug},
        )
        return attempt

    async def _create(
        self,
        identity: Identity,
        simulation_id: str,
        limit: Optional[int],
        now: datetime,
    ) -> Tuple[Optional[Attempt], bool]:
        """
        Atomic conditional insert.

        Returns (attempt, created). attempt is None when the quota check
        inside the store fails; created is False for a resumed attempt.
        """
        async with self.db.session() as session:
            locked = (
                await session.execute(
                    select(profiles.c.id).where(profiles.c.id == identity.id).with_for_update()
                )
            ).first()
            if locked is None:
                raise ProfileNotFoundError(f"No profile for identity {identity.id}")

            if self.duplicate_policy != "allow":
                existing = await self._check_duplicate(session, identity, simulation_id)
                if existing is not None:
                    return existing, False

            source = select(
                literal(str(uuid4()), String),
                literal(identity.id, String),
                literal(simulation_id, String),
                literal(AttemptStatus.IN_PROGRESS.value, String),
                literal([], JSON),
                literal(now, DateTime(timezone=True)),
                literal(now, DateTime(timezone=True)),
            )
            if limit is not None:
                start, next_start = accounting_period(now)
                used_in_period = period_count_query(identity.id, start, next_start).correlate(None).scalar_subquery()
                source = source.where(used_in_period < limit)

            row = (
                await session.execute(
                    insert(simulation_attempts)
                    .from_select(_INSERT_COLUMNS, source)
                    .returning(*simulation_attempts.c)
                )
            ).first()
        return (attempt_from_row(row), True) if row else (None, False)

    async def _check_duplicate(self, session, identity: Identity, simulation_id: str) -> Optional[Attempt]:
        """Apply the same-simulation policy. Returns the attempt to resume, if any."""
        existing = (await session.execute(in_progress_query(identity.id, simulation_id))).first()
        if existing is None:
            return None
        if self.duplicate_policy == "resume":
            return attempt_from_row(existing)
        admissions_total.inc(labels={"outcome": "duplicate"})
        raise AttemptAlreadyInProgressError(
            f"An attempt for simulation {simulation_id} is already in progress",
            attempt_id=existing.id,
        )

    @staticmethod
    def _rejection(identity: Identity, plan: Plan, used: int, simulation_id: str) -> QuotaExceededError:
        admissions_total.inc(labels={"outcome": "quota_exceeded"})
        # Expected outcome, logged at INFO
        log_event(
            "info",
            "admission.quota_exceeded",
            identity_id=identity.id,
            event_type="admission.rejected",
            error_code=QuotaExceededError.code,
            extra={"used": used, "limit": plan.monthly_quota, "plan_slug": plan.slug, "simulation_id": simulation_id},
        )
        return QuotaExceededError(used=used, limit=plan.monthly_quota, plan_name=plan.name)
