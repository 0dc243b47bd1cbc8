"""
hired/features/entitlements/service.py

Entitlement resolution.

Handles:
- Profile lookup for an identity
- Profile -> Plan resolution with explicit failures for missing rows
- Static feature lookup per plan tier

A dangling plan reference is an error, never a silent fallback to the
free or an unlimited plan.
"""

import logging
from typing import Optional

from sqlalchemy import select

from hired.core.database import Database, plans, profiles
from hired.core.errors import NotAuthenticatedError, PlanNotFoundError, ProfileNotFoundError
from hired.features.plans.service import PLAN_FEATURES, plan_from_row
from hired.models.identity import Identity
from hired.models.plan import Profile, ProfileWithPlan

logger = logging.getLogger(__name__)


def has_feature(plan_slug: Optional[str], feature_key: Optional[str]) -> bool:
    """Pure lookup in PLAN_FEATURES. Unknown slug or feature is False."""
    if not plan_slug or not feature_key:
        return False
    return feature_key in PLAN_FEATURES.get(plan_slug, frozenset())


def _require_identity(identity: Optional[Identity]) -> Identity:
    if identity is None:
        raise NotAuthenticatedError()
    return identity


def _profile_from_row(row) -> Profile:
    return Profile(
        identity_id=row.id,
        plan_id=row.plan_id,
        plan_expires_at=row.plan_expires_at,
        full_name=row.full_name,
    )


class EntitlementResolver:
    def __init__(self, db: Database):
        self.db = db

    async def get_profile(self, identity: Optional[Identity]) -> Profile:
        identity = _require_identity(identity)
        async with self.db.session() as session:
            row = (await session.execute(select(profiles).where(profiles.c.id == identity.id))).first()
        if row is None:
            raise ProfileNotFoundError(f"No profile for identity {identity.id}")
        return _profile_from_row(row)

    async def resolve_plan(self, identity: Optional[Identity]) -> ProfileWithPlan:
        """
        Resolve the effective plan for an identity.

        Raises:
            NotAuthenticatedError: identity is None
            ProfileNotFoundError: no profile row for the identity
            PlanNotFoundError: the profile points at a plan that does not exist
            StoreUnavailableError: the record store could not be reached
        """
        identity = _require_identity(identity)
        async with self.db.session() as session:
            profile_row = (
                await session.execute(select(profiles).where(profiles.c.id == identity.id))
            ).first()
            if profile_row is None:
                raise ProfileNotFoundError(f"No profile for identity {identity.id}")
            plan_row = (
                await session.execute(select(plans).where(plans.c.id == profile_row.plan_id))
            ).first()

        if plan_row is None:
            logger.warning(
                "[entitlements] dangling plan reference",
                extra={"identity_id": identity.id, "plan_id": profile_row.plan_id},
            )
            raise PlanNotFoundError(f"Plan {profile_row.plan_id} not found for identity {identity.id}")

        return ProfileWithPlan(profile=_profile_from_row(profile_row), plan=plan_from_row(plan_row))
