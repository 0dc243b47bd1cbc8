"""
hired/features/plans/service.py

Plan catalogue service.

Handles:
- Default tier seeding (free, pro, enterprise)
- Plan listing for the pricing surface
- Row -> Plan conversion shared by the entitlement resolver

Plans are reference data owned by the billing process. Nothing here
assigns a plan to a profile.
"""

import logging
from typing import Any, Dict, FrozenSet, List, Optional

from sqlalchemy import insert, select

from hired.core.database import Database, plans
from hired.core.errors import PlanNotFoundError
from hired.models.plan import Plan

logger = logging.getLogger(__name__)

# Fixed tier -> feature mapping. Every known slug has an entry.
PLAN_FEATURES: Dict[str, FrozenSet[str]] = {
    "free": frozenset(),
    "pro": frozenset({"certificates", "ranking"}),
    "enterprise": frozenset({"certificates", "ranking", "team_dashboard", "custom_simulations"}),
}

# Default plan configurations
DEFAULT_PLANS: Dict[str, Dict[str, Any]] = {
    "free": {
        "name": "Free",
        "price_monthly": 0.0,
        "price_yearly": 0.0,
        "max_simulations_per_month": 3,
        "is_featured": False,
    },
    "pro": {
        "name": "Pro",
        "price_monthly": 9.99,
        "price_yearly": 99.0,
        "max_simulations_per_month": 30,
        "is_featured": True,
    },
    "enterprise": {
        "name": "Enterprise",
        "price_monthly": 49.0,
        "price_yearly": 490.0,
        "max_simulations_per_month": None,  # unlimited
        "is_featured": False,
    },
}


def plan_from_row(row) -> Plan:
    return Plan(
        id=row.id,
        name=row.name,
        slug=row.slug,
        monthly_quota=row.max_simulations_per_month,
        features=frozenset(row.features or ()),
        price_monthly=row.price_monthly,
        price_yearly=row.price_yearly,
        is_featured=bool(row.is_featured),
    )


class PlanCatalog:
    """Read access to the plans table plus idempotent seeding."""

    def __init__(self, db: Database):
        self.db = db

    async def seed_plans(self) -> None:
        """
        Seed default plans into database (idempotent).

        Plan ids equal their slugs. Existing rows are left untouched so a
        billing process that already owns them is never overwritten.
        """
        async with self.db.session() as session:
            for slug, config in DEFAULT_PLANS.items():
                existing = (
                    await session.execute(select(plans.c.id).where(plans.c.slug == slug))
                ).first()
                if existing:
                    continue
                await session.execute(
                    insert(plans).values(
                        id=slug,
                        slug=slug,
                        features=sorted(PLAN_FEATURES[slug]),
                        **config,
                    )
                )
                logger.info("[plans] seeded plan", extra={"plan_slug": slug})

    async def list_plans(self) -> List[Plan]:
        """All plans, cheapest first."""
        async with self.db.session() as session:
            rows = (
                await session.execute(select(plans).order_by(plans.c.price_monthly.asc(), plans.c.slug))
            ).all()
        return [plan_from_row(row) for row in rows]

    async def find_plan(self, plan_id: str) -> Optional[Plan]:
        async with self.db.session() as session:
            row = (await session.execute(select(plans).where(plans.c.id == plan_id))).first()
        return plan_from_row(row) if row else None

    async def get_plan(self, plan_id: str) -> Plan:
        """
        Get plan by ID.

        Raises:
            PlanNotFoundError: If no plan has this id
        """
        plan = await self.find_plan(plan_id)
        if plan is None:
            raise PlanNotFoundError(f"Plan {plan_id} not found")
        return plan
