"""
hired/features/usage/service.py

Quota accounting service.

Handles:
- Accounting period boundaries (UTC calendar month, half-open)
- Period consumption counts (abandoned attempts excluded)
- Usage summaries for display

Counting is a read used for UX decisions. The admission gate recounts
inside its own atomic insert, so a degraded count here never over-admits.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Tuple

from sqlalchemy import func, select

from hired.core.config import Settings, settings
from hired.core.database import Database, simulation_attempts
from hired.core.errors import StoreUnavailableError
from hired.core.metrics import quota_count_degraded_total
from hired.models.attempt import AttemptStatus
from hired.models.common import ensure_utc, utc_now
from hired.models.identity import Identity
from hired.models.plan import Plan
from hired.models.usage import UsageStatus, UsageSummary

logger = logging.getLogger(__name__)


def accounting_period(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """
    Return [start, next_start) of the UTC calendar month containing now.

    Naive datetimes are interpreted as UTC; aware ones are converted.
    """
    current = ensure_utc(now) if now is not None else utc_now()
    start = datetime(current.year, current.month, 1, tzinfo=timezone.utc)
    if current.month == 12:
        next_start = datetime(current.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        next_start = datetime(current.year, current.month + 1, 1, tzinfo=timezone.utc)
    return start, next_start


def period_count_query(identity_id: str, start: datetime, next_start: datetime):
    """COUNT of quota-consuming attempts created in [start, next_start)."""
    return (
        select(func.count())
        .select_from(simulation_attempts)
        .where(simulation_attempts.c.user_id == identity_id)
        .where(simulation_attempts.c.status != AttemptStatus.ABANDONED.value)
        .where(simulation_attempts.c.created_at >= start)
        .where(simulation_attempts.c.created_at < next_start)
    )


class QuotaAccountant:
    def __init__(self, db: Database, cfg: Settings = settings):
        self.db = db
        self.approaching_ratio = cfg.QUOTA_APPROACHING_RATIO

    async def count_this_period(self, identity: Identity, now: Optional[datetime] = None) -> int:
        """
        Count the identity's attempts created this period, excluding abandoned.

        On store failure the count degrades to 0 and the failure is logged.
        """
        start, next_start = accounting_period(now)
        try:
            async with self.db.session() as session:
                used = (await session.execute(period_count_query(identity.id, start, next_start))).scalar_one()
        except StoreUnavailableError as exc:
            quota_count_degraded_total.inc()
            logger.warning(
                "[usage] period count failed, degrading to 0",
                extra={"identity_id": identity.id, "error_code": exc.code, "error_message": exc.message},
            )
            return 0
        return int(used or 0)

    async def usage_summary(self, identity: Identity, plan: Plan, now: Optional[datetime] = None) -> UsageSummary:
        start, next_start = accounting_period(now)
        used = await self.count_this_period(identity, now)
        limit = plan.monthly_quota

        if limit is None:
            status = UsageStatus.UNLIMITED
            remaining = None
        else:
            remaining = max(limit - used, 0)
            if used >= limit:
                status = UsageStatus.AT_LIMIT
            elif used >= self.approaching_ratio * limit:
                status = UsageStatus.APPROACHING_LIMIT
            else:
                status = UsageStatus.OK

        return UsageSummary(
            status=status,
            used=used,
            limit=limit,
            remaining=remaining,
            period_start=start,
            period_end=next_start,
        )
