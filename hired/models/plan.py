"""
hired/models/plan.py

Plan and profile models.

Plans are subscription tiers created by the billing process and read-only
here. A Profile links one identity to its current plan.
"""

from datetime import datetime
from typing import FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from hired.models.common import ensure_utc


class Plan(BaseModel):
    """
    Plan represents a subscription tier.

    Examples:
    - free (default, small monthly quota)
    - pro
    - enterprise (unlimited)

    monthly_quota = None means unlimited simulations per month.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    slug: str
    monthly_quota: Optional[int] = None
    features: FrozenSet[str] = frozenset()
    price_monthly: float = 0.0
    price_yearly: float = 0.0
    is_featured: bool = False

    @property
    def is_unlimited(self) -> bool:
        return self.monthly_quota is None


class Profile(BaseModel):
    model_config = ConfigDict(frozen=True)

    identity_id: str
    plan_id: str
    plan_expires_at: Optional[datetime] = None
    full_name: Optional[str] = None

    @field_validator("plan_expires_at")
    @classmethod
    def normalize_utc(cls, value):
        return ensure_utc(value)


class ProfileWithPlan(BaseModel):
    """Profile joined with the plan it references."""
    model_config = ConfigDict(frozen=True)

    profile: Profile
    plan: Plan
