"""
hired/models/usage.py

Quota usage summary for the current accounting period.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class UsageStatus(str, Enum):
    OK = "ok"
    APPROACHING_LIMIT = "approaching_limit"
    AT_LIMIT = "at_limit"
    UNLIMITED = "unlimited"


class UsageSummary(BaseModel):
    """
    Consumption within [period_start, period_end).

    limit and remaining are None for unlimited plans.
    """
    model_config = ConfigDict(frozen=True)

    status: UsageStatus
    used: int
    limit: Optional[int] = None
    remaining: Optional[int] = None
    period_start: datetime
    period_end: datetime
