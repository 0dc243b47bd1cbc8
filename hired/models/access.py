"""
hired/models/access.py

Outcomes of a navigation-time access check.
"""

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict


class Allow(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool = True


class Deny(BaseModel):
    """Access refused; reason is presentable to the user."""
    model_config = ConfigDict(frozen=True)

    reason: str
    redirect_target: str
    return_url: Optional[str] = None
    allowed: bool = False


AccessDecision = Union[Allow, Deny]
