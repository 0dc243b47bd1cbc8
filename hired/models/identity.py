"""
hired/models/identity.py

Identity and directory session models.

The Identity is the authenticated principal. It is rebuilt from scratch on
every directory session change and never mutated in place.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    CANDIDATE = "candidate"
    INTERVIEWER = "interviewer"
    ADMIN = "admin"


class DirectorySession(BaseModel):
    """Session as reported by the identity directory."""
    model_config = ConfigDict(frozen=True)

    identity_id: str
    email: Optional[str] = None
    claims: Dict[str, Any] = Field(default_factory=dict)


class Identity(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: str = ""
    display_name: str = ""
    role: Role = Role.CANDIDATE

    @classmethod
    def from_session(cls, session: DirectorySession) -> "Identity":
        metadata = session.claims.get("user_metadata") or {}
        raw_role = metadata.get("role") or session.claims.get("role")
        try:
            role = Role(raw_role) if raw_role else Role.CANDIDATE
        except ValueError:
            # Directory roles such as "authenticated" are not application roles
            role = Role.CANDIDATE
        return cls(
            id=session.identity_id,
            email=session.email or session.claims.get("email") or "",
            display_name=metadata.get("full_name") or "",
            role=role,
        )
