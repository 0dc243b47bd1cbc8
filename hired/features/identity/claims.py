"""
Access token verification for Directory adapters.

Directories that hand out HS256 access tokens (Supabase style, with the
identity in `sub` and profile data under `user_metadata`) can turn a token
into a DirectorySession here.
"""
import logging
from typing import Optional

import jwt

from hired.core.config import settings
from hired.core.errors import AuthenticationFailedError
from hired.models.identity import DirectorySession

logger = logging.getLogger(__name__)


def session_from_access_token(
    token: str,
    *,
    secret: Optional[str] = None,
    audience: Optional[str] = None,
) -> DirectorySession:
    """
    Verify an access token and build the session it describes.

    Args:
        token: Encoded JWT
        secret: HMAC secret (defaults to AUTH_JWT_SECRET)
        audience: Expected `aud` claim (defaults to AUTH_JWT_AUDIENCE)

    Returns:
        DirectorySession with all verified claims

    Raises:
        AuthenticationFailedError: Expired, malformed or wrongly signed token
    """
    key = secret or settings.AUTH_JWT_SECRET
    if not key:
        raise AuthenticationFailedError("AUTH_JWT_SECRET is not configured")

    try:
        claims = jwt.decode(
            token,
            key,
            algorithms=["HS256"],
            audience=audience or settings.AUTH_JWT_AUDIENCE,
            options={"verify_signature": True, "verify_exp": True},
        )
    except jwt.ExpiredSignatureError as e:
        raise AuthenticationFailedError("Token expired") from e
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise AuthenticationFailedError("Invalid token") from e

    identity_id = claims.get("sub")
    if not identity_id:
        raise AuthenticationFailedError("No 'sub' claim in token")

    return DirectorySession(identity_id=identity_id, email=claims.get("email"), claims=claims)
