import logging

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal, Optional


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Record store
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600  # Recycle connections after 1 hour
    DB_ECHO: bool = False

    # Identity directory
    SESSION_FETCH_TIMEOUT_SECONDS: float = 5.0
    AUTH_JWT_SECRET: Optional[str] = None
    AUTH_JWT_AUDIENCE: str = "authenticated"

    # Quota accounting
    QUOTA_APPROACHING_RATIO: float = 0.8

    # Same-simulation policy for in-progress attempts: allow | resume | reject
    DUPLICATE_ATTEMPT_POLICY: Literal["allow", "resume", "reject"] = "allow"

    # Navigation targets handed to the router collaborator
    LOGIN_REDIRECT: str = "/auth/login"
    POST_LOGIN_REDIRECT: str = "/dashboard"
    UPGRADE_REDIRECT: str = "/plans"
    SAFE_REDIRECT: str = "/dashboard"

    # Scoring collaborator
    SCORE_REFRESH_PROCEDURE: str = "recalculate_technical_scores"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("hired")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "AUTH_JWT_SECRET",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    if not 0 < cfg.QUOTA_APPROACHING_RATIO <= 1:
        message = f"QUOTA_APPROACHING_RATIO must be in (0, 1], got {cfg.QUOTA_APPROACHING_RATIO}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
