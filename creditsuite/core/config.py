import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Auth (HS256 session tokens issued by the identity provider)
    AUTH_JWT_SECRET: Optional[str] = None
    AUTH_JWT_ALGORITHM: str = "HS256"

    # Admin access: role-based, with a legacy shared key for automation
    ADMIN_KEY: Optional[str] = None

    # Remote generation backend
    GENERATION_URL: Optional[str] = None
    GENERATION_API_KEY: Optional[str] = None
    GENERATION_TIMEOUT_SECONDS: float = 60.0

    # Config store keys
    PLANS_CONFIG_KEY: str = "all_plans"
    PAYMENT_SETTINGS_KEY: str = "payment_settings"
    MULTI_AI_SETTINGS_KEY: str = "multi_ai_settings"

    # Guest allowance (anonymous visitors)
    GUEST_FREE_CREDITS: int = 3

    # Attribution footer on text output for non-premium accounts
    ATTRIBUTION_ENABLED: bool = True
    ATTRIBUTION_TEXT: str = "Gerado por GDN_IA"

    # Audit logging
    AUDIT_ENABLED: bool = True

    # CORS
    CORS_ORIGINS: str = "*"  # comma-separated

    model_config = ConfigDict(
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
    log = logger or logging.getLogger("creditsuite")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "AUTH_JWT_SECRET",
        "GENERATION_URL",
        "GENERATION_API_KEY",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
