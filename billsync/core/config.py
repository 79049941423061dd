import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300

    # Checkout policy
    TRIALS_ENABLED: bool = True  # global switch; off downgrades every trial request

    # App URLs
    BASE_URL: str = "http://localhost:3000"
    CORS_ORIGINS: str = "http://localhost:3000"  # comma-separated

    # Document store
    DOCUMENT_STORE: str = "memory"  # memory | sql
    DATABASE_URL: Optional[str] = None

    # Webhook projection
    WEBHOOK_ORDERING_GUARD: bool = False  # skip events older than the stored one

    # Subscription resolver
    RESOLVER_GATEWAY_FALLBACK: bool = False

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("billsync")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
    ]
    if getattr(cfg, "DOCUMENT_STORE", "memory") == "sql":
        required_keys.append("DATABASE_URL")

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    if cfg.DOCUMENT_STORE not in ("memory", "sql"):
        message = f"Unknown DOCUMENT_STORE: {cfg.DOCUMENT_STORE}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
