import os
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional


def _bool(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "hardesign"
    db_timeout_ms: int = 5000
    db_server_selection_timeout_ms: int = 5000
    shipping_fee: int = 2000
    utc_offset_hours: int = 1
    token_ttl_days: int = 7
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None
    allow_negative_stock: bool = False
    subscription_poll_ms: int = 1000
    log_level: str = "INFO"
    port: int = 8000
    cors_origins: List[str] = field(default_factory=lambda: ["*"])


def load_settings() -> Settings:
    origins = os.getenv("CORS_ORIGINS", "*")
    return Settings(
        database_url=os.getenv("DATABASE_URL", "mongodb://localhost:27017"),
        database_name=os.getenv("DATABASE_NAME", "hardesign"),
        db_timeout_ms=int(os.getenv("DB_TIMEOUT_MS", 5000)),
        db_server_selection_timeout_ms=int(os.getenv("DB_SERVER_SELECTION_TIMEOUT_MS", 5000)),
        shipping_fee=int(os.getenv("SHIPPING_FEE", 2000)),
        utc_offset_hours=int(os.getenv("UTC_OFFSET_HOURS", 1)),
        token_ttl_days=int(os.getenv("TOKEN_TTL_DAYS", 7)),
        admin_email=os.getenv("ADMIN_EMAIL") or None,
        admin_password=os.getenv("ADMIN_PASSWORD") or None,
        allow_negative_stock=_bool(os.getenv("ALLOW_NEGATIVE_STOCK")),
        subscription_poll_ms=int(os.getenv("SUBSCRIPTION_POLL_MS", 1000)),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        port=int(os.getenv("PORT", 8000)),
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
    )


@lru_cache()
def get_settings() -> Settings:
    return load_settings()


def setup_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=level or get_settings().log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
