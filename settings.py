# settings.py
"""
Runtime configuration for the ETMS admin backend.

Everything is read from the environment once at start-up; the resulting
Settings object is handed to create_app() and from there to the services.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _env_bool(environ: Mapping[str, str], key: str, default: str = "0") -> bool:
    return environ.get(key, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    mongo_uri: str = "mongodb://localhost:27017"
    db_name: str = "etms_admin"

    secret_key: str = "CHANGE_ME_IN_PRODUCTION"
    session_cookie_secure: bool = False  # set to True behind HTTPS
    session_cookie_samesite: str = "Lax"
    log_level: str = "INFO"

    default_admin_email: str = "admin@example.com"
    default_admin_password: str = "Admin123!"
    seed_default_admin: bool = True

    # Customer segmentation
    vip_spend_threshold: float = 500.0
    loyal_order_threshold: int = 5
    regular_order_threshold: int = 2

    low_stock_threshold: int = 10
    recent_orders_limit: int = 5
    customer_history_limit: int = 10
    max_page_size: int = 100

    # Store access
    query_timeout_ms: int = 5000
    analytics_order_limit: int = 50000

    host: str = "0.0.0.0"
    port: int = 5000
    debug: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            mongo_uri=env.get("MONGO_URI", cls.mongo_uri),
            db_name=env.get("MONGO_DB", cls.db_name),
            secret_key=env.get("SECRET_KEY", cls.secret_key),
            session_cookie_secure=_env_bool(env, "SESSION_COOKIE_SECURE"),
            session_cookie_samesite=env.get("SESSION_COOKIE_SAMESITE", cls.session_cookie_samesite),
            log_level=env.get("LOG_LEVEL", cls.log_level).upper(),
            default_admin_email=env.get("DEFAULT_ADMIN_EMAIL", cls.default_admin_email),
            default_admin_password=env.get("DEFAULT_ADMIN_PASSWORD", cls.default_admin_password),
            seed_default_admin=_env_bool(env, "SEED_DEFAULT_ADMIN", "1"),
            vip_spend_threshold=float(env.get("VIP_SPEND_THRESHOLD", cls.vip_spend_threshold)),
            loyal_order_threshold=int(env.get("LOYAL_ORDER_THRESHOLD", cls.loyal_order_threshold)),
            regular_order_threshold=int(env.get("REGULAR_ORDER_THRESHOLD", cls.regular_order_threshold)),
            low_stock_threshold=int(env.get("LOW_STOCK_THRESHOLD", cls.low_stock_threshold)),
            query_timeout_ms=int(env.get("QUERY_TIMEOUT_MS", cls.query_timeout_ms)),
            analytics_order_limit=int(env.get("ANALYTICS_ORDER_LIMIT", cls.analytics_order_limit)),
            host=env.get("HOST", cls.host),
            port=int(env.get("PORT", cls.port)),
            debug=_env_bool(env, "FLASK_DEBUG"),
        )


def configure_logging(level: str = "INFO") -> logging.Logger:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    return logging.getLogger("etms")
