from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

DEV_SESSION_SECRET = "homeledger-dev-secret-change-me"

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name, default) or default).strip().strip('"').strip("'")


def _env_bool(name: str, default: bool) -> bool:
    raw = _env(name)
    if not raw:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    try:
        return int(raw) if raw else default
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}")


@dataclass
class Settings:
    env: str = "dev"
    database_url: Optional[str] = None
    sqlite_path: str = "gestor_financeiro.db"
    db_pool_size: int = 10
    session_secret: str = DEV_SESSION_SECRET
    secure_cookies: bool = False
    locales_dir: str = "locales"
    log_level: str = "INFO"
    scheduler_enabled: bool = True
    port: int = 3001
    sendgrid_api_key: str = ""
    sendgrid_from_email: str = ""

    @property
    def is_prod(self) -> bool:
        return self.env == "prod"

    @property
    def uses_database_url(self) -> bool:
        return self.is_prod and bool(self.database_url)


def load_settings() -> Settings:
    env = _env("ENV", "dev").lower() or "dev"
    is_prod = env == "prod"

    session_secret = _env("SESSION_SECRET")
    if not session_secret:
        if is_prod:
            raise RuntimeError("SESSION_SECRET env var is required")
        session_secret = DEV_SESSION_SECRET

    return Settings(
        env=env,
        database_url=_env("DATABASE_URL") or None,
        sqlite_path=_env("SQLITE_PATH", "gestor_financeiro.db"),
        db_pool_size=_env_int("DB_POOL_SIZE", 10),
        session_secret=session_secret,
        secure_cookies=_env_bool("SECURE_COOKIES", is_prod),
        locales_dir=_env("LOCALES_DIR", "locales"),
        log_level=_env("LOG_LEVEL", "INFO").upper(),
        scheduler_enabled=_env_bool("SCHEDULER_ENABLED", True),
        port=_env_int("PORT", 3001),
        sendgrid_api_key=_env("SENDGRID_API_KEY"),
        sendgrid_from_email=_env("SENDGRID_FROM_EMAIL"),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
