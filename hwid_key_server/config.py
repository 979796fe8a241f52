from __future__ import annotations

import logging
import os
from dataclasses import dataclass


# Fixed lifecycle windows (seconds)
PENDING_TTL = 30 * 60
ACTIVE_TTL = 24 * 60 * 60
KICK_TTL = 5 * 60

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


@dataclass
class Settings:
    """
    Runtime settings for the key server.
    Keep this backward-compatible: add new fields with defaults only.
    """
    database_url: str = "sqlite:///hwid_keys.db"

    # Tokens
    admin_token: str = ""
    pastefy_token: str = ""
    link4m_token: str = ""

    # Outbound HTTP (delivery channel)
    http_timeout: float = 12.0

    log_level: str = "INFO"
    port: int = 5000


def load_settings() -> Settings:
    """
    Build settings from environment variables, falling back to defaults.
    """
    defaults = Settings()
    return Settings(
        database_url=os.getenv("DATABASE_URL", "").strip() or defaults.database_url,
        admin_token=os.getenv("ADMIN_TOKEN", "").strip(),
        pastefy_token=os.getenv("PASTEFY_TOKEN", "").strip(),
        link4m_token=os.getenv("LINK4M_TOKEN", "").strip(),
        http_timeout=float(os.getenv("HTTP_TIMEOUT", "") or defaults.http_timeout),
        log_level=(os.getenv("LOG_LEVEL", "") or defaults.log_level).upper(),
        port=int(os.getenv("PORT", "") or defaults.port),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
