"""
Process configuration.

All settings come from the environment and are read once at startup into
a frozen Settings object that is handed to the app factory.

Fallback secrets exist so the service boots in development; they are
logged as insecure and must be overridden in any real deployment.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_TOKEN = "fallback-admin-token"
DEFAULT_DOWNLOAD_TOKEN = "fallback-download-token"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class Settings:
    redis_url: str = "redis://localhost:6379"
    links_namespace: str = "links"
    admin_token: str = DEFAULT_ADMIN_TOKEN
    download_token: str = DEFAULT_DOWNLOAD_TOKEN
    stream_token: str = DEFAULT_DOWNLOAD_TOKEN
    session_max_age: int = 30 * 24 * 3600
    upstream_connect_timeout: float = 10.0
    upstream_read_timeout: float = 60.0
    log_level: str = "INFO"

    def insecure_defaults(self) -> list[str]:
        """Names of secrets still set to their development fallback."""
        names = []
        if self.admin_token == DEFAULT_ADMIN_TOKEN:
            names.append("ADMIN_TOKEN")
        if self.download_token == DEFAULT_DOWNLOAD_TOKEN:
            names.append("DOWNLOAD_TOKEN")
        if self.stream_token == DEFAULT_DOWNLOAD_TOKEN:
            names.append("STREAM_TOKEN")
        return names


def load_settings() -> Settings:
    download_token = os.getenv("DOWNLOAD_TOKEN") or DEFAULT_DOWNLOAD_TOKEN
    return Settings(
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379"),
        links_namespace=os.getenv("LINKS_NAMESPACE", "links"),
        admin_token=os.getenv("ADMIN_TOKEN") or DEFAULT_ADMIN_TOKEN,
        download_token=download_token,
        # One shared secret serves both gates unless a separate one is given
        stream_token=os.getenv("STREAM_TOKEN") or download_token,
        session_max_age=int(os.getenv("SESSION_MAX_AGE_DAYS", "30")) * 24 * 3600,
        upstream_connect_timeout=float(os.getenv("UPSTREAM_CONNECT_TIMEOUT", "10")),
        upstream_read_timeout=float(os.getenv("UPSTREAM_READ_TIMEOUT", "60")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)


def warn_insecure_defaults(settings: Settings) -> None:
    for name in settings.insecure_defaults():
        logger.warning("%s is not set; using the insecure development fallback", name)
