"""
Configuration - backend location, credentials and runtime limits
Values come from the environment (optionally a .env file)
"""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional, Tuple

from dotenv import load_dotenv

# load environment variables from .env file
load_dotenv()

DEFAULT_BACKEND_URL = "http://127.0.0.1:8000"
# 5 minutes, matches the backend's long-running agent jobs
DEFAULT_REQUEST_TIMEOUT = 300.0


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the builder and the dispatcher"""
    backend_url: str = DEFAULT_BACKEND_URL
    access_token: str = ""
    user_id: str = "0"
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    drafts_dir: str = "services"
    log_level: int = logging.INFO
    log_dir: Optional[str] = "logs"
    cors_origins: Tuple[str, ...] = ("*",)

    def origins(self) -> List[str]:
        return list(self.cors_origins)


def _parse_level(value: str) -> int:
    level = logging.getLevelName(value.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def load_settings() -> Settings:
    """Build settings from environment variables."""
    timeout_raw = os.getenv("SERVICEFORGE_REQUEST_TIMEOUT", "")
    try:
        timeout = float(timeout_raw) if timeout_raw else DEFAULT_REQUEST_TIMEOUT
    except ValueError:
        timeout = DEFAULT_REQUEST_TIMEOUT

    log_dir = os.getenv("SERVICEFORGE_LOG_DIR", "logs")

    return Settings(
        backend_url=os.getenv("SERVICEFORGE_BACKEND_URL", DEFAULT_BACKEND_URL).rstrip("/"),
        access_token=os.getenv("SERVICEFORGE_ACCESS_TOKEN", ""),
        user_id=os.getenv("SERVICEFORGE_USER_ID", "0"),
        request_timeout=timeout,
        drafts_dir=os.getenv("SERVICEFORGE_DRAFTS_DIR", "services"),
        log_level=_parse_level(os.getenv("SERVICEFORGE_LOG_LEVEL", "INFO")),
        log_dir=log_dir or None,
        # Use comma-separated values for multiple origins, or "*" for all
        cors_origins=tuple(o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, read once"""
    return load_settings()
