"""
Configuration for the ICU dispatch backend.

Settings are read from the environment (and an optional .env file) once at import.
"""

import os
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


def _get_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _get_optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return int(value)


class Config:
    """Application settings."""

    # Server
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))
    DEBUG: bool = _get_bool("DEBUG", False)
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # CORS
    CORS_ORIGINS_RAW: str = os.getenv(
        "CORS_ORIGINS",
        "http://localhost:5173,http://localhost:3001,http://localhost:3002"
    )

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./icudispatch.db")
    SQLITE_BUSY_TIMEOUT: float = float(os.getenv("SQLITE_BUSY_TIMEOUT", "30"))

    # Event bus
    EVENT_HISTORY_SIZE: int = int(os.getenv("EVENT_HISTORY_SIZE", "1000"))

    # Dispatch policy
    PENDING_REQUEST_TIMEOUT_MINUTES: Optional[int] = _get_optional_int(
        "PENDING_REQUEST_TIMEOUT_MINUTES"
    )
    AMBULANCE_SPEED_KMH: float = float(os.getenv("AMBULANCE_SPEED_KMH", "40"))

    @classmethod
    def get_cors_origins(cls) -> List[str]:
        """Return the configured CORS origins."""
        if cls.CORS_ORIGINS_RAW.strip() == "*":
            return ["*"]
        return [o.strip() for o in cls.CORS_ORIGINS_RAW.split(",") if o.strip()]
