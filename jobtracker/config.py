"""
Configuration module for the ECS job tracker
"""

import os
from pathlib import Path


def env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable"""
    value = os.getenv(key, str(default)).lower()
    return value in ("true", "1", "yes", "on")


def env_int_list(key: str, default: str):
    return [int(v) for v in os.getenv(key, default).split(",") if v.strip()]


APP_VERSION = os.getenv("APP_VERSION", "0.4.0")

# Database configuration
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./jobtracker.db")

# Logging configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "json")

# Dedup ledger (unset REDIS_URL keeps it in process memory)
REDIS_URL = os.getenv("REDIS_URL")
SUBMISSION_DEDUP_TTL_SECONDS = int(os.getenv("SUBMISSION_DEDUP_TTL_SECONDS", "3600"))

# Forms vendor
VENDOR_BASE_URL = os.getenv("VENDOR_BASE_URL", "https://api.gocanvas.com/api/v3")
VENDOR_USERNAME = os.getenv("VENDOR_USERNAME", "")
VENDOR_PASSWORD = os.getenv("VENDOR_PASSWORD", "")
VENDOR_TIMEOUT_SECONDS = float(os.getenv("VENDOR_TIMEOUT_SECONDS", "20"))

# Background polling
POLLING_ENABLED = env_bool("POLLING_ENABLED", False)
POLL_INTERVAL_SECONDS = int(os.getenv("POLL_INTERVAL_SECONDS", "30"))

# Field maps
FIELD_MAP_DIR = os.getenv("FIELD_MAP_DIR", str(Path(__file__).resolve().parent / "field_maps"))

# Candidate UTC offsets (hours) tried when a handoff time was entered in local time
DEFAULT_TIMEZONE_OFFSETS = env_int_list("DEFAULT_TIMEZONE_OFFSETS", "-4,-5,-6,-7,-8,-9,-10")

# Dashboard
OVERDUE_HOURS = int(os.getenv("OVERDUE_HOURS", "6"))

# HTTP
API_PREFIX = "/api"
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
