"""Configuration and constants for the device spec pipeline."""

import os
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

__all__ = [
    "APP_ENV",
    "BASE_URL",
    "COMPARE_URL",
    "AUTOCOMPLETE_URL",
    "LISTING_URL",
    "HEADERS",
    "REQUEST_TIMEOUT",
    "MAX_COMPARE_SLUGS",
    "AUTOCOMPLETE_SATURATION",
    "DB_PATH",
    "LOG_DIR",
    "LLM_MODEL",
    "SLUG_PICK_MODEL",
    "SLUG_PICK_TEMPERATURE",
    "SLUG_PICK_MAX_TOKENS",
    "NORMALIZE_TEMPERATURE",
    "NORMALIZE_MAX_TOKENS",
    "TARGET_LANGUAGE",
    "AUTO_PICK_SLUG",
    "MAX_CONCURRENT_JOBS",
    "JOB_TIMEOUTS",
    "DEFAULT_DEVICE_TYPES",
    "FLASK_HOST",
    "FLASK_PORT",
    "FLASK_DEBUG",
    "get_request_timeout",
]

_PROJECT_ROOT = Path(__file__).parent.parent

# Load environment variables from .env file at the project root
load_dotenv(dotenv_path=_PROJECT_ROOT / ".env")

APP_ENV = os.getenv("APP_ENV", "production").lower()

# =============================================================================
# Target comparison site
# =============================================================================

BASE_URL = "https://www.kimovil.com"
COMPARE_URL = BASE_URL + "/en/compare/{slugs}"
AUTOCOMPLETE_URL = BASE_URL + "/_json/autocomplete_devicemodels_joined.json"
LISTING_URL = BASE_URL + "/en/compare-smartphones/order.dm+unveiledDate,name.{name},page.{page}"

HEADERS = {
    "User-Agent": "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
                  "(KHTML, like Gecko) Chrome/124.0 Safari/537.36",
    "Accept-Language": "en-US,en;q=0.9",
}

# Navigation timeout in seconds. Disabled in interactive development.
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "60"))

# One comparison page holds at most four devices
MAX_COMPARE_SLUGS = 4

# Autocomplete caps its result list; at this size fall back to the listing search
AUTOCOMPLETE_SATURATION = 8

# =============================================================================
# Storage and logging
# =============================================================================

DB_PATH = os.getenv("DB_PATH", str(_PROJECT_ROOT / "data" / "devices.db"))
LOG_DIR = Path(os.getenv("LOG_DIR", str(_PROJECT_ROOT / "logs")))

# =============================================================================
# LLM
# =============================================================================

LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4o-mini")
SLUG_PICK_MODEL = os.getenv("SLUG_PICK_MODEL", LLM_MODEL)

# Slug pick must be deterministic; normalization needs some freedom for wording
SLUG_PICK_TEMPERATURE = 0.0
SLUG_PICK_MAX_TOKENS = 50
NORMALIZE_TEMPERATURE = float(os.getenv("NORMALIZE_TEMPERATURE", "0.4"))
NORMALIZE_MAX_TOKENS = int(os.getenv("NORMALIZE_MAX_TOKENS", "4096"))

# Display language for all normalized non-name text
TARGET_LANGUAGE = os.getenv("TARGET_LANGUAGE", "Russian")

# =============================================================================
# Jobs
# =============================================================================

# When enabled, ambiguous autocomplete results are resolved by the model
# instead of waiting for a human choice
AUTO_PICK_SLUG = os.getenv("AUTO_PICK_SLUG", "False").lower() == "true"

MAX_CONCURRENT_JOBS = int(os.getenv("MAX_CONCURRENT_JOBS", "4"))

# Seconds an active step may go without an update before it counts as interrupted
JOB_TIMEOUTS: Dict[str, int] = {
    "searching": 3 * 60,
    "selecting": 30 * 60,
    "scraping": 5 * 60,
}

# Seconds between stale job sweeps in a serving process
STALE_JOB_CHECK_INTERVAL = int(os.getenv("STALE_JOB_CHECK_INTERVAL", "60"))

DEFAULT_DEVICE_TYPES: List[str] = ["smartphone", "tablet", "smartwatch"]

# =============================================================================
# Job status HTTP interface
# =============================================================================

FLASK_HOST = os.getenv("FLASK_HOST", "0.0.0.0")
FLASK_PORT = int(os.getenv("FLASK_PORT", os.getenv("PORT", "5000")))
FLASK_DEBUG = os.getenv("FLASK_DEBUG", "False").lower() == "true"


def get_request_timeout() -> Optional[float]:
    """Timeout passed to requests; None (wait forever) in development."""
    if APP_ENV == "development":
        return None
    return REQUEST_TIMEOUT
