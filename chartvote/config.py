"""
SMX Chart Votes - Configuration
All settings loaded from environment variables with sensible defaults.

Chart and song data is never stored locally: it is fetched from the public
SMX API and cached in memory.  Only votes and user accounts are persisted,
in a small SQLite database.
"""

import os
import tempfile
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env file
_ = load_dotenv()

# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------
APP_HOST = os.getenv("APP_HOST", "0.0.0.0")
APP_PORT = int(os.getenv("APP_PORT", "8000"))
APP_ENV = os.getenv("APP_ENV", "development")
APP_VERSION = os.getenv("APP_VERSION", "1.0.0")
DEBUG = os.getenv("DEBUG", "true").lower() == "true"
SECRET_KEY = os.getenv("SECRET_KEY", "change-me-in-production")

if APP_ENV == "production" and SECRET_KEY == "change-me-in-production":
    raise RuntimeError(
        "SECRET_KEY must be changed from the default value in production. "
        "Set the SECRET_KEY environment variable to a random secret."
    )

# ---------------------------------------------------------------------------
# Identity
#
# "session": every visitor gets an anonymous signed session cookie and votes
#            under that session id.
# "user":    votes belong to registered accounts; voting requires login.
# ---------------------------------------------------------------------------
IDENTITY_MODES = {"session", "user"}
IDENTITY_MODE = os.getenv("IDENTITY_MODE", "session").lower()

if IDENTITY_MODE not in IDENTITY_MODES:
    raise RuntimeError(
        f"IDENTITY_MODE must be one of {sorted(IDENTITY_MODES)}, got {IDENTITY_MODE!r}"
    )

# Session cookie name and max age in seconds (default 30 days)
SESSION_COOKIE_NAME = "cv_session"
SESSION_MAX_AGE = int(os.getenv("SESSION_MAX_AGE", str(60 * 60 * 24 * 30)))

# bcrypt cost factor for stored passwords
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
MIN_PASSWORD_LENGTH = 8
# bcrypt only accepts passwords up to 72 bytes
MAX_PASSWORD_BYTES = 72

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------
DATA_DIR = Path(os.getenv("DATA_DIR", os.path.join(tempfile.gettempdir(), "chartvote")))
DB_PATH = Path(os.getenv("DB_PATH", os.path.join(DATA_DIR, "chartvote.db")))

# ---------------------------------------------------------------------------
# Logging (stdout only)
# ---------------------------------------------------------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# ---------------------------------------------------------------------------
# SMX API (chart + song source)
# ---------------------------------------------------------------------------
SMX_API_URL = os.getenv("SMX_API_URL", "https://smx.573.no/api")

# How long (seconds) a fetched chart list is served before refetching
CHART_CACHE_TTL = int(os.getenv("CHART_CACHE_TTL", "300"))  # default 5 minutes

# How often (seconds) to refresh the chart cache in the background.
# Set to 0 to disable (the cache then refreshes on demand only).
CHART_REFRESH_INTERVAL = int(os.getenv("CHART_REFRESH_INTERVAL", "0"))

# Whether to warm the chart cache on application startup
CHART_PREFETCH_ON_STARTUP = (
    os.getenv("CHART_PREFETCH_ON_STARTUP", "true").lower() == "true"
)

UPSTREAM_TIMEOUT = float(os.getenv("UPSTREAM_TIMEOUT", "15"))

# Songs permanently removed from the game but still listed by the API
REMOVED_SONG_TITLES = frozenset(
    title.strip()
    for title in os.getenv(
        "REMOVED_SONG_TITLES", "All It Takes,Sinxorder,Hurry Up!,ChicaBomb"
    ).split(",")
    if title.strip()
)

# ---------------------------------------------------------------------------
# Difficulty labels
# ---------------------------------------------------------------------------
# Raw type names mark the harder variant with a trailing "2" (full2),
# the display label uses "+" (full+).
VARIANT_NAME_SUFFIX = "2"
VARIANT_DISPLAY_SUFFIX = "+"

VOTE_DIRECTIONS = ("up", "down")


def ensure_directories() -> None:
    """Create the local directory holding the SQLite database."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
