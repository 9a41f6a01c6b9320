"""Configuration — .env loading, paths, scheduler intervals, collaborator settings."""

from __future__ import annotations

import getpass
import os
from pathlib import Path

from dotenv import load_dotenv

# Ambit home directory (persisted config, credentials)
AMBIT_HOME = Path.home() / ".ambit"

# Load .env files: ~/.ambit/.env first (persisted credentials), then project .env
_ambit_env = AMBIT_HOME / ".env"
if _ambit_env.exists():
    load_dotenv(_ambit_env)
load_dotenv()  # project .env (won't overwrite already-set vars)


def _default_data_dir() -> Path:
    """Resolve data directory: env var override or ~/.ambit/data."""
    env = os.getenv("AMBIT_DATA_DIR")
    if env:
        return Path(env).resolve()
    return Path.home() / ".ambit" / "data"


# Data directory (per-user data lives here)
DATA_DIR = _default_data_dir()

# Text generation (Anthropic)
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
EXTRACT_MODEL: str = os.getenv("AMBIT_EXTRACT_MODEL", "claude-haiku-4-5")
LLM_TIMEOUT: float = float(os.getenv("AMBIT_LLM_TIMEOUT", "30"))

# Semantic memory (Nia)
NIA_API_KEY = os.getenv("NIA_API_KEY", "")
NIA_BASE_URL: str = os.getenv("NIA_BASE_URL", "https://api.trynia.ai/v2")
SEARCH_TIMEOUT: float = float(os.getenv("AMBIT_SEARCH_TIMEOUT", "3"))

# ── Scheduler intervals in seconds (all env-overridable) ────────────────────
ACTIVITY_INTERVAL: int    = int(os.getenv("AMBIT_ACTIVITY_INTERVAL", "30"))
EXTRACT_INTERVAL: int     = int(os.getenv("AMBIT_EXTRACT_INTERVAL", "120"))
ENRICH_INTERVAL: int      = int(os.getenv("AMBIT_ENRICH_INTERVAL", "600"))
MAINTENANCE_INTERVAL: int = int(os.getenv("AMBIT_MAINTENANCE_INTERVAL", "1800"))
SAVE_INTERVAL: int        = int(os.getenv("AMBIT_SAVE_INTERVAL", "600"))

# Default user: env var override, else system username
DEFAULT_USER = os.getenv("AMBIT_USER", "") or getpass.getuser()


def user_data_dir(user_id: str) -> Path:
    """Return the data directory for a specific user, creating it if needed."""
    if "/" in user_id or "\\" in user_id or ".." in user_id:
        raise ValueError(f"Invalid user_id: {user_id!r}")
    d = DATA_DIR / user_id
    d.mkdir(parents=True, exist_ok=True)
    return d


def user_db_path(user_id: str) -> Path:
    """Return the SQLite DB path for a user."""
    return user_data_dir(user_id) / "ambit.db"
