# appforge/core/config.py
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

# ================== ENV ==================

ROOT_DIR = Path(__file__).resolve().parents[2]
load_dotenv(ROOT_DIR / ".env", override=False)


def env(*names: str, default: Optional[str] = None) -> str:
    for n in names:
        v = os.environ.get(n)
        if v is not None and str(v).strip() != "":
            return v
    if default is not None:
        return default
    raise KeyError(f"Missing required env var. Tried: {', '.join(names)}")


def env_int(name: str, default: int) -> int:
    return int(env(name, default=str(default)))


def env_bool(name: str, default: bool) -> bool:
    return env(name, default="true" if default else "false").strip().lower() in ("1", "true", "yes")


def env_list(name: str, default: str) -> List[str]:
    return [part.strip() for part in env(name, default=default).split(",") if part.strip()]


# ================== PATHS ==================

DATA_DIR = Path(env("APPFORGE_DATA_DIR", default=str(ROOT_DIR / "data")))
GENERATED_APPS_DIR = Path(env("GENERATED_APPS_DIR", default=str(ROOT_DIR / "generated-apps")))
PORT_ASSIGNMENTS_FILE = Path(env("PORT_ASSIGNMENTS_FILE", default=str(DATA_DIR / "port-assignments.json")))

# ================== PORTS ==================

# Ports the platform itself listens on; never handed to generated apps.
PLATFORM_PORTS = [int(p) for p in env_list("PLATFORM_PORTS", "3000,3001")]
STARTING_PORT = env_int("STARTING_PORT", 4000)

# ================== GENERATION ==================

DEFAULT_ENGINE = env("DEFAULT_ENGINE", default="claude")
PHASE_MAX_TOKENS = env_int("PHASE_MAX_TOKENS", 16384)
COMPONENT_MAX_TOKENS = env_int("COMPONENT_MAX_TOKENS", 8192)
PHASE_MAX_RETRIES = env_int("PHASE_MAX_RETRIES", 2)
SESSION_CLEANUP_DELAY_SECONDS = float(env("SESSION_CLEANUP_DELAY_SECONDS", default="5"))
LOG_REPLAY_LIMIT = env_int("LOG_REPLAY_LIMIT", 50)

# ================== LOCAL RUN ==================

PROCESS_LOG_LIMIT = env_int("PROCESS_LOG_LIMIT", 100)
PROCESS_STOP_GRACE_SECONDS = float(env("PROCESS_STOP_GRACE_SECONDS", default="5"))
INSTALL_TIMEOUT_SECONDS = env_int("INSTALL_TIMEOUT_SECONDS", 900)  # 15 min
SERVER_WAIT_TIMEOUT_SECONDS = env_int("SERVER_WAIT_TIMEOUT_SECONDS", 30)

SMOKE_TEST_TIMEOUT_SECONDS = env_int("SMOKE_TEST_TIMEOUT_SECONDS", 30)
SMOKE_TEST_INSTALL = env_bool("SMOKE_TEST_INSTALL", True)

# ================== HTTP ==================

CORS_ORIGINS = env_list("CORS_ORIGINS", "*")

# ================== JWT ==================

JWT_SECRET = os.environ.get("JWT_SECRET", "default_secret_key")
JWT_ALGORITHM = "HS256"

# ================== PROVIDERS ==================

CEREBRAS_BASE_URL = env("CEREBRAS_BASE_URL", default="https://api.cerebras.ai/v1")


def get_provider_key(*names: str) -> Optional[str]:
    """
    Lazy lookup: the server boots without keys.
    Only generation calls require them.
    """
    for n in names:
        v = os.environ.get(n)
        if v and v.strip():
            return v.strip()
    return None


# ================== DATABASE ==================

DATABASE_URL = os.environ.get("DATABASE_URL", "")


def get_database_url() -> str:
    """Get database URL - SQLite unless DATABASE_URL says otherwise."""
    if DATABASE_URL:
        return DATABASE_URL
    db_path = DATA_DIR / "appforge.db"
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite+aiosqlite:///{db_path}"
