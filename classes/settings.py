# classes/settings.py
import os
from pathlib import Path

from dotenv import load_dotenv
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# --- Calendar ---
HOLIDAYS_PATH = os.getenv(
    "HOLIDAYS_PATH",
    str(Path(__file__).with_name("holidays.json")),
)

# --- Task validation (system settings) ---
MAX_DAYS_PER_TASK = int(os.getenv("MAX_DAYS_PER_TASK", "3"))

# --- Calculator ---
# longest schedule, in working days including risk, the end-date walk will take
MAX_SCHEDULE_DAYS = int(os.getenv("MAX_SCHEDULE_DAYS", "50000"))

# --- Broadcast channel ---
CLAIM_TTL_SECONDS = float(os.getenv("CLAIM_TTL_SECONDS", "30"))
CLAIM_SWEEP_INTERVAL = float(os.getenv("CLAIM_SWEEP_INTERVAL", "5.0"))
REQUIRE_CHANNEL_AUTH = _env_bool("REQUIRE_CHANNEL_AUTH", True)

# --- Client ---
FIELD_CHANGE_DEBOUNCE_MS = int(os.getenv("FIELD_CHANGE_DEBOUNCE_MS", "300"))
RECONNECT_DELAY_SECONDS = float(os.getenv("RECONNECT_DELAY_SECONDS", "3.0"))

# --- Server ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))

# --- Database ---
DATABASE_URL = os.getenv("DATABASE_URL", "")
DB_HOST = os.getenv("DB_HOST", "")
DB_PORT = int(os.getenv("DB_PORT", "5432"))
DB_NAME = os.getenv("DB_NAME", "")
DB_USER = os.getenv("DB_USER", "")
DB_PASSWORD = os.getenv("DB_PASSWORD", "")
