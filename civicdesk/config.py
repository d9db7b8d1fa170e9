# Shared configuration, helpers, and constants for the CivicDesk service

import os
import uuid
from pathlib import Path
from datetime import datetime, timezone
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------
_package_dir = Path(__file__).resolve().parent          # civicdesk/
for _env_path in [_package_dir / ".env", _package_dir.parent / ".env", Path.cwd() / ".env"]:
    if _env_path.is_file():
        load_dotenv(_env_path, override=True)
        break
else:
    load_dotenv(override=True)


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# ---------------------------------------------------------------------------
# Classification capability
# ---------------------------------------------------------------------------
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
# "openai", "keyword", or empty to pick openai when a key is configured
CLASSIFIER_BACKEND = os.getenv("CLASSIFIER_BACKEND", "").strip().lower()
CLASSIFIER_TIMEOUT_SECONDS = float(os.getenv("CLASSIFIER_TIMEOUT_SECONDS", "30"))
CLASSIFIER_MAX_RETRIES = int(os.getenv("CLASSIFIER_MAX_RETRIES", "3"))

# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------
STORE_BACKEND = os.getenv("STORE_BACKEND", "memory").strip().lower()
STORE_PATH = os.getenv("STORE_PATH", str(_package_dir.parent / "data" / "civicdesk.json"))
MONGODB_URL = os.getenv("MONGODB_URL", "mongodb://localhost:27017")
MONGODB_DB = os.getenv("MONGODB_DB", "civicdesk")
SEED_DEMO_DATA = _env_flag("SEED_DEMO_DATA", True)

# ---------------------------------------------------------------------------
# Reverse geocoding
# ---------------------------------------------------------------------------
GEOCODER_URL = os.getenv("GEOCODER_URL", "https://nominatim.openstreetmap.org/reverse")
GEOCODER_TIMEOUT_SECONDS = float(os.getenv("GEOCODER_TIMEOUT_SECONDS", "10"))
GEOCODER_USER_AGENT = os.getenv("GEOCODER_USER_AGENT", "civicdesk/1.0")

# ---------------------------------------------------------------------------
# HTTP surface
# ---------------------------------------------------------------------------
RECOMMEND_RATE_LIMIT = os.getenv("RECOMMEND_RATE_LIMIT", "20/minute")
CORS_ORIGINS = [o.strip() for o in os.getenv(
    "CORS_ORIGINS", "http://localhost:3000,http://localhost:9002").split(",") if o.strip()]

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def new_id() -> str:
    return str(uuid.uuid4())

def now_utc() -> datetime:
    return datetime.now(timezone.utc)
