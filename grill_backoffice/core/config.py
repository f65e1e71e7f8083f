import os
from dotenv import load_dotenv

# Loads the .env from the project root
load_dotenv()

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: str = "") -> bool:
    return os.getenv(name, default).strip().lower() in _TRUE_VALUES


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./grill_backoffice.db")
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "10"))
ENV = os.getenv("ENV", "dev")
ENV_NORMALIZED = ENV.lower()
IS_DEV = ENV_NORMALIZED in {"dev", "development", "local"}
IS_TEST = ENV_NORMALIZED == "test"
IS_PROD = ENV_NORMALIZED in {"prod", "production"}
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# CORS
_cors_env = os.getenv("CORS_ORIGINS", os.getenv("FRONTEND_ORIGIN", ""))
CORS_ORIGINS = [origin.strip() for origin in _cors_env.split(",") if origin.strip() and origin.strip() != "*"]

if not CORS_ORIGINS and IS_DEV:
    CORS_ORIGINS = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

# Square
SQUARE_ACCESS_TOKEN = os.getenv("SQUARE_ACCESS_TOKEN", "").strip()
SQUARE_ENVIRONMENT = os.getenv("SQUARE_ENVIRONMENT", "sandbox").strip().lower()
if SQUARE_ENVIRONMENT not in {"sandbox", "production"}:
    SQUARE_ENVIRONMENT = "sandbox"
SQUARE_LOCATION_ID = os.getenv("SQUARE_LOCATION_ID", "").strip()
SQUARE_API_VERSION = os.getenv("SQUARE_API_VERSION", "2024-07-17").strip()
SQUARE_TIMEOUT_SECONDS = float(os.getenv("SQUARE_TIMEOUT_SECONDS", "20"))

# Webhooks
SQUARE_WEBHOOK_SIGNATURE_KEY = os.getenv("SQUARE_WEBHOOK_SIGNATURE_KEY", "").strip()
ALLOW_UNVERIFIED_WEBHOOKS = _env_flag("ALLOW_UNVERIFIED_WEBHOOKS")

# Nightly reconciliation (UTC)
RECONCILE_CRON = os.getenv("RECONCILE_CRON", "30 3 * * *").strip() or "30 3 * * *"
RECONCILE_SCHEDULER_ENABLED = _env_flag("RECONCILE_SCHEDULER_ENABLED", "0" if IS_TEST else "1")
