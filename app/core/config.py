import os
import re

from dotenv import load_dotenv

# Loads .env from the project root
load_dotenv()


def _env_flag(name: str, default: str = "") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./white_label.db")
ENV = os.getenv("ENVIRONMENT", os.getenv("ENV", "dev"))
ENV_NORMALIZED = ENV.strip().lower()
IS_DEV = ENV_NORMALIZED in {"dev", "development", "local", "test"}
IS_STAGE = ENV_NORMALIZED in {"stage", "staging", "homolog"}
IS_PROD = ENV_NORMALIZED in {"prod", "production"}

# Single-tenant deployments pin every request to this tenant (see app.core.tenant_settings)
DEFAULT_TENANT_ID_RAW = os.getenv("DEFAULT_TENANT_ID", os.getenv("RESTAURANT_ID", "")).strip()

# CORS
_cors_env = os.getenv("CORS_ORIGINS", "")
CORS_ORIGINS = [origin.strip() for origin in _cors_env.split(",") if origin.strip() and origin.strip() != "*"]

if not CORS_ORIGINS and IS_DEV:
    CORS_ORIGINS = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:8081",
    ]

_cors_origin_regex_env = os.getenv("CORS_ALLOW_ORIGIN_REGEX", "").strip()
CORS_ALLOW_ORIGIN_REGEX = _cors_origin_regex_env or None
if CORS_ALLOW_ORIGIN_REGEX:
    # fail at import time instead of on the first preflight request
    re.compile(CORS_ALLOW_ORIGIN_REGEX)

# Auth (JWT)
_DEV_JWT_SECRET = "dev-only-jwt-secret"
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "").strip() or ("" if IS_PROD else _DEV_JWT_SECRET)
JWT_REFRESH_SECRET_KEY = os.getenv("JWT_REFRESH_SECRET_KEY", "").strip() or (
    "" if IS_PROD else f"{_DEV_JWT_SECRET}-refresh"
)
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", "60"))
JWT_REFRESH_EXPIRE_DAYS = int(os.getenv("JWT_REFRESH_EXPIRE_DAYS", "7"))

# Payments
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "").strip()
STRIPE_API_BASE = os.getenv("STRIPE_API_BASE", "https://api.stripe.com/v1").rstrip("/")
PAYMENT_PROVIDER = os.getenv("PAYMENT_PROVIDER", "stripe").strip().lower()
PAYMENT_PROVIDER_TIMEOUT_SECONDS = float(os.getenv("PAYMENT_PROVIDER_TIMEOUT_SECONDS", "8.0"))
PAYMENT_DEFAULT_CURRENCY = os.getenv("PAYMENT_DEFAULT_CURRENCY", "eur").strip().lower()

# Orders
ORDER_NUMBER_PREFIX = os.getenv("ORDER_NUMBER_PREFIX", "ORD").strip() or "ORD"
DEFAULT_DRINK_NAME = os.getenv("DEFAULT_DRINK_NAME", "Bissap").strip() or "Bissap"

# Rate limits (requests per window, keyed by client ip)
AUTH_RATE_LIMIT = int(os.getenv("AUTH_RATE_LIMIT", "5"))
AUTH_RATE_WINDOW_SECONDS = int(os.getenv("AUTH_RATE_WINDOW_SECONDS", str(15 * 60)))
PAYMENT_RATE_LIMIT = int(os.getenv("PAYMENT_RATE_LIMIT", "10"))
PAYMENT_RATE_WINDOW_SECONDS = int(os.getenv("PAYMENT_RATE_WINDOW_SECONDS", str(60 * 60)))
RATE_LIMIT_ENABLED = _env_flag("RATE_LIMIT_ENABLED", "1")

SECURITY_EVENT_QUEUE_SIZE = int(os.getenv("SECURITY_EVENT_QUEUE_SIZE", "1000"))

# First platform administrator, created at startup when the password is set
DEV_ADMIN_EMAIL = os.getenv("DEV_ADMIN_EMAIL", "admin@example.com").strip() or "admin@example.com"
DEV_ADMIN_PASSWORD = os.getenv("DEV_ADMIN_PASSWORD", "").strip()
DEV_ADMIN_NAME = os.getenv("DEV_ADMIN_NAME", "Platform Admin").strip() or "Platform Admin"
