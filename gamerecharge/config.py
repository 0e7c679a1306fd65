import os
import sys

# ----------------------------
# Config & Constants
# ----------------------------
DATABASE_URL = os.environ.get("DATABASE_URL", None)

if DATABASE_URL is None:
    print("NEED DATABASE_URL! e.g. sqlite:///./gamerecharge.db")
    sys.exit(1)

APP_NAME = os.environ.get("APP_NAME", "GameRecharge")
APP_BASE_URL = os.environ.get(
    "APP_BASE_URL", "http://localhost:8000"
).rstrip("/")

SESSION_SECRET = os.environ.get("SESSION_SECRET", "dev-secret-change-me")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# 'mock' | 'stripe'
PAYMENT_PROVIDER = os.environ.get("PAYMENT_PROVIDER", "mock").lower()

MOCK_SECRET = os.environ.get("MOCK_SECRET", "supersecret")
MOCK_WEBHOOK_URL = os.environ.get(
    "MOCK_WEBHOOK_URL",
    f"{APP_BASE_URL}/payments/webhook"
)

STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
STRIPE_API_BASE = os.environ.get(
    "STRIPE_API_BASE", "https://api.stripe.com"
).rstrip("/")

# 'sql' | 'redis'
CHECKOUT_BACKEND = os.environ.get("CHECKOUT_BACKEND", "sql").lower()
REDIS_URL = os.environ.get("REDIS_URL", "redis://127.0.0.1:6379")
CHECKOUT_TTL_SECONDS = int(os.environ.get("CHECKOUT_TTL_SECONDS", "1800"))

# first admin account, created at startup when both are set
ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL", "").strip().lower()
ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "")

SUPPORTED_LOCALES = ("en", "zh")
DEFAULT_CURRENCY = "usd"  # V1 is USD only

# checkout price window, cents
MINIMUM_AMOUNT_CENTS = 50
MAXIMUM_AMOUNT_CENTS = 999_999

SLOW_OP_SECONDS = float(os.environ.get("SLOW_OP_SECONDS", "0.5"))
