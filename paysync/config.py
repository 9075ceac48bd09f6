import os
from dotenv import dotenv_values

class BaseConfig:
    # Secrets (env in prod; dev/test may use defaults)
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-not-secure")
    WTF_CSRF_SECRET_KEY = SECRET_KEY
    WTF_CSRF_TIME_LIMIT = None

    # Database (env in prod; dev/test may use default)
    _ENV_FALLBACK = dotenv_values(".env")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL") or _ENV_FALLBACK.get("DATABASE_URL") or "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Logging / misc
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Cookies: secure-by-default
    SESSION_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"

    # Flask-Limiter default: off globally; prefer per-route limits
    RATELIMIT_DEFAULT = None

    # --- Stripe (payment provider) ---
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_PUBLISHABLE_KEY = os.getenv("STRIPE_PUBLISHABLE_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
    # Pin the API version per environment; None uses the account default
    STRIPE_API_VERSION = os.getenv("STRIPE_API_VERSION") or None

    # Every provider call is a blocking I/O point: bound it
    STRIPE_TIMEOUT_SECONDS = float(os.getenv("STRIPE_TIMEOUT_SECONDS", "10"))
    STRIPE_MAX_NETWORK_RETRIES = int(os.getenv("STRIPE_MAX_NETWORK_RETRIES", "2"))

    # Price IDs (per environment via env vars); legacy single-price names still honoured
    STRIPE_PRICE_CUSTOMER_MONTHLY = os.getenv("STRIPE_PRICE_CUSTOMER_MONTHLY") or os.getenv("STRIPE_CUSTOMER_PRICE_ID")
    STRIPE_PRICE_CUSTOMER_PRO = os.getenv("STRIPE_PRICE_CUSTOMER_PRO")
    STRIPE_PRICE_BUSINESS_MONTHLY = os.getenv("STRIPE_PRICE_BUSINESS_MONTHLY") or os.getenv("STRIPE_BUSINESS_PRICE_ID")
    STRIPE_PRICE_BUSINESS_PRO = os.getenv("STRIPE_PRICE_BUSINESS_PRO")

    # --- Webhook ingestion ---
    # Skip events older than the last one applied to the same subscription
    WEBHOOK_ENFORCE_EVENT_ORDER = (os.getenv("WEBHOOK_ENFORCE_EVENT_ORDER", "true").lower() == "true")
    # Escalate when signature failures pile up inside the window
    WEBHOOK_SIGNATURE_ALERT_THRESHOLD = int(os.getenv("WEBHOOK_SIGNATURE_ALERT_THRESHOLD", "5"))
    WEBHOOK_SIGNATURE_ALERT_WINDOW_MINUTES = int(os.getenv("WEBHOOK_SIGNATURE_ALERT_WINDOW_MINUTES", "15"))

    # --- Audit ledger reads ---
    AUDIT_LOG_PAGE_SIZE = int(os.getenv("AUDIT_LOG_PAGE_SIZE", "100"))

class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG")
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False

class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "WARNING")
    # Presence is enforced in create_app(); class bodies run at import time
    SECRET_KEY = os.environ.get("SECRET_KEY")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL")
    SESSION_COOKIE_SECURE = True
    REMEMBER_COOKIE_SECURE = True
    SESSION_COOKIE_SAMESITE = os.environ.get("SESSION_COOKIE_SAMESITE", "Lax")

class TestingConfig(BaseConfig):
    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get("TEST_DATABASE_URL", "sqlite:///:memory:")
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False
    STRIPE_MAX_NETWORK_RETRIES = 0
    # Per-account limits would leak between tests (ids are reused)
    RATELIMIT_ENABLED = False

_ENV_MAP = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}

def get_config():
    env = os.environ.get("APP_ENV", "development").lower()
    return _ENV_MAP.get(env, DevelopmentConfig)
