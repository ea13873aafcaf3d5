import json
import os


# Live Stripe products. PRODUCT_CREDITS_JSON overrides this.
DEFAULT_PRODUCT_CREDITS = {
    "prod_TI6896ICKs0DEL": 100,  # Basic Monthly Plan
    "prod_TI63IMdxRSMGKt": 100,  # 100 Credits Pack
    "prod_TI6861Obu8vfg7": 500,  # 500 Credits Pack
}


def _load_product_credits():
    """Read the product -> credits table from PRODUCT_CREDITS_JSON if set."""
    raw = os.environ.get("PRODUCT_CREDITS_JSON")
    if not raw:
        return dict(DEFAULT_PRODUCT_CREDITS)
    return json.loads(raw)


class Config:
    """Base configuration. Shared across all environments."""

    # --- Required ---
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or None

    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    STRIPE_API_VERSION = os.environ.get("STRIPE_API_VERSION", "2023-10-16")

    # --- Product catalog ---
    # Stripe product ID -> credits granted per unit purchased / per period.
    PRODUCT_CREDITS = _load_product_credits()

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "STRIPE_SECRET_KEY",
            "STRIPE_WEBHOOK_SECRET",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = Config.SQLALCHEMY_DATABASE_URI or "sqlite:///credit_ledger.db"


class TestConfig(Config):
    """Testing — in-memory SQLite, fake Stripe credentials."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    STRIPE_SECRET_KEY = "sk_test_fake"
    STRIPE_WEBHOOK_SECRET = "whsec_test_fake"
    PRODUCT_CREDITS = {
        "prod_credits_100": 100,
        "prod_credits_500": 500,
        "prod_monthly_100": 100,
        "prod_monthly_500": 500,
    }

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
