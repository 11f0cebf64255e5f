import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "default-secret-key")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'bookmarks.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "1") == "1"

    SUPABASE_URL = os.environ.get("NEXT_PUBLIC_SUPABASE_URL", "")
    SUPABASE_PUBLISHABLE_KEY = os.environ.get(
        "NEXT_PUBLIC_SUPABASE_PUBLISHABLE_DEFAULT_KEY", ""
    )
    # Server-only. Never render this into a template or API response.
    SUPABASE_SERVICE_ROLE_KEY = os.environ.get("SUPABASE_SERVICE_ROLE_KEY", "")
    SITE_URL = os.environ.get("NEXT_PUBLIC_SITE_URL", "http://localhost:3000")

    IDENTITY_TIMEOUT = float(os.environ.get("IDENTITY_TIMEOUT", "10"))
    IDENTITY_TRANSPORT = None
    SESSION_COOKIE_SECURE = os.environ.get("SESSION_COOKIE_SECURE", "0") == "1"
    DB_ROW_LEVEL_SECURITY = os.environ.get("DB_ROW_LEVEL_SECURITY", "1") == "1"

    FEED_POLL_INTERVAL = float(os.environ.get("FEED_POLL_INTERVAL", "2"))
    FEED_HEARTBEAT_SECONDS = float(os.environ.get("FEED_HEARTBEAT_SECONDS", "15"))
    PROFILE_RETRY_INTERVAL_MINUTES = int(
        os.environ.get("PROFILE_RETRY_INTERVAL_MINUTES", "60")
    )


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SCHEDULER_ENABLED = False
    SUPABASE_URL = "http://identity.test"
    SUPABASE_PUBLISHABLE_KEY = "publishable-test-key"
    SUPABASE_SERVICE_ROLE_KEY = "service-role-test-key"
    SITE_URL = "http://localhost"
    FEED_POLL_INTERVAL = 0.01
    FEED_HEARTBEAT_SECONDS = 0.05
