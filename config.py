import os

class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "changeme")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///memberhub.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SESSION_TYPE = "redis"
    SESSION_PERMANENT = False
    REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
    REDIS_MODE = os.environ.get("REDIS_MODE", "local")

    # Fixed superuser; resolved before the user table is consulted
    ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL", "admin@memberhub.local")
    ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "changeme-admin")

    # Session telemetry
    HEARTBEAT_MINUTES = 5
    SESSION_TIMEOUT_MINUTES = 30  # exposed to clients, not enforced server-side

    # Multi-origin knobs (kept independent)
    MULTIPLE_IP_ALERT_THRESHOLD = 2   # login logs multiple_ips when distinct IPs > this
    SUSPICIOUS_IP_THRESHOLD = 3       # admin view flags user when distinct IPs > this
    RISK_MEDIUM_IPS = 2
    RISK_HIGH_IPS = 3
    RISK_CRITICAL_IPS = 5

    # Unlock scheduler
    SCHEDULER_ENABLED = True
    SCHEDULED_UNLOCK_INTERVAL_MINUTES = 5
    SCHEDULED_UNLOCK_STARTUP_DELAY_SECONDS = 1
    RECONCILE_DEBOUNCE_SECONDS = 1
    UNLOCK_NOTIFY_CAP = 3
    LOCK_NOTIFY_CAP = 2

    # Notifications
    NOTIFICATION_DEDUP_SECONDS = 60
    NOTIFICATION_RETENTION = 100

    # Identity lookup
    IP_LOOKUP_ENABLED = True
    IP_LOOKUP_URL = "https://ipapi.co/{ip}/json/"
    IP_LOOKUP_TIMEOUT = 3

    PASSWORD_MIN_LENGTH = 8

    LOG_TO_FILE = True

class DevConfig(Config):
    DEBUG = True

class ProdConfig(Config):
    DEBUG = False

class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SESSION_TYPE = None
    REDIS_MODE = "none"
    SCHEDULER_ENABLED = False
    IP_LOOKUP_ENABLED = False
    LOG_TO_FILE = False
    ADMIN_EMAIL = "admin@example.com"
    ADMIN_PASSWORD = "admin-pass"
