from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_migrate import Migrate
from flask import current_app
from flask_session import Session
import redis
import time

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError

db = SQLAlchemy()
login_manager = LoginManager()
migrate = Migrate()
session = Session()

PRESENCE_TTL_SECONDS = 60


def init_redis(app):
    """Client for presence markers and Flask-Session; None when Redis is switched off."""
    url = app.config.get("REDIS_URL")
    app.redis = None
    if app.config.get("REDIS_MODE", "local") == "none" or not url:
        return None
    try:
        app.redis = redis.from_url(url)
    except (redis.RedisError, ValueError) as e:
        app.logger.warning(f"⚠️ Redis disabled, bad REDIS_URL: {e}")
    return app.redis


def _presence_keys(user_id):
    return f"memberhub:user:{user_id}:online", f"memberhub:user:{user_id}:last_seen"


def mark_user_active(user_id):
    r = getattr(current_app, "redis", None)
    if r is None:
        return
    online, last_seen = _presence_keys(user_id)
    now = int(time.time())
    try:
        pipe = r.pipeline()
        pipe.set(online, now, ex=PRESENCE_TTL_SECONDS)
        pipe.set(last_seen, now)
        pipe.execute()
    except redis.RedisError as e:
        current_app.logger.debug(f"presence marker skipped for user {user_id}: {e}")


def is_user_online(user_id):
    """None when presence is not tracked."""
    r = getattr(current_app, "redis", None)
    if r is None:
        return None
    try:
        return bool(r.exists(_presence_keys(user_id)[0]))
    except redis.RedisError:
        return None


def safe_commit(max_retries=3, backoff=0.1):
    """Commit, retrying briefly while SQLite reports the database as locked."""
    for attempt in range(1, max_retries + 1):
        try:
            db.session.commit()
            return True
        except OperationalError as e:
            db.session.rollback()
            current_app.logger.warning(f"commit attempt {attempt}/{max_retries} failed: {e}")
            time.sleep(backoff * attempt)
    return False


@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    from sqlite3 import Connection as SQLite3Connection
    if not isinstance(dbapi_connection, SQLite3Connection):
        return
    cursor = dbapi_connection.cursor()
    # scheduler threads write while requests read
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA busy_timeout=5000;")
    # cascades on content deletion rely on this
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def start_background_workers(app):
    """Start the app's unlock scheduler; no-op when it is already running."""
    from .access import get_scheduler

    scheduler = get_scheduler(app)
    if scheduler.running:
        return
    scheduler.start()
    app.logger.info("✅ Started unlock scheduler.")
