import logging
import os
from logging.handlers import RotatingFileHandler

from flask import Flask, jsonify, request
from flask_login import current_user
from werkzeug.exceptions import HTTPException

from .extensions import db, login_manager, migrate, session, init_redis, mark_user_active, start_background_workers

# Blueprints
from .auth import auth_bp
from .content import content_bp
from .progress import progress_bp
from .notifications import notifications_bp
from .admin import admin_bp


def _configure_logging(app):
    app.logger.setLevel(logging.DEBUG if app.debug else logging.INFO)
    if not app.config.get("LOG_TO_FILE"):
        return
    os.makedirs("logs", exist_ok=True)
    handler = RotatingFileHandler("logs/memberhub.log", maxBytes=10240, backupCount=10)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s [%(module)s] %(message)s"
    ))
    handler.setLevel(logging.INFO)
    app.logger.addHandler(handler)


def create_app(config_class="config.DevConfig"):
    app = Flask(__name__)
    app.config.from_object(config_class)
    _configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    # Redis backs both presence markers and (optionally) Flask-Session
    redis_client = init_redis(app)
    if app.config.get("SESSION_TYPE"):
        if app.config["SESSION_TYPE"] == "redis":
            if redis_client is not None:
                app.config["SESSION_REDIS"] = redis_client
                safe_url = app.config["REDIS_URL"].split("@")[-1]
                app.logger.info(f"✅ Session backend configured to use Redis at: {safe_url}")
            else:
                app.logger.warning("⚠️ Redis unavailable, falling back to filesystem sessions.")
                app.config["SESSION_TYPE"] = "filesystem"
        session.init_app(app)

    # Models must be imported before create_all / migrations see the metadata
    from . import models  # noqa: F401
    from .content import models as content_models  # noqa: F401
    from .security import models as security_models  # noqa: F401
    from .notifications import models as notification_models  # noqa: F401
    from .progress import models as progress_models  # noqa: F401

    from .access import UnlockScheduler
    UnlockScheduler(app)

    app.register_blueprint(auth_bp)
    app.register_blueprint(content_bp)
    app.register_blueprint(progress_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(admin_bp)

    @app.before_request
    def enforce_block_and_track_presence():
        # blocked users are not "authenticated" to Flask-Login, so check first
        if getattr(current_user, "is_blocked", False):
            from .auth.routes import end_current_session
            reason = current_user.blocked_reason
            end_current_session()
            return jsonify({"error": "Your account has been blocked.", "reason": reason}), 403
        if not current_user.is_authenticated:
            return None
        mark_user_active(current_user.id)
        return None

    @app.route("/")
    def index():
        return jsonify({
            "name": "memberhub",
            "authenticated": bool(current_user.is_authenticated),
            "scheduler_running": app.extensions["unlock_scheduler"].running,
        })

    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify({"error": e.description, "status": e.code}), e.code

    @app.errorhandler(500)
    def err_500(e):
        app.logger.error(f"❌ Unhandled error on {request.path}: {e}")
        return jsonify({"error": "Internal server error.", "status": 500}), 500

    if app.config.get("SCHEDULER_ENABLED"):
        start_background_workers(app)

    return app
