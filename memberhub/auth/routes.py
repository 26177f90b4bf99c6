from flask import jsonify, request, session, current_app
from flask_login import login_user, logout_user, login_required, current_user
from . import auth_bp
from ..extensions import db, login_manager
from ..models import User
from ..security import sessions as session_manager
from ..utils.identity import identify
from ..utils.settings import int_setting
import re

SESSION_KEY = "member_session_id"

@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))

@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "Please log in."}), 401


def end_current_session():
    """Close the tracked UserSession (if any) and the Flask-Login session."""
    sid = session.pop(SESSION_KEY, None)
    if sid:
        session_manager.logout(sid)
    logout_user()


# -----------------------------
# Register
# -----------------------------
@auth_bp.route("/register", methods=["POST"])
def register():
    data = request.get_json(silent=True) or request.form
    email = data.get("email", "")
    raw_pw = data.get("password", "")

    ok, msg = validate_password(raw_pw)
    if not ok:
        return jsonify({"ok": False, "error": msg}), 400

    user, error = session_manager.register(email, raw_pw, data.get("name"))
    if user is None:
        return jsonify({"ok": False, "error": error}), 400
    return jsonify({"ok": True, "user": user.to_dict()}), 201

# -----------------------------
# Login
# -----------------------------
@auth_bp.route("/login", methods=["POST"])
def login():
    data = request.get_json(silent=True) or request.form
    result = session_manager.login(data.get("email", ""), data.get("password", ""), identify(request))
    if not result.ok:
        status = 403 if result.reason == session_manager.DENIED_BLOCKED else 401
        if result.reason == session_manager.DENIED_ERROR:
            status = 503
        return jsonify({"ok": False, "reason": result.reason, "error": result.message}), status

    login_user(result.user)
    session[SESSION_KEY] = result.session.id
    return jsonify({
        "ok": True,
        "user": result.user.to_dict(),
        "session": result.session.to_dict(),
        "heartbeat_minutes": int_setting("HEARTBEAT_MINUTES"),
        "session_timeout_minutes": int_setting("SESSION_TIMEOUT_MINUTES"),
    })

# -----------------------------
# Logout
# -----------------------------
@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    end_current_session()
    return jsonify({"ok": True})

# -----------------------------
# Heartbeat
# -----------------------------
@auth_bp.route("/heartbeat", methods=["POST"])
@login_required
def heartbeat():
    sid = session.get(SESSION_KEY)
    alive = bool(sid) and session_manager.heartbeat(sid)
    if not alive:
        # terminated by an admin: drop the login as well
        end_current_session()
        return jsonify({"ok": False, "error": "Session ended."}), 401
    return jsonify({"ok": True})

@auth_bp.route("/me")
@login_required
def me():
    return jsonify({"user": current_user.to_dict(), "session_id": session.get(SESSION_KEY)})

# -----------------------------
# Password Validator
# -----------------------------
def validate_password(pw: str):
    min_len = current_app.config.get("PASSWORD_MIN_LENGTH", 8)

    if len(pw or "") < min_len:
        return False, f"Password must be at least {min_len} characters long."
    if not re.search(r"[A-Za-z]", pw) or not re.search(r"\d", pw):
        return False, "Password must include at least one letter and one number."

    return True, ""
