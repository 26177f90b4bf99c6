"""
Session manager: the only place that creates UserSession and SecurityLog rows.

Every entry point returns a value. Expected refusals (bad credentials, blocked
account) come back as a LoginResult with a reason; persistence faults are
rolled back, logged, and reported as a generic failure.
"""
import hmac
from typing import NamedTuple, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import User
from ..signals import user_state_changed
from ..utils.datetime_tools import utcnow, whole_minutes_between
from ..utils.identity import Identity, admin_identity
from ..utils.settings import int_setting
from .log import log_event
from .models import UserSession
from .risk import active_ips, has_multiple_origins

DENIED_CREDENTIALS = "invalid_credentials"
DENIED_BLOCKED = "blocked"
DENIED_ERROR = "error"


class LoginResult(NamedTuple):
    session: Optional[UserSession]
    user: Optional[User]
    reason: Optional[str] = None
    message: str = ""

    @property
    def ok(self):
        return self.session is not None


def _notify_user_changed(user_id):
    user_state_changed.send(current_app._get_current_object(), user_id=user_id)


def _session_identity(s):
    return Identity(s.ip_address, s.user_agent, s.device, s.browser, s.location)


def _resolve_admin(email, password):
    """Fixed superuser from config. Its row is created on first login so sessions can reference it."""
    cfg = current_app.config
    if not (hmac.compare_digest(email.encode(), cfg["ADMIN_EMAIL"].lower().encode())
            and hmac.compare_digest((password or "").encode(), cfg["ADMIN_PASSWORD"].encode())):
        return None
    admin = User.query.filter_by(email=email).first()
    if admin is None:
        admin = User(email=email, name="Administrator", is_admin=True)
        admin.set_password(password)
        db.session.add(admin)
        db.session.flush()
    elif not admin.is_admin:
        admin.is_admin = True
    return admin


def _finalize(s, now):
    s.is_active = False
    s.logout_time = now
    s.session_duration = whole_minutes_between(s.login_time, now)


# ---------- member-facing ----------

def register(email, password, name):
    """Returns (user, "") or (None, message)."""
    email = (email or "").strip().lower()
    if not email or not password:
        return None, "Email and password are required."
    try:
        if email == current_app.config["ADMIN_EMAIL"].lower() or User.query.filter_by(email=email).first():
            return None, "Email already registered."
        user = User(email=email, name=name or email.split("@")[0], is_admin=False, is_blocked=False)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"registration failed for {email}: {e}")
        return None, "Registration failed. Please try again."
    return user, ""


def login(email, password, identity, now=None):
    now = now or utcnow()
    email = (email or "").strip().lower()
    try:
        user = _resolve_admin(email, password)
        if user is None:
            user = User.query.filter_by(email=email).first()
            if user is None or not user.check_password(password or ""):
                return LoginResult(None, None, DENIED_CREDENTIALS, "Invalid email or password.")

        if user.is_blocked:
            log_event(user.id, "blocked", identity,
                      f"Login attempt by blocked user: {user.blocked_reason or 'no reason given'}",
                      "medium")
            db.session.commit()
            current_app.logger.warning(f"⚠️ Blocked user {user.email} tried to log in from {identity.ip_address}")
            return LoginResult(None, user, DENIED_BLOCKED, "This account is blocked. Please contact support.")

        # observational only: never refuses the login
        active = UserSession.query.filter_by(user_id=user.id, is_active=True).all()
        if has_multiple_origins(active, user.id, int_setting("MULTIPLE_IP_ALERT_THRESHOLD")):
            ips = sorted(active_ips(active, user.id))
            log_event(user.id, "multiple_ips", identity,
                      f"User active on {len(ips)} different IPs: {', '.join(ips)}", "high")
            current_app.logger.warning(f"⚠️ {user.email} active on {len(ips)} IPs")

        s = UserSession(
            user_id=user.id,
            ip_address=identity.ip_address,
            user_agent=identity.user_agent,
            location=identity.location,
            device=identity.device,
            browser=identity.browser,
            login_time=now,
            last_activity=now,
            is_active=True,
        )
        db.session.add(s)
        log_event(user.id, "login", identity,
                  f"Login from {identity.location} using {identity.browser} on {identity.device}", "low")
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"login failed for {email}: {e}")
        return LoginResult(None, None, DENIED_ERROR, "Login failed. Please try again.")

    if not user.is_admin:
        _notify_user_changed(user.id)
    return LoginResult(s, user)


def logout(session_id, now=None):
    """Returns the finalized session, or None when it was unknown or already closed."""
    now = now or utcnow()
    try:
        s = db.session.get(UserSession, session_id)
        if s is None or not s.is_active:
            return None
        _finalize(s, now)
        log_event(s.user_id, "logout", _session_identity(s),
                  f"Logout after {s.session_duration} minutes", "low")
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"logout failed for session {session_id}: {e}")
        return None
    return s


def heartbeat(session_id, now=None):
    """Refresh last_activity. Telemetry only: inactivity never expires a session."""
    now = now or utcnow()
    try:
        s = db.session.get(UserSession, session_id)
        if s is None or not s.is_active:
            return False
        s.last_activity = now
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.warning(f"heartbeat dropped for session {session_id}: {e}")
        return False
    return True


# ---------- admin-facing ----------

def terminate(session_id, actor_id, now=None):
    now = now or utcnow()
    try:
        s = db.session.get(UserSession, session_id)
        if s is None or not s.is_active:
            return None
        _finalize(s, now)
        log_event(s.user_id, "logout", _session_identity(s),
                  f"Session terminated by administrator (IP: {s.ip_address})", "medium", admin_id=actor_id)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"terminate failed for session {session_id}: {e}")
        return None
    return s


def _terminate_all_pending(user_id, actor_id, now):
    sessions = UserSession.query.filter_by(user_id=user_id, is_active=True).all()
    for s in sessions:
        _finalize(s, now)
    log_event(user_id, "logout", admin_identity(),
              f"All sessions ({len(sessions)}) terminated by administrator", "high", admin_id=actor_id)
    return len(sessions)


def terminate_all(user_id, actor_id, now=None):
    """Returns the number of sessions closed, or None on failure."""
    now = now or utcnow()
    try:
        count = _terminate_all_pending(user_id, actor_id, now)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"terminate_all failed for user {user_id}: {e}")
        return None
    return count


def block_user(user_id, reason, actor_id, now=None):
    now = now or utcnow()
    try:
        user = db.session.get(User, user_id)
        if user is None or user.is_admin:
            return None
        user.is_blocked = True
        user.blocked_reason = reason
        user.blocked_at = now
        _terminate_all_pending(user.id, actor_id, now)
        log_event(user.id, "blocked", admin_identity(),
                  f"User blocked by administrator. Reason: {reason}", "high", admin_id=actor_id)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"block failed for user {user_id}: {e}")
        return None
    current_app.logger.info(f"User {user.email} blocked by admin {actor_id}")
    _notify_user_changed(user.id)
    return user


def unblock_user(user_id, actor_id):
    try:
        user = db.session.get(User, user_id)
        if user is None:
            return None
        user.is_blocked = False
        user.blocked_reason = None
        user.blocked_at = None
        log_event(user.id, "unblocked", admin_identity(),
                  "User unblocked by administrator", "medium", admin_id=actor_id)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"unblock failed for user {user_id}: {e}")
        return None
    _notify_user_changed(user.id)
    return user
