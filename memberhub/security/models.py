import secrets
from sqlalchemy import event, inspect, select
from ..extensions import db
from ..utils.datetime_tools import utcnow, to_iso

LOG_ACTIONS = ("login", "logout", "blocked", "unblocked", "suspicious_activity", "multiple_ips")
SEVERITIES = ("low", "medium", "high", "critical")


class ImmutableRecordError(RuntimeError):
    """Raised when code tries to change an append-only or finalized row."""


def _new_session_id():
    return f"session_{secrets.token_hex(12)}"


class SecurityLog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), index=True)
    action = db.Column(db.String(30), nullable=False, index=True)
    ip_address = db.Column(db.String(100))
    user_agent = db.Column(db.String(255))
    timestamp = db.Column(db.DateTime, default=utcnow, index=True)
    details = db.Column(db.Text, default="")
    severity = db.Column(db.String(10), default="low", index=True)
    admin_id = db.Column(db.Integer, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "action": self.action,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "timestamp": to_iso(self.timestamp),
            "details": self.details,
            "severity": self.severity,
            "admin_id": self.admin_id,
        }


class SystemSetting(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(100), unique=True, nullable=False)
    value = db.Column(db.String(255))


class UserSession(db.Model):
    id = db.Column(db.String(64), primary_key=True, default=_new_session_id)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), index=True)
    ip_address = db.Column(db.String(100))
    user_agent = db.Column(db.String(255))
    location = db.Column(db.String(120))
    device = db.Column(db.String(20))
    browser = db.Column(db.String(20))
    login_time = db.Column(db.DateTime, default=utcnow)
    last_activity = db.Column(db.DateTime, default=utcnow)
    is_active = db.Column(db.Boolean, default=True, index=True)
    logout_time = db.Column(db.DateTime, nullable=True)
    session_duration = db.Column(db.Integer, nullable=True)  # minutes

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "location": self.location,
            "device": self.device,
            "browser": self.browser,
            "login_time": to_iso(self.login_time),
            "last_activity": to_iso(self.last_activity),
            "is_active": self.is_active,
            "logout_time": to_iso(self.logout_time),
            "session_duration": self.session_duration,
        }


# --- immutability guards ---

@event.listens_for(SecurityLog, "before_update")
def _security_log_is_append_only(mapper, connection, target):
    raise ImmutableRecordError(f"security log {target.id} is append-only")


@event.listens_for(SecurityLog, "before_delete")
def _security_log_is_not_deletable(mapper, connection, target):
    raise ImmutableRecordError(f"security log {target.id} is append-only")


@event.listens_for(UserSession, "before_update")
def _terminated_session_is_frozen(mapper, connection, target):
    hist = inspect(target).attrs.is_active.history
    # committed value is in .unchanged when the flag itself is untouched, in .deleted when it changed
    committed = hist.deleted or hist.unchanged
    if committed:
        previous = committed[0]
    else:
        # attribute expired and never reloaded
        previous = connection.scalar(
            select(UserSession.__table__.c.is_active).where(UserSession.__table__.c.id == target.id)
        )
    if previous is False:
        raise ImmutableRecordError(f"session {target.id} is terminated")
