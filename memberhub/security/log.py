from ..extensions import db
from .models import SecurityLog, LOG_ACTIONS, SEVERITIES


def log_event(user_id, action, identity, details, severity="low", admin_id=None):
    """Append one entry to the session. The caller commits together with its own changes."""
    if action not in LOG_ACTIONS:
        raise ValueError(f"unknown security action {action!r}")
    if severity not in SEVERITIES:
        raise ValueError(f"unknown severity {severity!r}")
    entry = SecurityLog(
        user_id=user_id,
        action=action,
        ip_address=identity.ip_address,
        user_agent=identity.user_agent,
        details=details,
        severity=severity,
        admin_id=admin_id,
    )
    db.session.add(entry)
    return entry


def query_logs(user_id=None, action=None, severity=None, limit=None):
    """Newest first."""
    q = SecurityLog.query
    if user_id is not None:
        q = q.filter(SecurityLog.user_id == user_id)
    if action:
        q = q.filter(SecurityLog.action == action)
    if severity:
        q = q.filter(SecurityLog.severity == severity)
    q = q.order_by(SecurityLog.timestamp.desc(), SecurityLog.id.desc())
    if limit:
        q = q.limit(limit)
    return q.all()
