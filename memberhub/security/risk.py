"""
Multi-origin signals. Three separate knobs, not unified:

- has_multiple_origins: login-time alert, distinct IPs > MULTIPLE_IP_ALERT_THRESHOLD
- detect_suspicious_activity: admin flag, distinct IPs > SUSPICIOUS_IP_THRESHOLD
- classify_risk: tiered level from RISK_MEDIUM_IPS / RISK_HIGH_IPS / RISK_CRITICAL_IPS

The functions taking session lists are pure; thresholds come in as arguments.
"""
from ..utils.settings import int_setting

DEFAULT_TIERS = {"medium": 2, "high": 3, "critical": 5}


def active_ips(sessions, user_id):
    return {s.ip_address for s in sessions if s.user_id == user_id and s.is_active}


def classify_risk(active_sessions, user_id, tiers=None):
    tiers = tiers or DEFAULT_TIERS
    n = len(active_ips(active_sessions, user_id))
    if n >= tiers["critical"]:
        return "critical"
    if n >= tiers["high"]:
        return "high"
    if n >= tiers["medium"]:
        return "medium"
    return "low"


def has_multiple_origins(sessions, user_id, threshold):
    return len(active_ips(sessions, user_id)) > threshold


def detect_suspicious_activity(sessions, user_id, threshold=3):
    return len(active_ips(sessions, user_id)) > threshold


def configured_tiers():
    return {
        "medium": int_setting("RISK_MEDIUM_IPS"),
        "high": int_setting("RISK_HIGH_IPS"),
        "critical": int_setting("RISK_CRITICAL_IPS"),
    }


def format_ip(ip):
    if not ip or ip == "127.0.0.1":
        return "Local IP"
    return ip


def security_summary(sessions, users, logs):
    """Admin overview built from already-loaded rows. Needs an app context for thresholds."""
    active = [s for s in sessions if s.is_active]
    tiers = configured_tiers()
    suspicious_threshold = int_setting("SUSPICIOUS_IP_THRESHOLD")
    per_user = []
    for u in users:
        if u.is_admin:
            continue
        ips = active_ips(active, u.id)
        if not ips:
            continue
        per_user.append({
            "user_id": u.id,
            "active_ips": sorted(format_ip(ip) for ip in ips),
            "risk": classify_risk(active, u.id, tiers),
            "suspicious": detect_suspicious_activity(active, u.id, suspicious_threshold),
        })
    return {
        "active_sessions": len(active),
        "blocked_users": sum(1 for u in users if u.is_blocked),
        "high_severity_logs": sum(1 for l in logs if l.severity in ("high", "critical")),
        "users": per_user,
    }
