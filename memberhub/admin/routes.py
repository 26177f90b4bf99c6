from flask import jsonify, request, current_app
from flask_login import current_user
from . import admin_bp
from ..extensions import is_user_online
from ..models import User
from ..security import sessions as session_manager
from ..security.log import query_logs
from ..security.models import UserSession, SecurityLog, LOG_ACTIONS, SEVERITIES
from ..security.risk import security_summary, classify_risk, configured_tiers
from ..utils.rbac import admin_required
from ..utils.settings import get_setting, set_setting

TUNABLE_SETTINGS = (
    "HEARTBEAT_MINUTES", "SESSION_TIMEOUT_MINUTES",
    "MULTIPLE_IP_ALERT_THRESHOLD", "SUSPICIOUS_IP_THRESHOLD",
    "RISK_MEDIUM_IPS", "RISK_HIGH_IPS", "RISK_CRITICAL_IPS",
)


@admin_bp.route("/users")
@admin_required
def users():
    q = User.query.filter_by(is_admin=False)
    if request.args.get("blocked") == "1":
        q = q.filter_by(is_blocked=True)
    active = UserSession.query.filter_by(is_active=True).all()
    tiers = configured_tiers()
    out = []
    for u in q.order_by(User.registration_date.desc()).all():
        d = u.to_dict()
        d["risk"] = classify_risk(active, u.id, tiers)
        d["online"] = is_user_online(u.id)
        out.append(d)
    return jsonify(out)


@admin_bp.route("/users/<int:user_id>/block", methods=["POST"])
@admin_required
def block(user_id):
    reason = ((request.get_json(silent=True) or {}).get("reason") or "").strip()
    if not reason:
        return jsonify({"ok": False, "error": "A reason is required."}), 400
    user = session_manager.block_user(user_id, reason, current_user.id)
    if user is None:
        return jsonify({"ok": False, "error": "Could not block this user."}), 400
    return jsonify({"ok": True, "user": user.to_dict()})


@admin_bp.route("/users/<int:user_id>/unblock", methods=["POST"])
@admin_required
def unblock(user_id):
    user = session_manager.unblock_user(user_id, current_user.id)
    if user is None:
        return jsonify({"ok": False, "error": "Could not unblock this user."}), 400
    return jsonify({"ok": True, "user": user.to_dict()})


@admin_bp.route("/users/<int:user_id>/sessions")
@admin_required
def user_sessions(user_id):
    q = UserSession.query.filter_by(user_id=user_id)
    if request.args.get("active") == "1":
        q = q.filter_by(is_active=True)
    return jsonify([s.to_dict() for s in q.order_by(UserSession.login_time.desc()).all()])


@admin_bp.route("/users/<int:user_id>/terminate_all", methods=["POST"])
@admin_required
def terminate_all(user_id):
    count = session_manager.terminate_all(user_id, current_user.id)
    if count is None:
        return jsonify({"ok": False, "error": "Could not terminate sessions."}), 500
    return jsonify({"ok": True, "terminated": count})


@admin_bp.route("/sessions")
@admin_required
def sessions():
    q = UserSession.query
    if request.args.get("active", "1") == "1":
        q = q.filter_by(is_active=True)
    return jsonify([s.to_dict() for s in q.order_by(UserSession.last_activity.desc()).all()])


@admin_bp.route("/sessions/<session_id>/terminate", methods=["POST"])
@admin_required
def terminate(session_id):
    s = session_manager.terminate(session_id, current_user.id)
    if s is None:
        return jsonify({"ok": False, "error": "Session not found or already ended."}), 404
    return jsonify({"ok": True, "session": s.to_dict()})


@admin_bp.route("/security/logs")
@admin_required
def logs():
    action = request.args.get("action")
    severity = request.args.get("severity")
    if action and action not in LOG_ACTIONS:
        return jsonify({"error": f"Unknown action {action}."}), 400
    if severity and severity not in SEVERITIES:
        return jsonify({"error": f"Unknown severity {severity}."}), 400
    entries = query_logs(
        user_id=request.args.get("user_id", type=int),
        action=action,
        severity=severity,
        limit=request.args.get("limit", 50, type=int),
    )
    return jsonify([e.to_dict() for e in entries])


@admin_bp.route("/security/summary")
@admin_required
def summary():
    return jsonify(security_summary(
        UserSession.query.filter_by(is_active=True).all(),
        User.query.all(),
        SecurityLog.query.filter(SecurityLog.severity.in_(("high", "critical"))).all(),
    ))


@admin_bp.route("/settings", methods=["GET", "POST"])
@admin_required
def settings():
    if request.method == "POST":
        data = request.get_json(silent=True) or {}
        for key, value in data.items():
            if key not in TUNABLE_SETTINGS:
                return jsonify({"ok": False, "error": f"Unknown setting {key}."}), 400
            try:
                int(value)
            except (TypeError, ValueError):
                return jsonify({"ok": False, "error": f"{key} must be an integer."}), 400
        for key, value in data.items():
            set_setting(key, int(value))
    return jsonify({k: int(get_setting(k, current_app.config[k])) for k in TUNABLE_SETTINGS})
