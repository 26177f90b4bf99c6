from flask import jsonify, request, abort
from flask_login import login_required, current_user
from . import notifications_bp
from .models import Notification
from ..extensions import db, safe_commit


def _own_notification_or_404(note_id):
    note = db.get_or_404(Notification, note_id)
    if note.user_id != current_user.id:
        abort(403)
    return note


def _mine():
    return Notification.query.filter_by(user_id=current_user.id)


@notifications_bp.route("/poll")
@login_required
def poll():
    """Unseen notifications, newest first. Clients call this on their heartbeat."""
    notes = _mine().filter_by(seen=False).order_by(Notification.created_at.desc()).all()
    return jsonify([n.to_dict() for n in notes])


@notifications_bp.route("/")
@login_required
def index():
    limit = min(request.args.get("limit", 50, type=int), 100)
    notes = _mine().order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()
    return jsonify({
        "unseen": _mine().filter_by(seen=False).count(),
        "notifications": [n.to_dict() for n in notes],
    })


@notifications_bp.route("/mark_seen", methods=["POST"])
@login_required
def mark_seen():
    ids = (request.get_json(silent=True) or {}).get("ids") or []
    if not ids:
        return jsonify({"ok": True, "updated": 0})
    updated = (_mine()
               .filter(Notification.id.in_(ids), Notification.seen.is_(False))
               .update({Notification.seen: True}, synchronize_session=False))
    if not safe_commit():
        return jsonify({"ok": False, "error": "Please try again."}), 503
    return jsonify({"ok": True, "updated": updated})


@notifications_bp.route("/mark_all_seen", methods=["POST"])
@login_required
def mark_all_seen():
    updated = _mine().filter_by(seen=False).update({Notification.seen: True}, synchronize_session=False)
    if not safe_commit():
        return jsonify({"ok": False, "error": "Please try again."}), 503
    return jsonify({"ok": True, "updated": updated})


@notifications_bp.route("/<int:note_id>/toggle_seen", methods=["POST"])
@login_required
def toggle_seen(note_id):
    note = _own_notification_or_404(note_id)
    note.seen = not note.seen
    db.session.commit()
    return jsonify({"ok": True, "seen": note.seen})


@notifications_bp.route("/<int:note_id>", methods=["DELETE"])
@login_required
def delete(note_id):
    db.session.delete(_own_notification_or_404(note_id))
    db.session.commit()
    return jsonify({"ok": True})
