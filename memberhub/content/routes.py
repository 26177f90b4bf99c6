from flask import jsonify, request
from flask_login import login_required, current_user
from . import content_bp
from .models import ContentItem
from ..extensions import db
from ..models import CONTENT_KINDS
from ..access.evaluator import available_items, blocked_items, describe, is_accessible, unlock_action
from ..progress.utils import record_watch
from ..utils.datetime_tools import utcnow


def _items_for_request():
    q = ContentItem.query
    kind = request.args.get("kind")
    if kind in CONTENT_KINDS:
        q = q.filter_by(kind=kind)
    search = request.args.get("q", "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter((ContentItem.title.ilike(like)) | (ContentItem.description.ilike(like)))
    return q.order_by(ContentItem.created_at.desc()).all()


@content_bp.route("/")
@login_required
def index():
    now = utcnow()
    return jsonify([describe(i, current_user, now) for i in _items_for_request()])


@content_bp.route("/available")
@login_required
def available():
    now = utcnow()
    items = available_items(_items_for_request(), current_user, now)
    return jsonify([describe(i, current_user, now) for i in items])


@content_bp.route("/blocked")
@login_required
def blocked():
    now = utcnow()
    items = blocked_items(_items_for_request(), current_user, now)
    return jsonify([describe(i, current_user, now) for i in items])


@content_bp.route("/<int:item_id>")
@login_required
def view(item_id):
    item = db.get_or_404(ContentItem, item_id)
    decision = is_accessible(item, current_user, utcnow())
    if not decision.accessible and not current_user.is_admin:
        return jsonify({
            "error": f"This {item.kind} is not available to you yet.",
            "lock_reason": decision.reason,
            "days_remaining": decision.days_remaining,
            "unlock_action": unlock_action(item, decision),
            "unblock_link": item.unblock_link,
        }), 403
    if not current_user.is_admin:
        record_watch(current_user, item)
    return jsonify(item.to_dict(with_lessons=True))
