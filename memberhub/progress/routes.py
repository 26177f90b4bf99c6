from flask import jsonify, request, abort
from flask_login import login_required, current_user
from . import progress_bp
from .utils import (add_favorite, remove_favorite, list_favorites, record_watch,
                    mark_lesson_complete, continue_watching, progress_percent, get_history)
from ..extensions import db
from ..content.models import ContentItem
from ..access.evaluator import is_accessible
from ..utils.datetime_tools import utcnow


def _accessible_item_or_403(item_id):
    item = db.get_or_404(ContentItem, item_id)
    if not is_accessible(item, current_user, utcnow()).accessible:
        abort(403)
    return item


@progress_bp.route("/favorites")
@login_required
def favorites():
    return jsonify([i.to_dict() for i in list_favorites(current_user)])

@progress_bp.route("/favorites/<int:item_id>", methods=["POST"])
@login_required
def favorite_add(item_id):
    item = db.get_or_404(ContentItem, item_id)
    add_favorite(current_user, item)
    return jsonify({"ok": True})

@progress_bp.route("/favorites/<int:item_id>", methods=["DELETE"])
@login_required
def favorite_remove(item_id):
    item = db.get_or_404(ContentItem, item_id)
    return jsonify({"ok": True, "removed": remove_favorite(current_user, item)})


@progress_bp.route("/history/<int:item_id>", methods=["POST"])
@login_required
def history_record(item_id):
    item = _accessible_item_or_403(item_id)
    data = request.get_json(silent=True) or {}
    try:
        h = record_watch(current_user, item,
                         lesson_id=data.get("lesson_id"),
                         topic_id=data.get("topic_id"),
                         minutes=data.get("minutes", 0))
    except ValueError as e:
        return jsonify({"ok": False, "error": str(e)}), 400
    return jsonify({"ok": True, "history": h.to_dict(), "progress": round(progress_percent(h, item))})

@progress_bp.route("/history/<int:item_id>/complete/<int:lesson_id>", methods=["POST"])
@login_required
def history_complete(item_id, lesson_id):
    item = _accessible_item_or_403(item_id)
    try:
        h = mark_lesson_complete(current_user, item, lesson_id)
    except ValueError as e:
        return jsonify({"ok": False, "error": str(e)}), 400
    return jsonify({"ok": True, "progress": round(progress_percent(h, item))})

@progress_bp.route("/history/<int:item_id>")
@login_required
def history_get(item_id):
    item = db.get_or_404(ContentItem, item_id)
    h = get_history(current_user, item)
    return jsonify({"history": h.to_dict() if h else None,
                    "progress": round(progress_percent(h, item))})

@progress_bp.route("/continue")
@login_required
def continue_list():
    return jsonify(continue_watching(current_user))
