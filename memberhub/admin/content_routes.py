from flask import jsonify, request, current_app
from flask_login import current_user
from . import admin_bp
from ..extensions import db
from ..models import User, UserUnlock, CONTENT_KINDS
from ..content.models import ContentItem, Topic, Lesson, LessonLink
from ..access.evaluator import rule_conflicts
from ..access.scheduler import get_scheduler
from ..notifications.utils import notify_admins
from ..signals import content_changed, user_state_changed
from ..utils.datetime_tools import to_utc_naive
from ..utils.rbac import admin_required

CONTENT_FIELDS = ("title", "description", "image_url", "is_blocked", "unlock_after_days",
                  "manual_unlock_only", "scheduled_unlock_date", "unblock_link")


def _apply_content_fields(item, data):
    for key in CONTENT_FIELDS:
        if key not in data:
            continue
        value = data[key]
        if key == "scheduled_unlock_date":
            value = to_utc_naive(value, data.get("timezone")) if value else None
        elif key == "unlock_after_days":
            value = int(value) if value not in (None, "") else None
            if value is not None and value < 0:
                raise ValueError("unlock_after_days must be >= 0")
        elif key in ("is_blocked", "manual_unlock_only"):
            value = bool(value)
        setattr(item, key, value)
    if "kind" in data:
        if data["kind"] not in CONTENT_KINDS:
            raise ValueError(f"kind must be one of {', '.join(CONTENT_KINDS)}")
        if item.id is not None and item.kind != data["kind"]:
            # grants carry their own copy of the kind
            (UserUnlock.query.filter_by(content_item_id=item.id)
             .update({UserUnlock.kind: data["kind"]}, synchronize_session="fetch"))
        item.kind = data["kind"]


def _build_lesson(data, position):
    lesson = Lesson(
        title=data["title"],
        description=data.get("description"),
        media_url=data.get("media_url"),
        thumbnail_url=data.get("thumbnail_url"),
        position=data.get("position", position),
    )
    for link in data.get("links", []):
        lesson.links.append(LessonLink(title=link.get("title"), url=link.get("url")))
    return lesson


def _flag_conflicts(item):
    for problem in rule_conflicts(item):
        current_app.logger.warning(f"⚠️ Conflicting unlock rules, manual-only wins: {problem}")
        notify_admins("Conflicting unlock rules", f'"{item.title}": {problem}. Manual-only wins.', "warning")


def _content_changed(item_id):
    content_changed.send(current_app._get_current_object(), item_id=item_id)


@admin_bp.route("/content", methods=["POST"])
@admin_required
def content_create():
    data = request.get_json(silent=True) or {}
    if not data.get("title"):
        return jsonify({"ok": False, "error": "Title is required."}), 400
    item = ContentItem(kind=data.get("kind", "course"))
    try:
        _apply_content_fields(item, data)
        for pos, ld in enumerate(data.get("lessons", []), start=1):
            item.lessons.append(_build_lesson(ld, pos))
        for tpos, td in enumerate(data.get("topics", []), start=1):
            topic = Topic(title=td["title"], description=td.get("description"),
                          image_url=td.get("image_url"), is_active=td.get("is_active", True),
                          position=td.get("position", tpos))
            for pos, ld in enumerate(td.get("lessons", []), start=1):
                topic.lessons.append(_build_lesson(ld, pos))
            item.topics.append(topic)
    except (ValueError, KeyError) as e:
        return jsonify({"ok": False, "error": f"Invalid content: {e}"}), 400
    db.session.add(item)
    db.session.commit()
    _flag_conflicts(item)
    _content_changed(item.id)
    return jsonify({"ok": True, "item": item.to_dict(with_lessons=True)}), 201


@admin_bp.route("/content/<int:item_id>", methods=["PATCH"])
@admin_required
def content_update(item_id):
    item = db.get_or_404(ContentItem, item_id)
    data = request.get_json(silent=True) or {}
    try:
        _apply_content_fields(item, data)
    except ValueError as e:
        return jsonify({"ok": False, "error": str(e)}), 400
    db.session.commit()
    _flag_conflicts(item)
    _content_changed(item.id)
    return jsonify({"ok": True, "item": item.to_dict()})


@admin_bp.route("/content/<int:item_id>", methods=["DELETE"])
@admin_required
def content_delete(item_id):
    item = db.get_or_404(ContentItem, item_id)
    UserUnlock.query.filter_by(content_item_id=item.id).delete()
    db.session.delete(item)
    db.session.commit()
    _content_changed(item_id)
    return jsonify({"ok": True})


@admin_bp.route("/content/<int:item_id>/lessons", methods=["POST"])
@admin_required
def lesson_add(item_id):
    item = db.get_or_404(ContentItem, item_id)
    data = request.get_json(silent=True) or {}
    if not data.get("title"):
        return jsonify({"ok": False, "error": "Title is required."}), 400
    topic_id = data.get("topic_id")
    if topic_id is not None:
        topic = db.get_or_404(Topic, topic_id)
        if topic.content_item_id != item.id:
            return jsonify({"ok": False, "error": "Topic belongs to another item."}), 400
        lesson = _build_lesson(data, len(topic.lessons) + 1)
        topic.lessons.append(lesson)
    else:
        lesson = _build_lesson(data, len(item.lessons) + 1)
        item.lessons.append(lesson)
    db.session.commit()
    return jsonify({"ok": True, "lesson": lesson.to_dict()}), 201


@admin_bp.route("/topics/<int:topic_id>", methods=["PATCH"])
@admin_required
def topic_update(topic_id):
    topic = db.get_or_404(Topic, topic_id)
    data = request.get_json(silent=True) or {}
    for key in ("title", "description", "image_url", "position"):
        if key in data:
            setattr(topic, key, data[key])
    if "is_active" in data:
        topic.is_active = bool(data["is_active"])
    db.session.commit()
    return jsonify({"ok": True, "topic": topic.to_dict()})


# ---------- per-user overrides ----------

@admin_bp.route("/users/<int:user_id>/unlocks/<int:item_id>", methods=["POST"])
@admin_required
def unlock_grant(user_id, item_id):
    user = db.get_or_404(User, user_id)
    item = db.get_or_404(ContentItem, item_id)
    if not any(u.content_item_id == item.id for u in user.unlocks):
        user.unlocks.append(UserUnlock(content_item_id=item.id, kind=item.kind, granted_by=current_user.id))
        db.session.commit()
    user_state_changed.send(current_app._get_current_object(), user_id=user.id)
    return jsonify({"ok": True, "user": user.to_dict()})


@admin_bp.route("/users/<int:user_id>/unlocks/<int:item_id>", methods=["DELETE"])
@admin_required
def unlock_revoke(user_id, item_id):
    user = db.get_or_404(User, user_id)
    for grant in [u for u in user.unlocks if u.content_item_id == item_id]:
        user.unlocks.remove(grant)
    db.session.commit()
    user_state_changed.send(current_app._get_current_object(), user_id=user.id)
    return jsonify({"ok": True, "user": user.to_dict()})


@admin_bp.route("/scheduler/run", methods=["POST"])
@admin_required
def scheduler_run():
    scheduler = get_scheduler()
    unlocked = scheduler.scheduled_unlock_sweep()
    result = scheduler.reconcile_sweep(None)
    return jsonify({
        "ok": True,
        "scheduled_unlocked": [i.id for i in unlocked],
        "unlock_events": [e._asdict() for e in result.unlocked],
        "lock_events": [e._asdict() for e in result.locked],
    })
