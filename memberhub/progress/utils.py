from ..extensions import db
from ..content.models import ContentItem
from ..access.evaluator import is_accessible
from ..utils.datetime_tools import utcnow
from .models import Favorite, WatchHistory, CompletedLesson


def add_favorite(user, item):
    fav = Favorite.query.filter_by(user_id=user.id, content_item_id=item.id).first()
    if fav:
        return fav
    fav = Favorite(user_id=user.id, content_item_id=item.id)
    db.session.add(fav)
    db.session.commit()
    return fav

def remove_favorite(user, item):
    removed = Favorite.query.filter_by(user_id=user.id, content_item_id=item.id).delete()
    db.session.commit()
    return removed > 0

def list_favorites(user):
    return (db.session.query(ContentItem)
            .join(Favorite, Favorite.content_item_id == ContentItem.id)
            .filter(Favorite.user_id == user.id)
            .order_by(Favorite.added_at.desc())
            .all())


def _lesson_ids(item):
    return {l.id for l in item.all_lessons()}

def get_history(user, item):
    return WatchHistory.query.filter_by(user_id=user.id, content_item_id=item.id).first()

def record_watch(user, item, lesson_id=None, topic_id=None, minutes=0, now=None):
    """Upsert the (user, item) history row; first_watched_at is kept from the first visit."""
    now = now or utcnow()
    h = get_history(user, item)
    if h is None:
        h = WatchHistory(user_id=user.id, content_item_id=item.id,
                         first_watched_at=now, watch_time_minutes=0)
        db.session.add(h)
    if lesson_id is None:
        first = item.all_lessons()
        lesson_id = first[0].id if first else None
    if lesson_id is not None and lesson_id not in _lesson_ids(item):
        raise ValueError(f"lesson {lesson_id} does not belong to {item.kind} {item.id}")
    h.last_lesson_id = lesson_id
    if topic_id is not None:
        h.topic_id = topic_id
    h.last_watched_at = now
    h.watch_time_minutes = (h.watch_time_minutes or 0) + max(int(minutes or 0), 0)
    db.session.commit()
    return h

def mark_lesson_complete(user, item, lesson_id, now=None):
    h = record_watch(user, item, lesson_id=lesson_id, now=now)
    if lesson_id not in h.completed_lessons:
        h.completed.append(CompletedLesson(lesson_id=lesson_id))
        db.session.commit()
    return h

def progress_percent(history, item):
    if history is None:
        return 0.0
    lesson_ids = _lesson_ids(item)
    if not lesson_ids:
        return 0.0
    done = len(history.completed_lessons & lesson_ids)
    return done / len(lesson_ids) * 100

def continue_watching(user, now=None):
    """Watched items the user can still open, most recent first."""
    now = now or utcnow()
    rows = (db.session.query(WatchHistory, ContentItem)
            .join(ContentItem, ContentItem.id == WatchHistory.content_item_id)
            .filter(WatchHistory.user_id == user.id)
            .order_by(WatchHistory.last_watched_at.desc())
            .all())
    out = []
    for h, item in rows:
        if not is_accessible(item, user, now).accessible:
            continue
        out.append({
            "item": item.to_dict(),
            "history": h.to_dict(),
            "progress": round(progress_percent(h, item)),
        })
    return out
