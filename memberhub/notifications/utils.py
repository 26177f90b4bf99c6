from datetime import timedelta
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from ..extensions import db
from ..models import User
from ..utils.datetime_tools import utcnow
from .models import Notification


def _is_duplicate(user_id, title, message, now):
    window = timedelta(seconds=current_app.config["NOTIFICATION_DEDUP_SECONDS"])
    return db.session.query(Notification.id).filter(
        Notification.user_id == user_id,
        Notification.title == title,
        Notification.message == message,
        Notification.created_at >= now - window,
    ).first() is not None


def _trim_history(user_id):
    keep = current_app.config["NOTIFICATION_RETENTION"]
    stale = (Notification.query
             .filter_by(user_id=user_id)
             .order_by(Notification.created_at.desc(), Notification.id.desc())
             .offset(keep)
             .all())
    for n in stale:
        db.session.delete(n)


def add_notification(user_id, title, message, type="info", commit=True):
    """Fire-and-forget sink. Returns the Notification, or None when suppressed or failed."""
    now = utcnow()
    try:
        if _is_duplicate(user_id, title, message, now):
            return None
        n = Notification(user_id=user_id, title=title, message=message, type=type, created_at=now)
        db.session.add(n)
        db.session.flush()
        _trim_history(user_id)
        if commit:
            db.session.commit()
        return n
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.warning(f"notification for user {user_id} dropped: {e}")
        return None



def notify_admins(title, message, type="system"):
    for u in User.query.filter_by(is_admin=True).all():
        add_notification(u.id, title, message, type)


def notify_members(title, message, type="info"):
    """Every non-admin user."""
    sent = 0
    for u in User.query.filter_by(is_admin=False).all():
        if add_notification(u.id, title, message, type) is not None:
            sent += 1
    return sent
