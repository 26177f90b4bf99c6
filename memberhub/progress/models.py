from ..extensions import db
from ..utils.datetime_tools import utcnow, to_iso


class Favorite(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    content_item_id = db.Column(db.Integer, db.ForeignKey("content_item.id", ondelete="CASCADE"), nullable=False)
    added_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (db.UniqueConstraint("user_id", "content_item_id", name="uq_favorite_user_item"),)


class WatchHistory(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    content_item_id = db.Column(db.Integer, db.ForeignKey("content_item.id", ondelete="CASCADE"), nullable=False)
    topic_id = db.Column(db.Integer, db.ForeignKey("topic.id", ondelete="SET NULL"), nullable=True)
    last_lesson_id = db.Column(db.Integer, nullable=True)
    first_watched_at = db.Column(db.DateTime, default=utcnow)
    last_watched_at = db.Column(db.DateTime, default=utcnow)
    watch_time_minutes = db.Column(db.Integer, default=0)

    completed = db.relationship("CompletedLesson", backref="history",
                                cascade="all, delete-orphan", lazy="selectin")

    __table_args__ = (db.UniqueConstraint("user_id", "content_item_id", name="uq_history_user_item"),)

    @property
    def completed_lessons(self):
        return {c.lesson_id for c in self.completed}

    def to_dict(self):
        return {
            "content_item_id": self.content_item_id,
            "topic_id": self.topic_id,
            "last_lesson_id": self.last_lesson_id,
            "first_watched_at": to_iso(self.first_watched_at),
            "last_watched_at": to_iso(self.last_watched_at),
            "watch_time_minutes": self.watch_time_minutes,
            "completed_lessons": sorted(self.completed_lessons),
        }


class CompletedLesson(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    history_id = db.Column(db.Integer, db.ForeignKey("watch_history.id", ondelete="CASCADE"), nullable=False)
    lesson_id = db.Column(db.Integer, nullable=False)
    completed_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (db.UniqueConstraint("history_id", "lesson_id", name="uq_completed_lesson"),)
