from ..extensions import db
from ..utils.datetime_tools import utcnow, to_iso


class ContentItem(db.Model):
    """A course or a product. Both kinds share every field and every access rule."""
    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(20), nullable=False, default="course")   # "course" or "product"
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    image_url = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=utcnow)

    # gating
    is_blocked = db.Column(db.Boolean, default=False, nullable=False)
    unlock_after_days = db.Column(db.Integer, nullable=True)        # None/0 = no countdown
    manual_unlock_only = db.Column(db.Boolean, default=False, nullable=False)
    scheduled_unlock_date = db.Column(db.DateTime, nullable=True)   # consumed once applied
    unblock_link = db.Column(db.String(255), nullable=True)

    lessons = db.relationship("Lesson", backref="content_item",
                              cascade="all, delete-orphan",
                              order_by="Lesson.position")
    topics = db.relationship("Topic", backref="content_item",
                             cascade="all, delete-orphan",
                             order_by="Topic.position")

    def all_lessons(self):
        """Direct lessons followed by the lessons of active topics, in order."""
        out = list(self.lessons or [])
        for topic in self.topics or []:
            if topic.is_active:
                out.extend(topic.lessons or [])
        return out

    def to_dict(self, with_lessons=False):
        data = {
            "id": self.id,
            "kind": self.kind,
            "title": self.title,
            "description": self.description,
            "image_url": self.image_url,
            "is_blocked": self.is_blocked,
            "unlock_after_days": self.unlock_after_days,
            "manual_unlock_only": self.manual_unlock_only,
            "scheduled_unlock_date": to_iso(self.scheduled_unlock_date),
            "unblock_link": self.unblock_link,
        }
        if with_lessons:
            data["lessons"] = [l.to_dict() for l in self.lessons]
            data["topics"] = [t.to_dict() for t in self.topics]
        return data


class Topic(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    content_item_id = db.Column(db.Integer, db.ForeignKey("content_item.id"), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    image_url = db.Column(db.String(255))
    is_active = db.Column(db.Boolean, default=True)
    position = db.Column(db.Integer, default=1)   # 1-based order
    created_at = db.Column(db.DateTime, default=utcnow)

    lessons = db.relationship("Lesson", backref="topic",
                              cascade="all, delete-orphan",
                              order_by="Lesson.position")

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "image_url": self.image_url,
            "is_active": self.is_active,
            "position": self.position,
            "lessons": [l.to_dict() for l in self.lessons],
        }


class Lesson(db.Model):
    # Either content_item_id (direct lesson) or topic_id (topic lesson) is set, never both.
    id = db.Column(db.Integer, primary_key=True)
    content_item_id = db.Column(db.Integer, db.ForeignKey("content_item.id"), nullable=True)
    topic_id = db.Column(db.Integer, db.ForeignKey("topic.id"), nullable=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    media_url = db.Column(db.String(255))
    thumbnail_url = db.Column(db.String(255))
    position = db.Column(db.Integer, default=1)

    links = db.relationship("LessonLink", backref="lesson",
                            cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "media_url": self.media_url,
            "thumbnail_url": self.thumbnail_url,
            "position": self.position,
            "links": [{"title": k.title, "url": k.url} for k in self.links],
        }


class LessonLink(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    lesson_id = db.Column(db.Integer, db.ForeignKey("lesson.id"))
    title = db.Column(db.String(200))
    url = db.Column(db.String(255))
