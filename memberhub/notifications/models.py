from ..extensions import db
from ..utils.datetime_tools import utcnow, to_iso

NOTIFICATION_TYPES = ("success", "warning", "error", "info", "course", "system")

class Notification(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), index=True)
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(20), default="info")
    seen = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "seen": self.seen,
            "time": to_iso(self.created_at),
        }
