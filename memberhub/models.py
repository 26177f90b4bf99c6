from .extensions import db
from .utils.datetime_tools import utcnow
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

CONTENT_KINDS = ("course", "product")

class User(UserMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    name = db.Column(db.String(100))
    password = db.Column(db.String(255), nullable=False)  # salted hash, never plaintext
    is_admin = db.Column(db.Boolean, default=False, nullable=False)
    registration_date = db.Column(db.DateTime, default=utcnow, nullable=False)

    is_blocked = db.Column(db.Boolean, default=False, nullable=False)
    blocked_reason = db.Column(db.String(255), nullable=True)
    blocked_at = db.Column(db.DateTime, nullable=True)

    unlocks = db.relationship("UserUnlock", backref="user",
                              cascade="all, delete-orphan", lazy="selectin")

    def set_password(self, raw):
        self.password = generate_password_hash(raw)

    def check_password(self, raw):
        return bool(self.password) and check_password_hash(self.password, raw)

    @property
    def is_active(self):
        # Flask-Login refuses inactive users at login_user()
        return not self.is_blocked

    def unlocked_ids(self, kind):
        return {u.content_item_id for u in self.unlocks if u.kind == kind}

    @property
    def unlocked_courses(self):
        return self.unlocked_ids("course")

    @property
    def unlocked_products(self):
        return self.unlocked_ids("product")

    def to_dict(self):
        from .utils.datetime_tools import to_iso
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "is_admin": self.is_admin,
            "registration_date": to_iso(self.registration_date),
            "unlocked_courses": sorted(self.unlocked_courses),
            "unlocked_products": sorted(self.unlocked_products),
            "is_blocked": self.is_blocked,
            "blocked_reason": self.blocked_reason,
            "blocked_at": to_iso(self.blocked_at),
        }


class UserUnlock(db.Model):
    """Per-user override: membership here is the sole authority for early/manual access."""
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    content_item_id = db.Column(db.Integer, db.ForeignKey("content_item.id", ondelete="CASCADE"), nullable=False)
    kind = db.Column(db.String(20), nullable=False)
    granted_at = db.Column(db.DateTime, default=utcnow)
    granted_by = db.Column(db.Integer, nullable=True)  # None = scheduler

    __table_args__ = (
        db.UniqueConstraint("user_id", "content_item_id", name="uq_user_unlock"),
    )
