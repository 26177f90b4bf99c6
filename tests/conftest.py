from datetime import timedelta

import pytest

from memberhub import create_app
from memberhub.extensions import db as _db
from memberhub.models import User, UserUnlock
from memberhub.content.models import ContentItem, Lesson, Topic
from memberhub.utils.datetime_tools import utcnow
from memberhub.utils.identity import Identity


@pytest.fixture
def app():
    app = create_app("config.TestConfig")
    with app.app_context():
        _db.create_all()
    yield app
    with app.app_context():
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def ctx(app):
    """Application context for tests that work with models directly."""
    with app.app_context():
        yield app
        _db.session.rollback()


@pytest.fixture
def db(ctx):
    return _db


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def now():
    return utcnow()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(email=None, days_ago=0, password="password1", is_admin=False, unlocked=(), **kw):
        counter["n"] += 1
        u = User(
            email=email or f"member{counter['n']}@example.com",
            name=kw.pop("name", f"Member {counter['n']}"),
            is_admin=is_admin,
            registration_date=kw.pop("registration_date", utcnow() - timedelta(days=days_ago)),
            **kw,
        )
        u.set_password(password)
        for item in unlocked:
            u.unlocks.append(UserUnlock(content_item_id=item.id, kind=item.kind))
        db.session.add(u)
        db.session.commit()
        return u

    return _make


@pytest.fixture
def make_item(db):
    def _make(title="Item", kind="course", lessons=0, **kw):
        item = ContentItem(kind=kind, title=title, **kw)
        for pos in range(1, lessons + 1):
            item.lessons.append(Lesson(title=f"{title} lesson {pos}", position=pos))
        db.session.add(item)
        db.session.commit()
        return item

    return _make


@pytest.fixture
def add_topic(db):
    def _add(item, title="Topic", lessons=1, is_active=True):
        topic = Topic(title=title, is_active=is_active, position=len(item.topics) + 1)
        for pos in range(1, lessons + 1):
            topic.lessons.append(Lesson(title=f"{title} lesson {pos}", position=pos))
        item.topics.append(topic)
        db.session.commit()
        return topic

    return _add


def identity_for(ip, agent="Mozilla/5.0 (Windows NT 10.0) Chrome/120.0"):
    return Identity(ip, agent, "Desktop", "Chrome", "Local network")


@pytest.fixture
def identity():
    return identity_for
