from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from memberhub.access import get_scheduler, AccessEvent
from memberhub.extensions import db as _db
from memberhub.models import User
from memberhub.content.models import ContentItem
from memberhub.notifications.models import Notification
from memberhub.signals import user_state_changed, content_changed
from memberhub.utils.datetime_tools import utcnow


def notes(user, type=None):
    q = Notification.query.filter_by(user_id=user.id)
    if type:
        q = q.filter_by(type=type)
    return q.all()


class TestReconcile:
    def test_elapsed_countdown_unlocks_and_notifies(self, app, make_user, make_item, now):
        it = make_item("Week One", is_blocked=True, unlock_after_days=7)
        u = make_user(days_ago=10)
        result = get_scheduler(app).reconcile([u], [it], now)
        assert result.unlocked == [AccessEvent(u.id, it.id, "course")]
        assert result.locked == []
        assert u.unlocked_courses == {it.id}
        [note] = notes(u)
        assert note.title == "Course unlocked! 🎉"
        assert "Week One" in note.message

    def test_pending_countdown_is_left_alone(self, app, make_user, make_item, now):
        it = make_item(is_blocked=True, unlock_after_days=7)
        u = make_user(days_ago=3)
        result = get_scheduler(app).reconcile([u], [it], now)
        assert result == ([], [])
        assert u.unlocked_courses == set()

    def test_grant_before_countdown_is_revoked(self, app, make_user, make_item, now):
        it = make_item("Advanced", is_blocked=True, unlock_after_days=30)
        u = make_user(days_ago=1, unlocked=[it])
        result = get_scheduler(app).reconcile([u], [it], now)
        assert result.locked == [AccessEvent(u.id, it.id, "course")]
        assert u.unlocked_courses == set()
        [note] = notes(u, "warning")
        assert note.title == "Course access restricted"

    def test_manual_only_grant_is_revoked(self, app, make_user, make_item, now):
        it = make_item(kind="product", is_blocked=True, manual_unlock_only=True)
        u = make_user(unlocked=[it])
        result = get_scheduler(app).reconcile([u], [it], now)
        assert [e.item_id for e in result.locked] == [it.id]
        assert u.unlocked_products == set()

    def test_unblocked_item_keeps_grant(self, app, make_user, make_item, now):
        it = make_item(is_blocked=False, manual_unlock_only=True)
        u = make_user(unlocked=[it])
        assert get_scheduler(app).reconcile([u], [it], now) == ([], [])
        assert u.unlocked_courses == {it.id}

    def test_second_pass_is_a_no_op(self, app, make_user, make_item, now):
        it = make_item(is_blocked=True, unlock_after_days=2)
        u = make_user(days_ago=5)
        scheduler = get_scheduler(app)
        scheduler.reconcile([u], [it], now)
        assert scheduler.reconcile([u], [it], now) == ([], [])
        assert len(notes(u)) == 1

    def test_admins_are_skipped(self, app, make_user, make_item, now):
        it = make_item(is_blocked=True, unlock_after_days=1)
        admin = make_user(days_ago=10, is_admin=True)
        assert get_scheduler(app).reconcile([admin], [it], now) == ([], [])
        assert admin.unlocked_courses == set()

    def test_notifications_are_capped_per_kind(self, app, make_user, make_item, now):
        courses = [make_item(f"Course {i}", is_blocked=True, unlock_after_days=1) for i in range(5)]
        products = [make_item(f"Product {i}", kind="product", is_blocked=True, unlock_after_days=1)
                    for i in range(4)]
        locked = [make_item(f"Locked {i}", is_blocked=True, unlock_after_days=60) for i in range(3)]
        u = make_user(days_ago=2, unlocked=locked)

        result = get_scheduler(app).reconcile([u], courses + products + locked, now)

        assert len(result.unlocked) == 9
        assert len(result.locked) == 3
        success = notes(u, "success")
        assert sum(1 for n in success if n.title.startswith("Course")) == 3
        assert sum(1 for n in success if n.title.startswith("Product")) == 3
        assert len(notes(u, "warning")) == 2
        # silent transitions still happen
        assert u.unlocked_courses == {c.id for c in courses}

    def test_one_failed_user_does_not_stop_the_sweep(self, app, make_user, make_item, now, monkeypatch):
        it = make_item(is_blocked=True, unlock_after_days=1)
        first = make_user(days_ago=5)
        second = make_user(days_ago=5)

        calls = {"n": 0}
        real_commit = Session.commit

        def flaky_commit(session):
            calls["n"] += 1
            if calls["n"] == 1:
                raise OperationalError("COMMIT", {}, Exception("database is locked"))
            return real_commit(session)

        monkeypatch.setattr(Session, "commit", flaky_commit)
        result = get_scheduler(app).reconcile([first, second], [it], now)

        assert [e.user_id for e in result.unlocked] == [second.id]
        assert first.unlocked_courses == set()
        assert second.unlocked_courses == {it.id}

    def test_run_reconcile_uses_its_own_context(self, app):
        with app.app_context():
            it = ContentItem(kind="course", title="Later", is_blocked=True, unlock_after_days=3)
            u = User(email="late@example.com", registration_date=utcnow() - timedelta(days=4))
            u.set_password("password1")
            _db.session.add_all([it, u])
            _db.session.commit()
            user_id, item_id = u.id, it.id

        assert get_scheduler(app).run_reconcile(user_id) == (1, 0)

        with app.app_context():
            assert _db.session.get(User, user_id).unlocked_courses == {item_id}


class TestScheduledUnlocks:
    def test_due_item_is_unlocked_once(self, app, make_user, make_item, now):
        it = make_item("Launch", is_blocked=True, scheduled_unlock_date=now - timedelta(minutes=1))
        members = [make_user(), make_user()]
        admin = make_user(is_admin=True)
        scheduler = get_scheduler(app)

        assert scheduler.apply_scheduled_unlocks([it], now) == [it]
        assert it.is_blocked is False
        assert it.scheduled_unlock_date is None
        for m in members:
            [note] = notes(m)
            assert note.title == "Course unlocked automatically! 🎉"
        assert notes(admin) == []

        assert scheduler.apply_scheduled_unlocks([it], now) == []
        assert all(len(notes(m)) == 1 for m in members)

    def test_processed_key_blocks_a_repeat_of_the_same_schedule(self, app, db, make_user, make_item, now):
        due = now - timedelta(minutes=1)
        it = make_item(is_blocked=True, scheduled_unlock_date=due)
        make_user()
        scheduler = get_scheduler(app)
        scheduler.apply_scheduled_unlocks([it], now)

        it.is_blocked = True
        it.scheduled_unlock_date = due
        db.session.commit()
        assert scheduler.apply_scheduled_unlocks([it], now) == []
        assert it.is_blocked is True

        it.scheduled_unlock_date = due + timedelta(seconds=30)
        db.session.commit()
        assert scheduler.apply_scheduled_unlocks([it], now) == [it]

    def test_future_date_is_not_applied(self, app, make_item, now):
        it = make_item(is_blocked=True, scheduled_unlock_date=now + timedelta(hours=1))
        assert get_scheduler(app).apply_scheduled_unlocks([it], now) == []
        assert it.is_blocked is True

    def test_manual_only_item_is_skipped(self, app, make_item, now):
        it = make_item(is_blocked=True, manual_unlock_only=True,
                       scheduled_unlock_date=now - timedelta(minutes=5))
        assert get_scheduler(app).apply_scheduled_unlocks([it], now) == []
        assert it.is_blocked is True
        assert it.scheduled_unlock_date is not None

    def test_manual_only_item_is_flagged_once(self, app, make_item, now, caplog):
        it = make_item(is_blocked=True, manual_unlock_only=True,
                       scheduled_unlock_date=now - timedelta(minutes=5))
        scheduler = get_scheduler(app)
        with caplog.at_level("WARNING"):
            scheduler.apply_scheduled_unlocks([it], now)
            scheduler.apply_scheduled_unlocks([it], now + timedelta(minutes=1))
        flagged = [r for r in caplog.records if "manual-only" in r.getMessage()]
        assert len(flagged) == 1
        assert scheduler.unlock_key(it) in scheduler.processed_unlocks

    def test_sweep_picks_due_items(self, app, make_item, now):
        due = make_item("Due", is_blocked=True, scheduled_unlock_date=now - timedelta(seconds=5))
        make_item("Open", is_blocked=False)
        unlocked = get_scheduler(app).scheduled_unlock_sweep()
        assert [i.id for i in unlocked] == [due.id]


class TestDebounce:
    @pytest.fixture
    def running(self, app):
        scheduler = get_scheduler(app)
        scheduler.start(paused=True)
        yield scheduler
        scheduler.stop()

    def job_ids(self, scheduler):
        return [j.id for j in scheduler.pending_jobs()]

    def test_start_registers_timer_jobs(self, running):
        assert set(self.job_ids(running)) == {"scheduled-unlocks", "scheduled-unlocks-startup"}

    def test_repeated_requests_collapse_to_one_job(self, running):
        for _ in range(3):
            running.request_reconcile(5)
        assert self.job_ids(running).count("reconcile-user-5") == 1

    def test_signals_schedule_reconciles(self, app, running):
        user_state_changed.send(app, user_id=9)
        user_state_changed.send(app, user_id=9)
        content_changed.send(app, item_id=1)
        ids = self.job_ids(running)
        assert ids.count("reconcile-user-9") == 1
        assert ids.count("reconcile-all") == 1

    def test_cancel_reconcile(self, running):
        running.request_reconcile(None)
        running.cancel_reconcile(None)
        assert "reconcile-all" not in self.job_ids(running)

    def test_stopped_scheduler_ignores_requests(self, app):
        scheduler = get_scheduler(app)
        assert not scheduler.running
        assert scheduler.request_reconcile(1) is None
        user_state_changed.send(app, user_id=1)
        assert scheduler.pending_jobs() == []
