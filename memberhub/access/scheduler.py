import threading
from datetime import datetime, timedelta, timezone
from typing import NamedTuple

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.jobstores.base import JobLookupError
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import User, UserUnlock, CONTENT_KINDS
from ..content.models import ContentItem
from ..notifications.utils import add_notification, notify_members
from ..signals import user_state_changed, content_changed
from ..utils.datetime_tools import utcnow
from .evaluator import countdown_elapsed, automatically_denied, rule_conflicts


class AccessEvent(NamedTuple):
    user_id: int
    item_id: int
    kind: str


class ReconcileResult(NamedTuple):
    unlocked: list
    locked: list

    def __add__(self, other):
        return ReconcileResult(self.unlocked + other.unlocked, self.locked + other.locked)


EMPTY = ReconcileResult([], [])

KIND_LABELS = {"course": "Course", "product": "Product"}


def get_scheduler(app=None):
    app = app or current_app
    return app.extensions["unlock_scheduler"]


class UnlockScheduler:
    """
    Keeps per-user unlock sets and scheduled content unlocks in line with the
    access rules.

    Two passes run independently:
    - reconcile(): per-user day-countdown unlock/lock, debounced on state change;
    - apply_scheduled_unlocks(): content-level scheduled dates, on a timer.

    Writes are last-write-wins: records are re-read right before mutating, but
    nothing stops an admin edit landing between the read and the commit.
    State (processed keys, the APScheduler instance) belongs to this object, so
    several schedulers can coexist, e.g. one per test app. The idempotency guard
    is process-local; two processes running schedulers can double-notify.
    """

    def __init__(self, app=None):
        self.app = None
        self.processed_unlocks = set()
        self._scheduler = None
        self._lock = threading.Lock()
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.app = app
        app.extensions["unlock_scheduler"] = self

    # ---------- lifecycle ----------

    @property
    def running(self):
        return self._scheduler is not None and self._scheduler.running

    def start(self, paused=False):
        if self.running:
            return
        cfg = self.app.config
        self._scheduler = BackgroundScheduler(timezone="UTC")
        self._scheduler.add_job(
            self.run_scheduled_unlocks, "interval",
            minutes=cfg["SCHEDULED_UNLOCK_INTERVAL_MINUTES"],
            id="scheduled-unlocks", replace_existing=True,
        )
        self._scheduler.add_job(
            self.run_scheduled_unlocks, "date",
            run_date=datetime.now(timezone.utc) + timedelta(seconds=cfg["SCHEDULED_UNLOCK_STARTUP_DELAY_SECONDS"]),
            id="scheduled-unlocks-startup", replace_existing=True,
        )
        self._scheduler.start(paused=paused)
        user_state_changed.connect(self._on_user_state_changed, sender=self.app)
        content_changed.connect(self._on_content_changed, sender=self.app)

    def stop(self):
        user_state_changed.disconnect(self._on_user_state_changed, sender=self.app)
        content_changed.disconnect(self._on_content_changed, sender=self.app)
        if self._scheduler is not None:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
            self._scheduler = None

    def pending_jobs(self):
        return self._scheduler.get_jobs() if self._scheduler is not None else []

    # ---------- debounced triggers ----------

    def _on_user_state_changed(self, sender, user_id=None, **extra):
        self.request_reconcile(user_id)

    def _on_content_changed(self, sender, item_id=None, **extra):
        self.request_reconcile(None)

    def request_reconcile(self, user_id=None):
        """Schedule a reconcile run; a newer request for the same target resets the delay."""
        if not self.running:
            return None
        job_id = "reconcile-all" if user_id is None else f"reconcile-user-{user_id}"
        delay = self.app.config["RECONCILE_DEBOUNCE_SECONDS"]
        return self._scheduler.add_job(
            self.run_reconcile, "date",
            run_date=datetime.now(timezone.utc) + timedelta(seconds=delay),
            args=[user_id], id=job_id, replace_existing=True,
        )

    def cancel_reconcile(self, user_id=None):
        job_id = "reconcile-all" if user_id is None else f"reconcile-user-{user_id}"
        try:
            self._scheduler.remove_job(job_id)
        except (JobLookupError, AttributeError):
            pass

    # ---------- sweeps (need an app context) ----------

    def reconcile_sweep(self, user_id=None):
        try:
            items = ContentItem.query.all()
            if user_id is None:
                users = User.query.filter_by(is_admin=False).all()
            else:
                user = db.session.get(User, user_id)
                users = [user] if user is not None else []
        except SQLAlchemyError as e:
            db.session.rollback()
            self.app.logger.error(f"reconcile load failed: {e}")
            return EMPTY
        return self.reconcile(users, items, utcnow())

    def scheduled_unlock_sweep(self):
        try:
            items = ContentItem.query.filter(
                ContentItem.is_blocked.is_(True),
                ContentItem.scheduled_unlock_date.isnot(None),
            ).all()
        except SQLAlchemyError as e:
            db.session.rollback()
            self.app.logger.error(f"scheduled unlock load failed: {e}")
            return []
        return self.apply_scheduled_unlocks(items, utcnow())

    # ---------- job entry points (run on scheduler threads) ----------

    def run_reconcile(self, user_id=None):
        with self.app.app_context():
            result = self.reconcile_sweep(user_id)
            return len(result.unlocked), len(result.locked)

    def run_scheduled_unlocks(self):
        with self.app.app_context():
            return [i.id for i in self.scheduled_unlock_sweep()]

    # ---------- per-user pass ----------

    def reconcile(self, users, items, now):
        for item in items:
            for problem in rule_conflicts(item):
                self.app.logger.warning(f"⚠️ Conflicting unlock rules, manual-only wins: {problem}")

        result = EMPTY
        for user in users:
            if user.is_admin:
                continue
            result = result + self.reconcile_user(user, items, now)
        if result.unlocked or result.locked:
            self.app.logger.info(
                f"reconcile: {len(result.unlocked)} unlocked, {len(result.locked)} locked across {len(users)} user(s)"
            )
        return result

    def reconcile_user(self, user, items, now):
        try:
            db.session.refresh(user)
        except SQLAlchemyError as e:
            db.session.rollback()
            self.app.logger.warning(f"reconcile skipped user {getattr(user, 'id', '?')}: {e}")
            return EMPTY

        to_unlock = [i for i in items
                     if countdown_elapsed(i, user, now) and i.id not in user.unlocked_ids(i.kind)]
        to_lock = [i for i in items
                   if i.id in user.unlocked_ids(i.kind) and automatically_denied(i, user, now)]
        if not to_unlock and not to_lock:
            return EMPTY

        lock_ids = {i.id for i in to_lock}
        try:
            for item in to_unlock:
                user.unlocks.append(UserUnlock(content_item_id=item.id, kind=item.kind))
            for grant in [u for u in user.unlocks if u.content_item_id in lock_ids]:
                user.unlocks.remove(grant)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            self.app.logger.error(f"reconcile write failed for user {user.id}: {e}")
            return EMPTY

        self._notify_transitions(user, to_unlock, to_lock)
        return ReconcileResult(
            [AccessEvent(user.id, i.id, i.kind) for i in to_unlock],
            [AccessEvent(user.id, i.id, i.kind) for i in to_lock],
        )

    def _notify_transitions(self, user, to_unlock, to_lock):
        unlock_cap = self.app.config["UNLOCK_NOTIFY_CAP"]
        lock_cap = self.app.config["LOCK_NOTIFY_CAP"]
        for kind in CONTENT_KINDS:
            label = KIND_LABELS[kind]
            for item in [i for i in to_unlock if i.kind == kind][:unlock_cap]:
                add_notification(user.id, f"{label} unlocked! 🎉",
                                 f'The {kind} "{item.title}" has been unlocked and is available to you!',
                                 "success")
            for item in [i for i in to_lock if i.kind == kind][:lock_cap]:
                add_notification(user.id, f"{label} access restricted",
                                 f'Access to the {kind} "{item.title}" has been temporarily restricted.',
                                 "warning")

    # ---------- content-level scheduled pass ----------

    @staticmethod
    def unlock_key(item):
        return f"scheduled-{item.kind}-{item.id}-{item.scheduled_unlock_date.isoformat()}"

    def apply_scheduled_unlocks(self, items, now):
        unlocked = []
        with self._lock:
            for item in items:
                try:
                    db.session.refresh(item)
                except SQLAlchemyError as e:
                    db.session.rollback()
                    self.app.logger.warning(f"scheduled unlock skipped item {getattr(item, 'id', '?')}: {e}")
                    continue

                if not item.is_blocked or item.scheduled_unlock_date is None:
                    continue
                if item.scheduled_unlock_date > now:
                    continue
                key = self.unlock_key(item)
                if key in self.processed_unlocks:
                    continue
                if item.manual_unlock_only:
                    self.app.logger.warning(
                        f"⚠️ {item.kind} {item.id} is manual-only; scheduled date ignored, review it"
                    )
                    self.processed_unlocks.add(key)
                    continue

                item.is_blocked = False
                item.scheduled_unlock_date = None
                try:
                    db.session.commit()
                except SQLAlchemyError as e:
                    db.session.rollback()
                    self.app.logger.error(f"scheduled unlock write failed for {item.kind} {item.id}: {e}")
                    continue

                self.processed_unlocks.add(key)
                unlocked.append(item)
                self.app.logger.info(f"✅ Scheduled unlock applied: {item.kind} {item.id} ({item.title})")
                label = KIND_LABELS.get(item.kind, "Content")
                notify_members(f"{label} unlocked automatically! 🎉",
                               f'The {item.kind} "{item.title}" was unlocked as scheduled and is now available to you!',
                               "success")
        return unlocked
