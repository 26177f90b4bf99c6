"""
Access rules for content items.

Everything here is a pure function of (item, user, now): nothing is read from
or written to the database beyond the attributes already loaded on the objects
passed in. Persisting an automatic unlock is the scheduler's job.
"""
from typing import NamedTuple, Optional

from ..utils.datetime_tools import whole_days_between

REASON_MANUAL = "manual"
REASON_COUNTDOWN = "countdown"


class AccessDecision(NamedTuple):
    accessible: bool
    reason: Optional[str] = None
    days_remaining: Optional[int] = None


OPEN = AccessDecision(True)


def days_since_registration(user, now):
    """Whole days on the wall clock, floored."""
    return whole_days_between(user.registration_date, now)


def has_countdown(item):
    # 0 is treated like "unset", the same way the admin form stores it
    return bool(item.unlock_after_days)


def is_accessible(item, user, now):
    if not item.is_blocked:
        return OPEN
    if item.id in user.unlocked_ids(item.kind):
        return OPEN
    if item.manual_unlock_only:
        return AccessDecision(False, REASON_MANUAL)
    if has_countdown(item):
        days = days_since_registration(user, now)
        if days >= item.unlock_after_days:
            return OPEN
        return AccessDecision(False, REASON_COUNTDOWN, max(item.unlock_after_days - days, 0))
    return AccessDecision(False, REASON_MANUAL)


def countdown_elapsed(item, user, now):
    """True when the day-count rule alone would open the item (override ignored)."""
    if not item.is_blocked or item.manual_unlock_only or not has_countdown(item):
        return False
    return days_since_registration(user, now) >= item.unlock_after_days


def automatically_denied(item, user, now):
    """True when no automatic rule grants access to a blocked item any more."""
    if not item.is_blocked:
        return False
    if item.manual_unlock_only:
        return True
    return has_countdown(item) and days_since_registration(user, now) < item.unlock_after_days


def unlock_action(item, decision):
    if decision.accessible:
        return None
    if decision.reason == REASON_COUNTDOWN:
        return "wait"
    if item.unblock_link:
        return "link"
    return "contact_admin"


def rule_conflicts(item):
    """Contradictory rule combinations; manual-only wins, but they deserve a look."""
    conflicts = []
    if item.manual_unlock_only and has_countdown(item):
        conflicts.append(f"{item.kind} {item.id}: manual-only with unlock_after_days={item.unlock_after_days}")
    if item.manual_unlock_only and item.scheduled_unlock_date is not None:
        conflicts.append(f"{item.kind} {item.id}: manual-only with a scheduled unlock date")
    return conflicts


def available_items(items, user, now):
    return [i for i in items if is_accessible(i, user, now).accessible]


def blocked_items(items, user, now):
    return [i for i in items if not is_accessible(i, user, now).accessible]


def describe(item, user, now):
    """Item payload enriched with the user's lock state, for JSON responses."""
    decision = is_accessible(item, user, now)
    data = item.to_dict()
    data.update({
        "accessible": decision.accessible,
        "lock_reason": decision.reason,
        "days_remaining": decision.days_remaining,
        "unlock_action": unlock_action(item, decision),
    })
    return data
