from .evaluator import is_accessible, AccessDecision, REASON_MANUAL, REASON_COUNTDOWN
from .scheduler import UnlockScheduler, ReconcileResult, AccessEvent, get_scheduler
