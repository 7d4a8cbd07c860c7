"""
Derived read models kept in the Django cache.

Only the listing summary lives here. Lifecycle and guard decisions always read the
database, so a stale or missing entry can never change what an operation is allowed to do.
"""
import logging

from django.conf import settings
from django.core.cache import cache
from django.db.models import Count
from django.dispatch import receiver

from common.enums import ExamState

from .signals import exam_mutated

logger = logging.getLogger(__name__)

EXAM_STATE_SUMMARY_KEY = "exams:state-summary"
DASHBOARD_KEYS = ("dashboard:statistics", "dashboard:exams-by-state")


def exam_detail_key(exam_id) -> str:
    return f"exams:detail:{exam_id}"


def _compute_state_summary() -> dict:
    from .models import Exam

    counts = dict(Exam.objects.order_by().values_list("state").annotate(n=Count("id")))
    summary = {state.label.lower(): counts.get(state.value, 0) for state in ExamState}
    summary["total"] = sum(summary.values())
    return summary


def exam_state_summary() -> dict:
    return cache.get_or_set(
        EXAM_STATE_SUMMARY_KEY,
        _compute_state_summary,
        timeout=getattr(settings, "EXAM_CACHE_TIMEOUT", 300),
    )


@receiver(exam_mutated)
def invalidate_exam_caches(sender, exam_id=None, action=None, **kwargs):
    keys = [EXAM_STATE_SUMMARY_KEY, *DASHBOARD_KEYS]
    if exam_id is not None:
        keys.append(exam_detail_key(exam_id))
    cache.delete_many(keys)
    logger.debug("Cache invalidated after %s on exam %s", action, exam_id)
