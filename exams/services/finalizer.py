"""
Time and participation driven state changes, run by the periodic sweep
(Celery beat / ``close_finished_attempts``) and opportunistically before mutations.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

from common.enums import AccessMode, AttemptStatus, ExamState
from exams.models import Attempt, Exam
from exams.signals import notify_exam_mutated

from .completeness import ExamCompleteness
from .guards import lock_exam

logger = logging.getLogger(__name__)

User = get_user_model()


@dataclass
class SweepResult:
    published: int = 0
    finalized: int = 0
    attempts_closed: int = 0


def close_started_attempts(exam: Exam, now) -> int:
    return Attempt.objects.filter(exam=exam, status=AttemptStatus.STARTED).update(
        status=AttemptStatus.SUBMITTED, ended_at=now
    )


def required_participant_ids(exam: Exam) -> set:
    if exam.access_mode == AccessMode.PUBLIC:
        qs = User.objects.filter(role=User.Roles.TEACHER, is_active=True)
        return set(qs.values_list("id", flat=True))
    return set(exam.assigned_users.values_list("user_id", flat=True))


def _mark_finalized(exam: Exam, now):
    exam.state = ExamState.FINALIZED
    exam.finalized_at = now
    exam.save(update_fields=["state", "finalized_at", "updated_at"])
    notify_exam_mutated(exam.pk, "auto_finalize")


def check_and_finalize(exam: Exam, now=None) -> bool:
    """
    Finalize a published exam when its window has closed or when every required
    participant has submitted. Caller holds the row lock.
    """
    if exam.state != ExamState.PUBLISHED:
        return False
    now = now or timezone.now()

    if exam.valid_until is not None and exam.valid_until <= now:
        closed = close_started_attempts(exam, now)
        _mark_finalized(exam, now)
        logger.info(
            "Exam %s (%s) finalized: validity ended, %d attempt(s) closed",
            exam.pk, exam.code, closed,
        )
        return True

    required = required_participant_ids(exam)
    if not required:
        return False

    submitted = set(
        Attempt.objects
        .filter(exam=exam, status=AttemptStatus.SUBMITTED, user_id__in=required)
        .values_list("user_id", flat=True)
    )
    if required <= submitted:
        closed = close_started_attempts(exam, now)
        _mark_finalized(exam, now)
        logger.info(
            "Exam %s (%s) finalized: all %d participant(s) submitted, %d attempt(s) closed",
            exam.pk, exam.code, len(required), closed,
        )
        return True
    return False


def finalize_if_due(exam_id, now=None) -> bool:
    """Own-transaction wrapper so the finalization survives a later refused mutation."""
    with transaction.atomic():
        exam = lock_exam(exam_id)
        return check_and_finalize(exam, now)


def auto_publish_due(now=None) -> int:
    now = now or timezone.now()
    published = 0
    due = Exam.objects.filter(state=ExamState.DRAFT, valid_from__lte=now).values_list("id", flat=True)
    for exam_id in list(due):
        with transaction.atomic():
            exam = Exam.objects.select_for_update().filter(pk=exam_id).first()
            if exam is None or exam.state != ExamState.DRAFT or not ExamCompleteness(exam).can_publish():
                continue
            exam.state = ExamState.PUBLISHED
            exam.published_at = now
            exam.save(update_fields=["state", "published_at", "updated_at"])
            notify_exam_mutated(exam.pk, "auto_publish")
        published += 1
        logger.info("Exam %s (%s) auto-published", exam.pk, exam.code)
    return published


def close_orphan_attempts(now=None) -> int:
    now = now or timezone.now()
    closed = Attempt.objects.filter(
        exam__state=ExamState.FINALIZED, status=AttemptStatus.STARTED
    ).update(status=AttemptStatus.SUBMITTED, ended_at=now)
    if closed:
        logger.warning("Closed %d started attempt(s) left on finalized exams", closed)
    return closed


def sweep(now=None) -> SweepResult:
    now = now or timezone.now()
    result = SweepResult()
    result.published = auto_publish_due(now)

    published_ids = list(Exam.objects.filter(state=ExamState.PUBLISHED).values_list("id", flat=True))
    for exam_id in published_ids:
        with transaction.atomic():
            exam = Exam.objects.select_for_update().filter(pk=exam_id).first()
            if exam is None:
                continue
            before = Attempt.objects.filter(exam=exam, status=AttemptStatus.STARTED).count()
            if check_and_finalize(exam, now):
                result.finalized += 1
                result.attempts_closed += before

    result.attempts_closed += close_orphan_attempts(now)
    return result
