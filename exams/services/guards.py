"""
Attempt guard: an exam with attempts in progress cannot be restructured.

Every check here must run after the exam row has been locked with ``lock_exam`` inside
the same transaction as the write it protects. ``start_attempt`` takes the same lock, so
attempt creation and guard decisions on one exam are serialised.
"""
import logging

from django.db import transaction
from django.shortcuts import get_object_or_404
from django.utils import timezone

from common.enums import AccessMode, AttemptStatus
from exams.exceptions import AttemptsInProgress, ExamNotOpen
from exams.models import Attempt, Exam

logger = logging.getLogger(__name__)


def lock_exam(exam) -> Exam:
    """Re-read the exam row with FOR UPDATE. Accepts an Exam or a primary key."""
    pk = getattr(exam, "pk", exam)
    return get_object_or_404(Exam.objects.select_for_update(), pk=pk)


def blocking_attempts(exam):
    return Attempt.objects.filter(exam=exam, status=AttemptStatus.STARTED)


def blocking_count(exam) -> int:
    return blocking_attempts(exam).count()


def has_blocking_attempts(exam) -> bool:
    return blocking_attempts(exam).exists()


def ensure_no_blocking_attempts(exam):
    count = blocking_count(exam)
    if count:
        raise AttemptsInProgress(count)


@transaction.atomic
def start_attempt(exam, user, track=None, now=None) -> Attempt:
    exam = lock_exam(exam)
    now = now or timezone.now()

    if not exam.is_published:
        raise ExamNotOpen()
    if exam.valid_from and now < exam.valid_from:
        raise ExamNotOpen("The exam has not started yet.")
    if exam.valid_until and now >= exam.valid_until:
        raise ExamNotOpen("The exam validity window is over.")
    if exam.access_mode == AccessMode.PRIVATE and not exam.assigned_users.filter(user=user).exists():
        raise ExamNotOpen("You are not assigned to this exam.")

    attempt = Attempt.objects.create(
        exam=exam, user=user, track=track, status=AttemptStatus.STARTED, started_at=now,
    )
    logger.info("Attempt %s started on exam %s by user %s", attempt.pk, exam.code, user.pk)
    return attempt
