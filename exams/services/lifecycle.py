"""
Exam state machine: Draft "0" -> Published "1" -> Finalized "2".

States are compared as enum members. Every public function runs in one transaction
and re-reads the exam under a row lock before evaluating its guards.
"""
from __future__ import annotations

import logging

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from common.enums import AccessMode, AttemptStatus, ExamState
from exams.exceptions import (
    AccessModeMismatch,
    ExamFinalized,
    IncompleteWizard,
    InvalidTransition,
    StepIncomplete,
)
from exams.models import AssignedUser, Attachment, Attempt, Exam
from exams.signals import notify_exam_mutated

from .completeness import TOTAL_STEPS, ExamCompleteness
from .finalizer import finalize_if_due
from .guards import ensure_no_blocking_attempts, lock_exam

logger = logging.getLogger(__name__)

User = get_user_model()


# ----------------------------
# Guards
# ----------------------------

def ensure_structural_mutation_allowed(exam: Exam):
    """Sub-tests, tracks, rules, schedule and assignments: Draft only, nobody mid-attempt."""
    if exam.state != ExamState.DRAFT:
        raise ExamFinalized()
    ensure_no_blocking_attempts(exam)


def ensure_question_mutation_allowed(exam: Exam):
    if exam.state == ExamState.FINALIZED:
        raise ExamFinalized("The exam is finalized; its questions can no longer change.")
    if exam.state == ExamState.PUBLISHED:
        ensure_no_blocking_attempts(exam)


def refresh_lifecycle(exam: Exam) -> Exam:
    """
    Let the auto-finalizer look at the exam before a mutation is attempted.
    Call outside any transaction so the finalization commits even if the
    mutation is refused afterwards.
    """
    if exam.state == ExamState.PUBLISHED and finalize_if_due(exam.pk):
        exam.refresh_from_db()
    return exam


def _validate_window(valid_from, valid_until):
    if valid_from and valid_until and valid_until <= valid_from:
        raise ValidationError({"fecha_fin_vigencia": "The end date must be after the start date."})


# ----------------------------
# Transitions
# ----------------------------

@transaction.atomic
def publish(exam, valid_from=None, valid_until=None, now=None) -> Exam:
    exam = lock_exam(exam)
    now = now or timezone.now()

    if exam.state != ExamState.DRAFT:
        raise InvalidTransition("Only draft exams can be published.")

    _validate_window(valid_from or exam.valid_from, valid_until or exam.valid_until)
    if valid_from is not None:
        exam.valid_from = valid_from
    if valid_until is not None:
        exam.valid_until = valid_until

    if ExamCompleteness(exam).overall() != 100:
        raise IncompleteWizard()

    if exam.valid_from is None:
        exam.valid_from = now
    exam.state = ExamState.PUBLISHED
    exam.published_at = now
    exam.save(update_fields=["valid_from", "valid_until", "state", "published_at", "updated_at"])

    logger.info("Exam %s (%s) published", exam.pk, exam.code)
    notify_exam_mutated(exam.pk, "publish")
    return exam


@transaction.atomic
def finalize_manually(exam, now=None) -> Exam:
    """
    Published -> Finalized by an administrator. Attempts still in progress are
    discarded together with their answers and sub-test results.
    """
    exam = lock_exam(exam)
    now = now or timezone.now()

    if exam.state != ExamState.PUBLISHED:
        raise InvalidTransition("Only published exams can be finalized.")

    started_ids = list(
        Attempt.objects.filter(exam=exam, status=AttemptStatus.STARTED).values_list("id", flat=True)
    )
    if started_ids:
        Attempt.objects.filter(id__in=started_ids).delete()

    exam.state = ExamState.FINALIZED
    exam.finalized_at = now
    exam.valid_until = now
    exam.save(update_fields=["state", "finalized_at", "valid_until", "updated_at"])

    logger.info(
        "Exam %s (%s) finalized manually, %d started attempt(s) discarded",
        exam.pk, exam.code, len(started_ids),
    )
    notify_exam_mutated(exam.pk, "finalize")
    return exam


@transaction.atomic
def update_schedule(exam, valid_from, valid_until) -> Exam:
    exam = lock_exam(exam)
    ensure_structural_mutation_allowed(exam)
    _validate_window(valid_from, valid_until)

    exam.valid_from = valid_from
    exam.valid_until = valid_until
    exam.save(update_fields=["valid_from", "valid_until", "updated_at"])
    notify_exam_mutated(exam.pk, "schedule")
    return exam


def change_state(exam, target, valid_from=None, valid_until=None, now=None) -> Exam:
    target = ExamState(target)
    current = ExamState(exam.state)

    if current == ExamState.DRAFT and target == ExamState.PUBLISHED:
        return publish(exam, valid_from=valid_from, valid_until=valid_until, now=now)
    if current == ExamState.PUBLISHED and target == ExamState.FINALIZED:
        return finalize_manually(exam, now=now)
    if current == target == ExamState.DRAFT and (valid_from or valid_until):
        return update_schedule(
            exam,
            valid_from if valid_from is not None else exam.valid_from,
            valid_until if valid_until is not None else exam.valid_until,
        )
    raise InvalidTransition(
        f"Cannot move an exam from {current.label} to {target.label}."
    )


@transaction.atomic
def delete_exam(exam) -> None:
    exam = lock_exam(exam)

    if exam.state == ExamState.PUBLISHED:
        ensure_no_blocking_attempts(exam)

    tag = getattr(settings, "EXAM_DESCRIPTION_ATTACHMENT_TAG", "examen_descripcion")
    attachments = list(Attachment.objects.filter(resource_type=tag, resource_id=str(exam.pk)))
    for attachment in attachments:
        storage, name = attachment.file.storage, attachment.file.name
        if name:
            transaction.on_commit(lambda storage=storage, name=name: storage.delete(name))
    Attachment.objects.filter(id__in=[a.id for a in attachments]).delete()

    exam_id, code = exam.pk, exam.code
    exam.delete()

    logger.info("Exam %s (%s) deleted with %d attachment(s)", exam_id, code, len(attachments))
    notify_exam_mutated(exam_id, "delete")


# ----------------------------
# Wizard
# ----------------------------

@transaction.atomic
def advance_wizard_step(exam, step: int) -> Exam:
    exam = lock_exam(exam)
    if exam.state != ExamState.DRAFT:
        raise ExamFinalized("Only draft exams move through the wizard.")
    if step < 1 or step > TOTAL_STEPS:
        raise ValidationError({"paso": f"Step must be between 1 and {TOTAL_STEPS}."})

    completeness = ExamCompleteness(exam)
    if step > completeness.highest_complete_step():
        raise StepIncomplete(completeness.next_incomplete_step() or step)

    if step > exam.wizard_step:
        exam.wizard_step = step
        exam.save(update_fields=["wizard_step", "updated_at"])
    return exam


@transaction.atomic
def assign_users(exam, user_ids, by=None) -> list[AssignedUser]:
    """Replace the participant list of a private exam wholesale."""
    exam = lock_exam(exam)
    if exam.access_mode != AccessMode.PRIVATE:
        raise AccessModeMismatch()
    ensure_structural_mutation_allowed(exam)

    wanted = list(dict.fromkeys(user_ids))
    users = list(User.objects.filter(id__in=wanted, role=User.Roles.TEACHER))
    if len(users) != len(wanted):
        found = {u.id for u in users}
        missing = [uid for uid in wanted if uid not in found]
        raise ValidationError({"usuarios": f"Unknown or non-participant user ids: {missing}"})

    AssignedUser.objects.filter(exam=exam).delete()
    now = timezone.now()
    rows = AssignedUser.objects.bulk_create(
        [AssignedUser(exam=exam, user=u, assigned_by=by, assigned_at=now) for u in users]
    )
    logger.info("Exam %s (%s): %d user(s) assigned", exam.pk, exam.code, len(rows))
    notify_exam_mutated(exam.pk, "assign_users")
    return rows
