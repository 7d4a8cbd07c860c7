from datetime import timedelta

import pytest
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from common.enums import AccessMode, AttemptStatus, ExamState
from exams.exceptions import (
    AccessModeMismatch,
    AttemptsInProgress,
    ExamFinalized,
    IncompleteWizard,
    InvalidTransition,
    StepIncomplete,
)
from exams.models import (
    AssignedUser,
    Attachment,
    Attempt,
    AttemptAnswer,
    Exam,
    QuestionAssignment,
    ScoringRule,
    SubTest,
    SubTestResult,
)
from exams.services import lifecycle

pytestmark = pytest.mark.django_db


# ---- guards ---------------------------------------------------------------

def test_structural_mutation_allowed_on_idle_draft(draft_exam):
    lifecycle.ensure_structural_mutation_allowed(draft_exam)


def test_structural_mutation_refused_once_published(published_exam):
    with pytest.raises(ExamFinalized):
        lifecycle.ensure_structural_mutation_allowed(published_exam)


def test_structural_mutation_refused_with_attempt_in_progress(draft_exam, make_teacher, make_attempt):
    make_attempt(draft_exam, make_teacher())
    make_attempt(draft_exam, make_teacher())

    with pytest.raises(AttemptsInProgress) as excinfo:
        lifecycle.ensure_structural_mutation_allowed(draft_exam)
    assert excinfo.value.count == 2


def test_question_mutation_rules_per_state(published_exam, make_teacher, make_attempt):
    lifecycle.ensure_question_mutation_allowed(published_exam)

    make_attempt(published_exam, make_teacher())
    with pytest.raises(AttemptsInProgress):
        lifecycle.ensure_question_mutation_allowed(published_exam)

    published_exam.state = ExamState.FINALIZED
    with pytest.raises(ExamFinalized):
        lifecycle.ensure_question_mutation_allowed(published_exam)


def test_submitted_attempts_do_not_block(published_exam, make_teacher, make_attempt):
    make_attempt(published_exam, make_teacher(), status=AttemptStatus.SUBMITTED)

    lifecycle.ensure_question_mutation_allowed(published_exam)


# ---- publish ----------------------------------------------------------------

def test_publish_complete_draft(complete_exam):
    exam = lifecycle.publish(complete_exam)

    exam.refresh_from_db()
    assert exam.state == ExamState.PUBLISHED
    assert exam.published_at is not None


def test_publish_incomplete_draft_is_refused(draft_exam):
    with pytest.raises(IncompleteWizard):
        lifecycle.publish(draft_exam)

    draft_exam.refresh_from_db()
    assert draft_exam.state == ExamState.DRAFT
    assert draft_exam.published_at is None


def _blank_description(exam):
    Exam.objects.filter(pk=exam.pk).update(description="")


def _drop_subtests(exam):
    SubTest.objects.filter(exam=exam).delete()


def _drop_tracks(exam):
    exam.tracks.all().delete()


def _drop_one_rule(exam):
    ScoringRule.objects.filter(track__exam=exam).first().delete()


def _empty_one_subtest(exam):
    QuestionAssignment.objects.filter(exam=exam, subtest=exam.subtests.order_by("order").last()).delete()


def _open_ended_schedule(exam):
    Exam.objects.filter(pk=exam.pk).update(valid_until=None)


@pytest.mark.parametrize("break_step", [
    _blank_description,
    _drop_subtests,
    _drop_tracks,
    _drop_one_rule,
    _empty_one_subtest,
    _open_ended_schedule,
])
def test_publish_refused_for_each_missing_step(complete_exam, break_step):
    break_step(complete_exam)

    with pytest.raises(IncompleteWizard):
        lifecycle.publish(complete_exam)

    complete_exam.refresh_from_db()
    assert complete_exam.state == ExamState.DRAFT
    assert complete_exam.published_at is None


def test_publish_with_dates_completes_schedule_step(draft_exam, build_complete):
    build_complete(draft_exam)
    Exam.objects.filter(pk=draft_exam.pk).update(valid_from=None, valid_until=None)
    start = timezone.now() + timedelta(hours=2)

    exam = lifecycle.publish(draft_exam, valid_from=start, valid_until=start + timedelta(days=1))

    assert exam.state == ExamState.PUBLISHED
    assert exam.valid_from == start


def test_publish_twice_is_invalid(published_exam):
    with pytest.raises(InvalidTransition):
        lifecycle.publish(published_exam)


# ---- finalize -----------------------------------------------------------------

def test_manual_finalize_discards_started_attempts(published_exam, make_teacher, make_attempt):
    subtest = published_exam.subtests.first()
    link = published_exam.question_links.first()
    running = make_attempt(published_exam, make_teacher())
    AttemptAnswer.objects.create(attempt=running, question=link.question)
    SubTestResult.objects.create(attempt=running, subtest=subtest)
    done = make_attempt(published_exam, make_teacher(), status=AttemptStatus.SUBMITTED)
    before = timezone.now()

    exam = lifecycle.finalize_manually(published_exam)

    assert exam.state == ExamState.FINALIZED
    assert exam.finalized_at >= before
    assert exam.valid_until == exam.finalized_at
    assert list(Attempt.objects.filter(exam=exam)) == [done]
    assert not AttemptAnswer.objects.filter(attempt_id=running.id).exists()
    assert not SubTestResult.objects.filter(attempt_id=running.id).exists()


def test_finalize_draft_is_invalid(draft_exam):
    with pytest.raises(InvalidTransition):
        lifecycle.finalize_manually(draft_exam)


# ---- change_state -----------------------------------------------------------------

@pytest.mark.parametrize(
    "current, target",
    [
        (ExamState.DRAFT, ExamState.FINALIZED),
        (ExamState.PUBLISHED, ExamState.DRAFT),
        (ExamState.FINALIZED, ExamState.DRAFT),
        (ExamState.FINALIZED, ExamState.PUBLISHED),
        (ExamState.PUBLISHED, ExamState.PUBLISHED),
    ],
)
def test_change_state_rejects_transitions_outside_the_table(complete_exam, current, target):
    complete_exam.state = current
    complete_exam.save()

    with pytest.raises(InvalidTransition):
        lifecycle.change_state(complete_exam, target)

    complete_exam.refresh_from_db()
    assert complete_exam.state == current


def test_change_state_accepts_raw_code(complete_exam):
    exam = lifecycle.change_state(complete_exam, "1")

    assert exam.state == ExamState.PUBLISHED


def test_change_state_same_draft_state_updates_dates(draft_exam):
    start = timezone.now() + timedelta(days=2)

    exam = lifecycle.change_state(draft_exam, ExamState.DRAFT, valid_from=start, valid_until=start + timedelta(days=1))

    assert exam.state == ExamState.DRAFT
    assert exam.valid_from == start


def test_schedule_rejects_inverted_window(draft_exam):
    start = timezone.now()
    with pytest.raises(ValidationError):
        lifecycle.update_schedule(draft_exam, start, start - timedelta(hours=1))


# ---- delete ---------------------------------------------------------------------

def test_delete_finalized_exam_cascades(published_exam, make_teacher, make_attempt, settings):
    make_attempt(published_exam, make_teacher(), status=AttemptStatus.SUBMITTED)
    Attachment.objects.create(
        resource_type=settings.EXAM_DESCRIPTION_ATTACHMENT_TAG,
        resource_id=str(published_exam.pk),
        file="attachments/enunciado.pdf",
    )
    other = Attachment.objects.create(resource_type="pregunta", resource_id=str(published_exam.pk), file="attachments/x.png")
    Exam.objects.filter(pk=published_exam.pk).update(state=ExamState.FINALIZED)

    lifecycle.delete_exam(published_exam)

    assert not Exam.objects.filter(pk=published_exam.pk).exists()
    assert not SubTest.objects.filter(exam_id=published_exam.pk).exists()
    assert not ScoringRule.objects.filter(track__exam_id=published_exam.pk).exists()
    assert not QuestionAssignment.objects.filter(exam_id=published_exam.pk).exists()
    assert not Attempt.objects.filter(exam_id=published_exam.pk).exists()
    assert list(Attachment.objects.all()) == [other]


def test_delete_published_exam_with_attempt_in_progress_is_refused(published_exam, make_teacher, make_attempt):
    make_attempt(published_exam, make_teacher())

    with pytest.raises(AttemptsInProgress):
        lifecycle.delete_exam(published_exam)

    assert Exam.objects.filter(pk=published_exam.pk).exists()


def test_delete_idle_published_exam(published_exam):
    lifecycle.delete_exam(published_exam)

    assert not Exam.objects.filter(pk=published_exam.pk).exists()


# ---- wizard -----------------------------------------------------------------------

def test_advance_wizard_step_only_moves_forward(complete_exam):
    lifecycle.advance_wizard_step(complete_exam, 4)
    exam = lifecycle.advance_wizard_step(complete_exam, 2)

    assert exam.wizard_step == 4


def test_advance_wizard_step_past_incomplete_step(draft_exam):
    with pytest.raises(StepIncomplete) as excinfo:
        lifecycle.advance_wizard_step(draft_exam, 3)

    assert excinfo.value.step == 2
    draft_exam.refresh_from_db()
    assert draft_exam.wizard_step == 0


def test_advance_wizard_step_on_published_exam(published_exam):
    with pytest.raises(ExamFinalized):
        lifecycle.advance_wizard_step(published_exam, 1)


# ---- assigned users -----------------------------------------------------------------

def test_assign_users_replaces_the_whole_list(make_exam, make_teacher, admin_user):
    exam = make_exam(access_mode=AccessMode.PRIVATE)
    first, second, third = make_teacher(), make_teacher(), make_teacher()
    lifecycle.assign_users(exam, [first.id, second.id], by=admin_user)

    lifecycle.assign_users(exam, [third.id], by=admin_user)

    assigned = AssignedUser.objects.filter(exam=exam)
    assert [a.user_id for a in assigned] == [third.id]
    assert assigned[0].assigned_by == admin_user


def test_assign_users_on_public_exam(draft_exam, make_teacher):
    with pytest.raises(AccessModeMismatch):
        lifecycle.assign_users(draft_exam, [make_teacher().id])


def test_assign_users_rejects_non_participants(make_exam, make_teacher, admin_user):
    exam = make_exam(access_mode=AccessMode.PRIVATE)
    teacher = make_teacher()

    with pytest.raises(ValidationError):
        lifecycle.assign_users(exam, [teacher.id, admin_user.id])

    assert not AssignedUser.objects.filter(exam=exam).exists()
