from datetime import timedelta

import pytest
from django.utils import timezone

from common.enums import AccessMode, AttemptStatus, ExamState
from exams.exceptions import AttemptsInProgress, ExamNotOpen
from exams.models import AssignedUser
from exams.services import guards

pytestmark = pytest.mark.django_db


def test_blocking_attempts_only_count_started(published_exam, make_teacher, make_attempt):
    assert not guards.has_blocking_attempts(published_exam)

    make_attempt(published_exam, make_teacher(), status=AttemptStatus.SUBMITTED)
    assert guards.blocking_count(published_exam) == 0

    make_attempt(published_exam, make_teacher())
    assert guards.has_blocking_attempts(published_exam)
    assert guards.blocking_count(published_exam) == 1


def test_ensure_no_blocking_attempts_reports_count(published_exam, make_teacher, make_attempt):
    for _ in range(3):
        make_attempt(published_exam, make_teacher())

    with pytest.raises(AttemptsInProgress) as excinfo:
        guards.ensure_no_blocking_attempts(published_exam)

    assert excinfo.value.count == 3
    assert excinfo.value.extra == {"count": 3}


def test_start_attempt_on_published_exam(published_exam, make_teacher):
    teacher = make_teacher()

    attempt = guards.start_attempt(published_exam, teacher)

    assert attempt.status == AttemptStatus.STARTED
    assert guards.has_blocking_attempts(published_exam)


@pytest.mark.parametrize("state", [ExamState.DRAFT, ExamState.FINALIZED])
def test_start_attempt_refused_outside_published(complete_exam, make_teacher, state):
    complete_exam.state = state
    complete_exam.save()

    with pytest.raises(ExamNotOpen):
        guards.start_attempt(complete_exam, make_teacher())


def test_start_attempt_refused_after_window(published_exam, make_teacher):
    published_exam.valid_until = timezone.now() - timedelta(minutes=1)
    published_exam.save()

    with pytest.raises(ExamNotOpen):
        guards.start_attempt(published_exam, make_teacher())


def test_start_attempt_on_private_exam_requires_assignment(published_exam, make_teacher):
    published_exam.access_mode = AccessMode.PRIVATE
    published_exam.save()
    outsider, invited = make_teacher(), make_teacher()
    AssignedUser.objects.create(exam=published_exam, user=invited)

    with pytest.raises(ExamNotOpen):
        guards.start_attempt(published_exam, outsider)
    assert guards.start_attempt(published_exam, invited).user == invited
