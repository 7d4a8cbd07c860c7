"""Sub-tests (step 2) and eligibility tracks (step 3). Draft only, no attempts in progress."""
import logging

from django.db import transaction

from exams.exceptions import DuplicateSubTestOrder, DuplicateTrackName
from exams.models import EligibilityTrack, SubTest
from exams.signals import notify_exam_mutated

from .guards import lock_exam
from .lifecycle import ensure_structural_mutation_allowed

logger = logging.getLogger(__name__)

SUBTEST_FIELDS = ("name", "order", "points_per_question", "duration_minutes")
TRACK_FIELDS = ("name", "description", "approval_mode")


def _check_subtest_order(exam, order, exclude_id=None):
    qs = SubTest.objects.filter(exam=exam, order=order)
    if exclude_id is not None:
        qs = qs.exclude(id=exclude_id)
    if qs.exists():
        raise DuplicateSubTestOrder()


def _check_track_name(exam, name, exclude_id=None):
    qs = EligibilityTrack.objects.filter(exam=exam, name__iexact=name.strip())
    if exclude_id is not None:
        qs = qs.exclude(id=exclude_id)
    if qs.exists():
        raise DuplicateTrackName()


@transaction.atomic
def create_subtest(exam, **data) -> SubTest:
    exam = lock_exam(exam)
    ensure_structural_mutation_allowed(exam)
    _check_subtest_order(exam, data["order"])

    subtest = SubTest.objects.create(exam=exam, **{k: v for k, v in data.items() if k in SUBTEST_FIELDS})
    notify_exam_mutated(exam.pk, "subtest")
    return subtest


@transaction.atomic
def update_subtest(subtest: SubTest, **data) -> SubTest:
    exam = lock_exam(subtest.exam_id)
    ensure_structural_mutation_allowed(exam)
    if "order" in data:
        _check_subtest_order(exam, data["order"], exclude_id=subtest.id)

    fields = [k for k in data if k in SUBTEST_FIELDS]
    for k in fields:
        setattr(subtest, k, data[k])
    subtest.save(update_fields=[*fields, "updated_at"])
    notify_exam_mutated(exam.pk, "subtest")
    return subtest


@transaction.atomic
def delete_subtest(subtest: SubTest) -> None:
    """Also drops the sub-test's scoring rules and question links."""
    exam = lock_exam(subtest.exam_id)
    ensure_structural_mutation_allowed(exam)
    subtest.delete()
    logger.info("Exam %s (%s): sub-test %s deleted", exam.pk, exam.code, subtest.name)
    notify_exam_mutated(exam.pk, "subtest")


@transaction.atomic
def create_track(exam, **data) -> EligibilityTrack:
    exam = lock_exam(exam)
    ensure_structural_mutation_allowed(exam)
    _check_track_name(exam, data["name"])

    track = EligibilityTrack.objects.create(exam=exam, **{k: v for k, v in data.items() if k in TRACK_FIELDS})
    notify_exam_mutated(exam.pk, "track")
    return track


@transaction.atomic
def update_track(track: EligibilityTrack, **data) -> EligibilityTrack:
    exam = lock_exam(track.exam_id)
    ensure_structural_mutation_allowed(exam)
    if "name" in data:
        _check_track_name(exam, data["name"], exclude_id=track.id)

    fields = [k for k in data if k in TRACK_FIELDS]
    for k in fields:
        setattr(track, k, data[k])
    track.save(update_fields=[*fields, "updated_at"])
    notify_exam_mutated(exam.pk, "track")
    return track


@transaction.atomic
def delete_track(track: EligibilityTrack) -> None:
    """Scoring rules go with the track."""
    exam = lock_exam(track.exam_id)
    ensure_structural_mutation_allowed(exam)
    track.delete()
    notify_exam_mutated(exam.pk, "track")
