"""
Scoring rules (step 4): one rule per (track, sub-test) pair.

Only points for a correct answer and an optional passing score are configurable;
incorrect and blank answers always score zero.
"""
import logging
from decimal import Decimal

from django.db import transaction

from exams.exceptions import DuplicateRule, SubTestMismatch
from exams.models import EligibilityTrack, ScoringRule, SubTest
from exams.signals import notify_exam_mutated

from .guards import lock_exam
from .lifecycle import ensure_structural_mutation_allowed

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@transaction.atomic
def create_rule(track: EligibilityTrack, subtest: SubTest, correct_points, min_passing_score=None) -> ScoringRule:
    if subtest.exam_id != track.exam_id:
        raise SubTestMismatch()
    exam = lock_exam(track.exam_id)
    ensure_structural_mutation_allowed(exam)
    if ScoringRule.objects.filter(track=track, subtest=subtest).exists():
        raise DuplicateRule()

    rule = ScoringRule.objects.create(
        track=track,
        subtest=subtest,
        correct_points=correct_points,
        incorrect_points=ZERO,
        blank_points=ZERO,
        min_passing_score=min_passing_score,
    )
    notify_exam_mutated(exam.pk, "rule")
    return rule


@transaction.atomic
def update_rule(rule: ScoringRule, correct_points=None, min_passing_score=None, clear_min_passing=False) -> ScoringRule:
    exam = lock_exam(rule.track.exam_id)
    ensure_structural_mutation_allowed(exam)

    if correct_points is not None:
        rule.correct_points = correct_points
    if min_passing_score is not None or clear_min_passing:
        rule.min_passing_score = min_passing_score
    rule.incorrect_points = ZERO
    rule.blank_points = ZERO
    rule.save()
    notify_exam_mutated(exam.pk, "rule")
    return rule


@transaction.atomic
def delete_rule(rule: ScoringRule) -> None:
    exam = lock_exam(rule.track.exam_id)
    ensure_structural_mutation_allowed(exam)
    rule.delete()
    notify_exam_mutated(exam.pk, "rule")
