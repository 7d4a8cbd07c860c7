"""
Question assembly for an exam: batch replace, single removal, random candidate
generation and in-sub-test reordering.

Orders are 1..N per sub-test and are renumbered after every change.
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field

from django.db import transaction
from django.db.models import Max
from rest_framework.exceptions import NotFound, ValidationError

from common.enums import ExamState
from exams.exceptions import EmptyQuestionSet, InsufficientQuestions, NoSubTestConfigured
from exams.models import Exam, Question, QuestionAssignment, SubTest
from exams.signals import notify_exam_mutated

from .guards import lock_exam
from .lifecycle import ensure_question_mutation_allowed

logger = logging.getLogger(__name__)


@dataclass
class Candidate:
    question: Question
    subtest: SubTest
    order: int


@dataclass
class CandidateBatch:
    requested: int
    subtest: SubTest
    candidates: list[Candidate] = field(default_factory=list)

    @property
    def message(self) -> str:
        got = len(self.candidates)
        if got < self.requested:
            return (
                f"Generated {got} of the {self.requested} requested questions "
                f"(only {got} available)."
            )
        return f"Generated {got} question(s)."


# ----------------------------
# Pure helpers
# ----------------------------

def group_by_context(questions):
    """
    Questions sharing a context are kept adjacent, groups in first-seen order;
    questions without a context go last, in their original order.
    """
    groups: dict = {}
    loose = []
    for q in questions:
        if q.context_id is None:
            loose.append(q)
        else:
            groups.setdefault(q.context_id, []).append(q)
    ordered = [q for group in groups.values() for q in group]
    return ordered + loose


def reorder(links, from_index: int, to_index: int):
    """Move one element within a single sub-test's ordered list and renumber 1..N."""
    items = list(links)
    if len({link.subtest_id for link in items}) > 1:
        raise ValidationError("Questions can only be reordered within one sub-test.")
    if not (0 <= from_index < len(items)) or not (0 <= to_index < len(items)):
        raise ValidationError({"desde": f"Positions must be between 0 and {len(items) - 1}."})
    items.insert(to_index, items.pop(from_index))
    for position, link in enumerate(items, start=1):
        link.order = position
    return items


def _ordered_subtests(exam: Exam):
    return list(SubTest.objects.filter(exam=exam).order_by("order", "created_at"))


def _renumber(exam: Exam, subtest_id):
    links = list(
        QuestionAssignment.objects.filter(exam=exam, subtest_id=subtest_id).order_by("order", "created_at")
    )
    changed = []
    for position, link in enumerate(links, start=1):
        if link.order != position:
            link.order = position
            changed.append(link)
    if changed:
        QuestionAssignment.objects.bulk_update(changed, ["order"])


# ----------------------------
# Persisting operations
# ----------------------------

@transaction.atomic
def replace_questions(exam, items) -> list[QuestionAssignment]:
    """
    Swap the exam's whole question set for ``items``
    (dicts with question_id, optional subtest_id, optional order).
    """
    exam = lock_exam(exam)
    ensure_question_mutation_allowed(exam)

    if not items:
        if exam.state != ExamState.DRAFT:
            raise EmptyQuestionSet()
        QuestionAssignment.objects.filter(exam=exam).delete()
        notify_exam_mutated(exam.pk, "questions")
        return []

    question_ids = [item["question_id"] for item in items]
    if len(set(question_ids)) != len(question_ids):
        raise ValidationError({"preguntas": "The same question appears more than once."})
    known = set(Question.objects.filter(id__in=question_ids).values_list("id", flat=True))
    missing = [str(qid) for qid in question_ids if qid not in known]
    if missing:
        raise ValidationError({"preguntas": f"Unknown question ids: {', '.join(missing)}"})

    subtests = _ordered_subtests(exam)
    by_id = {st.id: st for st in subtests}
    default = subtests[0] if subtests else None

    buckets: dict = {}
    for index, item in enumerate(items):
        subtest = by_id.get(item.get("subtest_id")) or default
        if subtest is None:
            raise NoSubTestConfigured()
        requested = item.get("order") or index + 1
        buckets.setdefault(subtest.id, []).append((requested, index, item["question_id"], subtest))

    QuestionAssignment.objects.filter(exam=exam).delete()
    rows = []
    for entries in buckets.values():
        entries.sort(key=lambda e: (e[0], e[1]))
        for position, (_, _, question_id, subtest) in enumerate(entries, start=1):
            rows.append(QuestionAssignment(exam=exam, question_id=question_id, subtest=subtest, order=position))
    created = QuestionAssignment.objects.bulk_create(rows)

    logger.info("Exam %s (%s): question set replaced (%d)", exam.pk, exam.code, len(created))
    notify_exam_mutated(exam.pk, "questions")
    return created


@transaction.atomic
def remove_question(exam, question_id) -> None:
    exam = lock_exam(exam)
    ensure_question_mutation_allowed(exam)

    link = QuestionAssignment.objects.filter(exam=exam, question_id=question_id).first()
    if link is None:
        raise NotFound("The question is not part of this exam.")
    subtest_id = link.subtest_id
    link.delete()
    _renumber(exam, subtest_id)
    notify_exam_mutated(exam.pk, "questions")


@transaction.atomic
def move_question(exam, subtest_id, from_index: int, to_index: int):
    exam = lock_exam(exam)
    ensure_question_mutation_allowed(exam)
    if not SubTest.objects.filter(exam=exam, id=subtest_id).exists():
        raise NotFound("Sub-test not found in this exam.")

    links = QuestionAssignment.objects.filter(exam=exam, subtest_id=subtest_id).order_by("order", "created_at")
    moved = reorder(links, from_index, to_index)
    QuestionAssignment.objects.bulk_update(moved, ["order"])
    notify_exam_mutated(exam.pk, "questions")
    return moved


# ----------------------------
# Random candidates (never persisted)
# ----------------------------

def generate_random_candidates(
    exam,
    count: int,
    subtest_id=None,
    category_id=None,
    year=None,
    code=None,
    exclude_ids=(),
) -> CandidateBatch:
    """
    Propose ``count`` random active questions for one sub-test, skipping anything
    already linked to the exam or listed in ``exclude_ids``. The client confirms
    the proposal through ``replace_questions``.
    """
    exam = Exam.objects.get(pk=getattr(exam, "pk", exam))
    ensure_question_mutation_allowed(exam)

    subtests = _ordered_subtests(exam)
    if not subtests:
        raise NoSubTestConfigured()
    if subtest_id:
        subtest = next((st for st in subtests if st.id == subtest_id), None)
        if subtest is None:
            raise NoSubTestConfigured("The selected sub-test does not belong to this exam.")
    else:
        subtest = subtests[0]

    qs = Question.objects.filter(is_active=True)
    if category_id:
        qs = qs.filter(category_id=category_id)
    if year:
        qs = qs.filter(year=year)
    if code:
        qs = qs.filter(code__icontains=code)

    linked = set(QuestionAssignment.objects.filter(exam=exam).values_list("question_id", flat=True))
    excluded = linked | set(exclude_ids or ())
    ids = [qid for qid in qs.values_list("id", flat=True) if qid not in excluded]

    if not ids:
        raise InsufficientQuestions(available=0, requested=count)
    if exam.state != ExamState.DRAFT and len(ids) < count:
        raise InsufficientQuestions(available=len(ids), requested=count)

    chosen = random.sample(ids, min(count, len(ids)))
    by_id = Question.objects.select_related("category", "context").prefetch_related("options").in_bulk(chosen)
    picked = group_by_context([by_id[qid] for qid in chosen])

    start = QuestionAssignment.objects.filter(exam=exam, subtest=subtest).aggregate(m=Max("order"))["m"] or 0
    batch = CandidateBatch(requested=count, subtest=subtest)
    batch.candidates = [
        Candidate(question=q, subtest=subtest, order=start + position)
        for position, q in enumerate(picked, start=1)
    ]
    return batch
