from types import SimpleNamespace

import pytest
from rest_framework.exceptions import NotFound, ValidationError

from common.enums import ExamState
from exams.exceptions import (
    AttemptsInProgress,
    EmptyQuestionSet,
    ExamFinalized,
    InsufficientQuestions,
    NoSubTestConfigured,
)
from exams.models import Category, Context, QuestionAssignment, SubTest
from exams.services import assembler

pytestmark = pytest.mark.django_db


def _orders(exam, subtest):
    return list(
        QuestionAssignment.objects.filter(exam=exam, subtest=subtest).order_by("order").values_list("order", flat=True)
    )


# ---- pure helpers -----------------------------------------------------------------

def test_group_by_context_keeps_groups_adjacent():
    questions = [
        SimpleNamespace(name="a", context_id=None),
        SimpleNamespace(name="b", context_id=1),
        SimpleNamespace(name="c", context_id=2),
        SimpleNamespace(name="d", context_id=1),
        SimpleNamespace(name="e", context_id=None),
    ]

    ordered = assembler.group_by_context(questions)

    assert [q.name for q in ordered] == ["b", "d", "c", "a", "e"]


def test_reorder_moves_and_renumbers():
    links = [SimpleNamespace(name=n, subtest_id=1, order=i) for i, n in enumerate("abcd", start=1)]

    moved = assembler.reorder(links, 0, 2)

    assert [link.name for link in moved] == ["b", "c", "a", "d"]
    assert [link.order for link in moved] == [1, 2, 3, 4]


def test_reorder_refuses_mixed_subtests():
    links = [SimpleNamespace(subtest_id=1, order=1), SimpleNamespace(subtest_id=2, order=1)]

    with pytest.raises(ValidationError):
        assembler.reorder(links, 0, 1)


def test_reorder_refuses_out_of_range():
    links = [SimpleNamespace(subtest_id=1, order=1)]

    with pytest.raises(ValidationError):
        assembler.reorder(links, 0, 3)


# ---- replace_questions ---------------------------------------------------------------

def test_replace_questions_swaps_whole_set(complete_exam, make_question):
    first, second = complete_exam.subtests.order_by("order")
    q1, q2, q3 = make_question(), make_question(), make_question()

    assembler.replace_questions(complete_exam, [
        {"question_id": q1.id, "subtest_id": second.id, "order": 5},
        {"question_id": q2.id, "subtest_id": second.id, "order": 2},
        {"question_id": q3.id, "subtest_id": first.id, "order": 1},
    ])

    links = QuestionAssignment.objects.filter(exam=complete_exam)
    assert {link.question_id for link in links} == {q1.id, q2.id, q3.id}
    second_links = links.filter(subtest=second).order_by("order")
    assert [(link.question_id, link.order) for link in second_links] == [(q2.id, 1), (q1.id, 2)]
    assert _orders(complete_exam, first) == [1]


def test_replace_questions_defaults_to_first_subtest(complete_exam, make_question):
    first = complete_exam.subtests.order_by("order").first()
    question = make_question()

    assembler.replace_questions(complete_exam, [{"question_id": question.id, "subtest_id": None}])

    assert QuestionAssignment.objects.get(exam=complete_exam, question=question).subtest == first


def test_replace_questions_without_subtests(draft_exam, make_question):
    with pytest.raises(NoSubTestConfigured):
        assembler.replace_questions(draft_exam, [{"question_id": make_question().id}])


def test_replace_questions_rejects_duplicates(complete_exam, make_question):
    question = make_question()

    with pytest.raises(ValidationError):
        assembler.replace_questions(complete_exam, [{"question_id": question.id}, {"question_id": question.id}])


def test_empty_batch_clears_draft(complete_exam):
    assert assembler.replace_questions(complete_exam, []) == []
    assert not QuestionAssignment.objects.filter(exam=complete_exam).exists()


def test_empty_batch_refused_on_published(published_exam):
    with pytest.raises(EmptyQuestionSet):
        assembler.replace_questions(published_exam, [])

    assert QuestionAssignment.objects.filter(exam=published_exam).count() == 4


def test_replace_questions_on_published_with_attempt_changes_nothing(
    published_exam, make_question, make_teacher, make_attempt
):
    make_attempt(published_exam, make_teacher())
    before = set(QuestionAssignment.objects.filter(exam=published_exam).values_list("question_id", flat=True))

    with pytest.raises(AttemptsInProgress):
        assembler.replace_questions(published_exam, [{"question_id": make_question().id}])

    after = set(QuestionAssignment.objects.filter(exam=published_exam).values_list("question_id", flat=True))
    assert after == before


def test_replace_questions_on_finalized(published_exam, make_question):
    published_exam.state = ExamState.FINALIZED
    published_exam.save()

    with pytest.raises(ExamFinalized):
        assembler.replace_questions(published_exam, [{"question_id": make_question().id}])


# ---- remove / move -----------------------------------------------------------------------

@pytest.mark.parametrize("position", [0, 1, 2, 3])
def test_remove_question_renumbers_subtest(draft_exam, make_question, position):
    subtest = SubTest.objects.create(exam=draft_exam, name="Conocimientos", order=1)
    questions = [make_question() for _ in range(4)]
    for order, question in enumerate(questions, start=1):
        QuestionAssignment.objects.create(exam=draft_exam, question=question, subtest=subtest, order=order)

    assembler.remove_question(draft_exam, questions[position].id)

    assert _orders(draft_exam, subtest) == [1, 2, 3]
    remaining = QuestionAssignment.objects.filter(exam=draft_exam).order_by("order")
    expected = [q.id for i, q in enumerate(questions) if i != position]
    assert [link.question_id for link in remaining] == expected


def test_remove_question_not_linked(complete_exam, make_question):
    with pytest.raises(NotFound):
        assembler.remove_question(complete_exam, make_question().id)


def test_move_question_persists_new_order(complete_exam):
    subtest = complete_exam.subtests.order_by("order").first()
    before = list(
        QuestionAssignment.objects.filter(exam=complete_exam, subtest=subtest).order_by("order").values_list("question_id", flat=True)
    )

    assembler.move_question(complete_exam, subtest.id, 1, 0)

    after = list(
        QuestionAssignment.objects.filter(exam=complete_exam, subtest=subtest).order_by("order").values_list("question_id", flat=True)
    )
    assert after == [before[1], before[0]]
    assert _orders(complete_exam, subtest) == [1, 2]


# ---- random candidates ---------------------------------------------------------------------

@pytest.fixture
def pool_category(db):
    return Category.objects.create(name="Razonamiento matemático")


def test_random_candidates_on_draft_returns_what_exists(complete_exam, make_question, pool_category):
    for _ in range(6):
        make_question(category=pool_category)
    linked_before = QuestionAssignment.objects.filter(exam=complete_exam).count()

    batch = assembler.generate_random_candidates(complete_exam, 10, category_id=pool_category.id)

    assert len(batch.candidates) == 6
    assert "6 of the 10" in batch.message
    assert QuestionAssignment.objects.filter(exam=complete_exam).count() == linked_before


def test_random_candidates_on_published_needs_full_count(published_exam, make_question, pool_category):
    for _ in range(6):
        make_question(category=pool_category)

    with pytest.raises(InsufficientQuestions) as excinfo:
        assembler.generate_random_candidates(published_exam, 10, category_id=pool_category.id)

    assert (excinfo.value.available, excinfo.value.requested) == (6, 10)


def test_random_candidates_with_empty_pool(complete_exam, pool_category):
    with pytest.raises(InsufficientQuestions) as excinfo:
        assembler.generate_random_candidates(complete_exam, 3, category_id=pool_category.id)

    assert excinfo.value.available == 0


def test_random_candidates_exclude_linked_and_client_ids(complete_exam, make_question):
    linked = set(QuestionAssignment.objects.filter(exam=complete_exam).values_list("question_id", flat=True))
    staged = make_question()
    fresh = [make_question() for _ in range(3)]

    batch = assembler.generate_random_candidates(complete_exam, 10, exclude_ids=[staged.id])

    picked = {c.question.id for c in batch.candidates}
    assert picked == {q.id for q in fresh}
    assert not picked & linked


def test_random_candidates_filters_and_orders(complete_exam, make_question, pool_category):
    second = complete_exam.subtests.order_by("order")[1]
    make_question(category=pool_category, year=2019, code="MAT-001")
    make_question(category=pool_category, year=2023, code="MAT-002")
    make_question(category=pool_category, year=2019, code="COM-003")

    batch = assembler.generate_random_candidates(
        complete_exam, 5, subtest_id=second.id, category_id=pool_category.id, year=2019, code="mat",
    )

    assert [c.question.code for c in batch.candidates] == ["MAT-001"]
    assert batch.subtest == second
    assert batch.candidates[0].order == 3


def test_random_candidates_group_shared_contexts(complete_exam, make_question, pool_category):
    passage = Context.objects.create(title="Lectura 1")
    for _ in range(3):
        make_question(category=pool_category, context=passage)
    for _ in range(3):
        make_question(category=pool_category)

    batch = assembler.generate_random_candidates(complete_exam, 6, category_id=pool_category.id)

    contexts = [c.question.context_id for c in batch.candidates]
    assert contexts[:3] == [passage.id] * 3
    assert contexts[3:] == [None] * 3
    assert [c.order for c in batch.candidates] == [3, 4, 5, 6, 7, 8]


def test_random_candidates_without_subtests(draft_exam, make_question):
    make_question()

    with pytest.raises(NoSubTestConfigured):
        assembler.generate_random_candidates(draft_exam, 1)


def test_random_candidates_with_foreign_subtest(complete_exam, make_exam, make_question):
    foreign = SubTest.objects.create(exam=make_exam(), name="Otra subprueba", order=1)
    make_question()

    with pytest.raises(NoSubTestConfigured):
        assembler.generate_random_candidates(complete_exam, 1, subtest_id=foreign.id)
