import itertools
from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone
from rest_framework.test import APIClient

from accounts.models import User
from common.enums import AttemptStatus, ExamState
from exams.models import (
    Attempt,
    Category,
    EligibilityTrack,
    Exam,
    ExamType,
    Question,
    QuestionAssignment,
    QuestionOption,
    ScoringRule,
    SubTest,
)


@pytest.fixture
def admin_user(db):
    return User.objects.create_user(
        username="admin", email="admin@example.com", password="pass", role=User.Roles.ADMIN
    )


@pytest.fixture
def make_teacher(db):
    counter = itertools.count(1)

    def _make(**kwargs):
        n = next(counter)
        return User.objects.create_user(
            username=f"teacher{n}",
            email=f"teacher{n}@example.com",
            password="pass",
            role=User.Roles.TEACHER,
            **kwargs,
        )

    return _make


@pytest.fixture
def api_client(admin_user):
    client = APIClient()
    client.force_authenticate(user=admin_user)
    return client


@pytest.fixture
def exam_type(db):
    return ExamType.objects.create(name="Nombramiento")


@pytest.fixture
def category(db):
    return Category.objects.create(name="Comprensión lectora")


@pytest.fixture
def make_question(db, category):
    counter = itertools.count(1)

    def _make(context=None, year=2024, category=category, is_active=True, code=None):
        n = next(counter)
        question = Question.objects.create(
            code=code or f"Q{n:04d}",
            statement=f"Statement {n}",
            year=year,
            category=category,
            context=context,
            is_active=is_active,
        )
        QuestionOption.objects.create(question=question, text="Option A", is_correct=True, order=1)
        QuestionOption.objects.create(question=question, text="Option B", order=2)
        return question

    return _make


@pytest.fixture
def make_exam(db, exam_type, admin_user):
    counter = itertools.count(1)

    def _make(**kwargs):
        n = next(counter)
        data = {
            "code": f"EX-{n:03d}",
            "title": f"Evaluación {n}",
            "description": "Evaluación de conocimientos pedagógicos",
            "exam_type": exam_type,
            "time_limit_minutes": 60,
            "created_by": admin_user,
        }
        data.update(kwargs)
        return Exam.objects.create(**data)

    return _make


@pytest.fixture
def draft_exam(make_exam):
    return make_exam()


@pytest.fixture
def build_complete(make_question):
    """Fill wizard steps 2..6 on an exam that already has its basics."""

    def _build(exam, subtests=2, questions_per_subtest=2):
        created = [
            SubTest.objects.create(exam=exam, name=f"Subprueba {i}", order=i)
            for i in range(1, subtests + 1)
        ]
        track = EligibilityTrack.objects.create(exam=exam, name="Postulación general")
        for subtest in created:
            ScoringRule.objects.create(track=track, subtest=subtest, correct_points=Decimal("2.00"))
            for order in range(1, questions_per_subtest + 1):
                QuestionAssignment.objects.create(
                    exam=exam, question=make_question(), subtest=subtest, order=order
                )
        start = timezone.now() + timedelta(days=1)
        exam.valid_from = start
        exam.valid_until = start + timedelta(days=7)
        exam.save()
        return exam

    return _build


@pytest.fixture
def complete_exam(draft_exam, build_complete):
    return build_complete(draft_exam)


@pytest.fixture
def published_exam(complete_exam):
    now = timezone.now()
    complete_exam.state = ExamState.PUBLISHED
    complete_exam.published_at = now
    complete_exam.valid_from = now - timedelta(hours=1)
    complete_exam.save()
    return complete_exam


@pytest.fixture
def make_attempt(db):
    def _make(exam, user, status=AttemptStatus.STARTED, **kwargs):
        return Attempt.objects.create(exam=exam, user=user, status=status, **kwargs)

    return _make
