from __future__ import annotations

import uuid
from decimal import Decimal

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils import timezone

from common.enums import AccessMode, ApprovalMode, AttemptStatus, ExamState


# ----------------------------
# Common
# ----------------------------

class TimeStampedModel(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


# ----------------------------
# Reference data (owned by the catalogue / upload subsystems)
# ----------------------------

class ExamType(TimeStampedModel):
    name = models.CharField(max_length=100, unique=True)
    is_active = models.BooleanField(default=True)

    def __str__(self):
        return self.name


class Category(TimeStampedModel):
    name = models.CharField(max_length=100, unique=True)

    class Meta:
        verbose_name_plural = "categories"

    def __str__(self):
        return self.name


class Context(TimeStampedModel):
    """Shared reading passage; questions pointing at the same context are served together."""
    title = models.CharField(max_length=200)
    body = models.TextField(blank=True)

    def __str__(self):
        return self.title


class Question(TimeStampedModel):
    code = models.CharField(max_length=50, unique=True)
    statement = models.TextField()
    year = models.PositiveIntegerField(null=True, blank=True)
    category = models.ForeignKey(Category, on_delete=models.PROTECT, related_name="questions")
    context = models.ForeignKey(
        Context, on_delete=models.SET_NULL, null=True, blank=True, related_name="questions"
    )
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ("code",)

    def __str__(self):
        return self.code


class QuestionOption(TimeStampedModel):
    question = models.ForeignKey(Question, on_delete=models.CASCADE, related_name="options")
    text = models.TextField()
    is_correct = models.BooleanField(default=False)
    order = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ("order", "created_at")

    def __str__(self):
        return f"{self.question_id} • {self.text[:40]}"


class Attachment(TimeStampedModel):
    """File tagged against any resource by (resource_type, resource_id)."""
    resource_type = models.CharField(max_length=50, db_index=True)
    resource_id = models.CharField(max_length=64, db_index=True)
    file = models.FileField(upload_to="attachments/")
    original_name = models.CharField(max_length=255, blank=True)

    def __str__(self):
        return f"{self.resource_type}:{self.resource_id} • {self.original_name or self.file.name}"


# ----------------------------
# Exam aggregate
# ----------------------------

class Exam(TimeStampedModel):
    code = models.CharField(max_length=100, unique=True)
    title = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    exam_type = models.ForeignKey(
        ExamType, on_delete=models.PROTECT, null=True, blank=True, related_name="exams"
    )
    access_mode = models.CharField(max_length=10, choices=AccessMode.choices, default=AccessMode.PUBLIC)
    state = models.CharField(max_length=1, choices=ExamState.choices, default=ExamState.DRAFT, db_index=True)

    valid_from = models.DateTimeField(null=True, blank=True)
    valid_until = models.DateTimeField(null=True, blank=True)
    time_limit_minutes = models.PositiveIntegerField(
        default=60, validators=[MinValueValidator(1), MaxValueValidator(600)]
    )

    wizard_step = models.PositiveSmallIntegerField(default=0, validators=[MaxValueValidator(6)])
    published_at = models.DateTimeField(null=True, blank=True)
    finalized_at = models.DateTimeField(null=True, blank=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
        related_name="authored_exams",
    )

    class Meta:
        ordering = ("-created_at",)

    @property
    def is_draft(self) -> bool:
        return self.state == ExamState.DRAFT

    @property
    def is_published(self) -> bool:
        return self.state == ExamState.PUBLISHED

    @property
    def is_finalized(self) -> bool:
        return self.state == ExamState.FINALIZED

    def __str__(self):
        return f"{self.code} • {self.title}"


class SubTest(TimeStampedModel):
    exam = models.ForeignKey(Exam, on_delete=models.CASCADE, related_name="subtests")
    name = models.CharField(max_length=100)
    order = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    points_per_question = models.DecimalField(
        max_digits=6, decimal_places=2, default=Decimal("1.00"),
        validators=[MinValueValidator(Decimal("0"))],
    )
    duration_minutes = models.PositiveIntegerField(null=True, blank=True)

    class Meta:
        ordering = ("exam", "order", "created_at")
        unique_together = ("exam", "order")

    def __str__(self):
        return f"{self.exam_id} • {self.order}. {self.name}"


class EligibilityTrack(TimeStampedModel):
    """Applicant category (postulación) with its own pass thresholds."""
    exam = models.ForeignKey(Exam, on_delete=models.CASCADE, related_name="tracks")
    name = models.CharField(max_length=100)
    description = models.TextField(blank=True)
    approval_mode = models.CharField(
        max_length=1, choices=ApprovalMode.choices, default=ApprovalMode.JOINT
    )

    class Meta:
        ordering = ("exam", "created_at")
        unique_together = ("exam", "name")

    def __str__(self):
        return self.name


class ScoringRule(TimeStampedModel):
    track = models.ForeignKey(EligibilityTrack, on_delete=models.CASCADE, related_name="rules")
    subtest = models.ForeignKey(SubTest, on_delete=models.CASCADE, related_name="rules")
    correct_points = models.DecimalField(
        max_digits=6, decimal_places=2,
        validators=[MinValueValidator(Decimal("0.01")), MaxValueValidator(Decimal("10"))],
    )
    # Negative marking is not supported: both stay at zero.
    incorrect_points = models.DecimalField(max_digits=6, decimal_places=2, default=Decimal("0"))
    blank_points = models.DecimalField(max_digits=6, decimal_places=2, default=Decimal("0"))
    min_passing_score = models.DecimalField(
        max_digits=8, decimal_places=2, null=True, blank=True,
        validators=[MinValueValidator(Decimal("0"))],
    )

    class Meta:
        ordering = ("track", "subtest__order")
        constraints = [
            models.UniqueConstraint(fields=["track", "subtest"], name="unique_rule_per_track_subtest"),
        ]

    def __str__(self):
        return f"{self.track_id} × {self.subtest_id} → {self.correct_points}"


class QuestionAssignment(TimeStampedModel):
    exam = models.ForeignKey(Exam, on_delete=models.CASCADE, related_name="question_links")
    question = models.ForeignKey(Question, on_delete=models.PROTECT, related_name="exam_links")
    subtest = models.ForeignKey(
        SubTest, on_delete=models.CASCADE, null=True, blank=True, related_name="question_links"
    )
    order = models.PositiveIntegerField(default=1)

    class Meta:
        ordering = ("exam", "subtest__order", "order")
        unique_together = ("exam", "question")

    def __str__(self):
        return f"{self.exam_id} • {self.question_id} #{self.order}"


class AssignedUser(models.Model):
    exam = models.ForeignKey(Exam, on_delete=models.CASCADE, related_name="assigned_users")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="exam_assignments"
    )
    assigned_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
        related_name="+",
    )
    assigned_at = models.DateTimeField(default=timezone.now)

    class Meta:
        unique_together = ("exam", "user")

    def __str__(self):
        return f"{self.exam_id} → {self.user_id}"


# ----------------------------
# Attempts (written by the exam-taking subsystem)
# ----------------------------

class Attempt(TimeStampedModel):
    exam = models.ForeignKey(Exam, on_delete=models.CASCADE, related_name="attempts")
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="exam_attempts")
    track = models.ForeignKey(
        EligibilityTrack, on_delete=models.SET_NULL, null=True, blank=True, related_name="attempts"
    )
    status = models.CharField(max_length=12, choices=AttemptStatus.choices, default=AttemptStatus.STARTED)
    started_at = models.DateTimeField(default=timezone.now)
    ended_at = models.DateTimeField(null=True, blank=True)
    score = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)
    is_passed = models.BooleanField(null=True, blank=True)

    class Meta:
        ordering = ("-started_at",)
        indexes = [models.Index(fields=["exam", "status"])]

    def __str__(self):
        return f"{self.user_id} • {self.exam_id} • {self.status}"


class AttemptAnswer(TimeStampedModel):
    attempt = models.ForeignKey(Attempt, on_delete=models.CASCADE, related_name="answers")
    question = models.ForeignKey(Question, on_delete=models.CASCADE, related_name="+")
    selected_option = models.ForeignKey(
        QuestionOption, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    is_correct = models.BooleanField(null=True, blank=True)

    class Meta:
        unique_together = ("attempt", "question")


class SubTestResult(TimeStampedModel):
    attempt = models.ForeignKey(Attempt, on_delete=models.CASCADE, related_name="subtest_results")
    subtest = models.ForeignKey(SubTest, on_delete=models.CASCADE, related_name="results")
    correct_count = models.PositiveIntegerField(default=0)
    incorrect_count = models.PositiveIntegerField(default=0)
    blank_count = models.PositiveIntegerField(default=0)
    score = models.DecimalField(max_digits=8, decimal_places=2, default=Decimal("0"))
    is_passed = models.BooleanField(null=True, blank=True)

    class Meta:
        unique_together = ("attempt", "subtest")
