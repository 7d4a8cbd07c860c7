from django.contrib import admin
from .models import (
    Exam, ExamType, SubTest, EligibilityTrack, ScoringRule, QuestionAssignment,
    AssignedUser, Attempt, Category, Context, Question, QuestionOption, Attachment,
)


# ----- Inlines -----
class QuestionOptionInline(admin.TabularInline):
    model = QuestionOption
    extra = 1
    fields = ("text", "is_correct", "order")
    ordering = ("order",)


class SubTestInline(admin.TabularInline):
    model = SubTest
    extra = 0
    fields = ("order", "name", "points_per_question", "duration_minutes")
    ordering = ("order",)


class EligibilityTrackInline(admin.TabularInline):
    model = EligibilityTrack
    extra = 0
    show_change_link = True
    fields = ("name", "approval_mode", "description")


class ScoringRuleInline(admin.TabularInline):
    model = ScoringRule
    extra = 0
    fields = ("subtest", "correct_points", "min_passing_score")
    raw_id_fields = ("subtest",)


class QuestionAssignmentInline(admin.TabularInline):
    model = QuestionAssignment
    extra = 0
    raw_id_fields = ("question", "subtest")
    fields = ("subtest", "question", "order")
    ordering = ("subtest__order", "order")


class AssignedUserInline(admin.TabularInline):
    model = AssignedUser
    extra = 0
    raw_id_fields = ("user", "assigned_by")


# ----- Exams -----
# State is read-only here: transitions go through the API so guards apply.
@admin.register(Exam)
class ExamAdmin(admin.ModelAdmin):
    list_display = ("code", "title", "state", "access_mode", "valid_from", "valid_until", "wizard_step")
    list_filter = ("state", "access_mode", "exam_type")
    search_fields = ("code", "title")
    readonly_fields = ("state", "wizard_step", "published_at", "finalized_at", "created_at", "updated_at")
    inlines = [SubTestInline, EligibilityTrackInline, QuestionAssignmentInline, AssignedUserInline]


@admin.register(EligibilityTrack)
class EligibilityTrackAdmin(admin.ModelAdmin):
    list_display = ("name", "exam", "approval_mode")
    search_fields = ("name", "exam__code")
    inlines = [ScoringRuleInline]


@admin.register(Attempt)
class AttemptAdmin(admin.ModelAdmin):
    list_display = ("exam", "user", "status", "started_at", "ended_at", "score", "is_passed")
    list_filter = ("status",)
    search_fields = ("exam__code", "user__username")
    raw_id_fields = ("exam", "user", "track")


# ----- Reference data -----
@admin.register(Question)
class QuestionAdmin(admin.ModelAdmin):
    list_display = ("code", "category", "year", "is_active")
    list_filter = ("is_active", "category", "year")
    search_fields = ("code", "statement")
    inlines = [QuestionOptionInline]


admin.site.register(ExamType)
admin.site.register(Category)
admin.site.register(Context)
admin.site.register(Attachment)
