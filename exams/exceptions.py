from rest_framework import status
from rest_framework.exceptions import APIException


class GuardViolation(APIException):
    """
    A lifecycle/guard rule refused the operation. Rendered as 422 with
    {"message": ...} plus whatever keyword extras the subclass carries.
    """
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = "The operation is not allowed for this exam."
    default_code = "guard_violation"

    def __init__(self, detail=None, code=None, **extra):
        super().__init__(detail, code)
        self.extra = extra


class ExamFinalized(GuardViolation):
    default_detail = "The exam is no longer a draft; it can only be viewed, duplicated or deleted."
    default_code = "exam_finalized"


class AttemptsInProgress(GuardViolation):
    default_code = "attempts_in_progress"

    def __init__(self, count: int):
        super().__init__(
            f"The exam cannot be modified: {count} attempt(s) are in progress.",
            count=count,
        )
        self.count = count


class IncompleteWizard(GuardViolation):
    default_detail = "All six wizard steps must be complete before publishing."
    default_code = "incomplete_wizard"


class InvalidTransition(GuardViolation):
    default_detail = "State transition not allowed."
    default_code = "invalid_transition"


class DuplicateRule(GuardViolation):
    default_detail = "A scoring rule already exists for this track and sub-test."
    default_code = "duplicate_rule"


class SubTestMismatch(GuardViolation):
    default_detail = "The sub-test does not belong to the same exam as the track."
    default_code = "subtest_mismatch"


class NoSubTestConfigured(GuardViolation):
    default_detail = "The exam must have at least one sub-test configured."
    default_code = "no_subtest"


class InsufficientQuestions(GuardViolation):
    default_code = "insufficient_questions"

    def __init__(self, available: int, requested: int):
        if available == 0:
            message = "No questions are available with the selected filters."
        else:
            message = (
                f"Only {available} of the {requested} requested questions are available."
            )
        super().__init__(message, available=available, requested=requested)
        self.available = available
        self.requested = requested


class EmptyQuestionSet(GuardViolation):
    default_detail = "A published exam cannot be left without questions."
    default_code = "empty_question_set"


class DuplicateSubTestOrder(GuardViolation):
    default_detail = "Another sub-test of this exam already uses that order."
    default_code = "duplicate_subtest_order"


class DuplicateTrackName(GuardViolation):
    default_detail = "Another track of this exam already uses that name."
    default_code = "duplicate_track_name"


class StepIncomplete(GuardViolation):
    default_code = "step_incomplete"

    def __init__(self, step: int):
        super().__init__(f"Step {step} is not complete yet.", step=step)
        self.step = step


class AccessModeMismatch(GuardViolation):
    default_detail = "Users can only be assigned to private exams."
    default_code = "access_mode_mismatch"


class ExamNotOpen(GuardViolation):
    default_detail = "The exam is not open for attempts."
    default_code = "exam_not_open"
