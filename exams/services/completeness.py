"""
Wizard completeness: six predicates over one exam aggregate.

    1  basics      code, exam type, title and description
    2  sub-tests   at least one
    3  tracks      at least one eligibility track
    4  rules       exactly one scoring rule per (track, sub-test) pair
    5  questions   every sub-test holds at least one question
    6  schedule    validity window set, long enough for the time limit and
                   no longer than EXAM_MAX_VALIDITY_YEARS
"""
from __future__ import annotations

from collections import Counter
from datetime import timedelta

from django.conf import settings

from common.enums import ExamState
from exams.models import Exam, QuestionAssignment, ScoringRule

TOTAL_STEPS = 6


def _add_years(dt, years: int):
    try:
        return dt.replace(year=dt.year + years)
    except ValueError:  # 29 Feb
        return dt.replace(year=dt.year + years, day=28)


class ExamCompleteness:
    """Loads the aggregate once; every predicate after that is in-memory."""

    def __init__(self, exam: Exam):
        self.exam = exam
        self._subtest_ids = set(exam.subtests.values_list("id", flat=True))
        self._track_ids = set(exam.tracks.values_list("id", flat=True))
        self._rule_pairs = Counter(
            ScoringRule.objects.filter(track__exam=exam).values_list("track_id", "subtest_id")
        )
        self._filled_subtests = set(
            QuestionAssignment.objects
            .filter(exam=exam, subtest__isnull=False)
            .values_list("subtest_id", flat=True)
        )

    # -- predicates -------------------------------------------------------

    def _basics(self) -> bool:
        exam = self.exam
        return bool(
            (exam.code or "").strip()
            and exam.exam_type_id
            and (exam.title or "").strip()
            and (exam.description or "").strip()
        )

    def _subtests(self) -> bool:
        return bool(self._subtest_ids)

    def _tracks(self) -> bool:
        return bool(self._track_ids)

    def _rules(self) -> bool:
        if not self._subtest_ids or not self._track_ids:
            return False
        for track_id, subtest_id in self._rule_pairs:
            if track_id not in self._track_ids or subtest_id not in self._subtest_ids:
                return False
        return all(
            self._rule_pairs[(track_id, subtest_id)] == 1
            for track_id in self._track_ids
            for subtest_id in self._subtest_ids
        )

    def _questions(self) -> bool:
        return bool(self._subtest_ids) and self._subtest_ids <= self._filled_subtests

    def _schedule(self) -> bool:
        start, end = self.exam.valid_from, self.exam.valid_until
        if not start or not end or end <= start:
            return False
        if end - start < timedelta(minutes=self.exam.time_limit_minutes or 0):
            return False
        max_years = getattr(settings, "EXAM_MAX_VALIDITY_YEARS", 2)
        return end <= _add_years(start, max_years)

    # -- public API ---------------------------------------------------------

    def step_complete(self, step: int) -> bool:
        checks = {
            1: self._basics,
            2: self._subtests,
            3: self._tracks,
            4: self._rules,
            5: self._questions,
            6: self._schedule,
        }
        if step not in checks:
            raise ValueError(f"Wizard step must be between 1 and {TOTAL_STEPS}, got {step}")
        return checks[step]()

    def step_states(self) -> dict[str, bool]:
        return {f"paso{n}": self.step_complete(n) for n in range(1, TOTAL_STEPS + 1)}

    def overall(self) -> int:
        done = sum(self.step_states().values())
        return round(100 * done / TOTAL_STEPS)

    def can_enter_step(self, step: int) -> bool:
        if step < 1 or step > TOTAL_STEPS:
            return False
        return all(self.step_complete(n) for n in range(1, step))

    def next_incomplete_step(self) -> int | None:
        for n in range(1, TOTAL_STEPS + 1):
            if not self.step_complete(n):
                return n
        return None

    def highest_complete_step(self) -> int:
        """Last step of the unbroken run of complete steps starting at 1."""
        nxt = self.next_incomplete_step()
        return TOTAL_STEPS if nxt is None else nxt - 1

    def can_publish(self) -> bool:
        return self.exam.state == ExamState.DRAFT and self.overall() == 100

    def as_payload(self) -> dict:
        return {
            "completitud": self.overall(),
            "paso_actual": self.exam.wizard_step,
            "estado_pasos": self.step_states(),
            "siguiente_paso": self.next_incomplete_step(),
            "puede_publicar": self.can_publish(),
        }
