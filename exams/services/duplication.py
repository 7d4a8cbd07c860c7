import logging
from collections import defaultdict

from django.db import transaction
from django.utils import timezone

from common.enums import ExamState
from exams.models import EligibilityTrack, Exam, QuestionAssignment, ScoringRule, SubTest
from exams.signals import notify_exam_mutated

logger = logging.getLogger(__name__)

COPY_TITLE_SUFFIX = " (Copia)"


def _copy_code(code: str, now) -> str:
    max_length = Exam._meta.get_field("code").max_length
    suffix = f"-COP-{int(now.timestamp())}"
    candidate, n = code[: max_length - len(suffix)] + suffix, 1
    while Exam.objects.filter(code=candidate).exists():
        tail = f"{suffix}-{n}"
        candidate = code[: max_length - len(tail)] + tail
        n += 1
    return candidate


@transaction.atomic
def clone_exam(exam: Exam, by=None, now=None) -> Exam:
    """
    Copy an exam of any state into a new draft: sub-tests, tracks, scoring rules
    and question links come along; attempts and assigned users do not.
    """
    now = now or timezone.now()
    source = Exam.objects.get(pk=exam.pk)

    clone = Exam.objects.create(
        code=_copy_code(source.code, now),
        title=source.title[: Exam._meta.get_field("title").max_length - len(COPY_TITLE_SUFFIX)] + COPY_TITLE_SUFFIX,
        description=source.description,
        exam_type_id=source.exam_type_id,
        access_mode=source.access_mode,
        state=ExamState.DRAFT,
        time_limit_minutes=source.time_limit_minutes,
        wizard_step=0,
        valid_from=None,
        valid_until=None,
        created_by=by or source.created_by,
    )

    subtest_map = {}
    for st in SubTest.objects.filter(exam=source).order_by("order", "created_at"):
        subtest_map[st.id] = SubTest.objects.create(
            exam=clone,
            name=st.name,
            order=st.order,
            points_per_question=st.points_per_question,
            duration_minutes=st.duration_minutes,
        )

    track_map = {}
    for track in EligibilityTrack.objects.filter(exam=source).order_by("created_at"):
        track_map[track.id] = EligibilityTrack.objects.create(
            exam=clone,
            name=track.name,
            description=track.description,
            approval_mode=track.approval_mode,
        )

    ScoringRule.objects.bulk_create([
        ScoringRule(
            track=track_map[rule.track_id],
            subtest=subtest_map[rule.subtest_id],
            correct_points=rule.correct_points,
            incorrect_points=rule.incorrect_points,
            blank_points=rule.blank_points,
            min_passing_score=rule.min_passing_score,
        )
        for rule in ScoringRule.objects.filter(track__exam=source)
        if rule.track_id in track_map and rule.subtest_id in subtest_map
    ])

    # links without a sub-test land in the first clone, after its own links
    first_subtest = next(iter(subtest_map.values()), None)
    grouped = defaultdict(list)
    for link in QuestionAssignment.objects.filter(exam=source).select_related("subtest"):
        target = subtest_map.get(link.subtest_id, first_subtest)
        source_order = link.subtest.order if link.subtest_id else float("inf")
        grouped[target].append((source_order, link.order, link.question_id))

    new_links = []
    for target, rows in grouped.items():
        rows.sort(key=lambda row: (row[0], row[1]))
        new_links.extend(
            QuestionAssignment(exam=clone, question_id=question_id, subtest=target, order=order)
            for order, (_, _, question_id) in enumerate(rows, start=1)
        )
    QuestionAssignment.objects.bulk_create(new_links)

    logger.info("Exam %s (%s) duplicated as %s (%s)", source.pk, source.code, clone.pk, clone.code)
    notify_exam_mutated(clone.pk, "duplicate")
    return clone
