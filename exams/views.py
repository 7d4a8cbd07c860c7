import logging

from django.db import transaction
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response

from common.enums import ExamState

from .cache import exam_state_summary
from .filters import ExamFilter
from .models import EligibilityTrack, Exam, QuestionAssignment, ScoringRule, SubTest
from .permissions import IsAdmin, IsAdminOrReadOnly
from .serializers import (
    AssignUsersSerializer,
    EligibilityTrackSerializer,
    ExamSerializer,
    GenerateRandomSerializer,
    QuestionAssignmentSerializer,
    QuestionBatchSerializer,
    ReorderSerializer,
    ScheduleSerializer,
    ScoringRuleSerializer,
    StateChangeSerializer,
    SubTestSerializer,
    WizardStepSerializer,
    candidate_payload,
)
from .services import assembler, lifecycle, scoring, structure
from .services.completeness import ExamCompleteness
from .services.duplication import clone_exam
from .services.guards import lock_exam
from .signals import notify_exam_mutated

logger = logging.getLogger(__name__)


class SmallPage(PageNumberPagination):
    page_size = 20
    page_size_query_param = "page_size"
    max_page_size = 200


def _exam_links(exam):
    return (
        QuestionAssignment.objects
        .filter(exam=exam)
        .select_related("question")
        .order_by("subtest__order", "order")
    )


class ExamViewSet(viewsets.ModelViewSet):
    queryset = Exam.objects.select_related("exam_type").all()
    serializer_class = ExamSerializer
    permission_classes = [IsAdmin]
    pagination_class = SmallPage
    filterset_class = ExamFilter

    def _exam_for_mutation(self) -> Exam:
        return lifecycle.refresh_lifecycle(self.get_object())

    def perform_create(self, serializer):
        exam = serializer.save(created_by=self.request.user, state=ExamState.DRAFT, wizard_step=0)
        logger.info("Exam %s (%s) created", exam.pk, exam.code)
        notify_exam_mutated(exam.pk, "create")

    def update(self, request, *args, **kwargs):
        partial = kwargs.pop("partial", False)
        exam = self._exam_for_mutation()
        with transaction.atomic():
            exam = lock_exam(exam)
            lifecycle.ensure_structural_mutation_allowed(exam)
            ser = self.get_serializer(exam, data=request.data, partial=partial)
            ser.is_valid(raise_exception=True)
            ser.save()
            notify_exam_mutated(exam.pk, "update")
        return Response(ser.data)

    def destroy(self, request, *args, **kwargs):
        exam = self._exam_for_mutation()
        lifecycle.delete_exam(exam)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=False, methods=["get"], url_path="summary", permission_classes=[IsAdminOrReadOnly])
    def summary(self, request):
        return Response(exam_state_summary())

    # ---- lifecycle -------------------------------------------------------

    @action(detail=True, methods=["post"], url_path="state")
    def change_state(self, request, pk=None):
        exam = self._exam_for_mutation()
        ser = StateChangeSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data
        exam = lifecycle.change_state(
            exam, data["state"], valid_from=data.get("valid_from"), valid_until=data.get("valid_until"),
        )
        return Response(ExamSerializer(exam).data)

    @action(detail=True, methods=["post"], url_path="schedule")
    def schedule(self, request, pk=None):
        exam = self._exam_for_mutation()
        ser = ScheduleSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        exam = lifecycle.update_schedule(exam, ser.validated_data["valid_from"], ser.validated_data["valid_until"])
        return Response(ExamSerializer(exam).data)

    @action(detail=True, methods=["post"], url_path="duplicate")
    def duplicate(self, request, pk=None):
        clone = clone_exam(self.get_object(), by=request.user)
        return Response(ExamSerializer(clone).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="assign-users")
    def assign_users(self, request, pk=None):
        exam = self._exam_for_mutation()
        ser = AssignUsersSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        rows = lifecycle.assign_users(exam, ser.validated_data["usuarios"], by=request.user)
        return Response({
            "message": f"{len(rows)} user(s) assigned.",
            "usuarios": [row.user_id for row in rows],
        })

    # ---- wizard ----------------------------------------------------------

    @action(detail=True, methods=["get"], url_path="wizard-state")
    def wizard_state(self, request, pk=None):
        exam = lifecycle.refresh_lifecycle(self.get_object())
        return Response(ExamCompleteness(exam).as_payload())

    @action(detail=True, methods=["post"], url_path="wizard/validate-step")
    def validate_step(self, request, pk=None):
        ser = WizardStepSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        step = ser.validated_data["step"]
        return Response({
            "puede_acceder": ExamCompleteness(self.get_object()).can_enter_step(step),
            "paso": step,
        })

    @action(detail=True, methods=["post"], url_path="wizard/advance-step")
    def advance_step(self, request, pk=None):
        exam = self._exam_for_mutation()
        ser = WizardStepSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        exam = lifecycle.advance_wizard_step(exam, ser.validated_data["step"])
        return Response(ExamCompleteness(exam).as_payload())

    # ---- questions -------------------------------------------------------

    @action(detail=True, methods=["get", "post"], url_path="questions")
    def questions(self, request, pk=None):
        if request.method == "GET":
            exam = self.get_object()
            return Response(QuestionAssignmentSerializer(_exam_links(exam), many=True).data)

        exam = self._exam_for_mutation()
        ser = QuestionBatchSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        assembler.replace_questions(exam, ser.validated_data["preguntas"])
        links = _exam_links(exam)
        return Response({
            "message": f"{links.count()} question(s) assigned.",
            "preguntas": QuestionAssignmentSerializer(links, many=True).data,
        })

    @action(detail=True, methods=["delete"], url_path=r"questions/(?P<question_id>[0-9a-fA-F-]{32,36})")
    def remove_question(self, request, pk=None, question_id=None):
        exam = self._exam_for_mutation()
        assembler.remove_question(exam, question_id)
        return Response({"message": "Question removed from the exam."})

    @action(detail=True, methods=["post"], url_path="questions/reorder")
    def reorder_questions(self, request, pk=None):
        exam = self._exam_for_mutation()
        ser = ReorderSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data
        moved = assembler.move_question(exam, data["subtest_id"], data["from_index"], data["to_index"])
        return Response({"preguntas": QuestionAssignmentSerializer(moved, many=True).data})

    @action(detail=True, methods=["post"], url_path="questions/generate-random")
    def generate_random(self, request, pk=None):
        exam = self._exam_for_mutation()
        ser = GenerateRandomSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        batch = assembler.generate_random_candidates(exam, **ser.validated_data)
        return Response({
            "preguntas_disponibles": [candidate_payload(c) for c in batch.candidates],
            "cantidad": len(batch.candidates),
            "cantidad_solicitada": batch.requested,
            "mensaje": batch.message,
            "subprueba": {"idSubprueba": str(batch.subtest.id), "nombre": batch.subtest.name},
        })

    # ---- structure -------------------------------------------------------

    @action(detail=True, methods=["get", "post"], url_path="subtests")
    def subtests(self, request, pk=None):
        if request.method == "GET":
            qs = SubTest.objects.filter(exam=self.get_object()).order_by("order")
            return Response(SubTestSerializer(qs, many=True).data)

        exam = self._exam_for_mutation()
        ser = SubTestSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        subtest = structure.create_subtest(exam, **ser.validated_data)
        return Response(SubTestSerializer(subtest).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["get", "post"], url_path="tracks")
    def tracks(self, request, pk=None):
        if request.method == "GET":
            qs = EligibilityTrack.objects.filter(exam=self.get_object()).order_by("created_at")
            return Response(EligibilityTrackSerializer(qs, many=True).data)

        exam = self._exam_for_mutation()
        ser = EligibilityTrackSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        track = structure.create_track(exam, **ser.validated_data)
        return Response(EligibilityTrackSerializer(track).data, status=status.HTTP_201_CREATED)


class _ExamChildViewSet(
    mixins.RetrieveModelMixin,
    mixins.UpdateModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    permission_classes = [IsAdmin]

    def _owning_exam(self, obj) -> Exam:
        raise NotImplementedError

    def _child_for_mutation(self):
        obj = self.get_object()
        lifecycle.refresh_lifecycle(self._owning_exam(obj))
        return obj


class SubTestViewSet(_ExamChildViewSet):
    queryset = SubTest.objects.select_related("exam").all()
    serializer_class = SubTestSerializer

    def _owning_exam(self, obj):
        return obj.exam

    def update(self, request, *args, **kwargs):
        subtest = self._child_for_mutation()
        ser = self.get_serializer(subtest, data=request.data, partial=kwargs.pop("partial", False))
        ser.is_valid(raise_exception=True)
        subtest = structure.update_subtest(subtest, **ser.validated_data)
        return Response(SubTestSerializer(subtest).data)

    def destroy(self, request, *args, **kwargs):
        structure.delete_subtest(self._child_for_mutation())
        return Response(status=status.HTTP_204_NO_CONTENT)


class EligibilityTrackViewSet(_ExamChildViewSet):
    queryset = EligibilityTrack.objects.select_related("exam").all()
    serializer_class = EligibilityTrackSerializer

    def _owning_exam(self, obj):
        return obj.exam

    def update(self, request, *args, **kwargs):
        track = self._child_for_mutation()
        ser = self.get_serializer(track, data=request.data, partial=kwargs.pop("partial", False))
        ser.is_valid(raise_exception=True)
        track = structure.update_track(track, **ser.validated_data)
        return Response(EligibilityTrackSerializer(track).data)

    def destroy(self, request, *args, **kwargs):
        structure.delete_track(self._child_for_mutation())
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["get", "post"], url_path="rules")
    def rules(self, request, pk=None):
        if request.method == "GET":
            qs = ScoringRule.objects.filter(track=self.get_object()).select_related("subtest")
            return Response(ScoringRuleSerializer(qs, many=True).data)

        track = self._child_for_mutation()
        ser = ScoringRuleSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data
        rule = scoring.create_rule(
            track, data["subtest"], data["correct_points"], data.get("min_passing_score"),
        )
        return Response(ScoringRuleSerializer(rule).data, status=status.HTTP_201_CREATED)


class ScoringRuleViewSet(_ExamChildViewSet):
    queryset = ScoringRule.objects.select_related("track__exam", "subtest").all()
    serializer_class = ScoringRuleSerializer

    def _owning_exam(self, obj):
        return obj.track.exam

    def update(self, request, *args, **kwargs):
        rule = self._child_for_mutation()
        ser = self.get_serializer(rule, data=request.data, partial=True)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data
        rule = scoring.update_rule(
            rule,
            correct_points=data.get("correct_points"),
            min_passing_score=data.get("min_passing_score"),
            clear_min_passing="min_passing_score" in data and data["min_passing_score"] is None,
        )
        return Response(ScoringRuleSerializer(rule).data)

    def destroy(self, request, *args, **kwargs):
        scoring.delete_rule(self._child_for_mutation())
        return Response(status=status.HTTP_204_NO_CONTENT)
