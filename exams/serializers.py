# exams/serializers.py
from decimal import Decimal

from rest_framework import serializers

from common.enums import ApprovalMode, ExamState

from .models import EligibilityTrack, Exam, ExamType, QuestionAssignment, ScoringRule, SubTest


# ----------------------------
# Model serializers
# ----------------------------

class ExamSerializer(serializers.ModelSerializer):
    exam_type = serializers.PrimaryKeyRelatedField(
        queryset=ExamType.objects.filter(is_active=True), required=False, allow_null=True
    )
    question_count = serializers.SerializerMethodField()

    class Meta:
        model = Exam
        fields = [
            "id", "code", "title", "description", "exam_type", "access_mode", "state",
            "valid_from", "valid_until", "time_limit_minutes", "wizard_step",
            "published_at", "finalized_at", "question_count", "created_at", "updated_at",
        ]
        read_only_fields = [
            "state", "valid_from", "valid_until", "wizard_step",
            "published_at", "finalized_at", "created_at", "updated_at",
        ]

    def get_question_count(self, obj):
        return obj.question_links.count()

    def validate_code(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Code cannot be blank.")
        return value

    def validate_title(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Title cannot be blank.")
        return value


class SubTestSerializer(serializers.ModelSerializer):
    name = serializers.CharField(min_length=5, max_length=100)
    order = serializers.IntegerField(min_value=1)
    points_per_question = serializers.DecimalField(
        max_digits=6, decimal_places=2, min_value=Decimal("0"), max_value=Decimal("10"), required=False
    )
    duration_minutes = serializers.IntegerField(min_value=1, max_value=600, required=False, allow_null=True)
    question_count = serializers.SerializerMethodField()

    class Meta:
        model = SubTest
        fields = ["id", "exam", "name", "order", "points_per_question", "duration_minutes", "question_count"]
        read_only_fields = ["exam"]
        # uniqueness of (exam, order) is a guard rule, not a field error
        validators = []

    def get_question_count(self, obj):
        return obj.question_links.count()


class EligibilityTrackSerializer(serializers.ModelSerializer):
    name = serializers.CharField(min_length=5, max_length=100)
    description = serializers.CharField(max_length=500, required=False, allow_blank=True)
    approval_mode = serializers.ChoiceField(choices=ApprovalMode.choices, required=False)

    class Meta:
        model = EligibilityTrack
        fields = ["id", "exam", "name", "description", "approval_mode"]
        read_only_fields = ["exam"]
        validators = []

    def validate_name(self, value):
        return value.strip()


class ScoringRuleSerializer(serializers.ModelSerializer):
    subtest = serializers.PrimaryKeyRelatedField(queryset=SubTest.objects.all())
    subtest_name = serializers.CharField(source="subtest.name", read_only=True)
    correct_points = serializers.DecimalField(
        max_digits=6, decimal_places=2, min_value=Decimal("0.01"), max_value=Decimal("10")
    )
    min_passing_score = serializers.DecimalField(
        max_digits=8, decimal_places=2, min_value=Decimal("0"), required=False, allow_null=True
    )

    class Meta:
        model = ScoringRule
        fields = [
            "id", "track", "subtest", "subtest_name", "correct_points",
            "incorrect_points", "blank_points", "min_passing_score",
        ]
        read_only_fields = ["track", "incorrect_points", "blank_points"]
        validators = []


class QuestionAssignmentSerializer(serializers.ModelSerializer):
    code = serializers.CharField(source="question.code", read_only=True)
    statement = serializers.CharField(source="question.statement", read_only=True)

    class Meta:
        model = QuestionAssignment
        fields = ["id", "question", "code", "statement", "subtest", "order"]


# ----------------------------
# Wizard / lifecycle payloads
# ----------------------------

class _ValidityWindowMixin:
    def validate(self, attrs):
        start = attrs.get("valid_from")
        end = attrs.get("valid_until")
        if start and end and end <= start:
            raise serializers.ValidationError(
                {"fecha_fin_vigencia": "The end date must be after the start date."}
            )
        return attrs


class StateChangeSerializer(_ValidityWindowMixin, serializers.Serializer):
    estado = serializers.ChoiceField(choices=ExamState.choices, source="state")
    fecha_inicio_vigencia = serializers.DateTimeField(source="valid_from", required=False, allow_null=True)
    fecha_fin_vigencia = serializers.DateTimeField(source="valid_until", required=False, allow_null=True)


class ScheduleSerializer(_ValidityWindowMixin, serializers.Serializer):
    fecha_inicio_vigencia = serializers.DateTimeField(source="valid_from")
    fecha_fin_vigencia = serializers.DateTimeField(source="valid_until")


class WizardStepSerializer(serializers.Serializer):
    paso = serializers.IntegerField(min_value=1, max_value=6, source="step")


class QuestionItemSerializer(serializers.Serializer):
    idPregunta = serializers.UUIDField(source="question_id")
    idSubprueba = serializers.UUIDField(source="subtest_id", required=False, allow_null=True)
    orden = serializers.IntegerField(source="order", min_value=1, required=False)


class QuestionBatchSerializer(serializers.Serializer):
    preguntas = QuestionItemSerializer(many=True, allow_empty=True)


class ReorderSerializer(serializers.Serializer):
    idSubprueba = serializers.UUIDField(source="subtest_id")
    desde = serializers.IntegerField(min_value=0, source="from_index")
    hasta = serializers.IntegerField(min_value=0, source="to_index")


class GenerateRandomSerializer(serializers.Serializer):
    idSubprueba = serializers.UUIDField(source="subtest_id", required=False, allow_null=True)
    idCategoria = serializers.UUIDField(source="category_id", required=False, allow_null=True)
    ano = serializers.IntegerField(source="year", min_value=2000, max_value=2100, required=False, allow_null=True)
    codigo = serializers.CharField(source="code", max_length=50, required=False, allow_blank=True)
    cantidad = serializers.IntegerField(source="count", min_value=1, max_value=200)
    preguntas_actuales = serializers.ListField(
        child=serializers.UUIDField(), source="exclude_ids", required=False, default=list
    )


class AssignUsersSerializer(serializers.Serializer):
    usuarios = serializers.ListField(child=serializers.IntegerField(min_value=1), allow_empty=True)


def candidate_payload(candidate) -> dict:
    q = candidate.question
    return {
        "idPregunta": str(q.id),
        "codigo": q.code,
        "enunciado": q.statement,
        "ano": q.year,
        "categoria": {"idCategoria": str(q.category_id), "nombre": q.category.name},
        "contexto": (
            {"idContexto": str(q.context_id), "titulo": q.context.title} if q.context_id else None
        ),
        "opciones": [
            {"idOpcion": str(o.id), "texto": o.text, "orden": o.order} for o in q.options.all()
        ],
        "idSubprueba": str(candidate.subtest.id),
        "orden": candidate.order,
    }
