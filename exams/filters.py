import django_filters
from django.db.models import Q

from common.enums import AccessMode, ExamState

from .models import Exam


class ExamFilter(django_filters.FilterSet):
    state = django_filters.ChoiceFilter(choices=ExamState.choices)
    access_mode = django_filters.ChoiceFilter(choices=AccessMode.choices)
    exam_type = django_filters.UUIDFilter(field_name="exam_type_id")
    code = django_filters.CharFilter(field_name="code", lookup_expr="icontains")
    search = django_filters.CharFilter(method="filter_search")
    valid_from_after = django_filters.IsoDateTimeFilter(field_name="valid_from", lookup_expr="gte")
    valid_until_before = django_filters.IsoDateTimeFilter(field_name="valid_until", lookup_expr="lte")

    class Meta:
        model = Exam
        fields = ["state", "access_mode", "exam_type", "code"]

    def filter_search(self, queryset, name, value):
        return queryset.filter(Q(code__icontains=value) | Q(title__icontains=value))
