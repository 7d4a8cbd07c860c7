# core/urls.py
from django.urls import path, include
from django.conf import settings
from django.conf.urls.static import static
from django.contrib import admin
from rest_framework.routers import DefaultRouter
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from exams.views import EligibilityTrackViewSet, ExamViewSet, ScoringRuleViewSet, SubTestViewSet

router = DefaultRouter()
router.register(r"exams", ExamViewSet, basename="exam")
router.register(r"subtests", SubTestViewSet, basename="subtest")
router.register(r"tracks", EligibilityTrackViewSet, basename="track")
router.register(r"rules", ScoringRuleViewSet, basename="rule")


urlpatterns = [
    path('admin/', admin.site.urls),

    path("api/auth/token/", TokenObtainPairView.as_view(), name="token-obtain"),
    path("api/auth/token/refresh/", TokenRefreshView.as_view(), name="token-refresh"),

    path("api/", include(router.urls)),
]

if settings.DEBUG:
    urlpatterns += static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)
