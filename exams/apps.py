# exams/apps.py
from django.apps import AppConfig

class ExamsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "exams"

    def ready(self):
        # Celery discovers exams.tasks; the cache module registers its signal receiver
        import exams.tasks  # noqa: F401
        import exams.cache  # noqa: F401
