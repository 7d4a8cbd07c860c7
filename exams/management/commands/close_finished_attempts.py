from django.core.management.base import BaseCommand
from django.utils import timezone

from exams.services.finalizer import sweep


class Command(BaseCommand):
    help = (
        "Run the exam lifecycle sweep once: auto-publish due drafts, finalize expired or "
        "fully submitted exams and close their started attempts."
    )

    def handle(self, *args, **opts):
        result = sweep(timezone.now())
        self.stdout.write(self.style.SUCCESS(
            f"Published: {result.published} | Finalized: {result.finalized} | "
            f"Attempts closed: {result.attempts_closed}"
        ))
