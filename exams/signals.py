from django.db import transaction
from django.dispatch import Signal

# Sent after a committed structural change; kwargs: exam_id, action.
exam_mutated = Signal()


def notify_exam_mutated(exam_id, action: str):
    from .models import Exam

    transaction.on_commit(
        lambda: exam_mutated.send(sender=Exam, exam_id=exam_id, action=action)
    )
