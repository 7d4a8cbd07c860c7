# exams/tasks.py
from __future__ import annotations

import logging

from celery import shared_task
from django.utils import timezone

from .services.finalizer import sweep

logger = logging.getLogger(__name__)


@shared_task(bind=True, ignore_result=True)
def sweep_exam_lifecycle(self):
    """
    Periodic task (safe to run every minute, scheduled by EXAM_SWEEP_SECONDS):
      1) publish complete drafts whose validity window has opened
      2) finalize published exams that expired or that every participant submitted
      3) close attempts left open on finalized exams
    """
    result = sweep(timezone.now())
    if result.published or result.finalized or result.attempts_closed:
        logger.info(
            "Lifecycle sweep: %d published, %d finalized, %d attempt(s) closed",
            result.published, result.finalized, result.attempts_closed,
        )
    return None
