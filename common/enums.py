from django.db import models


class ExamState(models.TextChoices):
    DRAFT     = "0", "Draft"
    PUBLISHED = "1", "Published"
    FINALIZED = "2", "Finalized"


class AccessMode(models.TextChoices):
    PUBLIC  = "publico", "Public"
    PRIVATE = "privado", "Private"


class ApprovalMode(models.TextChoices):
    JOINT       = "0", "Joint"
    INDEPENDENT = "1", "Independent per sub-test"


class AttemptStatus(models.TextChoices):
    STARTED   = "started",   "Started"
    SUBMITTED = "submitted", "Submitted"
