from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    class Roles(models.TextChoices):
        ADMIN   = "ADMIN",   "Admin"
        TEACHER = "TEACHER", "Teacher"

    role = models.CharField(max_length=20, choices=Roles.choices, default=Roles.TEACHER)

    email = models.EmailField(unique=True, null=True, blank=True)
    document_number = models.CharField(max_length=20, blank=True)
    phone = models.CharField(max_length=20, blank=True)

    @property
    def is_exam_admin(self) -> bool:
        return self.role == self.Roles.ADMIN or self.is_staff

    def __str__(self):
        return f"{self.username} • {self.role}"
