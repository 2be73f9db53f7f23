"""Django app configuration for the scheduling app."""

from django.apps import AppConfig


class DjangoAcademySchedulingConfig(AppConfig):
    """Configuration for the scheduling app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "django_academy.scheduling"
    label = "academy_scheduling"
    verbose_name = "Exam Scheduling"
