"""Django app configuration for the billing app."""

from django.apps import AppConfig


class DjangoAcademyBillingConfig(AppConfig):
    """Configuration for the billing app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "django_academy.billing"
    label = "academy_billing"
    verbose_name = "Billing"
