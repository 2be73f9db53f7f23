"""Django app configuration for the catalog app."""

from django.apps import AppConfig


class DjangoAcademyCatalogConfig(AppConfig):
    """Configuration for the catalog app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "django_academy.catalog"
    label = "academy_catalog"
    verbose_name = "Catalog"
