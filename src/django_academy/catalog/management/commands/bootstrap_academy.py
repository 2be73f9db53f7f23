"""Management command to bootstrap the catalog from a TOML configuration file."""

import datetime
from typing import Any

from django.core.management.base import BaseCommand, CommandError, CommandParser
from django.db import transaction
from django.utils import timezone

from django_academy.billing.models import Voucher
from django_academy.catalog.models import Course, Exam
from django_academy.config_loader import load_catalog_config

# Mapping from TOML short field names to Django model field names.
_COURSE_FIELD_MAP: dict[str, str] = {
    "title": "title",
    "description": "description",
    "thumbnail_url": "thumbnail_url",
    "price": "price",
    "published": "is_published",
}

_EXAM_FIELD_MAP: dict[str, str] = {
    "name": "name",
    "description": "description",
    "price": "price",
    "duration_minutes": "duration_minutes",
    "published": "is_published",
}

_VOUCHER_FIELD_MAP: dict[str, str] = {
    "type": "discount_type",
    "value": "value",
    "min_purchase": "min_purchase",
    "max_discount": "max_discount",
    "applies_to": "applicable_to",
    "usage_limit": "usage_limit",
    "active": "is_active",
}


def _map_fields(data: dict[str, Any], field_map: dict[str, str]) -> dict[str, Any]:
    """Map TOML config keys to Django model field names.

    Args:
        data: Raw config data with short field names.
        field_map: Mapping of config key -> model field name.

    Returns:
        Dict with model field names as keys.
    """
    return {model_field: data[key] for key, model_field in field_map.items() if key in data}


def _expiry(value: datetime.date) -> datetime.datetime:
    """Turn a TOML date or datetime into an aware datetime.

    A bare date means the voucher is usable until the end of that day in
    the current time zone.
    """
    if not isinstance(value, datetime.datetime):
        value = datetime.datetime.combine(value, datetime.time(23, 59, 59))
    if timezone.is_naive(value):
        value = timezone.make_aware(value)
    return value


class Command(BaseCommand):
    """Bootstrap courses, exams, and vouchers from a TOML configuration file.

    Usage::

        manage.py bootstrap_academy --config academy.toml
        manage.py bootstrap_academy --config academy.toml --update
        manage.py bootstrap_academy --config academy.toml --dry-run
    """

    help = "Create or update courses, exams, and vouchers from a TOML config file."

    def add_arguments(self, parser: CommandParser) -> None:
        """Define the command-line arguments accepted by this command."""
        parser.add_argument(
            "--config",
            required=True,
            help="Path to the catalog TOML configuration file.",
        )
        parser.add_argument(
            "--update",
            action="store_true",
            default=False,
            help="Update existing records matched by slug or code instead of skipping them.",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            default=False,
            help="Validate the config and print what would be created without saving.",
        )

    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the bootstrap command."""
        try:
            catalog = load_catalog_config(options["config"])
        except (FileNotFoundError, TypeError, ValueError) as exc:
            raise CommandError(str(exc)) from exc

        if options["dry_run"]:
            self._print_dry_run(catalog)
            return

        update: bool = options["update"]
        counts = {"created": 0, "updated": 0, "skipped": 0}
        with transaction.atomic():
            for course_data in catalog["courses"]:
                course = self._sync(
                    Course,
                    {"slug": course_data["slug"]},
                    _map_fields(course_data, _COURSE_FIELD_MAP),
                    label=f"course '{course_data['slug']}'",
                    update=update,
                    counts=counts,
                )
                for exam_data in course_data["exams"]:
                    self._sync(
                        Exam,
                        {"course": course, "slug": exam_data["slug"]},
                        _map_fields(exam_data, _EXAM_FIELD_MAP),
                        label=f"exam '{course.slug}/{exam_data['slug']}'",
                        update=update,
                        counts=counts,
                    )
            for voucher_data in catalog["vouchers"]:
                fields = _map_fields(voucher_data, _VOUCHER_FIELD_MAP)
                fields["expires_at"] = _expiry(voucher_data["expires"])
                self._sync(
                    Voucher,
                    {"code": voucher_data["code"]},
                    fields,
                    label=f"voucher '{voucher_data['code']}'",
                    update=update,
                    counts=counts,
                )

        self.stdout.write(
            self.style.SUCCESS(
                f"Bootstrap complete: {counts['created']} created, "
                f"{counts['updated']} updated, {counts['skipped']} skipped."
            )
        )

    def _sync(
        self,
        model: type[Course] | type[Exam] | type[Voucher],
        lookup: dict[str, Any],
        fields: dict[str, Any],
        *,
        label: str,
        update: bool,
        counts: dict[str, int],
    ) -> Course | Exam | Voucher:
        """Create a record, or update or skip it when it already exists.

        Args:
            model: The model class to write.
            lookup: Natural key identifying the record.
            fields: Remaining field values from the config.
            label: Human-readable name used in progress output.
            update: Overwrite existing records instead of skipping them.
            counts: Running created / updated / skipped tallies.

        Returns:
            The created, updated, or existing instance.
        """
        existing = model.objects.filter(**lookup).first()
        if existing is None:
            instance = model.objects.create(**lookup, **fields)
            self.stdout.write(self.style.SUCCESS(f"  Created {label}"))
            counts["created"] += 1
            return instance

        if not update:
            self.stdout.write(self.style.WARNING(f"  {label[0].upper()}{label[1:]} already exists, skipping."))
            counts["skipped"] += 1
            return existing

        for attr, value in fields.items():
            setattr(existing, attr, value)
        existing.save()
        self.stdout.write(self.style.SUCCESS(f"  Updated {label}"))
        counts["updated"] += 1
        return existing

    def _print_dry_run(self, catalog: dict[str, Any]) -> None:
        """Print a preview of what would be created without touching the database."""
        self.stdout.write(self.style.MIGRATE_HEADING("\n[DRY RUN] No database changes will be made.\n"))
        self.stdout.write(self.style.MIGRATE_HEADING("Courses:"))
        for course in catalog["courses"]:
            self.stdout.write(f"  - {course['title']} ({course['slug']}): {course['price']} tokens")
            for exam in course["exams"]:
                self.stdout.write(f"      exam {exam['name']} ({exam['slug']}): {exam['price']} tokens")
        if catalog["vouchers"]:
            self.stdout.write(self.style.MIGRATE_HEADING("Vouchers:"))
            for voucher in catalog["vouchers"]:
                self.stdout.write(
                    f"  - {voucher['code']}: {voucher['type']} {voucher['value']} "
                    f"(applies to {voucher['applies_to']}, expires {voucher['expires']})"
                )
