"""Management command to open exam sessions for the coming days."""

import datetime
from typing import Any

from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError, CommandParser

from django_academy.catalog.models import Exam
from django_academy.scheduling.services.reservation import ReservationService
from django_academy.settings import get_config


class Command(BaseCommand):
    """Create one exam session per day and time slot.

    Sessions that already exist are left alone, so the command is safe to
    run repeatedly (e.g. from a daily cron job).

    Usage::

        manage.py create_exam_schedules python-foundations/python-foundations-certification
        manage.py create_exam_schedules django-web/django-developer-exam --capacity 10 --days 14
        manage.py create_exam_schedules django-web/django-developer-exam --slots 09:00 13:00
    """

    help = "Create exam sessions for every day and time slot in a date range."

    def add_arguments(self, parser: CommandParser) -> None:
        """Define the command-line arguments accepted by this command."""
        parser.add_argument("exam", help="Exam to schedule, as COURSE_SLUG/EXAM_SLUG.")
        parser.add_argument(
            "--capacity",
            type=int,
            default=None,
            help="Seats per session (defaults to DJANGO_ACADEMY['scheduling']['default_capacity']).",
        )
        parser.add_argument(
            "--days",
            type=int,
            default=None,
            help="Number of days to schedule (defaults to DJANGO_ACADEMY['scheduling']['days_ahead']).",
        )
        parser.add_argument(
            "--slots",
            nargs="+",
            default=None,
            help="Time slots to open each day (defaults to the configured time_slots).",
        )
        parser.add_argument(
            "--start",
            type=datetime.date.fromisoformat,
            default=None,
            help="First day to schedule as YYYY-MM-DD (defaults to today).",
        )

    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the command."""
        exam = self._get_exam(options["exam"])
        capacity = options["capacity"]
        if capacity is None:
            capacity = get_config().scheduling.default_capacity

        try:
            created = ReservationService.bulk_create_schedules(
                exam,
                capacity,
                days_ahead=options["days"],
                slots_per_day=options["slots"],
                start=options["start"],
            )
        except ValidationError as exc:
            raise CommandError("; ".join(exc.messages)) from exc

        self.stdout.write(self.style.SUCCESS(f"Created {len(created)} session(s) for {exam.name}."))
        if options["verbosity"] >= 2:  # noqa: PLR2004
            for schedule in created:
                self.stdout.write(f"  {schedule.date} {schedule.time_slot} ({schedule.capacity} seats)")

    def _get_exam(self, value: str) -> Exam:
        course_slug, sep, exam_slug = value.partition("/")
        if not sep or not course_slug or not exam_slug:
            raise CommandError("Exam must be given as COURSE_SLUG/EXAM_SLUG.")
        exam = Exam.objects.select_related("course").filter(course__slug=course_slug, slug=exam_slug).first()
        if exam is None:
            raise CommandError(f"Exam '{value}' does not exist.")
        return exam
