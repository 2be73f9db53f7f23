"""Exam schedule and booking models for django-academy."""

from django.conf import settings
from django.db import models
from django.utils import timezone


class TimeSlot(models.TextChoices):
    """The fixed daily start times an exam can be scheduled at."""

    MORNING = "09:00", "Morning (9:00 AM)"
    AFTERNOON = "13:00", "Afternoon (1:00 PM)"
    EVENING = "17:00", "Evening (5:00 PM)"


class ExamSchedule(models.Model):
    """A bookable (date, time slot) for an exam with a fixed seat capacity.

    ``booked_count`` counts the bookings holding a seat (confirmed,
    completed, or no-show) and is only changed through conditional
    ``UPDATE`` statements in the reservation service. ``status`` is
    ``full`` exactly when every seat is taken; ``cancelled`` is a terminal
    administrative state.
    """

    class Status(models.TextChoices):
        """Availability states for a schedule."""

        AVAILABLE = "available", "Available"
        FULL = "full", "Full"
        CANCELLED = "cancelled", "Cancelled"

    exam = models.ForeignKey(
        "academy_catalog.Exam",
        on_delete=models.CASCADE,
        related_name="schedules",
    )
    date = models.DateField()
    time_slot = models.CharField(max_length=5, choices=TimeSlot.choices)
    capacity = models.PositiveIntegerField()
    booked_count = models.PositiveIntegerField(default=0)
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.AVAILABLE,
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_exam_schedules",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["date", "time_slot"]
        constraints = [
            models.UniqueConstraint(
                fields=["exam", "date", "time_slot"],
                name="scheduling_examschedule_unique_slot",
            ),
            models.CheckConstraint(
                condition=models.Q(capacity__gte=1),
                name="scheduling_examschedule_capacity_positive",
            ),
            models.CheckConstraint(
                condition=models.Q(booked_count__lte=models.F("capacity")),
                name="scheduling_examschedule_booked_lte_capacity",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.exam.name} on {self.date} at {self.time_slot}"

    @property
    def remaining_seats(self) -> int:
        """Return the number of seats still open."""
        if self.status == self.Status.CANCELLED:
            return 0
        return max(self.capacity - self.booked_count, 0)

    @property
    def course_id(self) -> int:
        """Return the primary key of the course the exam belongs to."""
        return self.exam.course_id


class Booking(models.Model):
    """One seat reserved by one user in an exam schedule.

    A user can hold at most one confirmed booking per schedule. Cancelling
    releases the seat; completed and no-show are terminal and do not. The
    date, slot, and contact details are snapshotted so history survives
    schedule changes and deletions.
    """

    class Status(models.TextChoices):
        """Lifecycle states for a booking."""

        CONFIRMED = "confirmed", "Confirmed"
        CANCELLED = "cancelled", "Cancelled"
        COMPLETED = "completed", "Completed"
        NO_SHOW = "no-show", "No-show"

    schedule = models.ForeignKey(
        ExamSchedule,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="bookings",
    )
    exam = models.ForeignKey(
        "academy_catalog.Exam",
        on_delete=models.CASCADE,
        related_name="bookings",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="exam_bookings",
    )
    user_name = models.CharField(max_length=200, blank=True, default="")
    user_email = models.EmailField(blank=True, default="")
    date = models.DateField()
    time_slot = models.CharField(max_length=5, choices=TimeSlot.choices)
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.CONFIRMED,
    )
    booked_at = models.DateTimeField(default=timezone.now)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.CharField(max_length=300, blank=True, default="")
    reminder_sent = models.BooleanField(default=False)

    class Meta:
        ordering = ["date", "time_slot", "booked_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["schedule", "user"],
                condition=models.Q(status="confirmed"),
                name="scheduling_booking_one_confirmed_per_user",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.user} for {self.exam.name} on {self.date} at {self.time_slot} ({self.status})"
