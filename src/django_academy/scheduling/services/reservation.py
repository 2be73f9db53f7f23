"""Exam seat reservation service.

Owns the capacity invariant of :class:`~django_academy.scheduling.models.ExamSchedule`:
``booked_count`` counts the seats held by uncancelled bookings and never exceeds
``capacity``. Seats are taken and released with single conditional
``UPDATE`` statements so two concurrent bookings can never both claim the
last seat, and every public operation runs as one atomic unit wrapped in
bounded conflict retry.
"""

import datetime
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from django.contrib.auth.models import AbstractBaseUser
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import Case, F, QuerySet, Value, When
from django.utils import timezone

from django_academy.catalog.models import Course, Exam
from django_academy.concurrency import run_with_conflict_retry
from django_academy.exceptions import BusinessRuleViolation, ConcurrencyConflict
from django_academy.scheduling.models import Booking, ExamSchedule, TimeSlot
from django_academy.scheduling.signals import booking_cancelled, booking_confirmed
from django_academy.settings import get_config

logger = logging.getLogger(__name__)


@dataclass
class BookingResult:
    """Outcome of a booking state change.

    ``changed`` is ``False`` when the request was a no-op, e.g. cancelling
    a booking that was already cancelled.
    """

    success: bool
    booking: Booking | None = None
    error: str = ""
    code: str = ""
    changed: bool = True


@dataclass
class TimeSlotInfo:
    """Availability of one time slot on one day for an exam."""

    time_slot: str
    label: str
    schedule_id: int | None
    capacity: int
    booked_count: int
    available: bool

    @property
    def remaining(self) -> int:
        """Return the number of open seats in the slot."""
        return max(self.capacity - self.booked_count, 0)


class ReservationService:
    """Stateless service for exam schedules and seat bookings."""

    @staticmethod
    def list_available(exam: Exam, *, today: datetime.date | None = None) -> QuerySet[ExamSchedule]:
        """Return the exam's schedules that still have open seats.

        Only schedules on or after ``today`` (defaults to the current local
        date) are included, ordered by date and time slot.
        """
        today = today or timezone.localdate()
        return ExamSchedule.objects.filter(
            exam=exam,
            status=ExamSchedule.Status.AVAILABLE,
            booked_count__lt=F("capacity"),
            date__gte=today,
        ).order_by("date", "time_slot")

    @staticmethod
    def list_course_schedules(course: Course) -> QuerySet[ExamSchedule]:
        """Return every schedule of every exam in a course."""
        return ExamSchedule.objects.filter(exam__course=course).select_related("exam").order_by("date", "time_slot")

    @staticmethod
    def get_time_slots(exam: Exam, day: datetime.date) -> list[TimeSlotInfo]:
        """Summarize every configured time slot of an exam on one day.

        Slots without a schedule are reported as unavailable with zero
        capacity.
        """
        schedules = {s.time_slot: s for s in ExamSchedule.objects.filter(exam=exam, date=day)}
        labels = dict(TimeSlot.choices)
        slots = []
        for time_slot in get_config().scheduling.time_slots:
            schedule = schedules.get(time_slot)
            if schedule is None:
                slots.append(
                    TimeSlotInfo(
                        time_slot=time_slot,
                        label=labels[time_slot],
                        schedule_id=None,
                        capacity=0,
                        booked_count=0,
                        available=False,
                    )
                )
                continue
            slots.append(
                TimeSlotInfo(
                    time_slot=time_slot,
                    label=labels[time_slot],
                    schedule_id=schedule.pk,
                    capacity=schedule.capacity,
                    booked_count=schedule.booked_count,
                    available=(
                        schedule.status == ExamSchedule.Status.AVAILABLE and schedule.booked_count < schedule.capacity
                    ),
                )
            )
        return slots

    @staticmethod
    def book(
        user: AbstractBaseUser,
        schedule_id: int,
        *,
        contact_name: str = "",
        contact_email: str = "",
    ) -> BookingResult:
        """Reserve one seat in an exam schedule for a user.

        Args:
            user: The account taking the seat.
            schedule_id: Primary key of the ExamSchedule.
            contact_name: Name to snapshot on the booking. Defaults to the
                user's full name or username.
            contact_email: Email to snapshot on the booking. Defaults to the
                user's email.

        Returns:
            A BookingResult. On failure ``code`` is one of ``not_found``,
            ``invalid_state``, ``duplicate_booking``, ``capacity_exceeded``
            or ``concurrency_conflict`` and no seat was taken.

        Raises:
            StorageError: If the database fails; nothing is applied.
        """
        try:
            booking = run_with_conflict_retry(
                "Booking",
                lambda: _book(user, schedule_id, contact_name=contact_name, contact_email=contact_email),
            )
        except BusinessRuleViolation as exc:
            logger.info("Booking of schedule %s rejected for user %s: %s", schedule_id, user.pk, exc.message)
            return BookingResult(success=False, error=exc.message, code=exc.code, changed=False)
        except ConcurrencyConflict as exc:
            return BookingResult(success=False, error=str(exc), code=exc.code, changed=False)
        return BookingResult(success=True, booking=booking)

    @staticmethod
    def cancel(booking_id: int, reason: str = "") -> BookingResult:
        """Cancel a confirmed booking and release its seat.

        Cancelling an already cancelled booking succeeds without changing
        anything. Completed and no-show bookings cannot be cancelled.

        Raises:
            StorageError: If the database fails; nothing is applied.
        """
        return _run_booking_change(
            "Booking cancellation",
            lambda: _cancel(booking_id, reason=reason),
        )

    @staticmethod
    def mark_completed(booking_id: int) -> BookingResult:
        """Mark a confirmed booking as attended. The seat stays taken."""
        return _run_booking_change(
            "Booking completion",
            lambda: _finish(booking_id, Booking.Status.COMPLETED),
        )

    @staticmethod
    def mark_no_show(booking_id: int) -> BookingResult:
        """Mark a confirmed booking as missed. The seat stays taken."""
        return _run_booking_change(
            "Booking no-show",
            lambda: _finish(booking_id, Booking.Status.NO_SHOW),
        )

    @staticmethod
    def list_user_bookings(user: AbstractBaseUser, *, upcoming_only: bool = False) -> QuerySet[Booking]:
        """Return a user's bookings ordered by date and slot.

        With ``upcoming_only`` only confirmed bookings from today on are
        returned.
        """
        qs = Booking.objects.filter(user=user).select_related("exam", "schedule")
        if upcoming_only:
            qs = qs.filter(status=Booking.Status.CONFIRMED, date__gte=timezone.localdate())
        return qs.order_by("date", "time_slot", "booked_at")

    @staticmethod
    def create_schedule(
        exam: Exam,
        day: datetime.date,
        time_slot: str,
        capacity: int,
        *,
        created_by: AbstractBaseUser | None = None,
    ) -> ExamSchedule:
        """Create a single bookable session for an exam.

        Raises:
            ValidationError: If the slot is unknown, the capacity is not a
                positive integer, or the exam already has a session at that
                date and slot.
        """
        _validate_time_slot(time_slot)
        _validate_capacity(capacity)

        try:
            with transaction.atomic():
                schedule = ExamSchedule.objects.create(
                    exam=exam,
                    date=day,
                    time_slot=time_slot,
                    capacity=capacity,
                    created_by=created_by,
                )
        except IntegrityError:
            raise ValidationError(f"'{exam.name}' is already scheduled on {day} at {time_slot}.") from None

        logger.info("Created schedule %s for exam %s on %s at %s", schedule.pk, exam.pk, day, time_slot)
        return schedule

    @staticmethod
    def bulk_create_schedules(
        exam: Exam,
        capacity: int,
        *,
        days_ahead: int | None = None,
        slots_per_day: Iterable[str] | None = None,
        start: datetime.date | None = None,
        created_by: AbstractBaseUser | None = None,
    ) -> list[ExamSchedule]:
        """Create one schedule per day and slot for the coming days.

        Existing (date, slot) sessions are skipped and left untouched, so
        running this twice never resets booked seats.

        Args:
            exam: The exam to schedule.
            capacity: Seats per session.
            days_ahead: Number of consecutive days, starting with ``start``.
                Defaults to ``DJANGO_ACADEMY["scheduling"]["days_ahead"]``.
            slots_per_day: Time slots to create each day. Defaults to the
                configured ``time_slots``.
            start: First day (defaults to today).
            created_by: Optional administrator.

        Returns:
            The newly created schedules.

        Raises:
            ValidationError: If the capacity, day count, or any slot is invalid.
        """
        config = get_config().scheduling
        days_ahead = config.days_ahead if days_ahead is None else days_ahead
        slots = tuple(config.time_slots if slots_per_day is None else slots_per_day)
        start = start or timezone.localdate()

        _validate_capacity(capacity)
        if isinstance(days_ahead, bool) or not isinstance(days_ahead, int) or days_ahead < 1:
            raise ValidationError("days_ahead must be a positive integer.")
        if not slots:
            raise ValidationError("At least one time slot is required.")
        for time_slot in slots:
            _validate_time_slot(time_slot)

        end = start + datetime.timedelta(days=days_ahead - 1)
        existing = set(
            ExamSchedule.objects.filter(exam=exam, date__range=(start, end)).values_list("date", "time_slot")
        )

        to_create = []
        for offset in range(days_ahead):
            day = start + datetime.timedelta(days=offset)
            for time_slot in dict.fromkeys(slots):
                if (day, time_slot) in existing:
                    continue
                to_create.append(
                    ExamSchedule(
                        exam=exam,
                        date=day,
                        time_slot=time_slot,
                        capacity=capacity,
                        created_by=created_by,
                    )
                )

        with transaction.atomic():
            created = ExamSchedule.objects.bulk_create(to_create)

        logger.info(
            "Created %d schedules for exam %s (%d existing skipped)",
            len(created),
            exam.pk,
            days_ahead * len(set(slots)) - len(created),
        )
        return created

    @staticmethod
    def update_schedule(
        schedule_id: int,
        *,
        day: datetime.date | None = None,
        time_slot: str | None = None,
        capacity: int | None = None,
    ) -> ExamSchedule:
        """Change the date, slot, or capacity of a session.

        Capacity can never drop below the seats already booked, and the
        status is recomputed from the new capacity. Confirmed bookings are
        moved along with a date or slot change.

        Raises:
            ValidationError: If the schedule does not exist or is cancelled,
                the new values are invalid, or the new date and slot are
                already taken.
        """
        if time_slot is not None:
            _validate_time_slot(time_slot)
        if capacity is not None:
            _validate_capacity(capacity)

        def update() -> ExamSchedule:
            with transaction.atomic():
                schedule = _get_schedule_for_update(schedule_id)
                if schedule.status == ExamSchedule.Status.CANCELLED:
                    raise ValidationError("A cancelled exam session cannot be changed.")

                if capacity is not None:
                    if capacity < schedule.booked_count:
                        raise ValidationError(
                            f"Capacity cannot be lower than the {schedule.booked_count} seats already booked."
                        )
                    schedule.capacity = capacity
                    schedule.status = (
                        ExamSchedule.Status.FULL
                        if schedule.booked_count >= schedule.capacity
                        else ExamSchedule.Status.AVAILABLE
                    )

                moved = False
                if day is not None and day != schedule.date:
                    schedule.date = day
                    moved = True
                if time_slot is not None and time_slot != schedule.time_slot:
                    schedule.time_slot = time_slot
                    moved = True

                try:
                    with transaction.atomic():
                        schedule.save(update_fields=["date", "time_slot", "capacity", "status", "updated_at"])
                except IntegrityError:
                    raise ValidationError(
                        f"'{schedule.exam.name}' is already scheduled on {schedule.date} at {schedule.time_slot}."
                    ) from None

                if moved:
                    schedule.bookings.filter(status=Booking.Status.CONFIRMED).update(
                        date=schedule.date,
                        time_slot=schedule.time_slot,
                    )
            return schedule

        schedule = run_with_conflict_retry("Schedule update", update)
        logger.info("Updated schedule %s", schedule.pk)
        return schedule

    @staticmethod
    def cancel_schedule(schedule_id: int, reason: str) -> int:
        """Cancel a session and every confirmed booking in it.

        The session becomes ``cancelled`` with no booked seats; this state is
        terminal.

        Returns:
            The number of bookings that were cancelled.

        Raises:
            ValidationError: If the schedule does not exist.
        """

        def cancel() -> int:
            with transaction.atomic():
                schedule = _get_schedule_for_update(schedule_id)
                cancelled = _cancel_confirmed_bookings([schedule.pk], reason)
                schedule.status = ExamSchedule.Status.CANCELLED
                schedule.booked_count = 0
                schedule.save(update_fields=["status", "booked_count", "updated_at"])
            return cancelled

        cancelled = run_with_conflict_retry("Schedule cancellation", cancel)
        logger.info("Cancelled schedule %s and %d bookings", schedule_id, cancelled)
        return cancelled

    @staticmethod
    def delete_schedule(schedule_id: int) -> int:
        """Delete a session after cancelling its confirmed bookings.

        The cancelled bookings survive with their snapshotted date and slot.

        Returns:
            The number of bookings that were cancelled.

        Raises:
            ValidationError: If the schedule does not exist.
        """

        def delete() -> int:
            with transaction.atomic():
                schedule = _get_schedule_for_update(schedule_id)
                cancelled = _cancel_confirmed_bookings([schedule.pk], "Exam session removed")
                schedule.delete()
            return cancelled

        cancelled = run_with_conflict_retry("Schedule deletion", delete)
        logger.info("Deleted schedule %s and cancelled %d bookings", schedule_id, cancelled)
        return cancelled

    @staticmethod
    def bulk_delete_schedules(schedule_ids: Iterable[int]) -> tuple[int, int]:
        """Delete several sessions at once, cancelling their confirmed bookings.

        Unknown ids are ignored.

        Returns:
            ``(schedules_deleted, bookings_cancelled)``.
        """
        ids = list(schedule_ids)

        def delete() -> tuple[int, int]:
            with transaction.atomic():
                locked = list(ExamSchedule.objects.select_for_update().filter(pk__in=ids).values_list("pk", flat=True))
                cancelled = _cancel_confirmed_bookings(locked, "Exam session removed")
                deleted, _ = ExamSchedule.objects.filter(pk__in=locked).delete()
            return deleted, cancelled

        deleted, cancelled = run_with_conflict_retry("Schedule deletion", delete)
        logger.info("Deleted %d schedules and cancelled %d bookings", deleted, cancelled)
        return deleted, cancelled


def _book(
    user: AbstractBaseUser,
    schedule_id: int,
    *,
    contact_name: str,
    contact_email: str,
) -> Booking:
    """Take one seat inside a single transaction.

    Raises:
        BusinessRuleViolation: If the seat cannot be taken.
    """
    now = timezone.now()
    with transaction.atomic():
        schedule = ExamSchedule.objects.select_related("exam").filter(pk=schedule_id).first()
        if schedule is None:
            raise BusinessRuleViolation("Exam session not found.", "not_found")
        if schedule.status == ExamSchedule.Status.CANCELLED:
            raise BusinessRuleViolation("This exam session has been cancelled.", "invalid_state")
        if schedule.date < timezone.localdate():
            raise BusinessRuleViolation("This exam session has already taken place.", "invalid_state")
        if Booking.objects.filter(schedule=schedule, user=user, status=Booking.Status.CONFIRMED).exists():
            raise BusinessRuleViolation("You already have a seat in this exam session.", "duplicate_booking")

        # status is assigned before booked_count so every backend compares
        # against the pre-increment value.
        taken = ExamSchedule.objects.filter(
            pk=schedule.pk,
            status=ExamSchedule.Status.AVAILABLE,
            booked_count__lt=F("capacity"),
        ).update(
            status=Case(
                When(booked_count__gte=F("capacity") - 1, then=Value(ExamSchedule.Status.FULL)),
                default=Value(ExamSchedule.Status.AVAILABLE),
            ),
            booked_count=F("booked_count") + 1,
            updated_at=now,
        )
        if taken != 1:
            raise BusinessRuleViolation("This time slot is fully booked.", "capacity_exceeded")

        try:
            with transaction.atomic():
                booking = Booking.objects.create(
                    schedule=schedule,
                    exam=schedule.exam,
                    user=user,
                    user_name=contact_name or user.get_full_name() or user.get_username(),
                    user_email=contact_email or getattr(user, "email", ""),
                    date=schedule.date,
                    time_slot=schedule.time_slot,
                    booked_at=now,
                )
        except IntegrityError:
            raise BusinessRuleViolation(
                "You already have a seat in this exam session.", "duplicate_booking"
            ) from None

        transaction.on_commit(lambda: booking_confirmed.send(sender=Booking, booking=booking))

    logger.info(
        "User %s booked schedule %s (%s on %s at %s)",
        user.pk,
        schedule.pk,
        schedule.exam.name,
        schedule.date,
        schedule.time_slot,
    )
    return booking


def _cancel(booking_id: int, *, reason: str) -> tuple[Booking, bool]:
    with transaction.atomic():
        booking = _get_booking_for_update(booking_id)
        if booking.status == Booking.Status.CANCELLED:
            return booking, False
        if booking.status != Booking.Status.CONFIRMED:
            raise BusinessRuleViolation(
                f"A booking that is {booking.get_status_display().lower()} cannot be cancelled.",
                "invalid_state",
            )

        now = timezone.now()
        booking.status = Booking.Status.CANCELLED
        booking.cancelled_at = now
        booking.cancellation_reason = reason
        booking.save(update_fields=["status", "cancelled_at", "cancellation_reason"])

        if booking.schedule_id is not None:
            _release_seats(booking.schedule_id, 1, now=now)

        transaction.on_commit(lambda: booking_cancelled.send(sender=Booking, booking=booking))

    logger.info("Cancelled booking %s", booking.pk)
    return booking, True


def _finish(booking_id: int, status: str) -> tuple[Booking, bool]:
    with transaction.atomic():
        booking = _get_booking_for_update(booking_id)
        if booking.status != Booking.Status.CONFIRMED:
            raise BusinessRuleViolation(
                f"Only confirmed bookings can be marked as {Booking.Status(status).label.lower()}.",
                "invalid_state",
            )
        booking.status = status
        update_fields = ["status"]
        if status == Booking.Status.COMPLETED:
            booking.completed_at = timezone.now()
            update_fields.append("completed_at")
        booking.save(update_fields=update_fields)

    logger.info("Marked booking %s as %s", booking.pk, status)
    return booking, True


def _run_booking_change(operation: str, func: Callable[[], tuple[Booking, bool]]) -> BookingResult:
    """Run a booking transition and translate rule failures into a result."""
    try:
        booking, changed = run_with_conflict_retry(operation, func)
    except BusinessRuleViolation as exc:
        return BookingResult(success=False, error=exc.message, code=exc.code, changed=False)
    except ConcurrencyConflict as exc:
        return BookingResult(success=False, error=str(exc), code=exc.code, changed=False)
    return BookingResult(success=True, booking=booking, changed=changed)


def _get_booking_for_update(booking_id: int) -> Booking:
    booking = Booking.objects.select_for_update().filter(pk=booking_id).first()
    if booking is None:
        raise BusinessRuleViolation("Booking not found.", "not_found")
    return booking


def _get_schedule_for_update(schedule_id: int) -> ExamSchedule:
    schedule = ExamSchedule.objects.select_for_update().select_related("exam").filter(pk=schedule_id).first()
    if schedule is None:
        raise ValidationError(f"Exam session {schedule_id} does not exist.")
    return schedule


def _release_seats(schedule_id: int, count: int, *, now: datetime.datetime) -> None:
    """Give ``count`` seats back to a schedule, reopening it if it was full."""
    ExamSchedule.objects.filter(pk=schedule_id, booked_count__gte=count).update(
        status=Case(
            When(status=ExamSchedule.Status.FULL, then=Value(ExamSchedule.Status.AVAILABLE)),
            default=F("status"),
        ),
        booked_count=F("booked_count") - count,
        updated_at=now,
    )


def _cancel_confirmed_bookings(schedule_ids: list[int], reason: str) -> int:
    """Cancel every confirmed booking of the given schedules.

    The seat counters are left to the caller, which either zeroes or
    deletes the schedules.
    """
    bookings = list(
        Booking.objects.select_for_update().filter(schedule_id__in=schedule_ids, status=Booking.Status.CONFIRMED)
    )
    if not bookings:
        return 0

    now = timezone.now()
    Booking.objects.filter(pk__in=[b.pk for b in bookings]).update(
        status=Booking.Status.CANCELLED,
        cancelled_at=now,
        cancellation_reason=reason,
    )
    for booking in bookings:
        booking.status = Booking.Status.CANCELLED
        booking.cancelled_at = now
        booking.cancellation_reason = reason

    def notify() -> None:
        for booking in bookings:
            booking_cancelled.send(sender=Booking, booking=booking)

    transaction.on_commit(notify)
    return len(bookings)


def _validate_time_slot(time_slot: str) -> None:
    if time_slot not in TimeSlot.values:
        raise ValidationError(
            f"Unknown time slot '{time_slot}'. Expected one of: {', '.join(TimeSlot.values)}."
        )


def _validate_capacity(capacity: int) -> None:
    if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity < 1:
        raise ValidationError("Capacity must be a positive integer.")
