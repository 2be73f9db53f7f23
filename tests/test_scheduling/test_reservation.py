"""Tests for the ReservationService in django_academy.scheduling.services.reservation."""

from datetime import timedelta
from unittest.mock import patch

import pytest
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.db import DatabaseError, IntegrityError, OperationalError, transaction
from django.utils import timezone

from django_academy.catalog.models import Course, Exam
from django_academy.exceptions import StorageError
from django_academy.scheduling.models import Booking, ExamSchedule, TimeSlot
from django_academy.scheduling.services import reservation as reservation_module
from django_academy.scheduling.services.reservation import ReservationService
from django_academy.scheduling.signals import booking_cancelled, booking_confirmed

User = get_user_model()


# -- Helpers ------------------------------------------------------------------


def _users(count):
    return [
        User.objects.create_user(username=f"candidate{i}", email=f"candidate{i}@example.com", password="testpass123")
        for i in range(count)
    ]


def _confirmed(schedule):
    return Booking.objects.filter(schedule=schedule, status=Booking.Status.CONFIRMED).count()


# -- Fixtures -----------------------------------------------------------------


@pytest.fixture
def tomorrow():
    return timezone.localdate() + timedelta(days=1)


@pytest.fixture
def user(db):
    return User.objects.create_user(
        username="candidate",
        email="candidate@example.com",
        first_name="Ada",
        last_name="Lovelace",
        password="testpass123",
    )


@pytest.fixture
def course(db):
    return Course.objects.create(title="Python Foundations", slug="python-foundations", price=80)


@pytest.fixture
def exam(course):
    return Exam.objects.create(course=course, name="Python Exam", slug="python-exam", price=20)


@pytest.fixture
def schedule(exam, tomorrow):
    return ExamSchedule.objects.create(exam=exam, date=tomorrow, time_slot=TimeSlot.MORNING, capacity=3)


# -- Booking ------------------------------------------------------------------


@pytest.mark.django_db
class TestBook:
    def test_books_a_seat(self, user, schedule):
        result = ReservationService.book(user, schedule.pk)

        assert result.success is True
        booking = result.booking
        assert booking.status == Booking.Status.CONFIRMED
        assert booking.schedule == schedule
        assert booking.exam == schedule.exam
        assert booking.user_name == "Ada Lovelace"
        assert booking.user_email == "candidate@example.com"
        assert (booking.date, booking.time_slot) == (schedule.date, schedule.time_slot)
        schedule.refresh_from_db()
        assert schedule.booked_count == 1
        assert schedule.status == ExamSchedule.Status.AVAILABLE
        assert schedule.remaining_seats == 2

    def test_contact_details_override_profile(self, user, schedule):
        booking = ReservationService.book(
            user,
            schedule.pk,
            contact_name="A. Lovelace",
            contact_email="ada@example.org",
        ).booking

        assert booking.user_name == "A. Lovelace"
        assert booking.user_email == "ada@example.org"

    def test_falls_back_to_username(self, schedule):
        plain = User.objects.create_user(username="plain", password="testpass123")

        booking = ReservationService.book(plain, schedule.pk).booking

        assert booking.user_name == "plain"

    def test_last_seat_marks_schedule_full(self, schedule):
        for candidate in _users(3):
            assert ReservationService.book(candidate, schedule.pk).success is True

        schedule.refresh_from_db()
        assert schedule.booked_count == 3
        assert schedule.status == ExamSchedule.Status.FULL
        assert schedule.remaining_seats == 0

    @pytest.mark.parametrize(("capacity", "requests"), [(1, 2), (3, 5), (4, 4), (5, 2)])
    def test_never_overbooks(self, exam, tomorrow, capacity, requests):
        schedule = ExamSchedule.objects.create(exam=exam, date=tomorrow, time_slot=TimeSlot.EVENING, capacity=capacity)

        results = [ReservationService.book(candidate, schedule.pk) for candidate in _users(requests)]

        successes = [r for r in results if r.success]
        failures = [r for r in results if not r.success]
        assert len(successes) == min(requests, capacity)
        assert {r.code for r in failures} <= {"capacity_exceeded"}
        schedule.refresh_from_db()
        assert schedule.booked_count == len(successes) == _confirmed(schedule)
        assert (schedule.status == ExamSchedule.Status.FULL) == (schedule.booked_count == capacity)

    def test_full_schedule_rejects_booking(self, user, schedule):
        for candidate in _users(3):
            ReservationService.book(candidate, schedule.pk)

        result = ReservationService.book(user, schedule.pk)

        assert result.success is False
        assert result.code == "capacity_exceeded"
        assert result.error == "This time slot is fully booked."
        assert not Booking.objects.filter(user=user).exists()

    def test_seat_guard_reads_current_count(self, user, schedule):
        # Counter already at capacity while status still says available.
        ExamSchedule.objects.filter(pk=schedule.pk).update(booked_count=3)

        result = ReservationService.book(user, schedule.pk)

        assert result.code == "capacity_exceeded"
        schedule.refresh_from_db()
        assert schedule.booked_count == 3

    def test_rejects_duplicate_booking(self, user, schedule):
        ReservationService.book(user, schedule.pk)

        result = ReservationService.book(user, schedule.pk)

        assert result.success is False
        assert result.code == "duplicate_booking"
        schedule.refresh_from_db()
        assert schedule.booked_count == 1

    def test_duplicate_insert_rolls_back_seat(self, user, schedule):
        ReservationService.book(user, schedule.pk)

        with patch.object(reservation_module.Booking.objects, "filter") as filter_mock:
            filter_mock.return_value.exists.return_value = False
            result = ReservationService.book(user, schedule.pk)

        assert result.code == "duplicate_booking"
        schedule.refresh_from_db()
        assert schedule.booked_count == 1
        assert _confirmed(schedule) == 1

    def test_can_rebook_after_cancelling(self, user, schedule):
        first = ReservationService.book(user, schedule.pk).booking
        ReservationService.cancel(first.pk)

        second = ReservationService.book(user, schedule.pk)

        assert second.success is True
        schedule.refresh_from_db()
        assert schedule.booked_count == 1

    def test_missing_schedule(self, user):
        result = ReservationService.book(user, 9999)

        assert result.success is False
        assert result.code == "not_found"

    def test_cancelled_schedule(self, user, schedule):
        ReservationService.cancel_schedule(schedule.pk, "Room unavailable")

        result = ReservationService.book(user, schedule.pk)

        assert result.code == "invalid_state"
        assert "cancelled" in result.error

    def test_past_schedule(self, user, exam):
        past = ExamSchedule.objects.create(
            exam=exam,
            date=timezone.localdate() - timedelta(days=1),
            time_slot=TimeSlot.MORNING,
            capacity=5,
        )

        result = ReservationService.book(user, past.pk)

        assert result.code == "invalid_state"
        past.refresh_from_db()
        assert past.booked_count == 0

    def test_sends_booking_confirmed_after_commit(self, user, schedule, django_capture_on_commit_callbacks):
        received = []

        def receiver(sender, booking, **kwargs):
            received.append(booking)

        booking_confirmed.connect(receiver)
        try:
            with django_capture_on_commit_callbacks(execute=True):
                result = ReservationService.book(user, schedule.pk)
        finally:
            booking_confirmed.disconnect(receiver)

        assert received == [result.booking]

    def test_reports_conflict_after_retries(self, user, schedule):
        with patch.object(reservation_module, "_book", side_effect=OperationalError("database is locked")) as mock:
            result = ReservationService.book(user, schedule.pk)

        assert result.success is False
        assert result.code == "concurrency_conflict"
        assert mock.call_count == 3

    def test_storage_error_propagates(self, user, schedule):
        with patch.object(reservation_module, "_book", side_effect=DatabaseError("disk I/O error")):
            with pytest.raises(StorageError):
                ReservationService.book(user, schedule.pk)

    def test_database_rejects_overbooked_counter(self, schedule):
        with pytest.raises(IntegrityError), transaction.atomic():
            ExamSchedule.objects.filter(pk=schedule.pk).update(booked_count=4)

    def test_database_rejects_second_confirmed_booking(self, user, schedule):
        booking = ReservationService.book(user, schedule.pk).booking

        with pytest.raises(IntegrityError), transaction.atomic():
            Booking.objects.create(
                schedule=schedule,
                exam=schedule.exam,
                user=user,
                date=booking.date,
                time_slot=booking.time_slot,
            )


# -- Booking state changes ----------------------------------------------------


@pytest.mark.django_db
class TestBookingTransitions:
    def test_cancel_releases_seat(self, schedule):
        bookings = [ReservationService.book(c, schedule.pk).booking for c in _users(3)]

        result = ReservationService.cancel(bookings[0].pk, "Clash with work")

        assert result.success is True
        assert result.changed is True
        booking = result.booking
        assert booking.status == Booking.Status.CANCELLED
        assert booking.cancellation_reason == "Clash with work"
        assert booking.cancelled_at is not None
        schedule.refresh_from_db()
        assert schedule.booked_count == 2
        assert schedule.status == ExamSchedule.Status.AVAILABLE

    def test_cancel_is_idempotent(self, user, schedule):
        booking = ReservationService.book(user, schedule.pk).booking
        ReservationService.cancel(booking.pk)

        result = ReservationService.cancel(booking.pk)

        assert result.success is True
        assert result.changed is False
        schedule.refresh_from_db()
        assert schedule.booked_count == 0

    def test_cancel_missing_booking(self):
        result = ReservationService.cancel(9999)

        assert result.success is False
        assert result.code == "not_found"

    def test_cancel_after_schedule_deleted(self, user, schedule):
        booking = ReservationService.book(user, schedule.pk).booking
        schedule.delete()

        result = ReservationService.cancel(booking.pk)

        assert result.success is True
        assert result.booking.schedule is None

    def test_cancel_sends_booking_cancelled(self, user, schedule, django_capture_on_commit_callbacks):
        booking = ReservationService.book(user, schedule.pk).booking
        received = []

        def receiver(sender, booking, **kwargs):
            received.append(booking.pk)

        booking_cancelled.connect(receiver)
        try:
            with django_capture_on_commit_callbacks(execute=True):
                ReservationService.cancel(booking.pk)
        finally:
            booking_cancelled.disconnect(receiver)

        assert received == [booking.pk]

    def test_mark_completed_keeps_seat(self, user, schedule):
        booking = ReservationService.book(user, schedule.pk).booking

        result = ReservationService.mark_completed(booking.pk)

        assert result.success is True
        assert result.booking.status == Booking.Status.COMPLETED
        assert result.booking.completed_at is not None
        schedule.refresh_from_db()
        assert schedule.booked_count == 1

    def test_mark_no_show_keeps_seat(self, user, schedule):
        booking = ReservationService.book(user, schedule.pk).booking

        result = ReservationService.mark_no_show(booking.pk)

        assert result.booking.status == Booking.Status.NO_SHOW
        assert result.booking.completed_at is None
        schedule.refresh_from_db()
        assert schedule.booked_count == 1

    @pytest.mark.parametrize("finish", ["mark_completed", "mark_no_show"])
    def test_terminal_bookings_cannot_be_cancelled(self, user, schedule, finish):
        booking = ReservationService.book(user, schedule.pk).booking
        getattr(ReservationService, finish)(booking.pk)

        result = ReservationService.cancel(booking.pk)

        assert result.success is False
        assert result.code == "invalid_state"
        schedule.refresh_from_db()
        assert schedule.booked_count == 1

    def test_cancelled_booking_cannot_be_completed(self, user, schedule):
        booking = ReservationService.book(user, schedule.pk).booking
        ReservationService.cancel(booking.pk)

        result = ReservationService.mark_completed(booking.pk)

        assert result.code == "invalid_state"


# -- Queries ------------------------------------------------------------------


@pytest.mark.django_db
class TestQueries:
    def test_list_available(self, exam, tomorrow):
        today = timezone.localdate()
        open_late = ExamSchedule.objects.create(exam=exam, date=tomorrow, time_slot=TimeSlot.EVENING, capacity=2)
        open_early = ExamSchedule.objects.create(exam=exam, date=tomorrow, time_slot=TimeSlot.MORNING, capacity=2)
        ExamSchedule.objects.create(
            exam=exam,
            date=tomorrow,
            time_slot=TimeSlot.AFTERNOON,
            capacity=1,
            booked_count=1,
            status=ExamSchedule.Status.FULL,
        )
        ExamSchedule.objects.create(
            exam=exam,
            date=tomorrow + timedelta(days=1),
            time_slot=TimeSlot.MORNING,
            capacity=2,
            status=ExamSchedule.Status.CANCELLED,
        )
        ExamSchedule.objects.create(exam=exam, date=today - timedelta(days=1), time_slot=TimeSlot.MORNING, capacity=2)

        assert list(ReservationService.list_available(exam)) == [open_early, open_late]

    def test_list_available_respects_today(self, exam, tomorrow):
        ExamSchedule.objects.create(exam=exam, date=tomorrow, time_slot=TimeSlot.MORNING, capacity=2)

        assert list(ReservationService.list_available(exam, today=tomorrow + timedelta(days=1))) == []

    def test_get_time_slots(self, user, schedule, exam, tomorrow):
        ReservationService.book(user, schedule.pk)
        ExamSchedule.objects.create(
            exam=exam,
            date=tomorrow,
            time_slot=TimeSlot.EVENING,
            capacity=4,
            status=ExamSchedule.Status.CANCELLED,
        )

        slots = ReservationService.get_time_slots(exam, tomorrow)

        assert [s.time_slot for s in slots] == ["09:00", "13:00", "17:00"]
        morning, afternoon, evening = slots
        assert morning.schedule_id == schedule.pk
        assert morning.label == "Morning (9:00 AM)"
        assert (morning.capacity, morning.booked_count, morning.remaining) == (3, 1, 2)
        assert morning.available is True
        assert afternoon.schedule_id is None
        assert afternoon.available is False
        assert evening.available is False

    def test_get_time_slots_follows_configured_slots(self, schedule, exam, tomorrow, settings):
        settings.DJANGO_ACADEMY = {"scheduling": {"time_slots": ["09:00"]}, "conflict_retry_backoff_ms": 0}

        slots = ReservationService.get_time_slots(exam, tomorrow)

        assert [s.time_slot for s in slots] == ["09:00"]

    def test_list_user_bookings(self, user, schedule, exam, tomorrow):
        later = ExamSchedule.objects.create(
            exam=exam,
            date=tomorrow + timedelta(days=2),
            time_slot=TimeSlot.MORNING,
            capacity=2,
        )
        first = ReservationService.book(user, later.pk).booking
        second = ReservationService.book(user, schedule.pk).booking
        ReservationService.cancel(first.pk)

        assert list(ReservationService.list_user_bookings(user)) == [second, first]
        assert list(ReservationService.list_user_bookings(user, upcoming_only=True)) == [second]

    def test_list_course_schedules(self, schedule, course):
        other_course = Course.objects.create(title="Other", slug="other", price=1)
        other_exam = Exam.objects.create(course=other_course, name="Other Exam", slug="other-exam", price=1)
        ExamSchedule.objects.create(exam=other_exam, date=schedule.date, time_slot=TimeSlot.MORNING, capacity=1)

        assert list(ReservationService.list_course_schedules(course)) == [schedule]


# -- Schedule administration --------------------------------------------------


@pytest.mark.django_db
class TestCreateSchedules:
    def test_create_schedule(self, exam, tomorrow, user):
        schedule = ReservationService.create_schedule(exam, tomorrow, "13:00", 25, created_by=user)

        assert schedule.capacity == 25
        assert schedule.booked_count == 0
        assert schedule.status == ExamSchedule.Status.AVAILABLE
        assert schedule.created_by == user

    def test_create_rejects_duplicate_slot(self, schedule):
        with pytest.raises(ValidationError, match="already scheduled"):
            ReservationService.create_schedule(schedule.exam, schedule.date, schedule.time_slot, 10)

    def test_create_rejects_unknown_slot(self, exam, tomorrow):
        with pytest.raises(ValidationError, match="Unknown time slot"):
            ReservationService.create_schedule(exam, tomorrow, "10:30", 10)

    @pytest.mark.parametrize("capacity", [0, -1, 2.5, True])
    def test_create_rejects_bad_capacity(self, exam, tomorrow, capacity):
        with pytest.raises(ValidationError, match="Capacity must be a positive integer"):
            ReservationService.create_schedule(exam, tomorrow, "09:00", capacity)

    def test_bulk_create(self, exam, tomorrow):
        created = ReservationService.bulk_create_schedules(exam, 10, days_ahead=3, start=tomorrow)

        assert len(created) == 9
        assert ExamSchedule.objects.filter(exam=exam).count() == 9
        assert set(ExamSchedule.objects.values_list("capacity", flat=True)) == {10}
        assert ExamSchedule.objects.order_by("date").first().date == tomorrow

    def test_bulk_create_skips_existing_sessions(self, user, schedule, exam, tomorrow):
        ReservationService.book(user, schedule.pk)

        created = ReservationService.bulk_create_schedules(exam, 10, days_ahead=1, start=tomorrow)

        assert [s.time_slot for s in created] == ["13:00", "17:00"]
        schedule.refresh_from_db()
        assert schedule.capacity == 3
        assert schedule.booked_count == 1

    def test_bulk_create_is_repeatable(self, exam, tomorrow):
        ReservationService.bulk_create_schedules(exam, 10, days_ahead=2, start=tomorrow)

        assert ReservationService.bulk_create_schedules(exam, 10, days_ahead=2, start=tomorrow) == []
        assert ExamSchedule.objects.count() == 6

    def test_bulk_create_custom_slots(self, exam, tomorrow):
        created = ReservationService.bulk_create_schedules(
            exam,
            5,
            days_ahead=2,
            slots_per_day=["17:00"],
            start=tomorrow,
        )

        assert {s.time_slot for s in created} == {"17:00"}
        assert len(created) == 2

    def test_bulk_create_uses_configured_defaults(self, exam, settings):
        settings.DJANGO_ACADEMY = {
            "scheduling": {"days_ahead": 2, "time_slots": ["09:00", "13:00"]},
            "conflict_retry_backoff_ms": 0,
        }

        created = ReservationService.bulk_create_schedules(exam, 5)

        assert len(created) == 4
        assert min(s.date for s in created) == timezone.localdate()

    def test_bulk_create_rejects_bad_input(self, exam):
        with pytest.raises(ValidationError, match="Unknown time slot"):
            ReservationService.bulk_create_schedules(exam, 5, slots_per_day=["08:00"])
        with pytest.raises(ValidationError, match="days_ahead"):
            ReservationService.bulk_create_schedules(exam, 5, days_ahead=0)
        with pytest.raises(ValidationError, match="At least one time slot"):
            ReservationService.bulk_create_schedules(exam, 5, slots_per_day=[])

        assert not ExamSchedule.objects.exists()


@pytest.mark.django_db
class TestUpdateSchedule:
    def test_raise_capacity_reopens_full_schedule(self, schedule):
        for candidate in _users(3):
            ReservationService.book(candidate, schedule.pk)

        updated = ReservationService.update_schedule(schedule.pk, capacity=5)

        assert updated.capacity == 5
        assert updated.status == ExamSchedule.Status.AVAILABLE

    def test_lower_capacity_to_booked_count_marks_full(self, schedule):
        for candidate in _users(2):
            ReservationService.book(candidate, schedule.pk)

        updated = ReservationService.update_schedule(schedule.pk, capacity=2)

        assert updated.status == ExamSchedule.Status.FULL

    def test_capacity_cannot_drop_below_bookings(self, schedule):
        for candidate in _users(2):
            ReservationService.book(candidate, schedule.pk)

        with pytest.raises(ValidationError, match="lower than the 2 seats already booked"):
            ReservationService.update_schedule(schedule.pk, capacity=1)

        schedule.refresh_from_db()
        assert schedule.capacity == 3

    def test_moving_schedule_moves_confirmed_bookings(self, user, schedule, tomorrow):
        booking = ReservationService.book(user, schedule.pk).booking
        new_day = tomorrow + timedelta(days=7)

        ReservationService.update_schedule(schedule.pk, day=new_day, time_slot="17:00")

        booking.refresh_from_db()
        assert (booking.date, booking.time_slot) == (new_day, "17:00")

    def test_move_onto_taken_slot(self, schedule, exam):
        ExamSchedule.objects.create(exam=exam, date=schedule.date, time_slot=TimeSlot.EVENING, capacity=1)

        with pytest.raises(ValidationError, match="already scheduled"):
            ReservationService.update_schedule(schedule.pk, time_slot="17:00")

    def test_cancelled_schedule_cannot_change(self, schedule):
        ReservationService.cancel_schedule(schedule.pk, "Closed")

        with pytest.raises(ValidationError, match="cancelled"):
            ReservationService.update_schedule(schedule.pk, capacity=10)

    def test_missing_schedule(self):
        with pytest.raises(ValidationError, match="does not exist"):
            ReservationService.update_schedule(9999, capacity=10)


@pytest.mark.django_db
class TestRemoveSchedules:
    def test_cancel_schedule_cascades(self, schedule):
        bookings = [ReservationService.book(c, schedule.pk).booking for c in _users(3)]

        cancelled = ReservationService.cancel_schedule(schedule.pk, "Examiner unavailable")

        assert cancelled == 3
        schedule.refresh_from_db()
        assert schedule.status == ExamSchedule.Status.CANCELLED
        assert schedule.booked_count == 0
        for booking in bookings:
            booking.refresh_from_db()
            assert booking.status == Booking.Status.CANCELLED
            assert booking.cancellation_reason == "Examiner unavailable"

    def test_cancel_schedule_leaves_finished_bookings(self, schedule):
        done, pending = (ReservationService.book(c, schedule.pk).booking for c in _users(2))
        ReservationService.mark_completed(done.pk)

        assert ReservationService.cancel_schedule(schedule.pk, "Closed") == 1

        done.refresh_from_db()
        assert done.status == Booking.Status.COMPLETED

    def test_cancel_schedule_notifies_each_booking(self, schedule, django_capture_on_commit_callbacks):
        for candidate in _users(2):
            ReservationService.book(candidate, schedule.pk)
        received = []

        def receiver(sender, booking, **kwargs):
            received.append(booking.pk)

        booking_cancelled.connect(receiver)
        try:
            with django_capture_on_commit_callbacks(execute=True):
                ReservationService.cancel_schedule(schedule.pk, "Closed")
        finally:
            booking_cancelled.disconnect(receiver)

        assert len(received) == 2

    def test_delete_schedule_keeps_cancelled_history(self, user, schedule):
        booking = ReservationService.book(user, schedule.pk).booking

        assert ReservationService.delete_schedule(schedule.pk) == 1

        assert not ExamSchedule.objects.filter(pk=schedule.pk).exists()
        booking.refresh_from_db()
        assert booking.schedule is None
        assert booking.status == Booking.Status.CANCELLED
        assert booking.date == schedule.date

    def test_delete_missing_schedule(self):
        with pytest.raises(ValidationError):
            ReservationService.delete_schedule(9999)

    def test_bulk_delete(self, exam, tomorrow):
        ReservationService.bulk_create_schedules(exam, 2, days_ahead=1, start=tomorrow)
        schedules = list(ExamSchedule.objects.order_by("time_slot"))
        for candidate in _users(2):
            ReservationService.book(candidate, schedules[0].pk)

        deleted, cancelled = ReservationService.bulk_delete_schedules([s.pk for s in schedules[:2]] + [9999])

        assert (deleted, cancelled) == (2, 2)
        assert ExamSchedule.objects.count() == 1
        assert Booking.objects.filter(status=Booking.Status.CANCELLED).count() == 2
