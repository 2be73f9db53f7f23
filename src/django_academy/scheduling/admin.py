"""Django admin configuration for the scheduling app.

Deleting or cancelling schedules from the admin goes through
:class:`~django_academy.scheduling.services.reservation.ReservationService`
so confirmed bookings are cancelled instead of silently losing their seat.
"""

from django import forms
from django.contrib import admin, messages
from django.db.models import QuerySet
from django.http import HttpRequest

from django_academy.scheduling.models import Booking, ExamSchedule
from django_academy.scheduling.services.reservation import ReservationService


class ExamScheduleForm(forms.ModelForm):
    """Change form that refuses to shrink a session below its booked seats."""

    class Meta:
        model = ExamSchedule
        fields = ("exam", "date", "time_slot", "capacity")

    def clean_capacity(self) -> int:  # noqa: D102
        capacity = self.cleaned_data["capacity"]
        if self.instance.pk and capacity < self.instance.booked_count:
            raise forms.ValidationError(
                f"Capacity cannot be lower than the {self.instance.booked_count} seats already booked."
            )
        return capacity


@admin.register(ExamSchedule)
class ExamScheduleAdmin(admin.ModelAdmin):
    """Admin interface for exam sessions.

    ``booked_count`` and ``status`` are maintained by the reservation
    service and shown read-only.
    """

    list_display = ("exam", "date", "time_slot", "capacity", "booked_count", "status")
    list_filter = ("status", "time_slot", "exam__course")
    search_fields = ("exam__name", "exam__course__title")
    date_hierarchy = "date"
    form = ExamScheduleForm
    readonly_fields = ("booked_count", "status", "created_by", "created_at", "updated_at")
    actions = ("cancel_schedules",)

    def get_readonly_fields(self, request: HttpRequest, obj: ExamSchedule | None = None) -> tuple[str, ...]:
        """Lock the exam once a session exists; bookings are tied to it."""
        if obj is not None:
            return ("exam", *self.readonly_fields)
        return self.readonly_fields

    def save_model(self, request: HttpRequest, obj: ExamSchedule, form, change: bool) -> None:  # noqa: D102
        if not change:
            obj.created_by = request.user
            super().save_model(request, obj, form, change)
            return
        ReservationService.update_schedule(
            obj.pk,
            day=obj.date,
            time_slot=obj.time_slot,
            capacity=obj.capacity,
        )

    def delete_model(self, request: HttpRequest, obj: ExamSchedule) -> None:  # noqa: ARG002, D102
        ReservationService.delete_schedule(obj.pk)

    def delete_queryset(self, request: HttpRequest, queryset: QuerySet[ExamSchedule]) -> None:  # noqa: ARG002, D102
        ReservationService.bulk_delete_schedules(queryset.values_list("pk", flat=True))

    @admin.action(description="Cancel selected exam sessions")
    def cancel_schedules(self, request: HttpRequest, queryset: QuerySet[ExamSchedule]) -> None:
        """Cancel each selected session together with its confirmed bookings."""
        sessions = 0
        bookings = 0
        for schedule in queryset.exclude(status=ExamSchedule.Status.CANCELLED):
            bookings += ReservationService.cancel_schedule(schedule.pk, "Exam session cancelled by staff")
            sessions += 1
        self.message_user(
            request,
            f"Cancelled {sessions} session(s) and {bookings} booking(s).",
            messages.SUCCESS,
        )


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    """Read-oriented admin for seat bookings.

    Bookings are created by users; staff can record attendance with the
    actions, which leave the seat counters untouched.
    """

    list_display = ("user", "exam", "date", "time_slot", "status", "booked_at")
    list_filter = ("status", "time_slot", "exam")
    search_fields = ("user__username", "user_email", "user_name", "exam__name")
    readonly_fields = (
        "schedule",
        "exam",
        "user",
        "user_name",
        "user_email",
        "date",
        "time_slot",
        "status",
        "booked_at",
        "completed_at",
        "cancelled_at",
        "cancellation_reason",
    )
    actions = ("mark_completed", "mark_no_show", "cancel_bookings")

    def has_add_permission(self, request: HttpRequest) -> bool:  # noqa: ARG002, D102
        return False

    def has_delete_permission(self, request: HttpRequest, obj: Booking | None = None) -> bool:  # noqa: ARG002, D102
        return False

    @admin.action(description="Mark selected bookings as completed")
    def mark_completed(self, request: HttpRequest, queryset: QuerySet[Booking]) -> None:
        """Record attendance for confirmed bookings."""
        self._apply(request, queryset, ReservationService.mark_completed)

    @admin.action(description="Mark selected bookings as no-show")
    def mark_no_show(self, request: HttpRequest, queryset: QuerySet[Booking]) -> None:
        """Record absence for confirmed bookings."""
        self._apply(request, queryset, ReservationService.mark_no_show)

    @admin.action(description="Cancel selected bookings")
    def cancel_bookings(self, request: HttpRequest, queryset: QuerySet[Booking]) -> None:
        """Cancel bookings and release their seats."""
        self._apply(request, queryset, lambda pk: ReservationService.cancel(pk, "Cancelled by staff"))

    def _apply(self, request: HttpRequest, queryset: QuerySet[Booking], operation) -> None:
        succeeded = 0
        failed = 0
        for pk in queryset.values_list("pk", flat=True):
            result = operation(pk)
            if result.success and result.changed:
                succeeded += 1
            elif not result.success:
                failed += 1
        self.message_user(request, f"Updated {succeeded} booking(s).", messages.SUCCESS)
        if failed:
            self.message_user(request, f"{failed} booking(s) could not be changed.", messages.WARNING)
