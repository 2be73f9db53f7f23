"""Django admin configuration for the catalog app."""

from django.contrib import admin

from django_academy.catalog.models import Course, Enrollment, Exam


class ExamInline(admin.TabularInline):
    """Inline editing of a course's exams."""

    model = Exam
    extra = 0
    prepopulated_fields = {"slug": ("name",)}


@admin.register(Course)
class CourseAdmin(admin.ModelAdmin):
    """Admin interface for managing courses.

    ``enrollment_count`` is maintained by checkout and shown read-only.
    """

    list_display = ("title", "price", "is_published", "enrollment_count")
    list_filter = ("is_published",)
    search_fields = ("title", "slug")
    prepopulated_fields = {"slug": ("title",)}
    readonly_fields = ("enrollment_count",)
    inlines = (ExamInline,)


@admin.register(Exam)
class ExamAdmin(admin.ModelAdmin):
    """Admin interface for managing exams."""

    list_display = ("name", "course", "price", "duration_minutes", "is_published")
    list_filter = ("course", "is_published")
    search_fields = ("name", "slug")
    prepopulated_fields = {"slug": ("name",)}


@admin.register(Enrollment)
class EnrollmentAdmin(admin.ModelAdmin):
    """Admin interface for viewing enrollments."""

    list_display = ("user", "course", "status", "progress", "enrolled_at")
    list_filter = ("status", "course")
    search_fields = ("user__username", "user__email", "course__title")
    readonly_fields = ("order", "enrolled_at")
