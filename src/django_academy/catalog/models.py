"""Course, Exam, and Enrollment models for django-academy."""

from django.conf import settings
from django.db import models


class Course(models.Model):
    """A purchasable course in the marketplace.

    ``enrollment_count`` is a popularity counter maintained by checkout with
    ``F()`` expressions; it is never written from an in-memory value.
    """

    title = models.CharField(max_length=200)
    slug = models.SlugField(max_length=200, unique=True)
    description = models.TextField(blank=True, default="")
    thumbnail_url = models.URLField(blank=True, default="")
    price = models.PositiveIntegerField(default=0, help_text="Price in tokens.")
    is_published = models.BooleanField(default=True)
    enrollment_count = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["title"]

    def __str__(self) -> str:
        return self.title


class Exam(models.Model):
    """A purchasable, schedulable exam attached to a course."""

    course = models.ForeignKey(
        Course,
        on_delete=models.CASCADE,
        related_name="exams",
    )
    name = models.CharField(max_length=200)
    slug = models.SlugField(max_length=200)
    description = models.TextField(blank=True, default="")
    price = models.PositiveIntegerField(default=0, help_text="Price in tokens.")
    duration_minutes = models.PositiveIntegerField(default=60)
    is_published = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["course", "name"]
        unique_together = [("course", "slug")]

    def __str__(self) -> str:
        return f"{self.name} ({self.course.slug})"


class Enrollment(models.Model):
    """Grants a user ongoing access to a course.

    There is exactly one row per (user, course). Checkout writes it with
    ``update_or_create`` so a retried purchase overwrites rather than
    duplicates.
    """

    class Status(models.TextChoices):
        """Lifecycle states for an enrollment."""

        ACTIVE = "active", "Active"
        COMPLETED = "completed", "Completed"
        SUSPENDED = "suspended", "Suspended"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="enrollments",
    )
    course = models.ForeignKey(
        Course,
        on_delete=models.CASCADE,
        related_name="enrollments",
    )
    order = models.ForeignKey(
        "academy_billing.Order",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="enrollments",
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.ACTIVE,
    )
    progress = models.PositiveSmallIntegerField(default=0, help_text="Completion percentage (0-100).")
    completed_lessons = models.JSONField(default=dict, blank=True)
    enrolled_at = models.DateTimeField()

    class Meta:
        ordering = ["-enrolled_at"]
        constraints = [
            models.UniqueConstraint(fields=["user", "course"], name="catalog_enrollment_unique_user_course"),
            models.CheckConstraint(
                condition=models.Q(progress__lte=100),
                name="catalog_enrollment_progress_lte_100",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.user} in {self.course} ({self.status})"
