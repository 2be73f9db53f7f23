"""Access checks derived from the orders and enrollments checkout produces."""

from django_academy.billing.models import Order, OrderLineItem
from django_academy.catalog.models import Course, Enrollment, Exam


def is_enrolled(user: object, course: Course) -> bool:
    """Return ``True`` when the user holds an active enrollment for the course."""
    return Enrollment.objects.filter(
        user=user,
        course=course,
        status=Enrollment.Status.ACTIVE,
    ).exists()


def has_purchased_exam(user: object, exam: Exam) -> bool:
    """Return ``True`` when a completed order of the user contains the exam."""
    return OrderLineItem.objects.filter(
        order__user=user,
        order__status=Order.Status.COMPLETED,
        exam=exam,
    ).exists()


def has_exam_access(user: object, exam: Exam) -> bool:
    """Check whether the user may book or sit an exam.

    Access is granted by buying the exam itself or by an active enrollment
    in the course the exam belongs to.
    """
    return has_purchased_exam(user, exam) or is_enrolled(user, exam.course)
