"""Exception hierarchy shared by the billing and scheduling services.

Input-shape problems are reported with Django's own ``ValidationError``.
Business rule violations subclass it and carry a machine-readable ``code``
so callers can branch on the failure without parsing the message. Public
service entry points catch :class:`BusinessRuleViolation` and
:class:`ConcurrencyConflict` and turn them into result objects;
:class:`StorageError` always propagates.
"""

from django.core.exceptions import ValidationError

__all__ = [
    "BusinessRuleViolation",
    "ConcurrencyConflict",
    "StorageError",
    "ValidationError",
]


class BusinessRuleViolation(ValidationError):
    """A well-formed request that the current state does not allow.

    Examples are insufficient funds, an exhausted voucher, a full exam
    slot, or a duplicate booking. The message is safe to show to users.

    Attributes:
        code: Stable identifier such as ``"insufficient_funds"``.
    """

    def __init__(self, message: str, code: str) -> None:
        super().__init__(message, code=code)

    def __str__(self) -> str:
        return self.message


class ConcurrencyConflict(Exception):  # noqa: N818
    """An optimistic write kept losing the race after all retries."""

    code = "concurrency_conflict"


class StorageError(Exception):
    """The database failed to read or write; nothing was applied."""

    code = "storage_error"
