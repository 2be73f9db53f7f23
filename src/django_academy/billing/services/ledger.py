"""Token ledger service.

The ledger is the single source of truth for token balances. Every credit
or debit is an immutable :class:`~django_academy.billing.models.LedgerEntry`
and a balance is always recomputed from the full entry set.
"""

import logging

from django.contrib.auth.models import AbstractBaseUser
from django.core.exceptions import ValidationError
from django.db import DatabaseError, models
from django.db.models import QuerySet

from django_academy.billing.models import LedgerEntry, Order
from django_academy.exceptions import StorageError

logger = logging.getLogger(__name__)


class LedgerService:
    """Stateless service for reading and appending ledger entries."""

    @staticmethod
    def record_entry(
        user: AbstractBaseUser,
        amount: int,
        kind: str,
        description: str = "",
        *,
        order: Order | None = None,
        created_by: AbstractBaseUser | None = None,
    ) -> LedgerEntry:
        """Append one immutable entry to the user's ledger.

        The resulting balance is not checked here; callers that spend tokens
        (checkout) are responsible for refusing to go negative.

        Args:
            user: The account owner.
            amount: Signed token amount, positive for credits.
            kind: One of ``LedgerEntry.Kind``.
            description: Free-text note shown in the transaction history.
            order: Optional order the movement belongs to.
            created_by: Optional staff user for administrative entries.

        Returns:
            The newly created LedgerEntry.

        Raises:
            ValidationError: If ``amount`` is not an integer or ``kind`` is
                unknown.
        """
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ValidationError("Ledger amounts must be whole numbers of tokens.")
        if kind not in LedgerEntry.Kind.values:
            raise ValidationError(f"Unknown ledger entry kind '{kind}'.")

        return LedgerEntry.objects.create(
            user=user,
            amount=amount,
            kind=kind,
            description=description,
            order=order,
            created_by=created_by,
        )

    @staticmethod
    def get_balance(user: AbstractBaseUser) -> int:
        """Return the user's balance as the sum of all their ledger entries.

        Computed with a single aggregate query on every call, so the result
        reflects one consistent read of the entry set.

        Raises:
            StorageError: If the entries cannot be read. The balance is then
                unknown and must not be treated as zero.
        """
        try:
            total = LedgerEntry.objects.filter(user=user).aggregate(total=models.Sum("amount"))["total"]
        except DatabaseError as exc:
            raise StorageError(f"Could not read the token ledger for user {user.pk}.") from exc
        return total or 0

    @staticmethod
    def get_display_balance(user: AbstractBaseUser) -> int:
        """Return the balance for read-only display, falling back to 0 on errors.

        Never use this when approving a purchase; use :meth:`get_balance`.
        """
        try:
            return LedgerService.get_balance(user)
        except StorageError:
            logger.warning("Showing a zero balance for user %s because the ledger could not be read", user.pk)
            return 0

    @staticmethod
    def list_entries(user: AbstractBaseUser) -> QuerySet[LedgerEntry]:
        """Return the user's transaction history, newest first."""
        return LedgerEntry.objects.filter(user=user).select_related("order").order_by("-created_at", "-id")

    @staticmethod
    def top_up(
        user: AbstractBaseUser,
        amount: int,
        *,
        staff_user: AbstractBaseUser | None = None,
        description: str = "",
    ) -> LedgerEntry:
        """Credit tokens to a user's wallet on behalf of an administrator.

        Raises:
            ValidationError: If ``amount`` is not a positive integer.
        """
        _require_positive(amount)
        if not description:
            staff_label = f" ({staff_user})" if staff_user is not None else ""
            description = f"Top-up by admin{staff_label}"
        entry = LedgerService.record_entry(
            user,
            amount,
            LedgerEntry.Kind.TOP_UP,
            description,
            created_by=staff_user,
        )
        logger.info("Topped up %d tokens for user %s", amount, user.pk)
        return entry

    @staticmethod
    def reward(user: AbstractBaseUser, amount: int, description: str) -> LedgerEntry:
        """Credit reward tokens, e.g. for completing a course.

        Raises:
            ValidationError: If ``amount`` is not a positive integer.
        """
        _require_positive(amount)
        return LedgerService.record_entry(user, amount, LedgerEntry.Kind.REWARD, description)

    @staticmethod
    def deduct(
        user: AbstractBaseUser,
        amount: int,
        description: str,
        *,
        staff_user: AbstractBaseUser | None = None,
    ) -> LedgerEntry:
        """Debit tokens as an administrative correction.

        ``amount`` is given as a positive number and recorded as a negative
        entry.

        Raises:
            ValidationError: If ``amount`` is not a positive integer.
        """
        _require_positive(amount)
        entry = LedgerService.record_entry(
            user,
            -amount,
            LedgerEntry.Kind.DEDUCTION,
            description,
            created_by=staff_user,
        )
        logger.info("Deducted %d tokens from user %s", amount, user.pk)
        return entry


def _require_positive(amount: int) -> None:
    """Raise ValidationError unless ``amount`` is a positive integer."""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("Amount must be a positive whole number of tokens.")
