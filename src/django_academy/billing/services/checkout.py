"""Checkout service for converting carts into completed token purchases.

A checkout debits the token ledger, records an order with snapshotted line
items, enrolls the user in purchased courses, bumps course popularity,
redeems the voucher, and empties the cart. All of it happens inside one
database transaction, so a failure at any step leaves no partial purchase
behind.
"""

import datetime
import json
import logging
import secrets
import string
from dataclasses import dataclass

from django.contrib.auth import get_user_model
from django.contrib.auth.models import AbstractBaseUser
from django.db import IntegrityError, models, transaction
from django.db.models import QuerySet
from django.utils import timezone

from django_academy.billing.models import CartItem, LedgerEntry, Order, OrderLineItem, Voucher
from django_academy.billing.services.cart import CartService
from django_academy.billing.services.ledger import LedgerService
from django_academy.billing.services.voucher_service import redeem_voucher, validate_voucher
from django_academy.billing.signals import order_completed
from django_academy.catalog.models import Course, Enrollment
from django_academy.concurrency import run_with_conflict_retry
from django_academy.exceptions import BusinessRuleViolation, ConcurrencyConflict
from django_academy.settings import get_config

logger = logging.getLogger(__name__)

_REFERENCE_ATTEMPTS = 10


@dataclass
class CheckoutResult:
    """Outcome of a checkout attempt.

    ``replayed`` is ``True`` when an earlier order with the same idempotency
    key was returned instead of charging again.
    """

    success: bool
    order: Order | None = None
    error: str = ""
    code: str = ""
    replayed: bool = False

    @property
    def order_id(self) -> int | None:
        """Return the primary key of the resulting order, if any."""
        return self.order.pk if self.order is not None else None


def _generate_reference() -> str:
    """Generate an order reference using the configured prefix.

    The prefix is set via ``DJANGO_ACADEMY["checkout"]["order_reference_prefix"]``
    (default ``"ORD"``), producing references like ``ORD-A1B2C3D4``.
    """
    prefix = get_config().checkout.order_reference_prefix
    chars = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(chars) for _ in range(8))
    return f"{prefix}-{suffix}"


def _snapshot_voucher(voucher: Voucher) -> str:
    """Serialize voucher state at checkout time as JSON."""
    return json.dumps(
        {
            "code": voucher.code,
            "discount_type": voucher.discount_type,
            "value": voucher.value,
            "max_discount": voucher.max_discount,
            "min_purchase": voucher.min_purchase,
            "applicable_to": voucher.applicable_to,
        }
    )


class CheckoutService:
    """Stateless service for checkout operations."""

    @staticmethod
    def process(
        user: AbstractBaseUser,
        *,
        voucher_code: str | None = None,
        idempotency_key: str | None = None,
    ) -> CheckoutResult:
        """Turn the user's cart into a completed order, all or nothing.

        Business rule failures (empty cart, invalid voucher, insufficient
        tokens, exhausted voucher, unavailable items) and exhausted conflict
        retries are returned as unsuccessful results and leave no writes
        behind.

        Args:
            user: The purchasing account.
            voucher_code: Optional voucher code to apply.
            idempotency_key: Optional client-supplied key. Repeating a request
                with the same key returns the original order without charging
                again.

        Returns:
            A CheckoutResult carrying the order on success, or an error
            message and code on failure.

        Raises:
            StorageError: If the database fails; nothing is applied.
        """
        try:
            order, replayed = run_with_conflict_retry(
                "Checkout",
                lambda: _checkout(user, voucher_code=voucher_code, idempotency_key=idempotency_key),
            )
        except BusinessRuleViolation as exc:
            logger.info("Checkout rejected for user %s: %s", user.pk, exc.message)
            return CheckoutResult(success=False, error=exc.message, code=exc.code)
        except ConcurrencyConflict as exc:
            return CheckoutResult(success=False, error=str(exc), code=exc.code)

        if replayed:
            logger.info("Replayed order %s for user %s (idempotency key %s)", order.reference, user.pk, idempotency_key)
        return CheckoutResult(success=True, order=order, replayed=replayed)

    @staticmethod
    def list_orders(user: AbstractBaseUser) -> QuerySet[Order]:
        """Return the user's orders, newest first, with their line items."""
        return Order.objects.filter(user=user).prefetch_related("line_items")


def _checkout(
    user: AbstractBaseUser,
    *,
    voucher_code: str | None,
    idempotency_key: str | None,
) -> tuple[Order, bool]:
    """Run one checkout attempt inside a single transaction.

    Returns:
        ``(order, replayed)``.

    Raises:
        BusinessRuleViolation: If the purchase is not allowed.
    """
    now = timezone.now()
    with transaction.atomic():
        _lock_account(user)

        if idempotency_key:
            existing = Order.objects.filter(user=user, idempotency_key=idempotency_key).first()
            if existing is not None:
                return existing, True

        items = list(CartItem.objects.select_for_update().filter(user=user).select_related("course", "exam"))
        if not items:
            raise BusinessRuleViolation("Cannot check out an empty cart.", "empty_cart")

        _revalidate_items(items)

        subtotal = sum(item.price for item in items)
        discount = 0
        voucher = None
        if voucher_code:
            validation = validate_voucher(voucher_code, subtotal, items=items, now=now)
            if not validation.valid:
                raise BusinessRuleViolation(validation.error, validation.code)
            discount = validation.discount
            voucher = validation.voucher

        total = subtotal - discount

        balance = LedgerService.get_balance(user)
        if balance < total:
            label = get_config().token_label
            raise BusinessRuleViolation(
                f"Insufficient {label}. You need {total} {label} but have {balance}.",
                "insufficient_funds",
            )

        order = _create_order(
            user,
            items=items,
            subtotal=subtotal,
            discount=discount,
            voucher=voucher,
            idempotency_key=idempotency_key,
            now=now,
        )
        LedgerService.record_entry(
            user,
            -total,
            LedgerEntry.Kind.PURCHASE,
            f"Purchase order {order.reference}",
            order=order,
        )
        _grant_enrollments(user, order=order, items=items, now=now)

        if voucher is not None:
            redeem_voucher(voucher, now=now)

        CartService.clear(user)

        transaction.on_commit(lambda: order_completed.send(sender=Order, order=order, user=user))

    logger.info(
        "Order %s completed for user %s (subtotal %d, discount %d, total %d)",
        order.reference,
        user.pk,
        subtotal,
        discount,
        total,
    )
    return order, False


def _lock_account(user: AbstractBaseUser) -> None:
    """Serialize concurrent checkouts of one account with a row lock."""
    get_user_model().objects.select_for_update().filter(pk=user.pk).first()


def _revalidate_items(items: list[CartItem]) -> None:
    """Fail checkout if any cart item was unpublished after it was added."""
    for item in items:
        source = item.course if item.item_type == CartItem.ItemType.COURSE else item.exam
        if source is None or not source.is_published:
            raise BusinessRuleViolation(f"'{item.item_name}' is no longer available.", "item_unavailable")


def _create_order(
    user: AbstractBaseUser,
    *,
    items: list[CartItem],
    subtotal: int,
    discount: int,
    voucher: Voucher | None,
    idempotency_key: str | None,
    now: datetime.datetime,
) -> Order:
    """Create the order and its snapshotted line items."""
    total = subtotal - discount
    payment_method = Order.PaymentMethod.VOUCHER if voucher is not None and total == 0 else Order.PaymentMethod.TOKENS

    order = None
    for attempt in range(1, _REFERENCE_ATTEMPTS + 1):
        try:
            with transaction.atomic():
                order = Order.objects.create(
                    user=user,
                    reference=_generate_reference(),
                    status=Order.Status.COMPLETED,
                    payment_method=payment_method,
                    subtotal=subtotal,
                    discount=discount,
                    total=total,
                    voucher_code=voucher.code if voucher else "",
                    voucher_details=_snapshot_voucher(voucher) if voucher else "",
                    idempotency_key=idempotency_key or None,
                    completed_at=now,
                )
            break
        except IntegrityError:
            if attempt == _REFERENCE_ATTEMPTS:
                raise

    OrderLineItem.objects.bulk_create(
        [
            OrderLineItem(
                order=order,
                item_type=item.item_type,
                course_id=item.course_id,
                exam_id=item.exam_id,
                item_name=item.item_name,
                price=item.price,
            )
            for item in items
        ]
    )
    return order


def _grant_enrollments(
    user: AbstractBaseUser,
    *,
    order: Order,
    items: list[CartItem],
    now: datetime.datetime,
) -> None:
    """Enroll the user in every purchased course and bump course popularity.

    Enrollments are keyed by (user, course): buying a course again
    reactivates the existing row and keeps its progress.
    """
    course_ids = [item.course_id for item in items if item.item_type == CartItem.ItemType.COURSE]
    if not course_ids:
        return

    for course_id in course_ids:
        Enrollment.objects.update_or_create(
            user=user,
            course_id=course_id,
            defaults={
                "status": Enrollment.Status.ACTIVE,
                "order": order,
                "enrolled_at": now,
            },
            create_defaults={
                "status": Enrollment.Status.ACTIVE,
                "order": order,
                "enrolled_at": now,
                "progress": 0,
                "completed_lessons": {},
            },
        )

    Course.objects.filter(pk__in=course_ids).update(enrollment_count=models.F("enrollment_count") + 1)
