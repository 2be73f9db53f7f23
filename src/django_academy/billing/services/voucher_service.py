"""Voucher validation, redemption, and bulk generation.

Validation is a pure read: it decides whether a code applies to a cart and
computes the discount, but never consumes a use. Redemption is a separate
atomic step performed only inside a confirmed checkout.
"""

import datetime
import logging
import secrets
import string
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from django.contrib.auth.models import AbstractBaseUser
from django.db import models, transaction
from django.utils import timezone

from django_academy.billing.models import CartItem, Voucher, normalize_code
from django_academy.exceptions import BusinessRuleViolation
from django_academy.settings import get_config

logger = logging.getLogger(__name__)

_CODE_ALPHABET = string.ascii_uppercase + string.digits
_CODE_LENGTH = 8
_MAX_COUNT = 500

_SCOPE_ITEM_TYPES: dict[str, str] = {
    Voucher.Scope.COURSES: CartItem.ItemType.COURSE,
    Voucher.Scope.EXAMS: CartItem.ItemType.EXAM,
}


@dataclass
class VoucherValidation:
    """Outcome of validating a voucher code against a cart subtotal."""

    valid: bool
    discount: int = 0
    voucher: Voucher | None = None
    error: str = ""
    code: str = ""


def _invalid(error: str, code: str = "voucher_invalid") -> VoucherValidation:
    return VoucherValidation(valid=False, error=error, code=code)


def validate_voucher(
    code: str,
    subtotal: int,
    *,
    items: Iterable[CartItem] | None = None,
    now: datetime.datetime | None = None,
) -> VoucherValidation:
    """Check a voucher code and compute the discount it would give.

    Rules are evaluated in order and the first failure is returned:
    existence, active flag, expiry, usage limit, minimum purchase, and
    finally scope (only when ``items`` are supplied).

    Args:
        code: The code as typed by the user; matching is case-insensitive.
        subtotal: Cart subtotal in tokens.
        items: Optional cart items, used to restrict course-only or
            exam-only vouchers to the matching part of the cart.
        now: Reference time for the expiry check (defaults to now).

    Returns:
        A VoucherValidation. ``used_count`` is never modified.
    """
    now = now or timezone.now()
    label = get_config().token_label

    voucher = Voucher.objects.filter(code=normalize_code(code)).first()
    if voucher is None:
        return _invalid("Invalid voucher code")

    if not voucher.is_active:
        return _invalid("Voucher is inactive")

    if voucher.expires_at <= now:
        return _invalid("Voucher has expired", "voucher_expired")

    if voucher.used_count >= voucher.usage_limit:
        return _invalid("Voucher usage limit reached", "voucher_exhausted")

    if voucher.min_purchase and subtotal < voucher.min_purchase:
        return _invalid(f"Minimum purchase of {voucher.min_purchase} {label} required", "voucher_minimum_not_met")

    base = subtotal
    item_type = _SCOPE_ITEM_TYPES.get(voucher.applicable_to)
    if item_type is not None and items is not None:
        base = sum(item.price for item in items if item.item_type == item_type)
        if base == 0:
            return _invalid("Voucher does not apply to the items in your cart", "voucher_not_applicable")

    return VoucherValidation(valid=True, discount=compute_discount(voucher, base), voucher=voucher)


def compute_discount(voucher: Voucher, base: int) -> int:
    """Return the whole-token discount a voucher gives on ``base`` tokens.

    Percentage discounts round half up and honour ``max_discount``. Fixed
    discounts are capped at ``base`` so a total can never go negative.
    """
    if base <= 0:
        return 0

    if voucher.discount_type == Voucher.DiscountType.PERCENTAGE:
        discount = int((Decimal(base) * Decimal(voucher.value) / Decimal(100)).quantize(Decimal(1), ROUND_HALF_UP))
        if voucher.max_discount is not None:
            discount = min(discount, voucher.max_discount)
        return min(discount, base)

    if voucher.discount_type == Voucher.DiscountType.FIXED:
        return min(voucher.value, base)

    if voucher.discount_type == Voucher.DiscountType.FREE:
        return base

    return 0


def redeem_voucher(voucher: Voucher, *, now: datetime.datetime | None = None) -> None:
    """Atomically consume one use of a voucher.

    A single conditional ``UPDATE`` increments ``used_count`` only while the
    voucher is active, unexpired, and under its limit, so concurrent
    redemptions can never push it past ``usage_limit``.

    Raises:
        BusinessRuleViolation: If no use could be consumed.
    """
    now = now or timezone.now()
    updated = Voucher.objects.filter(
        pk=voucher.pk,
        is_active=True,
        expires_at__gt=now,
        used_count__lt=models.F("usage_limit"),
    ).update(used_count=models.F("used_count") + 1)
    if updated != 1:
        raise BusinessRuleViolation(f"Voucher code '{voucher.code}' is no longer valid.", "voucher_exhausted")


@dataclass
class VoucherBulkConfig:
    """Configuration for a bulk voucher generation request.

    Attributes:
        prefix: Fixed string prepended to each generated code.
        count: Number of voucher codes to generate (1-500).
        discount_type: One of the ``Voucher.DiscountType`` values.
        value: Percentage (0-100) or fixed token amount depending on type.
        expires_at: When the vouchers stop being redeemable.
        usage_limit: Maximum number of times each voucher can be redeemed.
        min_purchase: Optional minimum cart subtotal.
        max_discount: Optional cap for percentage vouchers.
        applicable_to: One of the ``Voucher.Scope`` values.
        created_by: Optional administrator creating the batch.
    """

    prefix: str
    count: int
    discount_type: str
    value: int
    expires_at: datetime.datetime
    usage_limit: int = 1
    min_purchase: int | None = None
    max_discount: int | None = None
    applicable_to: str = Voucher.Scope.ALL
    created_by: AbstractBaseUser | None = None


def _generate_unique_code(prefix: str, existing_codes: set[str]) -> str:
    """Generate a single voucher code that does not collide with existing ones.

    Produces codes in the format ``{PREFIX}{8_random_chars}`` using
    upper-case alphanumerics. Retries up to 100 times on collision.

    Raises:
        RuntimeError: If a unique code cannot be generated after 100 attempts.
    """
    for _ in range(100):
        random_part = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(_CODE_LENGTH))
        code = f"{prefix}{random_part}"
        if code not in existing_codes:
            return code
    msg = f"Failed to generate a unique voucher code with prefix '{prefix}' after 100 attempts"
    raise RuntimeError(msg)


def generate_voucher_codes(config: VoucherBulkConfig) -> list[Voucher]:
    """Generate a batch of unique voucher codes sharing one configuration.

    The vouchers are inserted with a single ``bulk_create`` inside a
    transaction.

    Raises:
        ValueError: If ``config.count`` is less than 1 or greater than 500.
        RuntimeError: If unique code generation fails after retries.
        IntegrityError: If a code collision occurs at the database level
            despite the in-memory uniqueness check.
    """
    if config.count < 1 or config.count > _MAX_COUNT:
        msg = f"count must be between 1 and {_MAX_COUNT}, got {config.count}"
        raise ValueError(msg)

    prefix = normalize_code(config.prefix)
    qs = Voucher.objects.all()
    if prefix:
        qs = qs.filter(code__startswith=prefix)
    existing_codes: set[str] = set(qs.values_list("code", flat=True))

    vouchers_to_create: list[Voucher] = []
    for _ in range(config.count):
        code = _generate_unique_code(prefix, existing_codes)
        existing_codes.add(code)
        vouchers_to_create.append(
            Voucher(
                code=code,
                discount_type=config.discount_type,
                value=config.value,
                expires_at=config.expires_at,
                usage_limit=config.usage_limit,
                min_purchase=config.min_purchase,
                max_discount=config.max_discount,
                applicable_to=config.applicable_to,
                created_by=config.created_by,
            )
        )

    with transaction.atomic():
        created = Voucher.objects.bulk_create(vouchers_to_create)

    logger.info("Generated %d vouchers with prefix '%s'", len(created), prefix)
    return created
