"""Cart management service for the course and exam marketplace.

Handles adding and removing items, listing, clearing, and the pricing
summary shown before checkout. All methods are stateless and operate on
``CartItem`` rows keyed by user.
"""

from dataclasses import dataclass

from django.contrib.auth.models import AbstractBaseUser
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import QuerySet

from django_academy.billing.models import CartItem, Voucher
from django_academy.billing.services.voucher_service import validate_voucher
from django_academy.catalog.models import Course, Exam
from django_academy.exceptions import BusinessRuleViolation
from django_academy.settings import get_config


@dataclass
class CartSummary:
    """Pricing summary of a cart, including an optional voucher preview."""

    items: list[CartItem]
    subtotal: int
    discount: int
    total: int
    voucher: Voucher | None = None
    voucher_error: str = ""


class CartService:
    """Stateless service for cart operations."""

    @staticmethod
    @transaction.atomic
    def add_item(user: AbstractBaseUser, item: Course | Exam) -> CartItem:
        """Add a course or exam to the user's cart.

        The item's name and current price are snapshotted onto the cart row.

        Args:
            user: The account owner.
            item: The course or exam to add.

        Returns:
            The created CartItem.

        Raises:
            ValidationError: If ``item`` is not a Course or Exam.
            BusinessRuleViolation: If the item is unpublished, already in the
                cart, or the cart is full.
        """
        if isinstance(item, Course):
            fields = {
                "item_type": CartItem.ItemType.COURSE,
                "course": item,
                "item_name": item.title,
                "thumbnail_url": item.thumbnail_url,
            }
        elif isinstance(item, Exam):
            fields = {
                "item_type": CartItem.ItemType.EXAM,
                "exam": item,
                "item_name": item.name,
            }
        else:
            raise ValidationError("Only courses and exams can be added to the cart.")

        if not item.is_published:
            raise BusinessRuleViolation(f"'{fields['item_name']}' is not available for purchase.", "item_unavailable")

        lookup = {"course": item} if isinstance(item, Course) else {"exam": item}
        if CartItem.objects.filter(user=user, **lookup).exists():
            raise BusinessRuleViolation("Item already in cart", "duplicate_item")

        max_items = get_config().checkout.max_cart_items
        if CartItem.objects.filter(user=user).count() >= max_items:
            raise BusinessRuleViolation(f"Your cart cannot hold more than {max_items} items.", "cart_full")

        try:
            with transaction.atomic():
                return CartItem.objects.create(
                    user=user,
                    item_description=item.description,
                    price=item.price,
                    **fields,
                )
        except IntegrityError:
            raise BusinessRuleViolation("Item already in cart", "duplicate_item") from None

    @staticmethod
    def remove_item(user: AbstractBaseUser, cart_item_id: int) -> None:
        """Remove one item from the user's cart.

        Raises:
            BusinessRuleViolation: If the item does not exist in this cart.
        """
        deleted, _ = CartItem.objects.filter(user=user, pk=cart_item_id).delete()
        if not deleted:
            raise BusinessRuleViolation("Cart item not found.", "not_found")

    @staticmethod
    def list_items(user: AbstractBaseUser) -> QuerySet[CartItem]:
        """Return the user's cart items in the order they were added."""
        return CartItem.objects.filter(user=user).select_related("course", "exam")

    @staticmethod
    def clear(user: AbstractBaseUser) -> int:
        """Delete every item in the user's cart and return how many were removed.

        Checkout calls this inside its own transaction after a successful
        purchase.
        """
        deleted, _ = CartItem.objects.filter(user=user).delete()
        return deleted

    @staticmethod
    def get_summary(user: AbstractBaseUser, voucher_code: str | None = None) -> CartSummary:
        """Compute the cart's subtotal and, optionally, a voucher preview.

        Applying a code here is only a preview: it never consumes a voucher
        use. An invalid code leaves the discount at zero and reports the
        validator's error in ``voucher_error``.
        """
        items = list(CartService.list_items(user))
        subtotal = sum(item.price for item in items)

        if not voucher_code:
            return CartSummary(items=items, subtotal=subtotal, discount=0, total=subtotal)

        validation = validate_voucher(voucher_code, subtotal, items=items)
        if not validation.valid:
            return CartSummary(
                items=items,
                subtotal=subtotal,
                discount=0,
                total=subtotal,
                voucher_error=validation.error,
            )

        return CartSummary(
            items=items,
            subtotal=subtotal,
            discount=validation.discount,
            total=subtotal - validation.discount,
            voucher=validation.voucher,
        )
