"""Ledger, voucher, cart, and order models for django-academy."""

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone


class LedgerEntry(models.Model):
    """One immutable, signed token movement on a user's account.

    The ledger is append-only: a user's balance is the sum of their entries
    and is never stored. Saving an existing entry or deleting one raises
    ``ValidationError``; corrections are made by appending a new entry.
    """

    class Kind(models.TextChoices):
        """What caused the token movement."""

        TOP_UP = "top-up", "Top-up"
        PURCHASE = "purchase", "Purchase"
        REWARD = "reward", "Reward"
        DEDUCTION = "deduction", "Deduction"
        REFUND = "refund", "Refund"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="ledger_entries",
    )
    amount = models.IntegerField(help_text="Positive for credits, negative for debits.")
    kind = models.CharField(max_length=20, choices=Kind.choices)
    description = models.CharField(max_length=300, blank=True, default="")
    order = models.ForeignKey(
        "Order",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="ledger_entries",
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_ledger_entries",
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-created_at", "-id"]
        verbose_name_plural = "ledger entries"
        indexes = [
            models.Index(fields=["user", "created_at"], name="billing_ledger_user_created"),
        ]

    def __str__(self) -> str:
        return f"{self.amount:+d} {self.kind} for {self.user}"

    def save(self, *args: object, **kwargs: object) -> None:
        if self.pk is not None:
            raise ValidationError("Ledger entries are immutable and cannot be modified.")
        super().save(*args, **kwargs)

    def delete(self, *args: object, **kwargs: object) -> tuple[int, dict[str, int]]:
        raise ValidationError("Ledger entries are immutable and cannot be deleted.")


class Voucher(models.Model):
    """An administrator-created discount code.

    Codes are stored upper-case so lookups are case-insensitive. The usage
    counter is only changed by an atomic conditional increment during
    checkout; validation alone never consumes a use.
    """

    class DiscountType(models.TextChoices):
        """The type of discount a voucher provides."""

        PERCENTAGE = "percentage", "Percentage discount"
        FIXED = "fixed", "Fixed token discount"
        FREE = "free", "Free (100% off)"

    class Scope(models.TextChoices):
        """Which kinds of cart items the voucher discounts."""

        ALL = "all", "All items"
        COURSES = "courses", "Courses only"
        EXAMS = "exams", "Exams only"

    code = models.CharField(max_length=100, unique=True)
    discount_type = models.CharField(
        max_length=20,
        choices=DiscountType.choices,
        default=DiscountType.PERCENTAGE,
    )
    value = models.PositiveIntegerField(
        default=0,
        help_text="Percentage (0-100) or fixed token amount depending on discount_type.",
    )
    min_purchase = models.PositiveIntegerField(null=True, blank=True)
    max_discount = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Upper bound on the discount for percentage vouchers.",
    )
    applicable_to = models.CharField(
        max_length=20,
        choices=Scope.choices,
        default=Scope.ALL,
    )
    expires_at = models.DateTimeField()
    usage_limit = models.PositiveIntegerField(default=1)
    used_count = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_vouchers",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(used_count__lte=models.F("usage_limit")),
                name="billing_voucher_used_lte_limit",
            ),
        ]

    def __str__(self) -> str:
        return self.code

    def save(self, *args: object, **kwargs: object) -> None:
        self.code = normalize_code(self.code)
        super().save(*args, **kwargs)

    @property
    def is_valid(self) -> bool:
        """Check whether this voucher can currently be redeemed.

        A voucher is valid when it is active, unexpired, and has remaining
        uses. The minimum-purchase rule depends on the cart and is checked
        by the validator.
        """
        if not self.is_active:
            return False
        if self.expires_at <= timezone.now():
            return False
        return self.used_count < self.usage_limit


def normalize_code(code: str) -> str:
    """Return the canonical (trimmed, upper-case) form of a voucher code."""
    return (code or "").strip().upper()


class CartItem(models.Model):
    """A course or exam a user intends to buy.

    Each item references exactly one of ``course`` or ``exam``, matching
    ``item_type``. The name and price are snapshotted when the item is
    added. A user can hold a given course or exam at most once.
    """

    class ItemType(models.TextChoices):
        """Kinds of purchasable items."""

        COURSE = "course", "Course"
        EXAM = "exam", "Exam"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="cart_items",
    )
    item_type = models.CharField(max_length=10, choices=ItemType.choices)
    course = models.ForeignKey(
        "academy_catalog.Course",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="cart_items",
    )
    exam = models.ForeignKey(
        "academy_catalog.Exam",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="cart_items",
    )
    item_name = models.CharField(max_length=200)
    item_description = models.TextField(blank=True, default="")
    thumbnail_url = models.URLField(blank=True, default="")
    price = models.PositiveIntegerField()
    added_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["added_at", "id"]
        constraints = [
            models.CheckConstraint(
                condition=(
                    models.Q(item_type="course", course__isnull=False, exam__isnull=True)
                    | models.Q(item_type="exam", course__isnull=True, exam__isnull=False)
                ),
                name="billing_cartitem_exactly_one_item",
            ),
            models.UniqueConstraint(
                fields=["user", "course"],
                condition=models.Q(course__isnull=False),
                name="billing_cartitem_unique_user_course",
            ),
            models.UniqueConstraint(
                fields=["user", "exam"],
                condition=models.Q(exam__isnull=False),
                name="billing_cartitem_unique_user_exam",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.item_name} ({self.price} tokens)"

    @property
    def item_id(self) -> int | None:
        """Return the primary key of the referenced course or exam."""
        return self.course_id if self.item_type == self.ItemType.COURSE else self.exam_id


class Order(models.Model):
    """An immutable record of a completed token purchase.

    Orders snapshot the pricing, voucher, and line items at checkout time.
    ``idempotency_key`` lets a client safely retry a checkout request: a
    second attempt with the same key returns the existing order.
    """

    class Status(models.TextChoices):
        """Lifecycle states for an order."""

        PENDING = "pending", "Pending"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"
        REFUNDED = "refunded", "Refunded"

    class PaymentMethod(models.TextChoices):
        """How the order was settled."""

        TOKENS = "tokens", "Tokens"
        VOUCHER = "voucher", "Voucher"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="orders",
    )
    reference = models.CharField(
        max_length=100,
        unique=True,
        help_text='Unique order reference, e.g. "ORD-A1B2C3D4".',
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.COMPLETED,
    )
    payment_method = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
        default=PaymentMethod.TOKENS,
    )
    subtotal = models.PositiveIntegerField(default=0)
    discount = models.PositiveIntegerField(default=0)
    total = models.PositiveIntegerField(default=0)
    voucher_code = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Snapshot of the voucher code applied at checkout.",
    )
    voucher_details = models.TextField(
        blank=True,
        default="",
        help_text="JSON snapshot of the voucher state at checkout time.",
    )
    idempotency_key = models.CharField(max_length=100, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["user", "idempotency_key"],
                condition=models.Q(idempotency_key__isnull=False),
                name="billing_order_unique_idempotency_key",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.reference} ({self.status})"


class OrderLineItem(models.Model):
    """A snapshot of one purchased course or exam.

    The ``course`` / ``exam`` links are kept for traceability but are
    optional, since the catalog item could be deleted after purchase.
    """

    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name="line_items",
    )
    item_type = models.CharField(max_length=10, choices=CartItem.ItemType.choices)
    course = models.ForeignKey(
        "academy_catalog.Course",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="order_line_items",
    )
    exam = models.ForeignKey(
        "academy_catalog.Exam",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="order_line_items",
    )
    item_name = models.CharField(max_length=200)
    price = models.PositiveIntegerField()

    class Meta:
        ordering = ["id"]

    def __str__(self) -> str:
        return f"{self.item_name} ({self.price} tokens)"
