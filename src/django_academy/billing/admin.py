"""Django admin configuration for the billing app."""

from django.contrib import admin
from django.http import HttpRequest

from django_academy.billing.models import CartItem, LedgerEntry, Order, OrderLineItem, Voucher


@admin.register(LedgerEntry)
class LedgerEntryAdmin(admin.ModelAdmin):
    """Read-only admin for the token ledger.

    Entries are immutable; credits and corrections are made with the
    ``topup_tokens`` management command or the ledger service.
    """

    list_display = ("user", "amount", "kind", "description", "order", "created_by", "created_at")
    list_filter = ("kind",)
    search_fields = ("user__username", "user__email", "description", "order__reference")
    readonly_fields = ("user", "amount", "kind", "description", "order", "created_by", "created_at")

    def has_add_permission(self, request: HttpRequest) -> bool:  # noqa: ARG002, D102
        return False

    def has_change_permission(self, request: HttpRequest, obj: LedgerEntry | None = None) -> bool:  # noqa: ARG002, D102
        return False

    def has_delete_permission(self, request: HttpRequest, obj: LedgerEntry | None = None) -> bool:  # noqa: ARG002, D102
        return False


@admin.register(Voucher)
class VoucherAdmin(admin.ModelAdmin):
    """Admin interface for managing vouchers.

    ``used_count`` is read-only: it only moves when a checkout redeems the
    voucher.
    """

    list_display = (
        "code",
        "discount_type",
        "value",
        "applicable_to",
        "used_count",
        "usage_limit",
        "expires_at",
        "is_active",
    )
    list_filter = ("discount_type", "applicable_to", "is_active")
    search_fields = ("code",)
    readonly_fields = ("used_count", "created_at")


@admin.register(CartItem)
class CartItemAdmin(admin.ModelAdmin):
    """Read-oriented view of open carts."""

    list_display = ("user", "item_type", "item_name", "price", "added_at")
    list_filter = ("item_type",)
    search_fields = ("user__username", "item_name")
    readonly_fields = ("price", "added_at")


class OrderLineItemInline(admin.TabularInline):
    """Inline display of order line items within the order admin.

    Line items are immutable snapshots from checkout and are shown read-only.
    """

    model = OrderLineItem
    extra = 0
    readonly_fields = ("item_type", "course", "exam", "item_name", "price")

    def has_add_permission(self, request: HttpRequest, obj: Order | None = None) -> bool:  # noqa: ARG002, D102
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    """Admin interface for viewing orders.

    Money fields and the voucher snapshot are read-only; orders are never
    edited after checkout.
    """

    list_display = ("reference", "user", "status", "payment_method", "total", "created_at")
    list_filter = ("status", "payment_method")
    search_fields = ("reference", "user__username", "user__email", "voucher_code")
    readonly_fields = (
        "reference",
        "subtotal",
        "discount",
        "total",
        "voucher_code",
        "voucher_details",
        "idempotency_key",
        "created_at",
        "completed_at",
    )
    inlines = (OrderLineItemInline,)
