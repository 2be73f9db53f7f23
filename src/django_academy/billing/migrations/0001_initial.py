import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("academy_catalog", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Order",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "reference",
                    models.CharField(
                        help_text='Unique order reference, e.g. "ORD-A1B2C3D4".',
                        max_length=100,
                        unique=True,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("refunded", "Refunded"),
                        ],
                        default="completed",
                        max_length=20,
                    ),
                ),
                (
                    "payment_method",
                    models.CharField(
                        choices=[("tokens", "Tokens"), ("voucher", "Voucher")],
                        default="tokens",
                        max_length=20,
                    ),
                ),
                ("subtotal", models.PositiveIntegerField(default=0)),
                ("discount", models.PositiveIntegerField(default=0)),
                ("total", models.PositiveIntegerField(default=0)),
                (
                    "voucher_code",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Snapshot of the voucher code applied at checkout.",
                        max_length=100,
                    ),
                ),
                (
                    "voucher_details",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="JSON snapshot of the voucher state at checkout time.",
                    ),
                ),
                ("idempotency_key", models.CharField(blank=True, max_length=100, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="orders",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("idempotency_key__isnull", False)),
                        fields=("user", "idempotency_key"),
                        name="billing_order_unique_idempotency_key",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="OrderLineItem",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("item_type", models.CharField(choices=[("course", "Course"), ("exam", "Exam")], max_length=10)),
                ("item_name", models.CharField(max_length=200)),
                ("price", models.PositiveIntegerField()),
                (
                    "course",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="order_line_items",
                        to="academy_catalog.course",
                    ),
                ),
                (
                    "exam",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="order_line_items",
                        to="academy_catalog.exam",
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="line_items",
                        to="academy_billing.order",
                    ),
                ),
            ],
            options={
                "ordering": ["id"],
            },
        ),
        migrations.CreateModel(
            name="LedgerEntry",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("amount", models.IntegerField(help_text="Positive for credits, negative for debits.")),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("top-up", "Top-up"),
                            ("purchase", "Purchase"),
                            ("reward", "Reward"),
                            ("deduction", "Deduction"),
                            ("refund", "Refund"),
                        ],
                        max_length=20,
                    ),
                ),
                ("description", models.CharField(blank=True, default="", max_length=300)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="created_ledger_entries",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="ledger_entries",
                        to="academy_billing.order",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="ledger_entries",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name_plural": "ledger entries",
                "ordering": ["-created_at", "-id"],
                "indexes": [models.Index(fields=["user", "created_at"], name="billing_ledger_user_created")],
            },
        ),
        migrations.CreateModel(
            name="Voucher",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("code", models.CharField(max_length=100, unique=True)),
                (
                    "discount_type",
                    models.CharField(
                        choices=[
                            ("percentage", "Percentage discount"),
                            ("fixed", "Fixed token discount"),
                            ("free", "Free (100% off)"),
                        ],
                        default="percentage",
                        max_length=20,
                    ),
                ),
                (
                    "value",
                    models.PositiveIntegerField(
                        default=0,
                        help_text="Percentage (0-100) or fixed token amount depending on discount_type.",
                    ),
                ),
                ("min_purchase", models.PositiveIntegerField(blank=True, null=True)),
                (
                    "max_discount",
                    models.PositiveIntegerField(
                        blank=True,
                        help_text="Upper bound on the discount for percentage vouchers.",
                        null=True,
                    ),
                ),
                (
                    "applicable_to",
                    models.CharField(
                        choices=[("all", "All items"), ("courses", "Courses only"), ("exams", "Exams only")],
                        default="all",
                        max_length=20,
                    ),
                ),
                ("expires_at", models.DateTimeField()),
                ("usage_limit", models.PositiveIntegerField(default=1)),
                ("used_count", models.PositiveIntegerField(default=0)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="created_vouchers",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("used_count__lte", models.F("usage_limit"))),
                        name="billing_voucher_used_lte_limit",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="CartItem",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("item_type", models.CharField(choices=[("course", "Course"), ("exam", "Exam")], max_length=10)),
                ("item_name", models.CharField(max_length=200)),
                ("item_description", models.TextField(blank=True, default="")),
                ("thumbnail_url", models.URLField(blank=True, default="")),
                ("price", models.PositiveIntegerField()),
                ("added_at", models.DateTimeField(auto_now_add=True)),
                (
                    "course",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="cart_items",
                        to="academy_catalog.course",
                    ),
                ),
                (
                    "exam",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="cart_items",
                        to="academy_catalog.exam",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="cart_items",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["added_at", "id"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("course__isnull", False), ("exam__isnull", True), ("item_type", "course")),
                            models.Q(("course__isnull", True), ("exam__isnull", False), ("item_type", "exam")),
                            _connector="OR",
                        ),
                        name="billing_cartitem_exactly_one_item",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(("course__isnull", False)),
                        fields=("user", "course"),
                        name="billing_cartitem_unique_user_course",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(("exam__isnull", False)),
                        fields=("user", "exam"),
                        name="billing_cartitem_unique_user_exam",
                    ),
                ],
            },
        ),
    ]
