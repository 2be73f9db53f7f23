"""Tests for voucher validation, redemption, and bulk generation."""

import string
from datetime import timedelta
from unittest.mock import patch

import pytest
from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.utils import timezone

from django_academy.billing.models import CartItem, Voucher
from django_academy.billing.services.voucher_service import (
    _CODE_LENGTH,
    VoucherBulkConfig,
    _generate_unique_code,
    compute_discount,
    generate_voucher_codes,
    redeem_voucher,
    validate_voucher,
)
from django_academy.catalog.models import Course, Exam
from django_academy.exceptions import BusinessRuleViolation

User = get_user_model()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _voucher(**kwargs):
    defaults = {
        "code": "SAVE50",
        "discount_type": Voucher.DiscountType.PERCENTAGE,
        "value": 50,
        "expires_at": timezone.now() + timedelta(days=30),
        "usage_limit": 10,
    }
    defaults.update(kwargs)
    return Voucher.objects.create(**defaults)


@pytest.fixture
def user(db):
    return User.objects.create_user(username="voucheruser", email="voucher@example.com", password="testpass123")


@pytest.fixture
def course(db):
    return Course.objects.create(title="Python Foundations", slug="python-foundations", price=80)


@pytest.fixture
def exam(course):
    return Exam.objects.create(course=course, name="Python Exam", slug="python-exam", price=20)


@pytest.fixture
def cart_items(user, course, exam):
    return [
        CartItem(user=user, item_type=CartItem.ItemType.COURSE, course=course, item_name=course.title, price=80),
        CartItem(user=user, item_type=CartItem.ItemType.EXAM, exam=exam, item_name=exam.name, price=20),
    ]


# ---------------------------------------------------------------------------
# validate_voucher
# ---------------------------------------------------------------------------


@pytest.mark.django_db
class TestValidateVoucher:
    def test_percentage_discount(self):
        _voucher()

        result = validate_voucher("SAVE50", 100)

        assert result.valid is True
        assert result.discount == 50
        assert result.voucher.code == "SAVE50"
        assert result.error == ""

    def test_code_is_case_insensitive(self):
        _voucher()

        result = validate_voucher("  save50 ", 100)

        assert result.valid is True

    def test_unknown_code(self):
        result = validate_voucher("NOPE", 100)

        assert result.valid is False
        assert result.error == "Invalid voucher code"
        assert result.code == "voucher_invalid"

    def test_inactive_voucher(self):
        _voucher(is_active=False)

        result = validate_voucher("SAVE50", 100)

        assert result.error == "Voucher is inactive"
        assert result.code == "voucher_invalid"

    def test_expired_voucher(self):
        _voucher(expires_at=timezone.now() - timedelta(seconds=1))

        result = validate_voucher("SAVE50", 100)

        assert result.error == "Voucher has expired"
        assert result.code == "voucher_expired"

    def test_exhausted_voucher(self):
        _voucher(usage_limit=2, used_count=2)

        result = validate_voucher("SAVE50", 100)

        assert result.error == "Voucher usage limit reached"
        assert result.code == "voucher_exhausted"

    def test_minimum_purchase(self):
        _voucher(min_purchase=150)

        result = validate_voucher("SAVE50", 100)

        assert result.error == "Minimum purchase of 150 tokens required"
        assert result.code == "voucher_minimum_not_met"

    def test_minimum_purchase_uses_token_label(self, settings):
        settings.DJANGO_ACADEMY = {"token_label": "credits"}
        _voucher(min_purchase=150)

        result = validate_voucher("SAVE50", 100)

        assert result.error == "Minimum purchase of 150 credits required"

    def test_rules_are_checked_in_order(self):
        _voucher(is_active=False, expires_at=timezone.now() - timedelta(days=1), used_count=10, min_purchase=999)

        assert validate_voucher("SAVE50", 1).error == "Voucher is inactive"

    def test_expiry_checked_before_usage(self):
        _voucher(expires_at=timezone.now() - timedelta(days=1), used_count=10)

        assert validate_voucher("SAVE50", 1).error == "Voucher has expired"

    def test_validation_never_consumes_uses(self):
        voucher = _voucher(usage_limit=1)

        for _ in range(3):
            assert validate_voucher("SAVE50", 100).valid is True

        voucher.refresh_from_db()
        assert voucher.used_count == 0

    def test_course_scope_discounts_only_courses(self, cart_items):
        _voucher(applicable_to=Voucher.Scope.COURSES)

        result = validate_voucher("SAVE50", 100, items=cart_items)

        assert result.discount == 40

    def test_exam_scope_discounts_only_exams(self, cart_items):
        _voucher(applicable_to=Voucher.Scope.EXAMS)

        result = validate_voucher("SAVE50", 100, items=cart_items)

        assert result.discount == 10

    def test_scope_without_matching_items(self, cart_items):
        _voucher(applicable_to=Voucher.Scope.EXAMS)

        result = validate_voucher("SAVE50", 80, items=cart_items[:1])

        assert result.valid is False
        assert result.error == "Voucher does not apply to the items in your cart"
        assert result.code == "voucher_not_applicable"

    def test_explicit_now_is_used_for_expiry(self):
        expires = timezone.now() + timedelta(days=1)
        _voucher(expires_at=expires)

        assert validate_voucher("SAVE50", 100, now=expires + timedelta(seconds=1)).code == "voucher_expired"


# ---------------------------------------------------------------------------
# compute_discount
# ---------------------------------------------------------------------------


class TestComputeDiscount:
    @pytest.mark.parametrize(
        ("value", "base", "expected"),
        [
            (50, 100, 50),
            (15, 10, 2),  # 1.5 rounds half up
            (25, 10, 3),  # 2.5 rounds half up
            (33, 10, 3),
            (100, 7, 7),
        ],
    )
    def test_percentage_rounds_half_up(self, value, base, expected):
        voucher = Voucher(discount_type=Voucher.DiscountType.PERCENTAGE, value=value)

        assert compute_discount(voucher, base) == expected

    def test_percentage_respects_max_discount(self):
        voucher = Voucher(discount_type=Voucher.DiscountType.PERCENTAGE, value=50, max_discount=30)

        assert compute_discount(voucher, 100) == 30

    def test_fixed_discount(self):
        voucher = Voucher(discount_type=Voucher.DiscountType.FIXED, value=25)

        assert compute_discount(voucher, 100) == 25

    def test_fixed_discount_is_clamped_to_base(self):
        voucher = Voucher(discount_type=Voucher.DiscountType.FIXED, value=250)

        assert compute_discount(voucher, 100) == 100

    def test_free_discount_is_whole_base(self):
        voucher = Voucher(discount_type=Voucher.DiscountType.FREE, value=0)

        assert compute_discount(voucher, 73) == 73

    def test_zero_base(self):
        voucher = Voucher(discount_type=Voucher.DiscountType.FIXED, value=10)

        assert compute_discount(voucher, 0) == 0


# ---------------------------------------------------------------------------
# redeem_voucher
# ---------------------------------------------------------------------------


@pytest.mark.django_db
class TestRedeemVoucher:
    def test_increments_used_count(self):
        voucher = _voucher(usage_limit=2)

        redeem_voucher(voucher)

        voucher.refresh_from_db()
        assert voucher.used_count == 1

    def test_stops_at_usage_limit(self):
        voucher = _voucher(usage_limit=1)
        stale = Voucher.objects.get(pk=voucher.pk)

        redeem_voucher(voucher)
        with pytest.raises(BusinessRuleViolation) as exc_info:
            redeem_voucher(stale)

        assert exc_info.value.code == "voucher_exhausted"
        voucher.refresh_from_db()
        assert voucher.used_count == 1

    def test_rejects_inactive_voucher(self):
        voucher = _voucher()
        Voucher.objects.filter(pk=voucher.pk).update(is_active=False)

        with pytest.raises(BusinessRuleViolation, match="no longer valid"):
            redeem_voucher(voucher)

    def test_rejects_expired_voucher(self):
        voucher = _voucher()

        with pytest.raises(BusinessRuleViolation):
            redeem_voucher(voucher, now=voucher.expires_at + timedelta(seconds=1))

    def test_database_rejects_used_count_over_limit(self):
        voucher = _voucher(usage_limit=1, used_count=1)

        with pytest.raises(IntegrityError), transaction.atomic():
            Voucher.objects.filter(pk=voucher.pk).update(used_count=2)


# ---------------------------------------------------------------------------
# _generate_unique_code / generate_voucher_codes
# ---------------------------------------------------------------------------


class TestGenerateUniqueCode:
    def test_produces_code_with_prefix(self):
        code = _generate_unique_code("SPRING-", set())

        assert code.startswith("SPRING-")
        assert len(code) == len("SPRING-") + _CODE_LENGTH

    def test_uses_upper_case_alphanumerics(self):
        code = _generate_unique_code("", set())

        assert set(code) <= set(string.ascii_uppercase + string.digits)

    def test_raises_after_max_collisions(self):
        with patch("django_academy.billing.services.voucher_service.secrets.choice", return_value="A"):
            with pytest.raises(RuntimeError, match="after 100 attempts"):
                _generate_unique_code("X", {"X" + "A" * _CODE_LENGTH})


@pytest.mark.django_db
class TestGenerateVoucherCodes:
    def _config(self, **kwargs):
        defaults = {
            "prefix": "promo-",
            "count": 5,
            "discount_type": Voucher.DiscountType.FIXED,
            "value": 10,
            "expires_at": timezone.now() + timedelta(days=7),
        }
        defaults.update(kwargs)
        return VoucherBulkConfig(**defaults)

    def test_creates_requested_number_of_vouchers(self, user):
        created = generate_voucher_codes(self._config(created_by=user, usage_limit=3))

        assert len(created) == 5
        assert Voucher.objects.count() == 5
        codes = set(Voucher.objects.values_list("code", flat=True))
        assert len(codes) == 5
        assert all(code.startswith("PROMO-") for code in codes)
        assert set(Voucher.objects.values_list("usage_limit", flat=True)) == {3}

    def test_skips_existing_codes(self):
        _voucher(code="PROMO-AAAAAAAA")

        with patch(
            "django_academy.billing.services.voucher_service.secrets.choice",
            side_effect=["A"] * _CODE_LENGTH + ["B"] * _CODE_LENGTH,
        ):
            created = generate_voucher_codes(self._config(count=1))

        assert created[0].code == "PROMO-BBBBBBBB"

    @pytest.mark.parametrize("count", [0, 501])
    def test_rejects_out_of_range_count(self, count):
        with pytest.raises(ValueError, match="count must be between 1 and 500"):
            generate_voucher_codes(self._config(count=count))
