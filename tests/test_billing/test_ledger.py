"""Tests for the LedgerService in django_academy.billing.services.ledger."""

from unittest.mock import patch

import pytest
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.db import DatabaseError

from django_academy.billing.models import LedgerEntry
from django_academy.billing.services.ledger import LedgerService
from django_academy.exceptions import StorageError

User = get_user_model()


@pytest.fixture
def user():
    return User.objects.create_user(username="ledgeruser", email="ledger@example.com", password="testpass123")


@pytest.fixture
def staff_user():
    return User.objects.create_user(username="staff", email="staff@example.com", password="testpass123", is_staff=True)


@pytest.mark.django_db
class TestBalance:
    def test_new_account_has_zero_balance(self, user):
        assert LedgerService.get_balance(user) == 0

    def test_balance_is_sum_of_entries(self, user):
        amounts = [100, -30, 25, -95, 7]
        for amount in amounts:
            kind = LedgerEntry.Kind.REWARD if amount > 0 else LedgerEntry.Kind.DEDUCTION
            LedgerService.record_entry(user, amount, kind)

        assert LedgerService.get_balance(user) == sum(amounts)

    def test_balance_ignores_other_users(self, user, staff_user):
        LedgerService.top_up(user, 50)
        LedgerService.top_up(staff_user, 500)

        assert LedgerService.get_balance(user) == 50

    def test_balance_can_go_negative_through_record_entry(self, user):
        LedgerService.record_entry(user, -10, LedgerEntry.Kind.DEDUCTION)

        assert LedgerService.get_balance(user) == -10

    def test_failed_read_raises_storage_error(self, user):
        with patch.object(LedgerEntry.objects, "filter", side_effect=DatabaseError("disk I/O error")):
            with pytest.raises(StorageError, match="Could not read the token ledger"):
                LedgerService.get_balance(user)

    def test_display_balance_falls_back_to_zero(self, user):
        LedgerService.top_up(user, 50)

        with patch.object(LedgerEntry.objects, "filter", side_effect=DatabaseError("disk I/O error")):
            assert LedgerService.get_display_balance(user) == 0

    def test_display_balance_matches_balance(self, user):
        LedgerService.top_up(user, 42)

        assert LedgerService.get_display_balance(user) == 42


@pytest.mark.django_db
class TestRecordEntry:
    def test_records_signed_amount(self, user, staff_user):
        entry = LedgerService.record_entry(
            user,
            -15,
            LedgerEntry.Kind.DEDUCTION,
            "Correction",
            created_by=staff_user,
        )

        assert entry.pk is not None
        assert entry.amount == -15
        assert entry.kind == LedgerEntry.Kind.DEDUCTION
        assert entry.description == "Correction"
        assert entry.created_by == staff_user

    @pytest.mark.parametrize("amount", [1.5, "10", True, None])
    def test_rejects_non_integer_amount(self, user, amount):
        with pytest.raises(ValidationError, match="whole numbers"):
            LedgerService.record_entry(user, amount, LedgerEntry.Kind.TOP_UP)

        assert not LedgerEntry.objects.exists()

    def test_rejects_unknown_kind(self, user):
        with pytest.raises(ValidationError, match="Unknown ledger entry kind"):
            LedgerService.record_entry(user, 10, "gift")

    def test_entries_are_immutable(self, user):
        entry = LedgerService.top_up(user, 10)

        entry.amount = 1000
        with pytest.raises(ValidationError, match="immutable"):
            entry.save()
        with pytest.raises(ValidationError, match="immutable"):
            entry.delete()

        entry.refresh_from_db()
        assert entry.amount == 10


@pytest.mark.django_db
class TestAdministrativeEntries:
    def test_top_up_credits_tokens(self, user, staff_user):
        entry = LedgerService.top_up(user, 200, staff_user=staff_user)

        assert entry.kind == LedgerEntry.Kind.TOP_UP
        assert entry.amount == 200
        assert entry.description == "Top-up by admin (staff)"
        assert LedgerService.get_balance(user) == 200

    def test_top_up_keeps_custom_description(self, user):
        entry = LedgerService.top_up(user, 5, description="Scholarship")

        assert entry.description == "Scholarship"

    @pytest.mark.parametrize("amount", [0, -5])
    def test_top_up_rejects_non_positive_amount(self, user, amount):
        with pytest.raises(ValidationError, match="positive whole number"):
            LedgerService.top_up(user, amount)

    def test_reward_credits_tokens(self, user):
        entry = LedgerService.reward(user, 25, "Completed Python Foundations")

        assert entry.kind == LedgerEntry.Kind.REWARD
        assert LedgerService.get_balance(user) == 25

    def test_deduct_records_negative_entry(self, user, staff_user):
        LedgerService.top_up(user, 100)

        entry = LedgerService.deduct(user, 30, "Duplicate top-up", staff_user=staff_user)

        assert entry.amount == -30
        assert entry.kind == LedgerEntry.Kind.DEDUCTION
        assert entry.created_by == staff_user
        assert LedgerService.get_balance(user) == 70

    def test_list_entries_newest_first(self, user):
        first = LedgerService.top_up(user, 10)
        second = LedgerService.reward(user, 5, "Bonus")
        third = LedgerService.deduct(user, 3, "Fee")

        assert list(LedgerService.list_entries(user)) == [third, second, first]
