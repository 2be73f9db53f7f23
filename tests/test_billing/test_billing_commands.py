"""Tests for the topup_tokens management command."""

from io import StringIO

import pytest
from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.core.management.base import CommandError

from django_academy.billing.models import LedgerEntry
from django_academy.billing.services.ledger import LedgerService

User = get_user_model()


@pytest.fixture
def user(db):
    return User.objects.create_user(username="alice", password="testpass123")


@pytest.fixture
def staff_user(db):
    return User.objects.create_user(username="admin", password="testpass123", is_staff=True)


@pytest.mark.django_db
class TestTopupTokens:
    def test_credits_tokens(self, user):
        out = StringIO()

        call_command("topup_tokens", "alice", "500", stdout=out)

        assert LedgerService.get_balance(user) == 500
        assert "Added 500 tokens for alice. New balance: 500." in out.getvalue()

    def test_records_staff_and_description(self, user, staff_user):
        call_command(
            "topup_tokens",
            "alice",
            "100",
            "--staff",
            "admin",
            "--description",
            "Scholarship",
            stdout=StringIO(),
        )

        entry = LedgerEntry.objects.get(user=user)
        assert entry.kind == LedgerEntry.Kind.TOP_UP
        assert entry.created_by == staff_user
        assert entry.description == "Scholarship"

    def test_deducts_tokens(self, user):
        LedgerService.top_up(user, 100)
        out = StringIO()

        call_command("topup_tokens", "alice", "30", "--deduct", stdout=out)

        assert LedgerService.get_balance(user) == 70
        entry = LedgerEntry.objects.get(user=user, kind=LedgerEntry.Kind.DEDUCTION)
        assert entry.amount == -30
        assert entry.description == "Deduction by admin"
        assert "Deducted 30 tokens" in out.getvalue()

    def test_unknown_user(self):
        with pytest.raises(CommandError, match="User 'nobody' does not exist"):
            call_command("topup_tokens", "nobody", "10")

    def test_rejects_non_positive_amount(self, user):
        with pytest.raises(CommandError, match="positive whole number"):
            call_command("topup_tokens", "alice", "0")

        assert not LedgerEntry.objects.exists()
