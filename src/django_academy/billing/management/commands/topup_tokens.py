"""Management command to credit or debit a user's token wallet."""

from typing import Any

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError, CommandParser

from django_academy.billing.services.ledger import LedgerService


class Command(BaseCommand):
    """Append an administrative top-up or deduction to the token ledger.

    Usage::

        manage.py topup_tokens alice 500
        manage.py topup_tokens alice 500 --staff admin --description "Scholarship"
        manage.py topup_tokens alice 50 --deduct --description "Duplicate top-up"
    """

    help = "Credit (or with --deduct, debit) tokens on a user's ledger."

    def add_arguments(self, parser: CommandParser) -> None:
        """Define the command-line arguments accepted by this command."""
        parser.add_argument("username", help="Username of the account to credit.")
        parser.add_argument("amount", type=int, help="Positive number of tokens.")
        parser.add_argument(
            "--description",
            default="",
            help="Note shown in the user's transaction history.",
        )
        parser.add_argument(
            "--staff",
            default=None,
            help="Username of the staff member recording the entry.",
        )
        parser.add_argument(
            "--deduct",
            action="store_true",
            default=False,
            help="Record a deduction instead of a top-up.",
        )

    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the command."""
        user = self._get_user(options["username"])
        staff_user = self._get_user(options["staff"]) if options["staff"] else None
        amount: int = options["amount"]

        try:
            if options["deduct"]:
                LedgerService.deduct(
                    user,
                    amount,
                    options["description"] or "Deduction by admin",
                    staff_user=staff_user,
                )
            else:
                LedgerService.top_up(
                    user,
                    amount,
                    staff_user=staff_user,
                    description=options["description"],
                )
        except ValidationError as exc:
            raise CommandError("; ".join(exc.messages)) from exc

        verb = "Deducted" if options["deduct"] else "Added"
        balance = LedgerService.get_balance(user)
        self.stdout.write(self.style.SUCCESS(f"{verb} {amount} tokens for {user}. New balance: {balance}."))

    def _get_user(self, username: str) -> Any:
        user_model = get_user_model()
        try:
            return user_model.objects.get(**{user_model.USERNAME_FIELD: username})
        except user_model.DoesNotExist:
            raise CommandError(f"User '{username}' does not exist.") from None
