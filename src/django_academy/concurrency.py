"""Bounded retry for database work that can lose a write race.

Contended counters (exam seats, voucher usage) are only ever changed with
conditional ``UPDATE`` statements, so lost updates cannot happen. What can
happen under load is a lock timeout or serialization failure, which Django
surfaces as :class:`django.db.OperationalError`. Those are retried a
configured number of times and then reported as
:class:`~django_academy.exceptions.ConcurrencyConflict`. Any other database
error is wrapped in :class:`~django_academy.exceptions.StorageError`.
"""

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from django.db import DatabaseError, OperationalError

from django_academy.exceptions import ConcurrencyConflict, StorageError
from django_academy.settings import get_config

logger = logging.getLogger(__name__)

R = TypeVar("R")


def run_with_conflict_retry(operation: str, func: Callable[[], R]) -> R:
    """Call ``func`` and retry it on transient lock or serialization errors.

    ``func`` must open its own ``transaction.atomic()`` block so that each
    attempt starts from a clean state.

    Args:
        operation: Short label used in log messages and the conflict error.
        func: Zero-argument callable performing the atomic unit of work.

    Returns:
        Whatever ``func`` returns on the first successful attempt.

    Raises:
        ConcurrencyConflict: If every attempt failed with ``OperationalError``.
        StorageError: If any attempt failed with another database error.
    """
    config = get_config()
    attempts = config.conflict_retry_attempts
    last_error: OperationalError | None = None

    for attempt in range(1, attempts + 1):
        try:
            return func()
        except OperationalError as exc:
            last_error = exc
            logger.warning(
                "%s lost a write race (attempt %d/%d): %s",
                operation,
                attempt,
                attempts,
                exc,
            )
            if attempt < attempts and config.conflict_retry_backoff_ms:
                time.sleep(config.conflict_retry_backoff_ms * attempt / 1000)
        except DatabaseError as exc:
            logger.exception("%s failed with a storage error", operation)
            raise StorageError(str(exc)) from exc

    msg = f"{operation} could not be completed because of concurrent updates. Please try again."
    raise ConcurrencyConflict(msg) from last_error

