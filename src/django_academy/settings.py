"""Typed configuration for django-academy.

Reads a single ``DJANGO_ACADEMY`` dict from Django settings and exposes it as
composed, frozen dataclasses with sensible defaults.

Usage::

    from django_academy.settings import get_config

    config = get_config()
    config.checkout.max_cart_items
    config.scheduling.time_slots
    config.conflict_retry_attempts
"""

import functools
from collections.abc import Mapping
from dataclasses import dataclass, field

from django.conf import settings
from django.test.signals import setting_changed

KNOWN_TIME_SLOTS: tuple[str, ...] = ("09:00", "13:00", "17:00")


@dataclass(frozen=True, slots=True)
class CheckoutConfig:
    """Cart and checkout configuration."""

    max_cart_items: int = 50
    order_reference_prefix: str = "ORD"


@dataclass(frozen=True, slots=True)
class SchedulingConfig:
    """Exam seat scheduling configuration."""

    days_ahead: int = 30
    time_slots: tuple[str, ...] = KNOWN_TIME_SLOTS
    default_capacity: int = 20


@dataclass(frozen=True, slots=True)
class AcademyConfig:
    """Top-level django-academy configuration."""

    checkout: CheckoutConfig = field(default_factory=CheckoutConfig)
    scheduling: SchedulingConfig = field(default_factory=SchedulingConfig)
    token_label: str = "tokens"
    conflict_retry_attempts: int = 3
    conflict_retry_backoff_ms: int = 25


@functools.lru_cache(maxsize=1)
def get_config() -> AcademyConfig:
    """Build and return the academy configuration.

    Reads ``settings.DJANGO_ACADEMY`` (a plain dict) and returns a frozen
    :class:`AcademyConfig`.  The result is cached; the cache is cleared
    automatically when Django's ``setting_changed`` signal fires (e.g. inside
    ``override_settings``).
    """
    raw = getattr(settings, "DJANGO_ACADEMY", {})
    if not isinstance(raw, Mapping):
        msg = "DJANGO_ACADEMY must be a mapping (dict-like object)"
        raise TypeError(msg)
    raw_data = dict(raw)

    checkout_data = raw_data.pop("checkout", {})
    scheduling_data = raw_data.pop("scheduling", {})
    if not isinstance(checkout_data, Mapping):
        msg = "DJANGO_ACADEMY['checkout'] must be a mapping (dict-like object)"
        raise TypeError(msg)
    if not isinstance(scheduling_data, Mapping):
        msg = "DJANGO_ACADEMY['scheduling'] must be a mapping (dict-like object)"
        raise TypeError(msg)

    scheduling_data = dict(scheduling_data)
    if "time_slots" in scheduling_data:
        slots = scheduling_data["time_slots"]
        if isinstance(slots, str) or not isinstance(slots, (list, tuple)):
            msg = "DJANGO_ACADEMY['scheduling']['time_slots'] must be a list of time slot strings"
            raise TypeError(msg)
        scheduling_data["time_slots"] = tuple(slots)

    config = AcademyConfig(
        checkout=CheckoutConfig(**dict(checkout_data)),
        scheduling=SchedulingConfig(**scheduling_data),
        **raw_data,
    )
    _validate_academy_config(config)
    return config


def _validate_academy_config(config: AcademyConfig) -> None:
    """Validate high-impact configuration values with clear error messages."""
    if not isinstance(config.conflict_retry_attempts, int) or config.conflict_retry_attempts <= 0:
        msg = "DJANGO_ACADEMY['conflict_retry_attempts'] must be a positive integer"
        raise ValueError(msg)
    if not isinstance(config.conflict_retry_backoff_ms, int) or config.conflict_retry_backoff_ms < 0:
        msg = "DJANGO_ACADEMY['conflict_retry_backoff_ms'] must be a non-negative integer"
        raise ValueError(msg)
    if not isinstance(config.token_label, str) or not config.token_label.strip():
        msg = "DJANGO_ACADEMY['token_label'] must be a non-empty string"
        raise ValueError(msg)
    if not isinstance(config.checkout.max_cart_items, int) or config.checkout.max_cart_items <= 0:
        msg = "DJANGO_ACADEMY['checkout']['max_cart_items'] must be a positive integer"
        raise ValueError(msg)
    prefix = config.checkout.order_reference_prefix
    if not isinstance(prefix, str) or not prefix.strip():
        msg = "DJANGO_ACADEMY['checkout']['order_reference_prefix'] must be a non-empty string"
        raise ValueError(msg)
    if not isinstance(config.scheduling.days_ahead, int) or config.scheduling.days_ahead <= 0:
        msg = "DJANGO_ACADEMY['scheduling']['days_ahead'] must be a positive integer"
        raise ValueError(msg)
    if not isinstance(config.scheduling.default_capacity, int) or config.scheduling.default_capacity <= 0:
        msg = "DJANGO_ACADEMY['scheduling']['default_capacity'] must be a positive integer"
        raise ValueError(msg)
    slots = config.scheduling.time_slots
    unknown = [slot for slot in slots if slot not in KNOWN_TIME_SLOTS]
    if not slots or unknown:
        msg = (
            "DJANGO_ACADEMY['scheduling']['time_slots'] must be a non-empty subset of "
            f"{', '.join(KNOWN_TIME_SLOTS)}"
        )
        raise ValueError(msg)
    if len(set(slots)) != len(slots):
        msg = "DJANGO_ACADEMY['scheduling']['time_slots'] must not contain duplicates"
        raise ValueError(msg)


def _clear_config_cache(*, setting: str, **kwargs: object) -> None:  # noqa: ARG001
    """Clear the cached config when Django settings change during tests."""
    if setting == "DJANGO_ACADEMY":
        get_config.cache_clear()


setting_changed.connect(_clear_config_cache, dispatch_uid="django_academy.settings.clear_config_cache")
