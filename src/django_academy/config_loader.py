"""TOML loader for catalog bootstrap configuration.

Loads and validates a catalog TOML file (see ``examples/academy.toml``) so
that courses, their exams, and vouchers can be created programmatically.
"""

import datetime
import re
import tomllib
from pathlib import Path
from typing import Any

_REQUIRED_COURSE_FIELDS: set[str] = {"title", "price"}
_REQUIRED_EXAM_FIELDS: set[str] = {"name", "price"}
_REQUIRED_VOUCHER_FIELDS: set[str] = {"code", "type", "value", "expires"}

_VOUCHER_TYPES: set[str] = {"percentage", "fixed", "free"}
_VOUCHER_SCOPES: set[str] = {"all", "courses", "exams"}

_SLUG_RE = re.compile(r"[^\w\s-]")
_WHITESPACE_RE = re.compile(r"[-\s]+")


def _slugify(value: str) -> str:
    """Convert a string to a URL-friendly slug.

    Args:
        value: The string to slugify.

    Returns:
        Lowercase, hyphen-separated slug.
    """
    value = _SLUG_RE.sub("", value.lower())
    return _WHITESPACE_RE.sub("-", value).strip("-")


def _validate_mapping(mapping: object, required: set[str], label: str) -> None:
    """Validate that *mapping* is a dict containing all *required* keys.

    Raises:
        TypeError: If *mapping* is not a dict.
        ValueError: If *mapping* is missing required keys.
    """
    if not isinstance(mapping, dict):
        msg = f"{label} must be a mapping, got {type(mapping).__name__}"
        raise TypeError(msg)
    missing = required - mapping.keys()
    if missing:
        msg = f"{label} is missing required fields: {', '.join(sorted(missing))}"
        raise ValueError(msg)


def _validate_tokens(item: dict[str, Any], key: str, label: str) -> None:
    """Ensure an optional token amount is a non-negative integer."""
    if key not in item:
        return
    value = item[key]
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        msg = f"{label}.{key} must be a non-negative integer, got {value!r}"
        raise ValueError(msg)


def _validate_items(
    items: object,
    label: str,
    required_fields: set[str],
    name_key: str,
    *,
    must_exist: bool = False,
) -> list[dict[str, Any]]:
    """Validate a list of mappings and give each one a unique slug.

    Slugs are derived from ``name_key`` when not given explicitly.

    Returns:
        The validated list (empty when the key was absent and optional).
    """
    if items is None:
        if must_exist:
            msg = f"{label} must be a non-empty list"
            raise ValueError(msg)
        return []

    if not isinstance(items, list) or (must_exist and len(items) == 0):
        msg = f"{label} must be a non-empty list"
        raise ValueError(msg)

    seen: set[str] = set()
    duplicates: set[str] = set()
    for idx, item in enumerate(items):
        item_label = f"{label}[{idx}]"
        _validate_mapping(item, required_fields, item_label)
        _validate_tokens(item, "price", item_label)
        if "slug" not in item:
            item["slug"] = _slugify(item[name_key])
        slug = item["slug"]
        if not isinstance(slug, str) or not slug:
            msg = f"{item_label}.slug must be a non-empty string"
            raise ValueError(msg)
        if slug in seen:
            duplicates.add(slug)
        seen.add(slug)

    if duplicates:
        msg = f"{label} has duplicate slugs: {', '.join(sorted(duplicates))}"
        raise ValueError(msg)
    return items


def _validate_vouchers(vouchers: object) -> list[dict[str, Any]]:
    """Validate the optional ``catalog.vouchers`` list."""
    if vouchers is None:
        return []
    if not isinstance(vouchers, list):
        msg = "catalog.vouchers must be a list"
        raise ValueError(msg)

    seen: set[str] = set()
    for idx, voucher in enumerate(vouchers):
        label = f"catalog.vouchers[{idx}]"
        _validate_mapping(voucher, _REQUIRED_VOUCHER_FIELDS, label)

        code = str(voucher["code"]).strip().upper()
        if not code:
            msg = f"{label}.code must be a non-empty string"
            raise ValueError(msg)
        if code in seen:
            msg = f"catalog.vouchers has duplicate code: {code}"
            raise ValueError(msg)
        seen.add(code)
        voucher["code"] = code

        if voucher["type"] not in _VOUCHER_TYPES:
            msg = f"{label}.type must be one of {', '.join(sorted(_VOUCHER_TYPES))}, got {voucher['type']!r}"
            raise ValueError(msg)
        scope = voucher.setdefault("applies_to", "all")
        if scope not in _VOUCHER_SCOPES:
            msg = f"{label}.applies_to must be one of {', '.join(sorted(_VOUCHER_SCOPES))}, got {scope!r}"
            raise ValueError(msg)
        for key in ("value", "usage_limit", "min_purchase", "max_discount"):
            _validate_tokens(voucher, key, label)
        if voucher["type"] == "percentage" and voucher["value"] > 100:
            msg = f"{label}.value must be at most 100 for percentage vouchers"
            raise ValueError(msg)
        if not isinstance(voucher["expires"], datetime.date):
            msg = f"{label}.expires must be a TOML date or datetime"
            raise ValueError(msg)

    return vouchers


def load_catalog_config(path: str | Path) -> dict[str, Any]:
    """Load and validate a catalog TOML configuration file.

    Args:
        path: Filesystem path to the TOML file.

    Returns:
        The ``catalog`` mapping from the parsed TOML. Every course and exam
        carries a ``slug`` (generated from its title or name when missing),
        every voucher code is upper-cased, and the ``courses`` and
        ``vouchers`` keys are always present.

    Raises:
        FileNotFoundError: If *path* does not exist.
        TypeError: If a table has the wrong type.
        ValueError: If required keys or fields are missing, values are out
            of range, or the file is not valid TOML.
    """
    path = Path(path)
    if not path.exists():
        msg = f"Catalog config file not found: {path}"
        raise FileNotFoundError(msg)

    with path.open("rb") as fh:
        try:
            data: dict[str, Any] = tomllib.load(fh)
        except tomllib.TOMLDecodeError as exc:
            msg = f"Invalid TOML in {path}: {exc}"
            raise ValueError(msg) from exc

    if "catalog" not in data:
        msg = "Missing required [catalog] table in config file"
        raise ValueError(msg)

    catalog = data["catalog"]
    _validate_mapping(catalog, set(), "catalog")

    catalog["courses"] = _validate_items(
        catalog.get("courses"),
        "catalog.courses",
        _REQUIRED_COURSE_FIELDS,
        "title",
        must_exist=True,
    )
    for idx, course in enumerate(catalog["courses"]):
        course["exams"] = _validate_items(
            course.get("exams"),
            f"catalog.courses[{idx}].exams",
            _REQUIRED_EXAM_FIELDS,
            "name",
        )
    catalog["vouchers"] = _validate_vouchers(catalog.get("vouchers"))

    return catalog
