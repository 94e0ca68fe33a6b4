from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

from .errors import ValidationError
from .time_utils import parse_iso_date, utctoday


# Maximum amount: 9,999,999,999.99 (DECIMAL(12, 2) in minor units)
MAX_AMOUNT_CENTS = 999_999_999_999

TITLE_MAX_LENGTH = 200
CATEGORY_MAX_LENGTH = 100
REFERENCE_MAX_LENGTH = 120

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def parse_amount_cents(value: Any, *, field_name: str = "amount") -> int:
    """
    Parse a positive decimal amount ("500", "12.50", 12.5) into integer cents.

    Rejects booleans, non-numeric strings, more than two decimal places,
    zero, negatives and values above MAX_AMOUNT_CENTS.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field_name} is required")

    if isinstance(value, float):
        value = repr(value)

    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field_name} must be a number")

    if not amount.is_finite():
        raise ValidationError(f"{field_name} must be a number")
    if amount <= 0:
        raise ValidationError(f"{field_name} must be greater than 0")
    if amount != amount.quantize(Decimal("0.01")):
        raise ValidationError(f"{field_name} cannot have more than 2 decimal places")

    cents = int(amount * 100)
    if cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field_name} is too large")
    return cents


def format_cents(cents: int | None) -> str | None:
    if cents is None:
        return None
    return str((Decimal(cents) / 100).quantize(Decimal("0.01")))


def parse_expense_date(value: Any, *, today: date | None = None) -> date:
    """Expense date is required and cannot be in the future."""
    if isinstance(value, date):
        parsed = value
    else:
        if value is None or not str(value).strip():
            raise ValidationError("expense_date is required")
        try:
            parsed = parse_iso_date(str(value))
        except ValueError:
            raise ValidationError("expense_date must be an ISO date (YYYY-MM-DD)")

    if parsed > (today or utctoday()):
        raise ValidationError("expense_date cannot be in the future")
    return parsed


def require_text(value: Any, field_name: str, *, min_length: int = 1, max_length: int | None = None) -> str:
    text = "" if value is None else str(value).strip()
    if not text:
        raise ValidationError(f"{field_name} is required")
    if len(text) < min_length:
        raise ValidationError(f"{field_name} must be at least {min_length} characters")
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{field_name} exceeds max length {max_length}")
    return text


def optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_email(value: Any) -> str:
    email = require_text(value, "email", max_length=255).lower()
    if not _EMAIL_RE.match(email):
        raise ValidationError("Invalid email address")
    return email


def parse_review_action(value: Any) -> str:
    action = "" if value is None else str(value).strip().lower()
    if action not in ("approve", "reject"):
        raise ValidationError("action must be 'approve' or 'reject'")
    return action


# =============================================================================
# PAYLOAD POLICIES
# =============================================================================

@dataclass(frozen=True)
class FieldPolicy:
    """
    Central policy layer:
    - parsers: what clients are allowed to set (security boundary), and how
    - required_on_create: fields required for POST
    """
    parsers: dict[str, Callable[[Any], Any]]
    required_on_create: frozenset[str] = field(default_factory=frozenset)


EXPENSE_FIELDS = FieldPolicy(
    parsers={
        "title": lambda v: require_text(v, "title", max_length=TITLE_MAX_LENGTH),
        "description": optional_text,
        "amount": lambda v: parse_amount_cents(v),
        "category": lambda v: require_text(v, "category", max_length=CATEGORY_MAX_LENGTH),
        "expense_date": parse_expense_date,
    },
    required_on_create=frozenset({"title", "amount", "category", "expense_date"}),
)

PROFILE_FIELDS = FieldPolicy(
    parsers={
        "full_name": lambda v: require_text(v, "full_name", min_length=2, max_length=200),
        "phone": optional_text,
        "department": optional_text,
    },
)


def validate_payload(payload: Any, policy: FieldPolicy, *, partial: bool) -> dict:
    """
    Validates + normalizes incoming JSON against a FieldPolicy.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)

    Unknown keys (status, user_id, approval fields...) are rejected rather
    than ignored so a client cannot smuggle a transition through an edit.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    for key in payload:
        if key not in policy.parsers:
            raise ValidationError(f"Field not allowed: {key}")

    if not partial:
        missing = sorted(k for k in policy.required_on_create if k not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    return {key: policy.parsers[key](raw) for key, raw in payload.items()}
