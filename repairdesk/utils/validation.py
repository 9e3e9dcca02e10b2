from __future__ import annotations
"""Reusable validation helpers for request payloads.

Focuses on the few shapes the services accept (required text, optional text,
ISO dates, enumerations) so every endpoint reports the same ValidationError text.
"""
from datetime import date
from typing import Any, Iterable, Optional
from repairdesk.errors import ValidationError


def validate_status(new_status: str, allowed: Iterable[str], field_name: str = 'status') -> str:
    """Validate that new_status is inside allowed.

    Returns the status (to enable inline usage) or raises ValidationError.
    """
    if new_status not in allowed:
        raise ValidationError(f"{field_name} invalid")
    return new_status


def clean_text(value: Any, field_name: str, max_len: Optional[int] = None) -> Optional[str]:
    """Trim a text value; empty strings become None."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string")
    value = value.strip()
    if max_len is not None and len(value) > max_len:
        raise ValidationError(f"{field_name} longer than {max_len} characters")
    return value or None


def require_text(value: Any, field_name: str, max_len: Optional[int] = None) -> str:
    cleaned = clean_text(value, field_name, max_len)
    if not cleaned:
        raise ValidationError(f"{field_name} required")
    return cleaned


def parse_date(value: Any, field_name: str) -> Optional[date]:
    if value is None or value == '':
        return None
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be an ISO date")
    try:
        # accept full ISO timestamps too, keep only the date part
        return date.fromisoformat(value[:10])
    except ValueError:
        raise ValidationError(f"{field_name} must be an ISO date")


def parse_optional_int(value: Any, field_name: str) -> Optional[int]:
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be int")

__all__ = ['validate_status', 'clean_text', 'require_text', 'parse_date', 'parse_optional_int']
