from __future__ import annotations

from typing import Any


# Maximum price: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999


class ValidationError(ValueError):
    """400-level input or business-rule problem. Nothing has been written."""


class AuthenticationError(Exception):
    """No acting user. Raised before any write is attempted."""


class NotFoundError(LookupError):
    """404-level: the referenced sale, product or customer does not exist."""


class PersistenceError(Exception):
    """
    A primary write (sale header, sale items, sale status) failed.

    The surrounding transaction has been rolled back.
    """
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def coerce_int(key: str, value: Any, *, minimum: int | None = None) -> int:
    """
    Strict integer coercion for JSON payload values.

    Rejects booleans, floats, decimals in strings and scientific notation.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if "." in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{key} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{key} must be >= {minimum}")
    return result


def require_int(payload: dict, key: str, *, minimum: int | None = None) -> int:
    if payload.get(key) is None:
        raise ValidationError(f"{key} required")
    return coerce_int(key, payload[key], minimum=minimum)


def optional_int(payload: dict, key: str, *, minimum: int | None = None) -> int | None:
    if payload.get(key) is None:
        return None
    return coerce_int(key, payload[key], minimum=minimum)


def validate_price_cents(price_cents: int, *, field: str = "price_cents") -> int:
    if price_cents < 0:
        raise ValidationError(f"{field} cannot be negative")
    if price_cents > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} exceeds maximum of {MAX_PRICE_CENTS}")
    return price_cents


def require_str(payload: dict, key: str, *, max_length: int = 255) -> str:
    value = payload.get(key)
    if value is None or not str(value).strip():
        raise ValidationError(f"{key} required")
    value = str(value).strip()
    if len(value) > max_length:
        raise ValidationError(f"{key} exceeds {max_length} characters")
    return value
