"""Helpers shared by the provider page sources."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .currency import format_asset

logger = logging.getLogger(__name__)

# Fields that should not be included in raw payloads for security
SENSITIVE_FIELDS = frozenset([
    'client_secret',
    'payment_method',
    'source_card',
    'payment_method_details',
    'card',
    'bank_account',
    'account_number',
    'routing_number',
])


def sanitize_payload(raw: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Remove sensitive fields from a provider payload, recursively.

    Args:
        raw: Raw payload dictionary from the provider.

    Returns:
        Sanitized copy of the payload.
    """
    if not raw:
        return {}
    sanitized = {}
    for key, value in raw.items():
        if key in SENSITIVE_FIELDS:
            continue
        if isinstance(value, dict):
            sanitized[key] = sanitize_payload(value)
        else:
            sanitized[key] = value
    return sanitized


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string or a unix timestamp into an aware datetime."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise ValueError(f"Invalid timestamp: {value!r}")


def asset_or_none(provider: str, reference: str, currency: Optional[str]) -> Optional[str]:
    """Canonical asset for ``currency``, or None if it cannot be represented.

    The record is still emitted so that stream order and identity stay
    intact; only its asset is left unset.
    """
    try:
        return format_asset(currency or "")
    except ValueError:
        logger.warning(f"[{provider}] unsupported currency {currency!r} on {reference}")
        return None
