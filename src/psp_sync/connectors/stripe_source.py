"""Stripe page source backed by the PaymentIntents list API."""

import os
import logging
from typing import Any, Dict, List, Optional

import stripe

from ..models import PSPPayment, PaymentStatus, PaymentType
from ..timeline.errors import PageSourceContractError, PageSourceError
from ..timeline.source import NewerPage, Page, PageSource
from .base import asset_or_none, parse_timestamp, sanitize_payload

logger = logging.getLogger(__name__)

# Stripe caps list pages at 100 objects
STRIPE_MAX_LIMIT = 100

STATUS_MAPPING = {
    "requires_payment_method": PaymentStatus.PENDING,
    "requires_confirmation": PaymentStatus.PENDING,
    "requires_action": PaymentStatus.AUTHORISATION,
    "processing": PaymentStatus.PENDING,
    "requires_capture": PaymentStatus.CAPTURE,
    "succeeded": PaymentStatus.SUCCEEDED,
    "canceled": PaymentStatus.CANCELLED,
}


class StripePageSource(PageSource):
    """
    Lists PaymentIntents newest-first. ``starting_after`` walks to older
    pages and ``ending_before`` returns the page immediately newer than an
    object, so both directions anchor on object IDs.
    """

    name = "stripe"

    def __init__(self, api_key: Optional[str] = None):
        """Initialize the Stripe page source.

        Args:
            api_key: Stripe API key. Falls back to STRIPE_API_KEY env var.

        Raises:
            ValueError: If no API key is provided or found.
        """
        self._api_key = api_key or os.getenv("STRIPE_API_KEY")
        if not self._api_key:
            raise ValueError(
                "STRIPE_API_KEY must be provided either as argument or environment variable"
            )

    def _list(self, limit: int, **params: Any) -> Any:
        try:
            return stripe.PaymentIntent.list(
                api_key=self._api_key,
                limit=min(limit, STRIPE_MAX_LIMIT),
                **params,
            )
        except stripe.AuthenticationError as e:
            logger.error("Stripe authentication failed")
            raise PageSourceError(
                "Invalid Stripe API key", provider=self.name, status_code=401, retryable=False
            ) from e
        except stripe.InvalidRequestError as e:
            logger.error(f"Stripe rejected list request: {e}")
            raise PageSourceContractError(f"Stripe rejected list request: {e}", provider=self.name) from e
        except stripe.APIConnectionError as e:
            logger.error("Failed to connect to Stripe API")
            raise PageSourceError("Failed to connect to Stripe API", provider=self.name) from e
        except stripe.StripeError as e:
            logger.error(f"Stripe API error: {type(e).__name__}")
            raise PageSourceError(
                f"Stripe API error: {e}", provider=self.name, status_code=e.http_status
            ) from e

    def _convert(self, payment_intent: Any) -> PSPPayment:
        """Convert a Stripe PaymentIntent to a canonical payment."""
        raw_dict = payment_intent.to_dict() if hasattr(payment_intent, "to_dict") else {}
        metadata = payment_intent.metadata or {}
        return PSPPayment(
            reference=payment_intent.id,
            created_at=parse_timestamp(payment_intent.created),
            amount=payment_intent.amount,
            asset=asset_or_none(self.name, payment_intent.id, payment_intent.currency),
            status=STATUS_MAPPING.get(payment_intent.status, PaymentStatus.UNKNOWN),
            type=PaymentType.PAYIN,
            metadata={str(k): str(v) for k, v in dict(metadata).items()},
            raw=sanitize_payload(raw_dict),
        )

    def _convert_page(self, data: List[Any]) -> List[PSPPayment]:
        try:
            return [self._convert(pi) for pi in data]
        except ValueError as e:
            raise PageSourceContractError(f"Malformed PaymentIntent: {e}", provider=self.name) from e

    def fetch_older(self, cursor: Optional[str], limit: int) -> Page:
        params: Dict[str, Any] = {}
        if cursor:
            params["starting_after"] = cursor
        result = self._list(limit, **params)
        records = self._convert_page(result.data)
        has_older = bool(result.has_more)
        next_cursor = result.data[-1].id if has_older and result.data else None
        logger.debug(f"Fetched {len(records)} PaymentIntents older than {cursor or 'now'}")
        return Page(records=records, next_cursor=next_cursor, has_older=has_older)

    def fetch_newer_than(self, anchor_id: str, limit: int) -> NewerPage:
        result = self._list(limit, ending_before=anchor_id)
        records = self._convert_page(result.data)
        logger.debug(f"Fetched {len(records)} PaymentIntents newer than {anchor_id}")
        return NewerPage(records=records, has_more=bool(result.has_more))
