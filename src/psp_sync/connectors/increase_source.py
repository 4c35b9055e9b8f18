"""Increase page source backed by the transactions list API."""

import os
import logging
from collections import deque
from typing import Any, Dict, List, Optional

import httpx

from ..models import PSPPayment, PaymentStatus, PaymentType
from ..timeline.errors import PageSourceContractError, PageSourceError
from ..timeline.source import NewerPage, Page, PageSource
from .base import asset_or_none, parse_timestamp, sanitize_payload

logger = logging.getLogger(__name__)

DEFAULT_INCREASE_BASE_URL = "https://api.increase.com"

# Increase caps list pages at 100 objects
INCREASE_MAX_LIMIT = 100

ENDPOINTS = ("transactions", "pending_transactions", "declined_transactions")

# Each listing is its own sync lineage
ENDPOINT_NAMES = {
    "transactions": "increase",
    "pending_transactions": "increase_pending",
    "declined_transactions": "increase_declined",
}

ENDPOINT_STATUS = {
    "transactions": PaymentStatus.SUCCEEDED,
    "pending_transactions": PaymentStatus.PENDING,
    "declined_transactions": PaymentStatus.FAILED,
}


class IncreasePageSource(PageSource):
    """
    Lists Increase transactions newest-first behind an opaque ``cursor``.

    Increase has no "newer than this object" query, so the anchored fetch
    resolves the anchor's creation time, lists everything created on or
    after it and keeps what precedes the anchor in list order.
    """

    name = "increase"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        endpoint: str = "transactions",
        http_client: Optional[httpx.Client] = None,
        timeout: float = 30.0,
    ):
        """Initialize the Increase page source.

        Args:
            api_key: Increase API key. Falls back to INCREASE_API_KEY env var.
            base_url: API endpoint. Falls back to INCREASE_BASE_URL env var.
            endpoint: Which listing to sync; one of ENDPOINTS.
            http_client: Optional preconfigured httpx client (for testing).
            timeout: Request timeout in seconds; a timeout is a retryable error.

        Raises:
            ValueError: If no API key is found or the endpoint is unknown.
        """
        self._api_key = api_key or os.getenv("INCREASE_API_KEY")
        if not self._api_key:
            raise ValueError(
                "INCREASE_API_KEY must be provided either as argument or environment variable"
            )
        if endpoint not in ENDPOINTS:
            raise ValueError(f"Unsupported Increase endpoint: {endpoint}")
        self.endpoint = endpoint
        self.name = ENDPOINT_NAMES[endpoint]
        self._base_url = (base_url or os.getenv("INCREASE_BASE_URL") or DEFAULT_INCREASE_BASE_URL).rstrip("/")
        self._client = http_client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        self._client.close()

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            response = self._client.get(
                f"{self._base_url}/{path}",
                params=params,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.error(f"Increase API returned {status_code} for {path}")
            raise PageSourceError(
                f"Increase API error: {status_code}",
                provider=self.name,
                status_code=status_code,
                retryable=status_code == 429 or status_code >= 500,
            ) from e
        except httpx.TransportError as e:
            logger.error("Failed to connect to Increase API")
            raise PageSourceError("Failed to connect to Increase API", provider=self.name) from e
        except ValueError as e:
            raise PageSourceContractError("Increase API returned invalid JSON", provider=self.name) from e
        if not isinstance(payload, dict):
            raise PageSourceContractError("Increase API returned a non-object response", provider=self.name)
        return payload

    def _list(self, limit: int, cursor: Optional[str] = None, **filters: str) -> Dict[str, Any]:
        params: Dict[str, Any] = {"limit": min(limit, INCREASE_MAX_LIMIT), **filters}
        if cursor:
            params["cursor"] = cursor
        payload = self._get(self.endpoint, params)
        if not isinstance(payload.get("data"), list):
            raise PageSourceContractError("Increase API response has no data list", provider=self.name)
        return payload

    def _convert(self, transaction: Dict[str, Any]) -> PSPPayment:
        """Convert an Increase transaction to a canonical payment."""
        amount = int(transaction.get("amount", 0))
        account_id = transaction.get("account_id") or None
        payment_type = PaymentType.PAYIN if amount >= 0 else PaymentType.PAYOUT
        source = transaction.get("source") or {}
        metadata = {
            "com.increase.spec/category": source.get("category") or "",
            "com.increase.spec/description": transaction.get("description") or "",
            "com.increase.spec/route_type": transaction.get("route_type") or "",
            "com.increase.spec/route_id": transaction.get("route_id") or "",
        }
        return PSPPayment(
            reference=transaction["id"],
            created_at=parse_timestamp(transaction.get("created_at")),
            amount=abs(amount),
            asset=asset_or_none(self.name, transaction["id"], transaction.get("currency")),
            status=ENDPOINT_STATUS[self.endpoint],
            type=payment_type,
            source_account_reference=account_id if payment_type == PaymentType.PAYOUT else None,
            destination_account_reference=account_id if payment_type == PaymentType.PAYIN else None,
            metadata={k: v for k, v in metadata.items() if v},
            raw=sanitize_payload(transaction),
        )

    def _convert_page(self, transactions: List[Dict[str, Any]]) -> List[PSPPayment]:
        try:
            return [self._convert(t) for t in transactions]
        except (KeyError, TypeError, ValueError) as e:
            raise PageSourceContractError(f"Malformed Increase transaction: {e}", provider=self.name) from e

    def fetch_older(self, cursor: Optional[str], limit: int) -> Page:
        payload = self._list(limit, cursor)
        next_cursor = payload.get("next_cursor") or None
        return Page(
            records=self._convert_page(payload["data"]),
            next_cursor=next_cursor,
            has_older=next_cursor is not None,
        )

    def fetch_newer_than(self, anchor_id: str, limit: int) -> NewerPage:
        anchor = self._get(f"{self.endpoint}/{anchor_id}")
        anchor_created_at = anchor.get("created_at")
        if not anchor_created_at:
            raise PageSourceContractError(f"Increase object {anchor_id} has no created_at", provider=self.name)

        # newest-first, so only the last ``limit`` records before the anchor are kept
        newer: deque = deque(maxlen=limit)
        seen = 0
        cursor = None
        while True:
            payload = self._list(INCREASE_MAX_LIMIT, cursor, **{"created_at.on_or_after": anchor_created_at})
            for transaction in payload["data"]:
                if transaction.get("id") == anchor_id:
                    break
                newer.append(transaction)
                seen += 1
            else:
                cursor = payload.get("next_cursor")
                if cursor:
                    continue
                raise PageSourceContractError(
                    f"Anchor {anchor_id} missing from its own creation window", provider=self.name
                )
            break

        logger.debug(f"Found {seen} {self.endpoint} newer than {anchor_id}")
        return NewerPage(records=self._convert_page(list(newer)), has_more=seen > limit)
