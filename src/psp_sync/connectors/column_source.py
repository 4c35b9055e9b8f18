"""Column page source backed by the transfers list API."""

import os
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..models import PSPPayment, PaymentStatus, PaymentType
from ..timeline.errors import PageSourceContractError, PageSourceError
from ..timeline.source import NewerPage, Page, PageSource
from .base import asset_or_none, parse_timestamp, sanitize_payload

logger = logging.getLogger(__name__)

DEFAULT_COLUMN_BASE_URL = "https://api.column.com"

# Column caps list pages at 100 objects
COLUMN_MAX_LIMIT = 100

STATUS_MAPPING = {
    **dict.fromkeys(
        [
            "submitted", "pending_submission", "initiated", "pending_deposit",
            "pending_first_return", "pending_reclear", "pending_return",
            "pending_second_return", "pending_stop", "pending_user_initiated_return",
            "scheduled", "pending",
        ],
        PaymentStatus.PENDING,
    ),
    **dict.fromkeys(
        ["completed", "deposited", "recleared", "settled", "accepted"], PaymentStatus.SUCCEEDED
    ),
    **dict.fromkeys(["canceled", "stopped", "blocked"], PaymentStatus.CANCELLED),
    **dict.fromkeys(["failed", "rejected"], PaymentStatus.FAILED),
    **dict.fromkeys(["returned", "user_initiated_returned"], PaymentStatus.REFUNDED),
    **dict.fromkeys(
        ["return_contested", "return_dishonored", "user_initiated_return_dishonored"],
        PaymentStatus.REFUND_REVERSED,
    ),
    **dict.fromkeys(
        ["first_return", "second_return", "user_initiated_return_submitted"],
        PaymentStatus.REFUNDED_FAILURE,
    ),
    **dict.fromkeys(["manual_review", "manual_review_approved"], PaymentStatus.AUTHORISATION),
    "hold": PaymentStatus.CAPTURE,
}

PAYOUT_TYPES = frozenset(["book", "wire", "swift", "realtime", "check_credit", "ach_credit"])


def map_status(status: Optional[str]) -> PaymentStatus:
    return STATUS_MAPPING.get((status or "").lower(), PaymentStatus.UNKNOWN)


def map_type(transfer: Dict[str, Any]) -> PaymentType:
    if transfer.get("is_incoming"):
        return PaymentType.PAYIN
    if transfer.get("type") in PAYOUT_TYPES:
        return PaymentType.PAYOUT
    return PaymentType.TRANSFER


def _account_references(transfer: Dict[str, Any]) -> Dict[str, Optional[str]]:
    sender = transfer.get("sender_internal_account") or {}
    receiver = transfer.get("receiver_internal_account") or {}
    external_source = transfer.get("external_source") or {}
    external_destination = transfer.get("external_destination") or {}

    if transfer.get("type") == "book":
        source, destination = sender.get("bank_account_id"), receiver.get("bank_account_id")
    elif transfer.get("is_incoming"):
        source, destination = external_source.get("counterparty_id"), receiver.get("bank_account_id")
    else:
        source, destination = sender.get("bank_account_id"), external_destination.get("counterparty_id")
    return {
        "source_account_reference": source or None,
        "destination_account_reference": destination or None,
    }


class ColumnPageSource(PageSource):
    """
    Lists Column transfers newest-first. ``starting_after`` walks to older
    pages and ``ending_before`` anchors the tail on the high-water mark.
    """

    name = "column"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
        timeout: float = 30.0,
    ):
        """Initialize the Column page source.

        Args:
            api_key: Column API key. Falls back to COLUMN_API_KEY env var.
            base_url: API endpoint. Falls back to COLUMN_BASE_URL env var.
            http_client: Optional preconfigured httpx client (for testing).
            timeout: Request timeout in seconds; a timeout is a retryable error.

        Raises:
            ValueError: If no API key is provided or found.
        """
        self._api_key = api_key or os.getenv("COLUMN_API_KEY")
        if not self._api_key:
            raise ValueError(
                "COLUMN_API_KEY must be provided either as argument or environment variable"
            )
        self._base_url = (base_url or os.getenv("COLUMN_BASE_URL") or DEFAULT_COLUMN_BASE_URL).rstrip("/")
        self._client = http_client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        self._client.close()

    def _list_transfers(self, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self._client.get(
                f"{self._base_url}/transfers",
                params=params,
                auth=("", self._api_key),
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.error(f"Column API returned {status_code}")
            raise PageSourceError(
                f"Column API error: {status_code}",
                provider=self.name,
                status_code=status_code,
                retryable=status_code == 429 or status_code >= 500,
            ) from e
        except httpx.TransportError as e:
            logger.error("Failed to connect to Column API")
            raise PageSourceError("Failed to connect to Column API", provider=self.name) from e
        except ValueError as e:
            raise PageSourceContractError("Column API returned invalid JSON", provider=self.name) from e
        if not isinstance(payload, dict) or not isinstance(payload.get("transfers"), list):
            raise PageSourceContractError("Column API response has no transfers list", provider=self.name)
        return payload

    def _convert(self, transfer: Dict[str, Any]) -> PSPPayment:
        """Convert a Column transfer to a canonical payment."""
        metadata = {
            "com.column.spec/updated_at": transfer.get("updated_at") or "",
            "com.column.spec/completed_at": transfer.get("completed_at") or "",
            "com.column.spec/type": transfer.get("type") or "",
            "com.column.spec/is_incoming": str(bool(transfer.get("is_incoming"))).lower(),
            "com.column.spec/idempotency_key": transfer.get("idempotency_key") or "",
            "com.column.spec/description": transfer.get("description") or "",
        }
        return PSPPayment(
            reference=transfer["id"],
            created_at=parse_timestamp(transfer.get("created_at")),
            amount=int(transfer.get("amount", 0)),
            asset=asset_or_none(self.name, transfer["id"], transfer.get("currency_code")),
            status=map_status(transfer.get("status")),
            type=map_type(transfer),
            metadata={k: v for k, v in metadata.items() if v},
            raw=sanitize_payload(transfer),
            **_account_references(transfer),
        )

    def _convert_page(self, transfers: List[Dict[str, Any]]) -> List[PSPPayment]:
        try:
            return [self._convert(t) for t in transfers]
        except (KeyError, TypeError, ValueError) as e:
            raise PageSourceContractError(f"Malformed Column transfer: {e}", provider=self.name) from e

    def fetch_older(self, cursor: Optional[str], limit: int) -> Page:
        params: Dict[str, Any] = {"limit": min(limit, COLUMN_MAX_LIMIT)}
        if cursor:
            params["starting_after"] = cursor
        payload = self._list_transfers(params)
        transfers = payload["transfers"]
        records = self._convert_page(transfers)
        has_older = bool(payload.get("has_more"))
        next_cursor = transfers[-1]["id"] if has_older and transfers else None
        return Page(records=records, next_cursor=next_cursor, has_older=has_older)

    def fetch_newer_than(self, anchor_id: str, limit: int) -> NewerPage:
        params = {"limit": min(limit, COLUMN_MAX_LIMIT), "ending_before": anchor_id}
        payload = self._list_transfers(params)
        records = self._convert_page(payload["transfers"])
        return NewerPage(records=records, has_more=bool(payload.get("has_more")))
