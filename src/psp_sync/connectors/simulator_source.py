"""Simulator page source for exercising syncs without real PSP calls."""

import uuid
import time
import random
import logging
from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from ..models import PSPPayment, PaymentStatus, PaymentType
from .currency import format_asset
from ..timeline.errors import PageSourceError
from ..timeline.source import NewerPage, Page, PageSource

logger = logging.getLogger(__name__)

SIMULATOR_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


@dataclass
class SimulatorConfig:
    """Configuration for simulator behavior."""
    delay_ms: int = 0  # Simulated response delay in ms
    failure_rate: float = 0.0  # Rate of transport errors, 0.0 to 1.0
    seed: Optional[int] = None  # Random seed for reproducibility


class SimulatorPageSource(PageSource):
    """
    In-memory upstream that lists payments newest-first behind Stripe-style
    cursors: the cursor for the next older page is the ID of the last record
    on the current one.

    Features:
    - Records can be added at any time to simulate new upstream activity
    - Deterministic failure injection with fail_next()
    - Random transport failures and response delays from SimulatorConfig
    - Call log for asserting which requests a sync made
    """

    name = "simulator"

    def __init__(self, config: Optional[SimulatorConfig] = None):
        """Initialize the simulator with optional configuration."""
        self.config = config or SimulatorConfig()
        self._payments: List[PSPPayment] = []  # oldest first
        self._failures: List[Exception] = []
        self._rng = random.Random(self.config.seed)
        self.calls: List[Tuple[str, Optional[str], int]] = []
        logger.info("SimulatorPageSource initialized")

    def add_payment(
        self,
        reference: Optional[str] = None,
        created_at: Optional[datetime] = None,
        amount: int = 1000,
        currency: str = "USD",
        **fields: Any,
    ) -> PSPPayment:
        """Append a payment that is newer than (or as new as) every existing one."""
        if created_at is None:
            if self._payments:
                created_at = self._payments[-1].created_at + timedelta(seconds=1)
            else:
                created_at = SIMULATOR_EPOCH
        if self._payments and created_at < self._payments[-1].created_at:
            raise ValueError("Simulated payments must be added in creation order")
        payment = PSPPayment(
            reference=reference or f"sim_{uuid.uuid4().hex[:24]}",
            created_at=created_at,
            amount=amount,
            asset=format_asset(currency),
            status=fields.pop("status", PaymentStatus.SUCCEEDED),
            type=fields.pop("type", PaymentType.PAYIN),
            raw={"simulator": True},
            **fields,
        )
        self._payments.append(payment)
        return payment

    def add_payments(self, count: int, prefix: str = "sim_") -> List[PSPPayment]:
        """Append ``count`` payments with sequential references."""
        start = len(self._payments) + 1
        return [self.add_payment(reference=f"{prefix}{i}") for i in range(start, start + count)]

    def fail_next(self, error: Optional[Exception] = None) -> None:
        """Make the next page request raise ``error``."""
        self._failures.append(error or PageSourceError("Simulated transport error", provider=self.name))

    def _apply_delay(self) -> None:
        if self.config.delay_ms > 0:
            time.sleep(self.config.delay_ms / 1000.0)

    def _before_request(self) -> None:
        self._apply_delay()
        if self._failures:
            raise self._failures.pop(0)
        if self._rng.random() < self.config.failure_rate:
            raise PageSourceError("Simulated transport error", provider=self.name)

    def _index_of(self, reference: str) -> int:
        for i, payment in enumerate(self._payments):
            if payment.reference == reference:
                return i
        raise PageSourceError(
            f"No such payment: {reference}", provider=self.name, status_code=404, retryable=False
        )

    def fetch_older(self, cursor: Optional[str], limit: int) -> Page:
        self.calls.append(("older", cursor, limit))
        self._before_request()
        end = self._index_of(cursor) if cursor else len(self._payments)
        start = max(0, end - limit)
        records = list(reversed(self._payments[start:end]))
        has_older = start > 0
        return Page(
            records=records,
            next_cursor=records[-1].reference if has_older else None,
            has_older=has_older,
        )

    def fetch_newer_than(self, anchor_id: str, limit: int) -> NewerPage:
        self.calls.append(("newer", anchor_id, limit))
        self._before_request()
        start = self._index_of(anchor_id) + 1
        end = min(len(self._payments), start + limit)
        return NewerPage(
            records=list(reversed(self._payments[start:end])),
            has_more=end < len(self._payments),
        )

    @property
    def payments(self) -> List[PSPPayment]:
        """All payments, oldest first (for testing)."""
        return list(self._payments)

    def clear(self) -> None:
        """Remove all payments, failures and logged calls (for test cleanup)."""
        self._payments.clear()
        self._failures.clear()
        self.calls.clear()

    def health_check(self) -> Dict[str, Any]:
        """Return health status of the simulator."""
        return {
            "ok": True,
            "provider": self.name,
            "payment_count": len(self._payments),
            "config": {
                "delay_ms": self.config.delay_ms,
                "failure_rate": self.config.failure_rate,
            },
        }
