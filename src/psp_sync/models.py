"""Canonical payment model shared by all provider connectors."""

import enum
from datetime import datetime
from typing import Optional, Dict, Any

from pydantic import BaseModel, Field


class PaymentStatus(str, enum.Enum):
    """Canonical payment statuses."""
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    CANCELLED = "cancelled"
    FAILED = "failed"
    EXPIRED = "expired"
    REFUNDED = "refunded"
    REFUNDED_FAILURE = "refunded_failure"
    REFUND_REVERSED = "refund_reversed"
    AUTHORISATION = "authorisation"
    CAPTURE = "capture"
    UNKNOWN = "unknown"


class PaymentType(str, enum.Enum):
    """Direction of money movement relative to the connected account."""
    PAYIN = "payin"
    PAYOUT = "payout"
    TRANSFER = "transfer"
    OTHER = "other"


class PSPPayment(BaseModel):
    """A payment as reported by a PSP, normalized to the canonical model."""
    reference: str = Field(..., description="Payment ID at the PSP")
    created_at: datetime = Field(..., description="Creation time at the PSP")
    amount: int = Field(..., description="Amount in minor units of the asset")
    asset: Optional[str] = Field(default=None, description="Currency and precision, e.g. USD/2")
    status: PaymentStatus = Field(default=PaymentStatus.UNKNOWN)
    type: PaymentType = Field(default=PaymentType.OTHER)
    source_account_reference: Optional[str] = None
    destination_account_reference: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    raw: Optional[Dict[str, Any]] = Field(default=None, description="Sanitized provider payload")

    def __repr__(self) -> str:
        return f"<PSPPayment(reference={self.reference}, created_at={self.created_at.isoformat()})>"
