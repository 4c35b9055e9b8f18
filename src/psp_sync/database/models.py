"""SQLAlchemy models for sync state and synced payment persistence."""

import uuid
import json
from datetime import datetime
from typing import Optional, Dict, Any

from sqlalchemy import (
    BigInteger,
    String,
    Integer,
    DateTime,
    Text,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..timeline.models import Phase


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class SyncState(Base):
    """Persisted timeline blob for one provider/account sync lineage."""
    __tablename__ = "sync_states"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    account_id: Mapped[str] = mapped_column(String(255), nullable=False, default="default")

    # Opaque timeline blob, round-tripped to the sync engine
    state_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    # Denormalized from the blob for progress reporting
    phase: Mapped[str] = mapped_column(String(20), nullable=False, default=Phase.SCANNING.value)
    depth: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    latest_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    steps_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("provider", "account_id", name="uq_sync_states_lineage"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert sync state to a progress dictionary."""
        return {
            "provider": self.provider,
            "account_id": self.account_id,
            "phase": self.phase,
            "depth": self.depth,
            "latest_id": self.latest_id,
            "steps_count": self.steps_count,
            "records_count": self.records_count,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "last_synced_at": self.last_synced_at.isoformat() if self.last_synced_at else None,
        }

    def __repr__(self) -> str:
        return f"<SyncState(provider={self.provider}, account_id={self.account_id}, phase={self.phase})>"


class SyncedPayment(Base):
    """A canonical payment delivered by a sync, deduplicated by identity."""
    __tablename__ = "synced_payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    idempotency_key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    account_id: Mapped[str] = mapped_column(String(255), nullable=False)
    reference: Mapped[str] = mapped_column(String(255), nullable=False)

    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    asset: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    source_account_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    destination_account_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Metadata and raw payload stored as JSON
    metadata_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    raw_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Position in the emitted stream of its lineage
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    psp_created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_synced_payments_lineage", "provider", "account_id", "sequence"),
        Index("ix_synced_payments_reference", "reference"),
    )

    @property
    def metadata_dict(self) -> Dict[str, str]:
        """Get metadata as dictionary."""
        if self.metadata_json:
            return json.loads(self.metadata_json)
        return {}

    @property
    def raw(self) -> Optional[Dict[str, Any]]:
        """Get raw provider payload as dictionary."""
        if self.raw_json:
            return json.loads(self.raw_json)
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert synced payment to dictionary."""
        return {
            "id": self.id,
            "provider": self.provider,
            "account_id": self.account_id,
            "reference": self.reference,
            "amount": self.amount,
            "asset": self.asset,
            "status": self.status,
            "type": self.type,
            "source_account_reference": self.source_account_reference,
            "destination_account_reference": self.destination_account_reference,
            "metadata": self.metadata_dict,
            "sequence": self.sequence,
            "psp_created_at": self.psp_created_at.isoformat() if self.psp_created_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<SyncedPayment(provider={self.provider}, reference={self.reference})>"
