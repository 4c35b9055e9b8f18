"""Repository layer for sync state and synced payment persistence."""

import hashlib
import json
import logging
from datetime import datetime
from typing import Optional, List

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import PSPPayment
from ..timeline.models import Timeline
from .models import SyncState, SyncedPayment

logger = logging.getLogger(__name__)


class SyncStateRepository:
    """Repository for per-lineage timeline state."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def get(self, provider: str, account_id: str) -> Optional[SyncState]:
        """Get the sync state of a lineage.

        Returns:
            SyncState instance if the lineage was ever synced, None otherwise.
        """
        result = await self.session.execute(
            select(SyncState).where(
                SyncState.provider == provider,
                SyncState.account_id == account_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_or_create(self, provider: str, account_id: str) -> SyncState:
        """Get the sync state of a lineage, creating a fresh one if needed."""
        state = await self.get(provider, account_id)
        if state is not None:
            return state

        state = SyncState(
            provider=provider,
            account_id=account_id,
            state_json=Timeline().to_json(),
            phase=Timeline().phase.value,
            depth=0,
            steps_count=0,
            records_count=0,
        )
        self.session.add(state)
        await self.session.flush()
        logger.info(f"Created sync state for {provider}/{account_id}")
        return state

    async def save_step(
        self,
        state: SyncState,
        timeline: Timeline,
        records_count: int,
    ) -> SyncState:
        """Store the timeline produced by a successful sync step.

        Args:
            state: SyncState instance to update.
            timeline: New timeline returned by the step.
            records_count: Number of records the step emitted.

        Returns:
            Updated SyncState instance.
        """
        state.state_json = timeline.to_json()
        state.phase = timeline.phase.value
        state.depth = timeline.depth
        state.latest_id = timeline.latest_id
        state.steps_count += 1
        state.records_count += records_count
        state.last_error = None
        state.last_synced_at = datetime.utcnow()
        state.updated_at = datetime.utcnow()
        await self.session.flush()
        return state

    async def record_error(self, state: SyncState, message: str) -> SyncState:
        """Record a failed step; the timeline blob is left as it was."""
        state.last_error = message
        state.updated_at = datetime.utcnow()
        await self.session.flush()
        logger.warning(f"Sync {state.provider}/{state.account_id} failed: {message}")
        return state

    async def list_all(self, provider: Optional[str] = None) -> List[SyncState]:
        """List sync states, optionally filtered by provider."""
        query = select(SyncState).order_by(SyncState.provider, SyncState.account_id)
        if provider:
            query = query.where(SyncState.provider == provider)
        result = await self.session.execute(query)
        return list(result.scalars().all())


class SyncedPaymentRepository:
    """Repository for payments delivered by syncs."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    @staticmethod
    def idempotency_key_for(provider: str, account_id: str, reference: str) -> str:
        """Derive the idempotency key of a payment from its identity."""
        return hashlib.sha256(f"{provider}:{account_id}:{reference}".encode()).hexdigest()

    async def get_by_idempotency_key(self, key: str) -> Optional[SyncedPayment]:
        result = await self.session.execute(
            select(SyncedPayment).where(SyncedPayment.idempotency_key == key)
        )
        return result.scalar_one_or_none()

    async def max_sequence(self, provider: str, account_id: str) -> int:
        """Highest stream position stored for a lineage, 0 if none."""
        result = await self.session.execute(
            select(func.max(SyncedPayment.sequence)).where(
                SyncedPayment.provider == provider,
                SyncedPayment.account_id == account_id,
            )
        )
        return result.scalar_one_or_none() or 0

    async def add_if_new(
        self,
        provider: str,
        account_id: str,
        payment: PSPPayment,
        sequence: int,
    ) -> Optional[SyncedPayment]:
        """Store a payment unless one with the same identity exists.

        Returns:
            The new SyncedPayment, or None if it was already delivered.
        """
        key = self.idempotency_key_for(provider, account_id, payment.reference)
        if await self.get_by_idempotency_key(key) is not None:
            logger.info(f"Skipping already delivered payment {payment.reference}")
            return None

        synced = SyncedPayment(
            idempotency_key=key,
            provider=provider,
            account_id=account_id,
            reference=payment.reference,
            amount=payment.amount,
            asset=payment.asset,
            status=payment.status.value,
            type=payment.type.value,
            source_account_reference=payment.source_account_reference,
            destination_account_reference=payment.destination_account_reference,
            metadata_json=json.dumps(payment.metadata) if payment.metadata else None,
            raw_json=json.dumps(payment.raw, default=str) if payment.raw else None,
            sequence=sequence,
            psp_created_at=payment.created_at,
        )
        self.session.add(synced)
        await self.session.flush()
        return synced

    async def list_for_lineage(
        self,
        provider: str,
        account_id: str,
        limit: int = 100,
        offset: int = 0,
    ) -> List[SyncedPayment]:
        """List delivered payments of a lineage in emission order."""
        result = await self.session.execute(
            select(SyncedPayment)
            .where(
                SyncedPayment.provider == provider,
                SyncedPayment.account_id == account_id,
            )
            .order_by(SyncedPayment.sequence.asc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def count_for_lineage(self, provider: str, account_id: str) -> int:
        result = await self.session.execute(
            select(func.count(SyncedPayment.id)).where(
                SyncedPayment.provider == provider,
                SyncedPayment.account_id == account_id,
            )
        )
        return result.scalar_one()
