"""Sync service: drives the timeline engine and persists its output."""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from .database import SyncStateRepository, SyncedPaymentRepository
from .timeline import Timeline, TimelineError, PageSource, sync_step

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = int(os.getenv("SYNC_PAGE_SIZE", "100"))

# One lock per provider/account lineage; steps against the same timeline
# must never overlap.
_lineage_locks: Dict[Tuple[str, str], asyncio.Lock] = {}


def get_lineage_lock(provider: str, account_id: str) -> asyncio.Lock:
    """Return the lock serializing sync runs of a lineage."""
    key = (provider, account_id)
    if key not in _lineage_locks:
        _lineage_locks[key] = asyncio.Lock()
    return _lineage_locks[key]


def default_max_steps() -> Optional[int]:
    value = os.getenv("SYNC_MAX_STEPS")
    return int(value) if value else None


@dataclass
class SyncRunSummary:
    """Outcome of one SyncService.run() call."""
    provider: str
    account_id: str
    steps: int = 0
    emitted: int = 0
    stored: int = 0
    has_more: bool = False
    phase: str = ""
    depth: int = 0
    latest_id: Optional[str] = None
    references: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "account_id": self.account_id,
            "steps": self.steps,
            "emitted": self.emitted,
            "stored": self.stored,
            "has_more": self.has_more,
            "phase": self.phase,
            "depth": self.depth,
            "latest_id": self.latest_id,
        }


class SyncService:
    """Runs sync steps for one lineage and persists every step durably."""

    def __init__(self, session: AsyncSession, source: PageSource, account_id: str = "default"):
        """Initialize the service.

        Args:
            session: AsyncSession instance for database operations.
            source: Page source of the provider to sync.
            account_id: Account the lineage belongs to.
        """
        self.session = session
        self.source = source
        self.provider = source.name
        self.account_id = account_id
        self.state_repo = SyncStateRepository(session)
        self.payment_repo = SyncedPaymentRepository(session)

    async def run(
        self,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_steps: Optional[int] = None,
    ) -> SyncRunSummary:
        """Call sync steps until the source has nothing more or max_steps is hit.

        Each step's payments and new timeline are committed before the next
        step starts. On failure the error is recorded on the state row and
        re-raised; the stored timeline stays as it was so a later run retries
        the identical step.

        Args:
            page_size: Maximum records per step.
            max_steps: Optional cap on the number of steps in this run.

        Returns:
            SyncRunSummary describing what the run did.

        Raises:
            ValueError: If page_size or max_steps is invalid.
            TimelineError: If the stored state is corrupt or the source fails.
        """
        if page_size < 1:
            raise ValueError(f"page_size must be at least 1, got {page_size}")
        if max_steps is not None and max_steps < 1:
            raise ValueError(f"max_steps must be at least 1, got {max_steps}")

        summary = SyncRunSummary(provider=self.provider, account_id=self.account_id)
        async with get_lineage_lock(self.provider, self.account_id):
            state = await self.state_repo.get_or_create(self.provider, self.account_id)
            sequence = await self.payment_repo.max_sequence(self.provider, self.account_id)

            while True:
                try:
                    timeline = Timeline.from_json(state.state_json)
                    result = sync_step(timeline, page_size, self.source)
                except TimelineError as e:
                    await self.state_repo.record_error(state, f"{type(e).__name__}: {e}")
                    await self.session.commit()
                    raise

                for record in result.records:
                    sequence += 1
                    stored = await self.payment_repo.add_if_new(
                        self.provider, self.account_id, record, sequence
                    )
                    if stored is None:
                        sequence -= 1
                    else:
                        summary.stored += 1
                    summary.references.append(record.reference)

                await self.state_repo.save_step(state, result.timeline, len(result.records))
                await self.session.commit()

                summary.steps += 1
                summary.emitted += len(result.records)
                summary.has_more = result.has_more
                summary.phase = result.timeline.phase.value
                summary.depth = result.timeline.depth
                summary.latest_id = result.timeline.latest_id

                if not result.has_more:
                    break
                if max_steps is not None and summary.steps >= max_steps:
                    logger.info(
                        f"Sync {self.provider}/{self.account_id} paused after {summary.steps} "
                        f"step(s) in phase {summary.phase} (depth {summary.depth})"
                    )
                    break

        logger.info(
            f"Sync {self.provider}/{self.account_id} ran {summary.steps} step(s), "
            f"emitted {summary.emitted}, stored {summary.stored}"
        )
        return summary

    async def get_progress(self) -> Optional[Dict[str, Any]]:
        """Progress of the lineage, or None if it was never synced."""
        state = await self.state_repo.get(self.provider, self.account_id)
        if state is None:
            return None
        progress = state.to_dict()
        progress["payments_count"] = await self.payment_repo.count_for_lineage(
            self.provider, self.account_id
        )
        return progress
