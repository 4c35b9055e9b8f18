"""Page source contract implemented once per provider."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

from ..models import PSPPayment


@dataclass(frozen=True)
class Page:
    """One page of a backwards walk through history.

    ``records`` are newest-first. ``next_cursor`` fetches the page
    immediately older than this one and is only meaningful when
    ``has_older`` is true.
    """
    records: Sequence[PSPPayment]
    next_cursor: Optional[str] = None
    has_older: bool = False


@dataclass(frozen=True)
class NewerPage:
    """Records immediately newer than an anchor, newest-first."""
    records: Sequence[PSPPayment]
    has_more: bool = False


class PageSource(ABC):
    """
    Narrow capability contract the sync engine drives. Implementations
    must return records in strictly descending creation order and report
    ``has_older``/``has_more`` accurately; the engine's no-gap and
    no-duplicate guarantees depend on it.
    """

    name: str = "unknown"

    @abstractmethod
    def fetch_older(self, cursor: Optional[str], limit: int) -> Page:
        """
        Fetch up to ``limit`` records older than the position ``cursor``
        points at, or the newest records when ``cursor`` is None.
        """
        raise NotImplementedError

    @abstractmethod
    def fetch_newer_than(self, anchor_id: str, limit: int) -> NewerPage:
        """
        Fetch the ``limit`` records immediately newer than ``anchor_id``.
        ``has_more`` is true when even newer records exist beyond them.
        """
        raise NotImplementedError

    def health_check(self) -> dict:
        return {"ok": True, "provider": self.name}
