"""Sync step: turns a newest-first, older-only listing into a forward stream.

A lineage goes through three phases:

* scanning: walk from the newest page back to the beginning of history,
  pushing each "older" cursor on the timeline's stack. Nothing is emitted
  until the oldest page is reached, which is then emitted at once.
* replaying: pop cursors LIFO, re-fetch the pages they address and emit
  them oldest-first.
* tailing: fetch the records immediately newer than the high-water mark.

The newest page of the scan is never re-read through a cursor; once the
stack is drained the tail picks it up, anchored on the last emitted ID.

Every step performs exactly one page source call. Timelines are immutable,
so a failing call leaves the caller holding the untouched input state.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

from ..models import PSPPayment
from .errors import PageSourceContractError
from .models import Phase, Timeline
from .source import NewerPage, Page, PageSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncResult:
    """Output of one sync step."""
    records: List[PSPPayment]
    timeline: Timeline
    has_more: bool


def sync_step(timeline: Timeline, page_size: int, source: PageSource) -> SyncResult:
    """Run one step of the sync for ``timeline``.

    Args:
        timeline: Current resumption state, the zero value for a new lineage.
        page_size: Maximum number of records to emit; may vary between calls.
        source: Provider page source.

    Returns:
        SyncResult with records in ascending creation order, the new
        timeline and whether the caller should call again right away.

    Raises:
        ValueError: If page_size is smaller than 1.
        PageSourceContractError: If the source broke its ordering contract.
        Exception: Any error raised by the page source, unchanged.
    """
    if page_size < 1:
        raise ValueError(f"page_size must be at least 1, got {page_size}")

    phase = timeline.phase
    if phase == Phase.SCANNING:
        return _scan(timeline, page_size, source)
    if phase == Phase.REPLAYING:
        return _replay(timeline, page_size, source)
    return _tail(timeline, page_size, source)


def sync_step_json(
    state: Optional[Union[str, bytes]],
    page_size: int,
    source: PageSource,
) -> Tuple[List[PSPPayment], str, bool]:
    """Run one sync step against a serialized timeline.

    The state is decoded before the page source is called, so a corrupt
    blob raises TimelineStateError without any upstream traffic.
    """
    timeline = Timeline.from_json(state)
    result = sync_step(timeline, page_size, source)
    return result.records, result.timeline.to_json(), result.has_more


def _scan(timeline: Timeline, page_size: int, source: PageSource) -> SyncResult:
    scan_size = timeline.page_size or page_size
    cursor = timeline.cursors[-1] if timeline.cursors else None
    page = source.fetch_older(cursor, scan_size)
    _check_page(page, source)

    if page.has_older:
        if not page.records:
            raise PageSourceContractError(
                "Page source reported older records after an empty page", provider=source.name
            )
        if not page.next_cursor:
            raise PageSourceContractError(
                "Page source reported older records without a cursor", provider=source.name
            )
        new_timeline = timeline.push(page.next_cursor, scan_size)
        logger.debug(f"[{source.name}] backlog scan depth {new_timeline.depth}")
        return SyncResult(records=[], timeline=new_timeline, has_more=True)

    if not page.records:
        if timeline.cursors:
            raise PageSourceContractError(
                "Page source returned an empty oldest page after reporting older records",
                provider=source.name,
            )
        logger.debug(f"[{source.name}] no records upstream yet")
        return SyncResult(records=[], timeline=timeline, has_more=False)

    ascending = list(reversed(page.records))
    emitted = ascending[:page_size]
    new_timeline = timeline.advance(emitted[-1].reference)
    trimmed = len(emitted) < len(ascending)
    if timeline.cursors and not trimmed:
        new_timeline = new_timeline.pop()

    logger.info(
        f"[{source.name}] backlog scan reached the oldest record after "
        f"{timeline.depth + 1} page(s); now {new_timeline.describe()}"
    )
    # The newest page was fetched without a cursor and is still pending
    # whenever the scan took more than one call.
    has_more = bool(timeline.cursors) or trimmed
    return SyncResult(records=emitted, timeline=new_timeline, has_more=has_more)


def _replay(timeline: Timeline, page_size: int, source: PageSource) -> SyncResult:
    scan_size = timeline.page_size or page_size
    page = source.fetch_older(timeline.cursors[-1], scan_size)
    _check_page(page, source)

    ascending = list(reversed(_newer_than(page.records, timeline.latest_id)))
    emitted = ascending[:page_size]
    new_timeline = timeline
    if emitted:
        new_timeline = new_timeline.advance(emitted[-1].reference)
    if len(emitted) == len(ascending):
        new_timeline = new_timeline.pop()
        if new_timeline.phase == Phase.TAILING:
            logger.info(f"[{source.name}] replay finished; now {new_timeline.describe()}")

    return SyncResult(records=emitted, timeline=new_timeline, has_more=True)


def _tail(timeline: Timeline, page_size: int, source: PageSource) -> SyncResult:
    page = source.fetch_newer_than(timeline.latest_id, page_size)
    _check_page(page, source)

    newer = _newer_than(page.records, timeline.latest_id)
    trimmed = len(newer) > page_size
    if trimmed:
        # Keep the oldest records; the rest are picked up by the next step.
        newer = newer[-page_size:]
    ascending = list(reversed(newer))

    new_timeline = timeline
    if ascending:
        new_timeline = timeline.advance(ascending[-1].reference)
    return SyncResult(records=ascending, timeline=new_timeline, has_more=page.has_more or trimmed)


def _newer_than(records: Sequence[PSPPayment], anchor_id: Optional[str]) -> List[PSPPayment]:
    """Records listed before ``anchor_id`` in a newest-first sequence."""
    newer = []
    for record in records:
        if record.reference == anchor_id:
            break
        newer.append(record)
    return newer


def _check_page(page: Union[Page, NewerPage], source: PageSource) -> None:
    previous = None
    for record in page.records:
        if previous is not None and record.created_at > previous.created_at:
            raise PageSourceContractError(
                f"Records out of order: {record.reference} is newer than {previous.reference}",
                provider=source.name,
            )
        previous = record
