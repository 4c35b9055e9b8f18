"""Resumable incremental sync over newest-first PSP listing APIs.

Features:
- Backlog scan from the newest record back to the beginning of history
- Forward replay of the scanned history through a persisted cursor stack
- Steady-state tailing anchored on the newest synchronized record
- JSON state blobs that survive process restarts
"""

from .errors import (
    TimelineError,
    PageSourceError,
    PageSourceContractError,
    TimelineStateError,
)
from .models import Phase, Timeline
from .source import Page, NewerPage, PageSource
from .engine import SyncResult, sync_step, sync_step_json

__all__ = [
    # Errors
    "TimelineError",
    "PageSourceError",
    "PageSourceContractError",
    "TimelineStateError",
    # State
    "Phase",
    "Timeline",
    # Page source contract
    "Page",
    "NewerPage",
    "PageSource",
    # Engine
    "SyncResult",
    "sync_step",
    "sync_step_json",
]
