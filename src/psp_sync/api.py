"""HTTP API for running and inspecting PSP syncs."""

import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from pydantic import BaseModel, Field
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import SYNC_RUN_RATE_LIMIT, limiter, verify_api_key
from .connectors import get_page_source
from .database import SyncedPaymentRepository, close_db, get_db, init_db
from .services import DEFAULT_PAGE_SIZE, SyncService, default_max_steps
from .timeline import PageSource, PageSourceContractError, PageSourceError, TimelineStateError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield
    await close_db()


app = FastAPI(title="PSP Sync API", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Page sources are kept for the life of the process; their HTTP clients
# are reused across runs.
_page_sources: Dict[str, PageSource] = {}


def provide_page_source(provider: str) -> PageSource:
    """Resolve the page source named in the path."""
    provider = provider.lower()
    if provider not in _page_sources:
        try:
            _page_sources[provider] = get_page_source(provider)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    return _page_sources[provider]


class RunSyncBody(BaseModel):
    """Request body for a sync run."""
    account_id: str = Field(default="default", min_length=1, max_length=255)
    page_size: int = Field(default=DEFAULT_PAGE_SIZE, ge=1, le=1000)
    max_steps: Optional[int] = Field(default=None, ge=1)


class RunSyncResponse(BaseModel):
    """Summary of a sync run."""
    provider: str
    account_id: str
    steps: int
    emitted: int
    stored: int
    has_more: bool
    phase: str
    depth: int
    latest_id: Optional[str] = None


@app.get("/health")
async def health():
    return {"ok": True}


@app.post("/sync/{provider}/run", response_model=RunSyncResponse)
@limiter.limit(SYNC_RUN_RATE_LIMIT)
async def run_sync(
    request: Request,
    provider: str,
    body: RunSyncBody,
    db: AsyncSession = Depends(get_db),
    source: PageSource = Depends(provide_page_source),
    api_key: str = Depends(verify_api_key),
):
    """
    Run sync steps for a provider/account lineage.

    Steps are repeated while the engine reports more data, up to max_steps.
    A run that stops with has_more=true (still scanning a deep history, for
    example) should simply be triggered again.
    """
    service = SyncService(db, source, account_id=body.account_id)
    max_steps = body.max_steps if body.max_steps is not None else default_max_steps()
    try:
        summary = await service.run(page_size=body.page_size, max_steps=max_steps)
    except PageSourceError as e:
        raise HTTPException(
            status_code=502,
            detail={"error": str(e), "provider": source.name, "retryable": e.retryable},
        )
    except PageSourceContractError as e:
        logger.error(f"Page source contract violation for {source.name}: {e}")
        raise HTTPException(
            status_code=500,
            detail={"error": str(e), "provider": source.name, "retryable": False},
        )
    except TimelineStateError as e:
        logger.error(f"Corrupt sync state for {source.name}/{body.account_id}: {e}")
        raise HTTPException(
            status_code=500,
            detail={"error": str(e), "provider": source.name, "retryable": False},
        )
    return RunSyncResponse(**summary.to_dict())


@app.get("/sync/{provider}/{account_id}")
async def get_sync_progress(
    provider: str,
    account_id: str,
    db: AsyncSession = Depends(get_db),
    source: PageSource = Depends(provide_page_source),
    api_key: str = Depends(verify_api_key),
):
    """Phase, cursor stack depth and counters of a lineage."""
    progress = await SyncService(db, source, account_id=account_id).get_progress()
    if progress is None:
        raise HTTPException(status_code=404, detail="Sync state not found")
    return progress


@app.get("/sync/{provider}/{account_id}/payments")
async def list_synced_payments(
    provider: str,
    account_id: str,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
    source: PageSource = Depends(provide_page_source),
    api_key: str = Depends(verify_api_key),
):
    """Payments delivered for a lineage, in emission order."""
    repo = SyncedPaymentRepository(db)
    payments = await repo.list_for_lineage(source.name, account_id, limit=limit, offset=offset)
    return {
        "payments": [p.to_dict() for p in payments],
        "count": len(payments),
        "offset": offset,
    }
