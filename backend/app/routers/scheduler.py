"""
Scheduler API Routes

Internal endpoints for system-automatic tasks.
Notification outbox retries and cache hygiene.
"""
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, Header
from sqlalchemy.orm import Session

from ..cache import cache
from ..config import INTERNAL_API_KEY
from ..database import get_db
from ..services.notifications import NotificationDispatcher, NotificationOutbox, outbox_summary


router = APIRouter(prefix="/internal", tags=["scheduler"])


# =============================================================================
# INTERNAL API KEY VALIDATION
# =============================================================================

async def verify_internal_key(x_internal_key: str = Header(...)):
    """Verify internal API key for scheduler endpoints."""
    if x_internal_key != INTERNAL_API_KEY:
        raise HTTPException(status_code=403, detail="Invalid internal API key")
    return True


# =============================================================================
# SCHEDULER ENDPOINTS (SYSTEM-ONLY)
# =============================================================================

@router.post("/notifications/retry", response_model=dict)
async def retry_notifications(
    limit: int = 100,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """
    Redeliver pending and failed notifications.

    Rows that reached the attempt limit stay failed for inspection.
    """
    outbox = NotificationOutbox(db, NotificationDispatcher(db))
    result = outbox.retry_failed(limit=limit)
    return {
        "task": "notification_retry",
        "run_date": datetime.now(timezone.utc).isoformat(),
        **result,
    }


@router.post("/cache-sweep", response_model=dict)
async def run_cache_sweep(
    _: bool = Depends(verify_internal_key),
):
    """Drop expired cache entries. Reads already ignore them."""
    removed = cache.cleanup()
    return {
        "task": "cache_sweep",
        "run_date": datetime.now(timezone.utc).isoformat(),
        "removed": removed,
    }


# =============================================================================
# SCHEDULER STATUS ENDPOINTS (READ-ONLY)
# =============================================================================

@router.get("/notifications/outbox", response_model=dict)
async def get_outbox_status(
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    return outbox_summary(db)


@router.get("/cache", response_model=dict)
async def get_cache_stats(
    _: bool = Depends(verify_internal_key),
):
    return cache.stats()
