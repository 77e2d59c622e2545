"""
Reporting API Routes

Operator dashboard (revenue, profit, platform fees and payables) and each
user's own analytics series.
"""
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import get_current_actor, require_operator
from ..database import get_db
from ..services.actor import Actor
from ..services.reporting import operator_dashboard, user_analytics


router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/dashboard", response_model=dict)
async def get_dashboard(
    start: Optional[datetime] = Query(None, description="Only orders created at or after"),
    end: Optional[datetime] = Query(None, description="Only orders created at or before"),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_operator),
):
    return operator_dashboard(db, actor, start=start, end=end)


@router.get("/analytics", response_model=dict)
async def get_analytics(
    start: Optional[datetime] = Query(None, description="Only orders created at or after"),
    end: Optional[datetime] = Query(None, description="Only orders created at or before (default now)"),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Per-day or per-month series for the caller's role."""
    return user_analytics(db, actor, start=start, end=end)
