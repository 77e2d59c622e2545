"""
Notification API Routes

Inbox (own rows plus the caller's role inbox), operator broadcasts and
template customization.
"""
from typing import Dict, List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import get_current_actor, require_operator
from ..database import get_db
from ..models.db_models import UserRole
from ..services.actor import Actor
from ..services.notifications import NotificationDispatcher


router = APIRouter(prefix="/notifications", tags=["notifications"])


class BroadcastRequest(BaseModel):
    """Exactly one of target_role / target_user_id."""
    message: str = Field(..., description="Free-text message")
    target_role: Optional[UserRole] = Field(None, description="Send to every holder of this role")
    target_user_id: Optional[str] = Field(None, description="Send to one user")


class TemplateUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    template: str = Field(..., description="Message text with {variable} placeholders")
    variables: Optional[List[str]] = None


# =============================================================================
# INBOX
# =============================================================================

@router.get("", response_model=List[dict])
async def list_notifications(
    unread_only: bool = Query(False),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return NotificationDispatcher(db).list_for_user(actor, unread_only=unread_only)


@router.post("/{notification_id}/read", response_model=dict)
async def mark_read(
    notification_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return NotificationDispatcher(db).mark_read(actor, notification_id)


@router.post("/read-all", response_model=dict)
async def mark_all_read(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    updated = NotificationDispatcher(db).mark_all_read(actor)
    return {"updated": updated}


# =============================================================================
# OPERATOR
# =============================================================================

@router.post("/broadcast", response_model=dict)
async def broadcast(
    request: BroadcastRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_operator),
):
    sent = NotificationDispatcher(db).broadcast(
        actor, request.message, target_role=request.target_role, target_user_id=request.target_user_id
    )
    return {"sent": sent}


@router.get("/templates", response_model=Dict[str, dict])
async def get_templates(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_operator),
):
    templates = NotificationDispatcher(db).templates.get_templates()
    return {key: t.to_dict() for key, t in templates.items()}


@router.put("/templates", response_model=Dict[str, dict])
async def save_templates(
    request: Dict[str, TemplateUpdate],
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_operator),
):
    """Replace all customized templates with this set."""
    store = NotificationDispatcher(db).templates
    saved = store.save_templates(actor, {key: t.model_dump() for key, t in request.items()})
    return {key: t.to_dict() for key, t in saved.items()}
