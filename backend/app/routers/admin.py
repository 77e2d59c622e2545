"""
Homework Marketplace Engine - Admin Router
Operator console for users and roles.
"""
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import require_operator
from ..database import get_db
from ..models.db_models import UserRole
from ..services.actor import Actor
from ..services.users import UserAdminService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


class RoleChangeRequest(BaseModel):
    role: UserRole = Field(..., description="New role for the user")


@router.get("/users", response_model=List[dict])
async def list_users(
    role: Optional[UserRole] = Query(None, description="Only users holding this role"),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_operator),
):
    return UserAdminService(db).list_users(role)


@router.put("/users/{user_id}/role", response_model=dict)
async def change_role(
    user_id: str,
    request: RoleChangeRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_operator),
):
    """
    Change a user's role.
    Granting super_worker or agent creates that person's default fee rows.
    """
    return UserAdminService(db).change_role(actor, user_id, request.role)
