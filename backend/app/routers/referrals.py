"""
Homework Marketplace Engine - Referral Router
Sign-up by reference code, and operator management of the codes.
"""
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import create_access_token, require_operator
from ..database import get_db
from ..models.db_models import UserRole
from ..services.actor import Actor
from ..services.referrals import ReferenceCodeService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/referrals", tags=["referrals"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class RegisterRequest(BaseModel):
    reference_code: str = Field(..., description="Code handed out by an agent, super worker or the operator")
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    user_id: Optional[str] = Field(None, description="Identity provider subject id, generated when omitted")


class RegisterResponse(BaseModel):
    user: dict
    access_token: str
    token_type: str = "bearer"


class CreateCodeRequest(BaseModel):
    code: str = Field(..., description="4-32 letters or digits; stored upper-case")
    role: UserRole = Field(..., description="Role granted on sign-up")
    owner_id: Optional[str] = Field(None, description="Referrer recorded on users who sign up with this code")


class RenameCodeRequest(BaseModel):
    new_code: str


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/register", response_model=RegisterResponse)
async def register(request: RegisterRequest, db: Session = Depends(get_db)):
    """Create an account from a reference code and return a bearer token for it."""
    user = ReferenceCodeService(db).register_user(
        request.reference_code, request.name, request.email, user_id=request.user_id
    )
    return RegisterResponse(user=user, access_token=create_access_token(user["id"], user["role"]))


@router.get("/codes", response_model=List[dict])
async def list_codes(db: Session = Depends(get_db), actor: Actor = Depends(require_operator)):
    return ReferenceCodeService(db).list_codes(actor)


@router.post("/codes", response_model=dict)
async def create_code(
    request: CreateCodeRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_operator),
):
    return ReferenceCodeService(db).create_code(actor, request.code, request.role, request.owner_id)


@router.put("/codes/{code}", response_model=dict)
async def rename_code(
    code: str,
    request: RenameCodeRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_operator),
):
    return ReferenceCodeService(db).update_code(actor, code, request.new_code)
