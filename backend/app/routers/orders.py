"""
Order Workflow API Routes

Submission, listing, status transitions, assignment, change requests and
phase file uploads. Every route acts as the authenticated caller; role
checks happen in the workflow service.
"""
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import get_current_actor
from ..database import get_db
from ..models.db_models import FilePhase, OrderStatus
from ..services.actor import Actor
from ..services.workflow import OrderWorkflowService


router = APIRouter(prefix="/orders", tags=["orders"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class FileRef(BaseModel):
    """A stored file; the locator is opaque to this service."""
    name: str = Field(..., description="Display file name")
    locator: str = Field(default="", description="Storage locator or URL")


class SubmitOrderRequest(BaseModel):
    word_count: int = Field(..., gt=0, description="Number of words")
    deadline: datetime = Field(..., description="Due date/time")
    module_name: Optional[str] = Field(None, description="Course module")
    project_numbers: List[str] = Field(default_factory=list, description="Assignment numbers")
    notes: Optional[str] = Field(None, description="Instructions for the writer")
    files: List[FileRef] = Field(default_factory=list, description="Original files")
    super_worker_id: Optional[str] = Field(None, description="Pre-selected super worker")


class TransitionRequest(BaseModel):
    status: OrderStatus = Field(..., description="Target status")
    expected_version: Optional[int] = Field(None, description="Reject if the order changed since this version")


class AssignRequest(BaseModel):
    user_id: str = Field(..., description="Super worker or worker to assign")
    expected_version: Optional[int] = None


class RequestChangesRequest(BaseModel):
    notes: str = Field(..., description="What needs to change")
    files: List[FileRef] = Field(default_factory=list)
    expected_version: Optional[int] = None


class ProposeChangeRequest(BaseModel):
    notes: str = Field(..., description="Reason for the change")
    new_word_count: Optional[int] = Field(None, gt=0)
    new_deadline: Optional[datetime] = None
    expected_version: Optional[int] = None


class ResolveChangeRequest(BaseModel):
    approve: bool = Field(..., description="Apply the proposal (true) or keep current values (false)")
    expected_version: Optional[int] = None


class UploadFilesRequest(BaseModel):
    phase: FilePhase = Field(..., description="worker_draft, super_worker_review or final_approved")
    files: List[FileRef] = Field(..., min_length=1)
    expected_version: Optional[int] = None


def _files(refs: List[FileRef]) -> List[dict]:
    return [ref.model_dump() for ref in refs]


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("", response_model=dict)
async def submit_order(
    request: SubmitOrderRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Submit a new order. Returns the order and payment instructions."""
    service = OrderWorkflowService(db)
    return service.submit_order(
        actor,
        word_count=request.word_count,
        deadline=request.deadline,
        module_name=request.module_name,
        project_numbers=request.project_numbers,
        notes=request.notes,
        files=_files(request.files),
        super_worker_id=request.super_worker_id,
    )


@router.get("", response_model=List[dict])
async def list_orders(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Orders visible to the caller, latest deadline first."""
    return OrderWorkflowService(db).list_orders(actor)


@router.get("/{order_id}", response_model=dict)
async def get_order(
    order_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return OrderWorkflowService(db).get_order(actor, order_id)


@router.post("/{order_id}/status", response_model=dict)
async def transition_order(
    order_id: str,
    request: TransitionRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Move the order to another status, subject to the caller's role."""
    return OrderWorkflowService(db).transition(actor, order_id, request.status, request.expected_version)


@router.post("/{order_id}/super-worker", response_model=dict)
async def assign_super_worker(
    order_id: str,
    request: AssignRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return OrderWorkflowService(db).assign_super_worker(actor, order_id, request.user_id, request.expected_version)


@router.post("/{order_id}/worker", response_model=dict)
async def assign_worker(
    order_id: str,
    request: AssignRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return OrderWorkflowService(db).assign_worker(actor, order_id, request.user_id, request.expected_version)


@router.post("/{order_id}/change-requests", response_model=dict)
async def request_changes(
    order_id: str,
    request: RequestChangesRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Student asks for changes to delivered or in-flight work."""
    return OrderWorkflowService(db).request_changes(
        actor, order_id, request.notes, _files(request.files), request.expected_version
    )


@router.post("/{order_id}/proposals", response_model=dict)
async def propose_change(
    order_id: str,
    request: ProposeChangeRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Super worker proposes a new word count or deadline."""
    return OrderWorkflowService(db).propose_change(
        actor,
        order_id,
        request.notes,
        new_word_count=request.new_word_count,
        new_deadline=request.new_deadline,
        expected_version=request.expected_version,
    )


@router.post("/{order_id}/proposals/resolve", response_model=dict)
async def resolve_change(
    order_id: str,
    request: ResolveChangeRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return OrderWorkflowService(db).resolve_change(actor, order_id, request.approve, request.expected_version)


@router.post("/{order_id}/files", response_model=dict)
async def upload_files(
    order_id: str,
    request: UploadFilesRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Attach draft, reviewed or final files; the order status follows the phase."""
    return OrderWorkflowService(db).upload_phase_files(
        actor, order_id, request.phase, _files(request.files), request.expected_version
    )
