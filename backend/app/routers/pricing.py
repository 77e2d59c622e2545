"""
Pricing API Routes

Price quotes for the submission form, plus operator maintenance of the
tier tables, fee overrides and agent word tables.
"""
from datetime import datetime
from typing import Dict, List, Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import get_current_actor, require_operator
from ..database import get_db
from ..services.actor import Actor
from ..services.pricing import PricingAdminService
from ..services.workflow import OrderWorkflowService


router = APIRouter(prefix="/pricing", tags=["pricing"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class QuoteRequest(BaseModel):
    word_count: int = Field(..., gt=0)
    deadline: datetime
    agent_id: Optional[str] = Field(None, description="Referring agent whose word table applies")


class PricingConfigRequest(BaseModel):
    word_tiers: Dict[str, float] = Field(..., description="Word threshold -> price")
    deadline_tiers: Dict[str, float] = Field(default_factory=dict, description="Max days -> flat surcharge")
    fees: Dict[str, float] = Field(..., description="Per-500-word fees: agent, super_worker")


class FeeRequest(BaseModel):
    fee_per_500: float = Field(..., ge=0)


class AgentPricingRequest(BaseModel):
    word_tiers: Dict[str, float]


# =============================================================================
# QUOTES
# =============================================================================

@router.post("/quote", response_model=dict)
async def quote(
    request: QuoteRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Price for a prospective order."""
    price = OrderWorkflowService(db).calculate_price(request.word_count, request.deadline, request.agent_id)
    return {"price": price}


# =============================================================================
# OPERATOR MAINTENANCE
# =============================================================================

@router.get("/config", response_model=dict)
async def get_config(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_operator),
):
    return PricingAdminService(db).get_pricing_config()


@router.put("/config", response_model=dict)
async def save_config(
    request: PricingConfigRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_operator),
):
    return PricingAdminService(db).save_pricing_config(actor, request.model_dump())


@router.get("/fees/super-workers", response_model=List[dict])
async def list_super_worker_fees(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_operator),
):
    return PricingAdminService(db).list_super_worker_fees()


@router.put("/fees/super-workers/{super_worker_id}", response_model=dict)
async def set_super_worker_fee(
    super_worker_id: str,
    request: FeeRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_operator),
):
    return PricingAdminService(db).set_super_worker_fee(actor, super_worker_id, request.fee_per_500)


@router.get("/fees/agents", response_model=List[dict])
async def list_agent_fees(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_operator),
):
    return PricingAdminService(db).list_agent_fees()


@router.put("/fees/agents/{agent_id}", response_model=dict)
async def set_agent_fee(
    agent_id: str,
    request: FeeRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_operator),
):
    return PricingAdminService(db).set_agent_fee(actor, agent_id, request.fee_per_500)


@router.get("/agents/{agent_id}", response_model=dict)
async def get_agent_pricing(
    agent_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_operator),
):
    return PricingAdminService(db).get_agent_pricing(agent_id)


@router.put("/agents/{agent_id}", response_model=dict)
async def save_agent_pricing(
    agent_id: str,
    request: AgentPricingRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_operator),
):
    return PricingAdminService(db).save_agent_pricing(actor, agent_id, request.word_tiers)
