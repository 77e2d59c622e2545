"""
Fee Resolver

Per-individual fee overrides with fallback to the global fee table.
"""
from typing import Optional

from sqlalchemy.orm import Session

from ...models.db_models import AgentFeeDB, SuperWorkerFeeDB
from .tier_tables import PricingConfig


class FeeResolver:
    """Looks up override rows; absent row means the global rate applies."""

    def __init__(self, db: Session, config: PricingConfig):
        self.db = db
        self.config = config

    def fulfiller_fee(self, super_worker_id: Optional[str]) -> float:
        """Per-500-words fee for a super worker."""
        if super_worker_id:
            row = self.db.query(SuperWorkerFeeDB).filter(
                SuperWorkerFeeDB.super_worker_id == super_worker_id
            ).first()
            if row is not None:
                return float(row.fee_per_500)
        return self.config.fees.super_worker

    def agent_fee(self, agent_id: Optional[str]) -> float:
        """Per-500-words commission for an agent."""
        if agent_id:
            row = self.db.query(AgentFeeDB).filter(AgentFeeDB.agent_id == agent_id).first()
            if row is not None:
                return float(row.fee_per_500)
        return self.config.fees.agent
