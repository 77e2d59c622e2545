"""
Pricing Administration

Operator-only maintenance of the global tier tables, fee overrides and
agent word-table overrides. Every write invalidates the cached tables.
In-flight price calculations may observe either the old or new values.
"""
from typing import Any, Dict, List, Mapping
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...cache import CacheKeys, ReadThroughCache, cache as default_cache
from ...models.db_models import (
    AgentFeeDB, AgentPricingDB, PricingConfigDB, SuperWorkerFeeDB, UserDB, UserRole
)
from ..actor import Actor, require_operator
from ..errors import NotFound, PersistenceError, ValidationError
from .service import MAIN_CONFIG_ID, PricingService
from .tier_tables import PricingConfig, TierTable


logger = logging.getLogger(__name__)


def _validate_fee(fee) -> float:
    try:
        value = float(fee)
    except (TypeError, ValueError):
        raise ValidationError(f"fee must be a number (got {fee!r})")
    if value < 0:
        raise ValidationError("fee must not be negative")
    return value


class PricingAdminService:
    """Maintenance operations for pricing tables and fee overrides."""

    def __init__(self, db: Session, cache: ReadThroughCache = None):
        self.db = db
        self.cache = cache or default_cache
        self.pricing = PricingService(db, self.cache)

    # =========================================================================
    # GLOBAL CONFIGURATION
    # =========================================================================

    def get_pricing_config(self) -> Dict[str, Any]:
        return self.pricing.config().to_dict()

    def save_pricing_config(self, actor: Actor, data: Mapping[str, Any]) -> Dict[str, Any]:
        require_operator(actor, "edit pricing")
        config = PricingConfig.from_dict(data)

        row = self.db.query(PricingConfigDB).filter(PricingConfigDB.id == MAIN_CONFIG_ID).first()
        if row is None:
            row = PricingConfigDB(id=MAIN_CONFIG_ID, config=config.to_dict())
            self.db.add(row)
        else:
            row.config = config.to_dict()
        self._commit("save pricing config")

        self.cache.delete(CacheKeys.pricing_config())
        logger.info(f"Pricing configuration updated by {actor.id}")
        return config.to_dict()

    # =========================================================================
    # FEE OVERRIDES
    # =========================================================================

    def set_super_worker_fee(self, actor: Actor, super_worker_id: str, fee) -> Dict[str, Any]:
        require_operator(actor, "edit super worker fees")
        fee = _validate_fee(fee)
        self._require_role(super_worker_id, UserRole.SUPER_WORKER)

        row = self.db.query(SuperWorkerFeeDB).filter(SuperWorkerFeeDB.super_worker_id == super_worker_id).first()
        if row is None:
            self.db.add(SuperWorkerFeeDB(super_worker_id=super_worker_id, fee_per_500=fee))
        else:
            row.fee_per_500 = fee
        self._commit("set super worker fee")
        return {"super_worker_id": super_worker_id, "fee_per_500": fee}

    def set_agent_fee(self, actor: Actor, agent_id: str, fee) -> Dict[str, Any]:
        require_operator(actor, "edit agent fees")
        fee = _validate_fee(fee)
        self._require_role(agent_id, UserRole.AGENT)

        row = self.db.query(AgentFeeDB).filter(AgentFeeDB.agent_id == agent_id).first()
        if row is None:
            self.db.add(AgentFeeDB(agent_id=agent_id, fee_per_500=fee))
        else:
            row.fee_per_500 = fee
        self._commit("set agent fee")
        return {"agent_id": agent_id, "fee_per_500": fee}

    def list_super_worker_fees(self) -> List[Dict[str, Any]]:
        default_fee = self.pricing.config().fees.super_worker
        rows = (
            self.db.query(UserDB, SuperWorkerFeeDB.fee_per_500)
            .outerjoin(SuperWorkerFeeDB, SuperWorkerFeeDB.super_worker_id == UserDB.id)
            .filter(UserDB.role == UserRole.SUPER_WORKER)
            .order_by(UserDB.name)
            .all()
        )
        return [self._fee_row(user, fee, default_fee) for user, fee in rows]

    def list_agent_fees(self) -> List[Dict[str, Any]]:
        default_fee = self.pricing.config().fees.agent
        rows = (
            self.db.query(UserDB, AgentFeeDB.fee_per_500)
            .outerjoin(AgentFeeDB, AgentFeeDB.agent_id == UserDB.id)
            .filter(UserDB.role == UserRole.AGENT)
            .order_by(UserDB.name)
            .all()
        )
        return [self._fee_row(user, fee, default_fee) for user, fee in rows]

    @staticmethod
    def _fee_row(user: UserDB, fee, default_fee: float) -> Dict[str, Any]:
        return {
            "id": user.id,
            "name": user.name,
            "email": user.email,
            "fee_per_500": float(fee) if fee is not None else default_fee,
            "is_override": fee is not None,
        }

    # =========================================================================
    # AGENT WORD TABLES
    # =========================================================================

    def get_agent_pricing(self, agent_id: str) -> Dict[str, Any]:
        tiers = self.pricing.agent_tiers(agent_id)
        if tiers is None:
            return {"agent_id": agent_id, "word_tiers": self.pricing.config().word_tiers.to_mapping(), "is_override": False}
        return {"agent_id": agent_id, "word_tiers": tiers.to_mapping(), "is_override": True}

    def save_agent_pricing(self, actor: Actor, agent_id: str, word_tiers: Mapping[str, Any]) -> Dict[str, Any]:
        require_operator(actor, "edit agent pricing")
        self._require_role(agent_id, UserRole.AGENT)
        tiers = TierTable.from_mapping(word_tiers, name="agent word_tiers")

        row = self.db.query(AgentPricingDB).filter(AgentPricingDB.agent_id == agent_id).first()
        if row is None:
            self.db.add(AgentPricingDB(agent_id=agent_id, word_tiers=tiers.to_mapping()))
        else:
            row.word_tiers = tiers.to_mapping()
        self._commit("save agent pricing")

        self.cache.delete(CacheKeys.agent_pricing(agent_id))
        return {"agent_id": agent_id, "word_tiers": tiers.to_mapping(), "is_override": True}

    # =========================================================================
    # ROLE DEFAULTS
    # =========================================================================

    def ensure_role_defaults(self, user: UserDB) -> List[str]:
        """
        Add default override rows for a user who now holds a fee-earning role.
        Does not commit; the caller owns the transaction. Returns the tables touched.
        """
        config = self.pricing.config()
        created = []

        if user.role == UserRole.SUPER_WORKER:
            exists = self.db.query(SuperWorkerFeeDB).filter(SuperWorkerFeeDB.super_worker_id == user.id).first()
            if exists is None:
                self.db.add(SuperWorkerFeeDB(super_worker_id=user.id, fee_per_500=config.fees.super_worker))
                created.append("super_worker_fees")

        if user.role == UserRole.AGENT:
            if self.db.query(AgentFeeDB).filter(AgentFeeDB.agent_id == user.id).first() is None:
                self.db.add(AgentFeeDB(agent_id=user.id, fee_per_500=config.fees.agent))
                created.append("agent_fees")
            if self.db.query(AgentPricingDB).filter(AgentPricingDB.agent_id == user.id).first() is None:
                self.db.add(AgentPricingDB(agent_id=user.id, word_tiers=config.word_tiers.to_mapping()))
                created.append("agent_pricing")
            self.cache.delete(CacheKeys.agent_pricing(user.id))

        return created

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _require_role(self, user_id: str, role: UserRole) -> UserDB:
        user = self.db.query(UserDB).filter(UserDB.id == user_id).first()
        if user is None:
            raise NotFound(f"User {user_id} not found")
        if user.role != role:
            raise ValidationError(f"User {user_id} is not a {role.value}")
        return user

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to {action}: {e}")
            raise PersistenceError()
