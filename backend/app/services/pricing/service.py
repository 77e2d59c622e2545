"""
Pricing Service

Loads the global configuration and per-agent word tables (through the
read-through cache) and feeds them to the pure engine, fee resolver and
splitter.
"""
from datetime import datetime
from typing import Optional, Tuple
import logging

from sqlalchemy.orm import Session

from ...cache import CacheKeys, ReadThroughCache, cache as default_cache
from ...config import CacheTTL
from ...models.db_models import AgentPricingDB, PricingConfigDB, UserDB, UserRole
from .earnings import EarningsSplit, EarningsSplitter
from .engine import PricingEngine
from .fees import FeeResolver
from .tier_tables import PricingConfig, TierTable


logger = logging.getLogger(__name__)

MAIN_CONFIG_ID = "main"


class PricingService:
    """
    Usage:
        pricing = PricingService(db)
        price, earnings = pricing.price_and_split(1500, deadline, agent_id, super_worker_id)
    """

    def __init__(self, db: Session, cache: Optional[ReadThroughCache] = None):
        self.db = db
        self.cache = cache or default_cache

    # =========================================================================
    # TABLE LOADING
    # =========================================================================

    def config(self) -> PricingConfig:
        return self.cache.get_or_load(CacheKeys.pricing_config(), self._load_config, CacheTTL.VERY_LONG)

    def _load_config(self) -> PricingConfig:
        row = self.db.query(PricingConfigDB).filter(PricingConfigDB.id == MAIN_CONFIG_ID).first()
        if row is None:
            logger.info("No stored pricing configuration, using built-in defaults")
            return PricingConfig.default()
        return PricingConfig.from_dict(row.config)

    def agent_tiers(self, agent_id: Optional[str]) -> Optional[TierTable]:
        """Agent's word-table override, or None to use the global table."""
        if not agent_id:
            return None
        return self.cache.get_or_load(
            CacheKeys.agent_pricing(agent_id),
            lambda: self._load_agent_tiers(agent_id),
            CacheTTL.VERY_LONG,
        )

    def _load_agent_tiers(self, agent_id: str) -> Optional[TierTable]:
        row = self.db.query(AgentPricingDB).filter(AgentPricingDB.agent_id == agent_id).first()
        if row is None or not row.word_tiers:
            return None
        return TierTable.from_mapping(row.word_tiers, name="agent word_tiers")

    def commission_agent_id(self, agent_id: Optional[str]) -> Optional[str]:
        """
        The order's agent id if that user is an actual agent.
        Orders referred by the operator keep agent_id for visibility but
        earn no commission and use global pricing.
        """
        if not agent_id:
            return None
        user = self.db.query(UserDB).filter(UserDB.id == agent_id).first()
        if user is None or user.role != UserRole.AGENT:
            return None
        return agent_id

    # =========================================================================
    # CALCULATIONS
    # =========================================================================

    def engine(self) -> PricingEngine:
        return PricingEngine(self.config())

    def fee_resolver(self) -> FeeResolver:
        return FeeResolver(self.db, self.config())

    def quote(
        self,
        word_count: int,
        deadline: datetime,
        agent_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> float:
        """Price for a prospective order (agent override applied for agents only)."""
        agent_id = self.commission_agent_id(agent_id)
        return self.engine().price(word_count, deadline, agent_tiers=self.agent_tiers(agent_id), now=now)

    def split(
        self,
        price: float,
        word_count: int,
        agent_id: Optional[str],
        super_worker_id: Optional[str],
    ) -> EarningsSplit:
        """Earnings for an already-priced order."""
        resolver = self.fee_resolver()
        splitter = EarningsSplitter(resolver)
        return splitter.split(
            price,
            word_count,
            self.commission_agent_id(agent_id),
            resolver.fulfiller_fee(super_worker_id),
        )

    def price_and_split(
        self,
        word_count: int,
        deadline: datetime,
        agent_id: Optional[str],
        super_worker_id: Optional[str],
        now: Optional[datetime] = None,
    ) -> Tuple[float, EarningsSplit]:
        """Price and earnings together; callers persist both in one transaction."""
        price = self.quote(word_count, deadline, agent_id=agent_id, now=now)
        return price, self.split(price, word_count, agent_id, super_worker_id)
