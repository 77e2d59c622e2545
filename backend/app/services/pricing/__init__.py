"""
Pricing & Earnings

Tier tables, the pure pricing engine, fee override resolution, the
earnings splitter and operator maintenance of all of them.
"""

from .tier_tables import TierTable, FeeTable, PricingConfig
from .engine import PricingEngine, days_until, word_count_component, deadline_surcharge
from .earnings import EarningsSplit, EarningsSplitter, split_earnings
from .fees import FeeResolver
from .service import PricingService
from .admin import PricingAdminService

__all__ = [
    'TierTable',
    'FeeTable',
    'PricingConfig',
    'PricingEngine',
    'days_until',
    'word_count_component',
    'deadline_surcharge',
    'EarningsSplit',
    'EarningsSplitter',
    'split_earnings',
    'FeeResolver',
    'PricingService',
    'PricingAdminService',
]
