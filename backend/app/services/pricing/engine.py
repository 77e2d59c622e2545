"""
Pricing Engine

Pure price computation from word count and deadline urgency.

One rule for both the global and the per-agent word table:
- word count at or below a tier threshold prices at the smallest such tier
- word count above the largest tier extrapolates linearly at the largest
  tier's per-word rate
- deadline tiers are flat surcharges, first matching band (ascending) wins

No I/O. Identical inputs and tables give identical results.
"""
import math
from datetime import datetime, timezone
from typing import Optional

from ..errors import ValidationError
from .tier_tables import PricingConfig, TierTable


def as_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC (SQLite drops tzinfo)."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def days_until(deadline: datetime, now: datetime) -> int:
    """Whole days from now to deadline, truncated toward zero."""
    delta = as_utc(deadline) - as_utc(now)
    return math.trunc(delta.total_seconds() / 86400)


def validate_word_count(word_count) -> int:
    if isinstance(word_count, bool) or not isinstance(word_count, int):
        raise ValidationError(f"word count must be an integer (got {word_count!r})")
    if word_count <= 0:
        raise ValidationError(f"word count must be positive (got {word_count})")
    return word_count


def word_count_component(word_count: int, word_tiers: TierTable) -> float:
    """Base price for a word count."""
    amount = word_tiers.ceiling(word_count)
    if amount is not None:
        return amount
    threshold, largest_price = word_tiers.largest
    return (largest_price / threshold) * word_count


def deadline_surcharge(deadline: datetime, deadline_tiers: TierTable, now: datetime) -> float:
    """Flat surcharge for the first band whose day limit covers the deadline."""
    days = days_until(deadline, now)
    for max_days, surcharge in deadline_tiers.tiers:
        if days <= max_days:
            return surcharge
    return 0.0


class PricingEngine:
    """
    Price calculator bound to one pricing configuration.

    Usage:
        engine = PricingEngine(config)
        amount = engine.price(1500, deadline, agent_tiers=override)
    """

    def __init__(self, config: PricingConfig):
        self.config = config

    def price(
        self,
        word_count: int,
        deadline: datetime,
        agent_tiers: Optional[TierTable] = None,
        now: Optional[datetime] = None,
    ) -> float:
        """
        Price for an order.

        Args:
            word_count: positive number of words
            deadline: due date/time
            agent_tiers: referring agent's word table; replaces the global
                word table only (deadline tiers stay global)
            now: evaluation time, defaults to current UTC time
        """
        validate_word_count(word_count)
        if deadline is None:
            raise ValidationError("deadline is required")
        now = now or datetime.now(timezone.utc)

        word_tiers = agent_tiers if agent_tiers else self.config.word_tiers
        base = word_count_component(word_count, word_tiers)
        surcharge = deadline_surcharge(deadline, self.config.deadline_tiers, now)

        return round(base + surcharge, 2)
