"""
Tier Tables

Ordered threshold -> amount tables used by the pricing engine:
- word tiers: word count ceiling -> price
- deadline tiers: days-to-deadline ceiling -> flat surcharge

PricingConfig bundles the global tables and default per-unit fees. It is
passed explicitly to the engine and fee resolver instead of being read
from ambient state.
"""
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from ..errors import ValidationError
from ...config import DEFAULT_PRICING_CONFIG


@dataclass(frozen=True)
class TierTable:
    """Immutable ascending (threshold, amount) pairs."""
    tiers: Tuple[Tuple[int, float], ...]

    @classmethod
    def from_mapping(cls, mapping: Mapping[Any, Any], name: str = "tier table", allow_empty: bool = False) -> "TierTable":
        """
        Build from a {threshold: amount} mapping. JSON round-trips turn the
        thresholds into strings, so both forms are accepted.
        """
        if not mapping:
            if allow_empty:
                return cls(tiers=())
            raise ValidationError(f"{name} must contain at least one tier")

        parsed = []
        for raw_threshold, raw_amount in mapping.items():
            try:
                threshold = int(raw_threshold)
                amount = float(raw_amount)
            except (TypeError, ValueError):
                raise ValidationError(f"{name} has a non-numeric tier: {raw_threshold!r} -> {raw_amount!r}")
            if threshold <= 0:
                raise ValidationError(f"{name} thresholds must be positive (got {threshold})")
            if amount < 0:
                raise ValidationError(f"{name} amounts must not be negative (got {amount})")
            parsed.append((threshold, amount))

        parsed.sort(key=lambda pair: pair[0])
        return cls(tiers=tuple(parsed))

    def __bool__(self) -> bool:
        return bool(self.tiers)

    @property
    def smallest(self) -> Tuple[int, float]:
        return self.tiers[0]

    @property
    def largest(self) -> Tuple[int, float]:
        return self.tiers[-1]

    def ceiling(self, value: float) -> Optional[float]:
        """Amount of the smallest threshold >= value, or None if value exceeds every tier."""
        for threshold, amount in self.tiers:
            if threshold >= value:
                return amount
        return None

    def to_mapping(self) -> Dict[str, float]:
        return {str(threshold): amount for threshold, amount in self.tiers}


@dataclass(frozen=True)
class FeeTable:
    """Global per-500-words payout rates."""
    agent: float
    super_worker: float

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "FeeTable":
        try:
            agent = float(mapping["agent"])
            super_worker = float(mapping["super_worker"])
        except (KeyError, TypeError, ValueError):
            raise ValidationError("fees must define numeric 'agent' and 'super_worker' rates")
        if agent < 0 or super_worker < 0:
            raise ValidationError("fee rates must not be negative")
        return cls(agent=agent, super_worker=super_worker)

    def to_mapping(self) -> Dict[str, float]:
        return {"agent": self.agent, "super_worker": self.super_worker}


@dataclass(frozen=True)
class PricingConfig:
    """Global tier tables and fallback fees."""
    word_tiers: TierTable
    deadline_tiers: TierTable
    fees: FeeTable

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PricingConfig":
        if not isinstance(data, Mapping):
            raise ValidationError("pricing configuration must be an object")
        return cls(
            word_tiers=TierTable.from_mapping(data.get("word_tiers") or {}, name="word_tiers"),
            deadline_tiers=TierTable.from_mapping(
                data.get("deadline_tiers") or {}, name="deadline_tiers", allow_empty=True
            ),
            fees=FeeTable.from_mapping(data.get("fees") or {}),
        )

    @classmethod
    def default(cls) -> "PricingConfig":
        return cls.from_dict(DEFAULT_PRICING_CONFIG)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "word_tiers": self.word_tiers.to_mapping(),
            "deadline_tiers": self.deadline_tiers.to_mapping(),
            "fees": self.fees.to_mapping(),
        }
