"""
Earnings Splitter

Splits an order price into agent commission, super worker fee and
platform profit. Profit may be negative; that is reported, not rejected.
"""
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from ...config import WORDS_PER_UNIT


@dataclass(frozen=True)
class EarningsSplit:
    """Snapshot persisted on the order as JSON."""
    total: float
    super_worker: float
    profit: float
    agent: Optional[float] = None  # None when the order earns no commission

    def to_dict(self) -> Dict[str, float]:
        data = {
            "total": self.total,
            "super_worker": self.super_worker,
            "profit": self.profit,
        }
        if self.agent is not None:
            data["agent"] = self.agent
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EarningsSplit":
        agent = data.get("agent")
        return cls(
            total=float(data.get("total", 0)),
            super_worker=float(data.get("super_worker", 0)),
            profit=float(data.get("profit", 0)),
            agent=float(agent) if agent is not None else None,
        )


def units_for(word_count: int) -> float:
    return word_count / WORDS_PER_UNIT


def split_earnings(
    price: float,
    word_count: int,
    fulfiller_rate: float,
    agent_rate: Optional[float] = None,
) -> EarningsSplit:
    """
    Pure split.

    agent_rate None means no commission agent. A zero agent payout is
    omitted from the snapshot rather than stored as 0.
    """
    units = units_for(word_count)
    fulfiller_pay = fulfiller_rate * units
    agent_pay = agent_rate * units if agent_rate is not None else 0.0
    profit = price - agent_pay - fulfiller_pay

    return EarningsSplit(
        total=price,
        super_worker=fulfiller_pay,
        profit=profit,
        agent=agent_pay if agent_pay > 0 else None,
    )


class EarningsSplitter:
    """Resolves the agent's rate through a FeeResolver before splitting."""

    def __init__(self, fee_resolver):
        self.fee_resolver = fee_resolver

    def split(
        self,
        price: float,
        word_count: int,
        agent_id: Optional[str],
        fulfiller_rate: float,
    ) -> EarningsSplit:
        agent_rate = self.fee_resolver.agent_fee(agent_id) if agent_id else None
        return split_earnings(price, word_count, fulfiller_rate, agent_rate)
