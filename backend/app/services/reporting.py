"""
Reporting

Operator dashboard totals and per-user analytics, computed from the
persisted earnings snapshots.

PAYABLES:
- Orders past payment approval add their agent / super worker share
- Declined and refunded orders subtract it
- Orders still awaiting payment approval count for nothing
"""
from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ..config import PLATFORM_FEE_PER_ORDER
from ..models.db_models import OrderDB, OrderStatus, UserDB, UserRole, utcnow
from .actor import Actor, require_operator
from .errors import ValidationError
from .pricing.engine import as_utc

# Windows longer than this are bucketed by month
DAILY_GROUPING_MAX_DAYS = 31


CLOSED = {OrderStatus.DECLINED, OrderStatus.REFUND}
UNPAID = {OrderStatus.PAYMENT_APPROVAL}


def payable_sign(status: OrderStatus) -> int:
    """+1 when a share is owed, -1 when it is clawed back, 0 before payment."""
    if status in CLOSED:
        return -1
    if status in UNPAID:
        return 0
    return 1


def _in_window(order: OrderDB, start: Optional[datetime], end: Optional[datetime]) -> bool:
    if order.created_at is None:
        return start is None and end is None
    created = as_utc(order.created_at)
    if start is not None and created < as_utc(start):
        return False
    if end is not None and created > as_utc(end):
        return False
    return True


def operator_dashboard(
    db: Session,
    actor: Actor,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Revenue, profit and payables for orders created in [start, end].

    Refunded orders are excluded from revenue, profit and the order count.
    """
    require_operator(actor, "view the dashboard")

    orders = [o for o in db.query(OrderDB).all() if _in_window(o, start, end)]
    counted = [o for o in orders if o.status != OrderStatus.REFUND]

    total_revenue = sum(o.price or 0 for o in counted)
    total_profit = sum((o.earnings or {}).get("profit", 0) for o in counted)
    order_count = len(counted)

    agent_payables = defaultdict(float)
    agent_orders = defaultdict(int)
    super_worker_payables = defaultdict(float)
    super_worker_orders = defaultdict(int)

    for order in orders:
        sign = payable_sign(order.status)
        earnings = order.earnings or {}
        if order.agent_id and earnings.get("agent") is not None:
            agent_payables[order.agent_id] += sign * earnings["agent"]
            if sign > 0:
                agent_orders[order.agent_id] += 1
        if order.super_worker_id and earnings.get("super_worker") is not None:
            super_worker_payables[order.super_worker_id] += sign * earnings["super_worker"]
            if sign > 0:
                super_worker_orders[order.super_worker_id] += 1

    return {
        "total_revenue": round(total_revenue, 2),
        "total_profit": round(total_profit, 2),
        "order_count": order_count,
        "total_students": db.query(UserDB).filter(UserDB.role == UserRole.STUDENT).count(),
        "average_profit_per_order": round(total_profit / order_count, 2) if order_count else 0.0,
        "total_platform_fees": round(order_count * PLATFORM_FEE_PER_ORDER, 2),
        "to_be_paid_super_workers": round(sum(super_worker_payables.values()), 2),
        "to_be_paid_agents": round(sum(agent_payables.values()), 2),
        "agents": _breakdown(db, UserRole.AGENT, agent_payables, agent_orders),
        "super_workers": _breakdown(db, UserRole.SUPER_WORKER, super_worker_payables, super_worker_orders),
    }


def _breakdown(db: Session, role: UserRole, payables, order_counts) -> List[Dict[str, Any]]:
    rows = []
    for user in db.query(UserDB).filter(UserDB.role == role).all():
        row = {
            "id": user.id,
            "name": user.name,
            "to_be_paid": round(payables.get(user.id, 0.0), 2),
            "orders": order_counts.get(user.id, 0),
        }
        if role == UserRole.AGENT:
            row["student_count"] = db.query(UserDB).filter(UserDB.referred_by == user.id).count()
        rows.append(row)
    rows.sort(key=lambda r: (-r["orders"], r["name"]))
    return rows


# =============================================================================
# PER-USER ANALYTICS
# =============================================================================

def _share_owed(key: str) -> Callable[[OrderDB], float]:
    def value(order: OrderDB) -> float:
        return payable_sign(order.status) * (order.earnings or {}).get(key, 0)
    return value


def _price(order: OrderDB) -> float:
    return order.price or 0


def _one(order: OrderDB) -> int:
    return 1


def _not_refunded(order: OrderDB) -> bool:
    return order.status != OrderStatus.REFUND


def _has_share(key: str) -> Callable[[OrderDB], bool]:
    return lambda order: (order.earnings or {}).get(key) is not None


# role -> (which orders are the user's, [(metric name, which orders count, value per order)])
ANALYTICS = {
    UserRole.STUDENT: (
        lambda actor: OrderDB.student_id == actor.id,
        [("spending", _not_refunded, _price), ("submissions", _not_refunded, _one)],
    ),
    UserRole.AGENT: (
        lambda actor: OrderDB.agent_id == actor.id,
        [("commission", _has_share("agent"), _share_owed("agent")), ("orders", _not_refunded, _one)],
    ),
    UserRole.SUPER_WORKER: (
        lambda actor: OrderDB.super_worker_id == actor.id,
        [("earnings", _has_share("super_worker"), _share_owed("super_worker")), ("assignments", _not_refunded, _one)],
    ),
    UserRole.SUPER_AGENT: (
        None,
        [("revenue", _not_refunded, _price), ("orders", _not_refunded, _one)],
    ),
}


def user_analytics(
    db: Session,
    actor: Actor,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Time series for the caller's own dashboard over orders created in [start, end].

    Students see spending and submissions, agents their commission, super
    workers their fee earnings, the operator revenue; the second metric is
    an order count. Refunded orders are left out of spending, revenue and
    counts; payables follow payable_sign(). Workers get no metrics.

    Buckets are days, or months when the window spans more than 31 days
    (an open start always does). Only buckets with orders are returned.
    """
    end = end or now or utcnow()
    if start is not None and as_utc(start) > as_utc(end):
        raise ValidationError("start must not be after end")
    span_days = (as_utc(end) - as_utc(start)).days if start is not None else None
    grouping = "day" if span_days is not None and span_days <= DAILY_GROUPING_MAX_DAYS else "month"
    date_format = "%Y-%m-%d" if grouping == "day" else "%Y-%m"

    result = {"role": actor.role.value, "grouping": grouping, "metrics": {}}
    layout = ANALYTICS.get(actor.role)
    if layout is None:
        return result

    owner_filter, metrics = layout
    query = db.query(OrderDB)
    if owner_filter is not None:
        query = query.filter(owner_filter(actor))
    orders = [o for o in query.all() if o.created_at is not None and _in_window(o, start, end)]

    for name, counts, value in metrics:
        buckets = defaultdict(float)
        for order in orders:
            if counts(order):
                buckets[as_utc(order.created_at).strftime(date_format)] += value(order)
        result["metrics"][name] = [
            {"date": bucket, "value": round(total, 2)} for bucket, total in sorted(buckets.items())
        ]
    return result
