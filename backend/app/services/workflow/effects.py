"""
Status Notification Effects

One table says who is told what when an order enters each status.
resolve_effects() turns a row of that table into concrete, de-duplicated
notifications for a specific order; the workflow service enqueues them
in the outbox.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from ...models.db_models import OrderStatus


class Audience(str, Enum):
    STUDENT = "student"
    AGENT = "agent"
    OPERATOR = "operator"
    SUPER_WORKER = "super_worker"
    WORKER = "worker"


@dataclass(frozen=True)
class Effect:
    template_key: str
    audience: Tuple[Audience, ...]


@dataclass(frozen=True)
class QueuedNotification:
    user_id: str
    template_key: str
    order_id: Optional[str]
    variables: Dict[str, Any] = field(default_factory=dict)


def _fx(template_key: str, *audience: Audience) -> Effect:
    return Effect(template_key=template_key, audience=tuple(audience))


# =============================================================================
# FAN-OUT TABLE
# =============================================================================

STATUS_EFFECTS: Dict[OrderStatus, Tuple[Effect, ...]] = {
    OrderStatus.PAYMENT_APPROVAL: (
        _fx("order_status_update", Audience.OPERATOR, Audience.STUDENT),
    ),
    OrderStatus.ASSIGNED_TO_SUPER_WORKER: (
        _fx("worker_assignment", Audience.SUPER_WORKER),
        _fx("order_status_update", Audience.OPERATOR),
    ),
    OrderStatus.ASSIGNED_TO_WORKER: (
        _fx("worker_assignment", Audience.WORKER),
        _fx("order_status_update", Audience.SUPER_WORKER),
    ),
    OrderStatus.IN_PROGRESS: (
        _fx("order_in_progress", Audience.SUPER_WORKER, Audience.WORKER, Audience.OPERATOR),
    ),
    OrderStatus.WORKER_DRAFT: (
        _fx("worker_draft_upload", Audience.SUPER_WORKER, Audience.OPERATOR),
    ),
    OrderStatus.REQUESTED_CHANGES: (
        _fx("change_request", Audience.SUPER_WORKER, Audience.WORKER, Audience.OPERATOR),
    ),
    OrderStatus.WORD_COUNT_CHANGE: (
        _fx("fulfiller_change_request", Audience.OPERATOR, Audience.STUDENT),
    ),
    OrderStatus.DEADLINE_CHANGE: (
        _fx("fulfiller_change_request", Audience.OPERATOR, Audience.STUDENT),
    ),
    OrderStatus.FINAL_PAYMENT_APPROVAL: (
        _fx("final_payment_approval", Audience.OPERATOR),
        _fx("final_review", Audience.STUDENT),
    ),
    OrderStatus.COMPLETED: (
        _fx("order_completed", Audience.STUDENT),
        _fx("order_completed_agent", Audience.AGENT),
        _fx("order_completed_operator", Audience.OPERATOR),
    ),
    OrderStatus.DECLINED: (
        _fx("order_closed", Audience.STUDENT, Audience.AGENT, Audience.OPERATOR),
    ),
    OrderStatus.REFUND: (
        _fx("order_closed", Audience.STUDENT, Audience.AGENT, Audience.OPERATOR),
    ),
}

DEFAULT_CHANGE_DESCRIPTIONS = {
    OrderStatus.WORD_COUNT_CHANGE: "word count",
    OrderStatus.DEADLINE_CHANGE: "deadline",
}


def base_variables(order, status: OrderStatus) -> Dict[str, Any]:
    variables = {"order_id": order.id, "status": status.value}
    if status in DEFAULT_CHANGE_DESCRIPTIONS:
        variables["change_description"] = DEFAULT_CHANGE_DESCRIPTIONS[status]
        variables["price_info"] = ""
    return variables


def audience_ids(order, audience: Audience, operator_ids: Iterable[str]) -> List[str]:
    if audience == Audience.STUDENT:
        return [order.student_id] if order.student_id else []
    if audience == Audience.AGENT:
        return [order.agent_id] if order.agent_id else []
    if audience == Audience.SUPER_WORKER:
        return [order.super_worker_id] if order.super_worker_id else []
    if audience == Audience.WORKER:
        return [order.worker_id] if order.worker_id else []
    return list(operator_ids)


def resolve_effects(
    order,
    status: OrderStatus,
    operator_ids: Iterable[str],
    extra_variables: Optional[Mapping[str, Any]] = None,
) -> List[QueuedNotification]:
    """
    Concrete notifications for an order entering status.

    A user appears at most once per transition (the first matching effect
    wins); audiences with nobody assigned are skipped.
    """
    operator_ids = list(operator_ids)
    variables = base_variables(order, status)
    if extra_variables:
        variables.update(extra_variables)

    seen = set()
    queued = []
    for effect in STATUS_EFFECTS[status]:
        for audience in effect.audience:
            for user_id in audience_ids(order, audience, operator_ids):
                if user_id in seen:
                    continue
                seen.add(user_id)
                queued.append(QueuedNotification(
                    user_id=user_id,
                    template_key=effect.template_key,
                    order_id=order.id,
                    variables=dict(variables),
                ))
    return queued
