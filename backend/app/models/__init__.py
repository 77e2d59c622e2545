"""Homework Marketplace Engine - Data Models"""
from .db_models import (
    # Enums
    UserRole, OrderStatus, FilePhase, ChangeRequestKind, NotificationSource, OutboxStatus,
    # Users & orders
    UserDB, ReferenceCodeDB, OrderDB, OrderFileDB, ChangeRequestDB, ChangeRequestFileDB,
    # Pricing
    PricingConfigDB, SuperWorkerFeeDB, AgentFeeDB, AgentPricingDB,
    # Notifications
    NotificationDB, NotificationTemplateDB, OutboxEventDB,
)

__all__ = [
    "UserRole", "OrderStatus", "FilePhase", "ChangeRequestKind", "NotificationSource", "OutboxStatus",
    "UserDB", "ReferenceCodeDB", "OrderDB", "OrderFileDB", "ChangeRequestDB", "ChangeRequestFileDB",
    "PricingConfigDB", "SuperWorkerFeeDB", "AgentFeeDB", "AgentPricingDB",
    "NotificationDB", "NotificationTemplateDB", "OutboxEventDB",
]
