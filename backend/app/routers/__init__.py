"""Homework Marketplace Engine - API Routers"""
from .orders import router as orders_router
from .pricing import router as pricing_router
from .notifications import router as notifications_router
from .reports import router as reports_router
from .admin import router as admin_router
from .referrals import router as referrals_router
from .scheduler import router as scheduler_router

__all__ = [
    "orders_router",
    "pricing_router",
    "notifications_router",
    "reports_router",
    "admin_router",
    "referrals_router",
    "scheduler_router",
]
