"""
Homework Marketplace Engine - FastAPI Application

Main entry point for the order workflow and pricing/earnings backend.

Architecture:
- Tier tables → PricingEngine → price
- FeeResolver → EarningsSplitter → earnings snapshot
- OrderWorkflowService → state machine + fan-out table → notification outbox
- ReadThroughCache in front of order lists, pricing and templates
"""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .cache import CacheSweeper, cache
from .config import CACHE_SWEEP_ENABLED, CACHE_SWEEP_INTERVAL_SECONDS, LOG_LEVEL
from .database import init_db
from .routers import (
    admin_router, notifications_router, orders_router, pricing_router, referrals_router, reports_router,
    scheduler_router
)
from .services.errors import WorkflowError

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup; run the cache sweep while serving."""
    init_db()
    sweeper = CacheSweeper(cache, CACHE_SWEEP_INTERVAL_SECONDS) if CACHE_SWEEP_ENABLED else None
    if sweeper:
        sweeper.start()
    yield
    if sweeper:
        sweeper.stop()

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Homework Marketplace Engine",
    description="""
    Homework Marketplace Engine - Order Workflow and Pricing

    Coordinates students, agents, workers, super workers and the platform
    operator around homework orders.

    ## Pipeline
    1. **Submission**: word count + deadline → price and earnings split
    2. **Assignment**: operator → super worker → worker
    3. **Work**: drafts, review, final files (each upload moves the status)
    4. **Changes**: student change requests, super worker proposals

    ## Key Principles
    - Price and earnings are always recomputed together
    - Status changes are checked per role and versioned
    - Notifications are queued in the same transaction and delivered after commit
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    """Service errors carry their own HTTP status."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, **exc.details},
    )


# Include routers
app.include_router(orders_router)
app.include_router(pricing_router)
app.include_router(notifications_router)
app.include_router(reports_router)
app.include_router(admin_router)
app.include_router(referrals_router)
app.include_router(scheduler_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Homework Marketplace Engine",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m app.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
