"""
Material Request Tracker
PostgreSQL Backend
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv
from pathlib import Path
import asyncio
import logging

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from database import (
    tracker_settings,
    get_session_maker,
    init_postgres_db,
    close_postgres_db,
    check_database_connection,
)
from app.requests.application.coordinator import MaterialRequestCoordinator, RetryPolicy
from app.requests.application.registry import CoordinatorRegistry, reset_on_sign_out
from app.requests.application.session import SessionState
from app.requests.domain.errors import AppError
from app.requests.infrastructure.connectivity import ConnectivityMonitor
from app.requests.infrastructure.sqlalchemy_repository import SqlAlchemyMaterialRequestStore

# ==================== Logging Configuration ====================
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create the main app
app = FastAPI(
    title="Material Request Tracker",
    description="Company-scoped material requests - PostgreSQL Backend",
    version="1.0.0"
)

connectivity = ConnectivityMonitor(probe=check_database_connection)


def build_registry() -> CoordinatorRegistry:
    """One store for the process, one coordinator per company"""
    store = SqlAlchemyMaterialRequestStore(
        get_session_maker(),
        strict_requester_lookup=tracker_settings.strict_requester_lookup,
    )
    retry_policy = RetryPolicy(
        max_retries=tracker_settings.max_retries,
        base_delay=tracker_settings.retry_base_delay_seconds,
        max_delay=tracker_settings.retry_max_delay_seconds,
    )
    detail_retry_policy = RetryPolicy(
        max_retries=tracker_settings.detail_max_retries,
        base_delay=tracker_settings.retry_base_delay_seconds,
        max_delay=tracker_settings.retry_max_delay_seconds,
    )

    def factory(company_id: str) -> MaterialRequestCoordinator:
        return MaterialRequestCoordinator(
            store,
            company_id,
            connectivity,
            retry_policy=retry_policy,
            detail_retry_policy=detail_retry_policy,
            stale_time=tracker_settings.stale_time_seconds,
            request_timeout=tracker_settings.request_timeout_seconds,
            default_page_size=tracker_settings.default_page_size,
        )

    return CoordinatorRegistry(factory)


# Health check endpoint at root level (for Kubernetes)
@app.get("/health")
async def root_health_check():
    """Health check endpoint for Kubernetes liveness/readiness probes"""
    online = await connectivity.check_connection()
    return {
        "status": "healthy" if online else "degraded",
        "database": "PostgreSQL",
        "online": online,
        "was_offline": connectivity.was_offline,
    }

# ==================== Routes ====================
from routes.auth_routes import auth_router
from routes.requests_routes import requests_router, app_error_handler

app.include_router(auth_router)
app.include_router(requests_router)
app.add_exception_handler(AppError, app_error_handler)

# ==================== CORS Configuration ====================
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=tracker_settings.cors_origin_list,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== Startup & Shutdown Events ====================
@app.on_event("startup")
async def startup_db_client():
    """Initialize PostgreSQL database on startup"""
    logger.info("🚀 Starting Material Request Tracker...")

    await init_postgres_db()
    app.state.coordinators = build_registry()
    app.state.session_events = SessionState()
    app.state.session_events.subscribe(reset_on_sign_out(app.state.coordinators))
    app.state.connectivity_watch = asyncio.create_task(
        connectivity.watch(tracker_settings.connectivity_check_interval_seconds)
    )

    logger.info("✅ PostgreSQL database initialized successfully")

@app.on_event("shutdown")
async def shutdown_db_client():
    """Close database connections on shutdown"""
    logger.info("🛑 Shutting down...")

    watch = getattr(app.state, "connectivity_watch", None)
    if watch is not None:
        watch.cancel()
        await asyncio.gather(watch, return_exceptions=True)

    registry = getattr(app.state, "coordinators", None)
    if registry is not None:
        await registry.close_all()
    await close_postgres_db()

    logger.info("✅ Database connections closed")
