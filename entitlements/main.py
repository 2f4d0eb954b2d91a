import logging
from concurrent.futures import Executor
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from entitlements.api.deps import Services
from entitlements.api.routes import admin, health, plans, requests, usage
from entitlements.core import config
from entitlements.core.errors import ConcurrencyConflict, InvalidTransition, NotFound
from entitlements.core.logging_config import sanitize_log_data, setup_logging
from entitlements.core.plan_catalog import DEFAULT_PLANS
from entitlements.core.timeutils import Clock, utcnow
from entitlements.db.session import build_engine, build_session_factory, init_db
from entitlements.services.entitlement_store import EntitlementStore
from entitlements.services.lifecycle_service import LifecycleManager
from entitlements.services.notification_service import (
    LoggingNotificationTrigger,
    NotificationDispatcher,
    NotificationTrigger,
)
from entitlements.services.quota_service import QuotaEnforcer
from entitlements.services.request_service import SubscriptionRequestService
from entitlements.services.sql_store import SqlEntitlementStore
from entitlements.services.visibility_service import VisibilityScheduler

logger = logging.getLogger(__name__)


def build_sql_store(database_url: Optional[str] = None) -> SqlEntitlementStore:
    """Create the tables if needed and seed the built-in plans."""
    engine = build_engine(database_url)
    init_db(engine)
    store = SqlEntitlementStore(build_session_factory(engine))
    store.seed_plans(DEFAULT_PLANS)
    return store


def build_services(
    store: EntitlementStore,
    trigger: Optional[NotificationTrigger] = None,
    executor: Optional[Executor] = None,
    clock: Clock = utcnow,
) -> Services:
    dispatcher = NotificationDispatcher(trigger or LoggingNotificationTrigger(), executor)
    lifecycle = LifecycleManager(store, dispatcher, clock)
    return Services(
        store=store,
        dispatcher=dispatcher,
        lifecycle=lifecycle,
        quota=QuotaEnforcer(store, lifecycle, dispatcher),
        visibility=VisibilityScheduler(lifecycle),
        requests=SubscriptionRequestService(store, lifecycle),
    )


# ============================================
# ✅ ERROR MAPPING
# ============================================

def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound):
        return _error(status.HTTP_404_NOT_FOUND, exc)

    @app.exception_handler(InvalidTransition)
    async def invalid_transition_handler(request: Request, exc: InvalidTransition):
        return _error(status.HTTP_409_CONFLICT, exc)

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, exc)

    @app.exception_handler(ConcurrencyConflict)
    async def conflict_handler(request: Request, exc: ConcurrencyConflict):
        logger.warning(f"Request failed on repeated concurrent updates: {request.url.path}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "The record is busy, please retry"},
            headers={"Retry-After": "1"},
        )


# ============================================
# ✅ FASTAPI APP FACTORY
# ============================================

def create_app(
    store: Optional[EntitlementStore] = None,
    *,
    trigger: Optional[NotificationTrigger] = None,
    executor: Optional[Executor] = None,
    clock: Clock = utcnow,
    database_url: Optional[str] = None,
    configure_logging: bool = True,
) -> FastAPI:
    """
    Build the API around an entitlement store.

    Without a store, a SQL store is created from DATABASE_URL. Serve with
    ``uvicorn entitlements.main:create_app --factory``.
    """
    if configure_logging:
        setup_logging()

    services = build_services(store or build_sql_store(database_url), trigger, executor, clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        services.close()

    app = FastAPI(title="Listing Entitlements API", lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["Authorization", "Content-Type"],
    )

    register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(usage.router)
    app.include_router(plans.router)
    app.include_router(admin.router)
    app.include_router(requests.router)

    settings = sanitize_log_data({
        "store": type(services.store).__name__,
        "database_url": database_url or config.DATABASE_URL,
        "cors_origins": config.CORS_ORIGINS,
        "release_quota_on_delete": config.RELEASE_QUOTA_ON_DELETE,
    })
    logger.info(f"Entitlements API ready: {settings}")
    return app
