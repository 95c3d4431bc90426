"""
FastAPI application setup with monitoring and error handling.
"""
import time
from dataclasses import dataclass
from typing import Optional

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware

from enhancer.core.settings import Settings, settings as app_settings
from enhancer.core.exceptions import (
    EnhancerException,
    enhancer_exception_handler,
    general_exception_handler,
    http_exception_handler,
)
from enhancer.core.monitoring import metrics
from enhancer.db.session import build_engine, create_db_and_tables
from enhancer.worker.providers import ProviderRegistry, build_registry
from enhancer.api.services import (
    BatchLimiter,
    CapabilityCatalog,
    CreditLedger,
    CreditStore,
    DispatchOrchestrator,
    ModelSelector,
    RecommendationEngine,
    SqlCreditStore,
    build_batch_limiter,
    build_catalog,
)

_LOG_LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40, "CRITICAL": 50}


def configure_logging(level: str = "INFO") -> None:
    """Setup structured logging."""
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(_LOG_LEVELS.get(level.upper(), 20)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(app_settings.log_level)

logger = structlog.get_logger()


@dataclass
class ServiceContainer:
    """Everything the routers need, built once per application."""
    settings: Settings
    catalog: CapabilityCatalog
    selector: ModelSelector
    recommendations: RecommendationEngine
    store: CreditStore
    ledger: CreditLedger
    providers: ProviderRegistry
    batch_limiter: BatchLimiter
    orchestrator: DispatchOrchestrator

    async def ensure_account(self, user_id: str) -> None:
        """Open an account with the sign-up credits the first time a user calls."""
        if isinstance(self.store, SqlCreditStore):
            await run_in_threadpool(self.store.ensure_account, user_id, self.settings.default_credits)


def build_services(
    settings: Settings,
    store: Optional[CreditStore] = None,
    providers: Optional[ProviderRegistry] = None,
    batch_limiter: Optional[BatchLimiter] = None,
    catalog: Optional[CapabilityCatalog] = None,
) -> ServiceContainer:
    """Wire the catalog, ledger, providers and orchestrator together."""
    catalog = catalog or build_catalog(settings)
    if store is None:
        engine = build_engine(settings.database_url)
        create_db_and_tables(engine)
        store = SqlCreditStore(engine)

    providers = providers or build_registry(settings)
    selector = ModelSelector(catalog, settings)
    ledger = CreditLedger(store)

    return ServiceContainer(
        settings=settings,
        catalog=catalog,
        selector=selector,
        recommendations=RecommendationEngine(catalog, settings),
        store=store,
        ledger=ledger,
        providers=providers,
        batch_limiter=batch_limiter or build_batch_limiter(settings, store),
        orchestrator=DispatchOrchestrator(catalog, ledger, providers, selector, settings),
    )


def create_application(
    settings: Optional[Settings] = None,
    services: Optional[ServiceContainer] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or app_settings

    for problem in settings.validate_production_config():
        logger.warning("Configuration problem", problem=problem)

    app = FastAPI(
        title=settings.app_name,
        description="Model dispatch and credit billing for image enhancement",
        version=settings.app_version,
        docs_url="/docs" if settings.enable_docs else None,
        redoc_url="/redoc" if settings.enable_docs else None,
    )
    app.state.services = services or build_services(settings)

    setup_middleware(app, settings)
    setup_monitoring(app, settings)
    setup_exception_handlers(app)
    setup_routers(app)

    logger.info(
        "Application created",
        environment=settings.environment,
        model_provider=settings.model_provider,
        backends=len(app.state.services.catalog),
        batch_limiter=settings.batch_limiter_backend
    )
    return app


def setup_middleware(app: FastAPI, settings: Settings):
    """Setup application middleware."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else [],
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        max_age=3600 if settings.is_production else 600,
    )


def setup_monitoring(app: FastAPI, settings: Settings):
    """Request timing log and the Prometheus endpoint."""

    @app.middleware("http")
    async def timing_middleware(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        logger.debug(
            "Request handled",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration=time.time() - start_time
        )
        return response

    if settings.enable_metrics:
        @app.get("/metrics")
        async def get_metrics():
            """Expose Prometheus metrics."""
            return metrics.get_metrics_response()


def setup_exception_handlers(app: FastAPI):
    """Setup exception handlers."""
    app.add_exception_handler(EnhancerException, enhancer_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)


def setup_routers(app: FastAPI):
    """Setup API routers."""
    from enhancer.api.routers import credits, models, processing

    app.include_router(models.router, prefix="/api")
    app.include_router(processing.router, prefix="/api")
    app.include_router(credits.router, prefix="/api")

    @app.get("/health")
    async def health_check():
        """Basic health check endpoint."""
        services = app.state.services
        providers = {
            kind.value: await provider.health_check() for kind, provider in services.providers.items()
        }
        return {
            "status": "healthy" if all(providers.values()) else "degraded",
            "providers": providers,
            "timestamp": time.time(),
            "backends_enabled": len(services.catalog.list_enabled()),
            "auto_selection_enabled": services.recommendations.is_auto_selection_enabled(),
        }

    @app.get("/")
    async def root():
        return {
            "message": app.title,
            "version": app.version,
            "status": "operational",
        }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "enhancer.api.main:create_application",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=app_settings.is_development,
    )
