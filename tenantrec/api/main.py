"""FastAPI application main module.

This module builds the FastAPI application for the TenantRec service: it
wires repositories, the model store and the recommendation service together,
registers the routes and error handlers, and runs the weekly retraining
scheduler for the lifetime of the process when enabled.
"""

import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from tenantrec import __version__
from tenantrec.api.logging_config import RequestLoggingMiddleware, setup_logging
from tenantrec.api.routes import recommendations
from tenantrec.config import Settings, get_settings
from tenantrec.exceptions import TenantRecException
from tenantrec.metrics import metrics_service
from tenantrec.recommender.scheduler import ScheduledRetrainer
from tenantrec.recommender.service import RecommendationService
from tenantrec.recommender.storage import create_model_store
from tenantrec.recommender.train import TrainerConfig
from tenantrec.repositories import InMemoryRepository, TenantRepository, load_repository_from_csv

# Configure module logger
logger = logging.getLogger(__name__)


def build_service(settings: Settings) -> Tuple[RecommendationService, TenantRepository]:
    """Create the recommendation service and tenant repository from settings.

    Catalog and order data come from the CSV export in ``settings.data_dir``
    when set; otherwise an empty in-memory repository is used.
    """
    if settings.data_dir:
        repository = load_repository_from_csv(settings.data_dir)
    else:
        logger.warning("TENANTREC_DATA_DIR not set, starting with an empty repository")
        repository = InMemoryRepository()

    service = RecommendationService(
        order_repository=repository,
        product_repository=repository.products,
        category_repository=repository.categories,
        model_store=create_model_store(settings),
        trainer_config=TrainerConfig.from_settings(settings),
    )
    return service, repository


def create_app(
    service: Optional[RecommendationService] = None,
    tenant_repository: Optional[TenantRepository] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        service: Pre-built service. When omitted it is built from settings at
            startup.
        tenant_repository: Tenant source for the scheduler and tenant checks.
        settings: Deployment settings; read from the environment if omitted.

    Returns:
        Configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app_settings: Settings = app.state.settings
        if app.state.service is None:
            setup_logging(app_settings.log_level)
            app.state.service, app.state.tenant_repository = build_service(app_settings)

        scheduler: Optional[ScheduledRetrainer] = None
        if app_settings.scheduler_enabled and app.state.tenant_repository is not None:
            scheduler = ScheduledRetrainer(
                app.state.tenant_repository,
                app.state.service,
                weekday=app_settings.retrain_weekday,
                hour=app_settings.retrain_hour,
            )
            scheduler.start()
        app.state.scheduler = scheduler

        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.stop()

    app = FastAPI(
        title="TenantRec API",
        description="Per-tenant product recommendation service",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings or get_settings()
    app.state.service = service
    app.state.tenant_repository = tenant_repository
    app.state.scheduler = None

    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(recommendations.router)

    @app.exception_handler(TenantRecException)
    async def tenantrec_exception_handler(
        request: Request, exc: TenantRecException
    ) -> JSONResponse:
        logger.warning(
            "Request rejected",
            extra={
                "path": str(request.url.path),
                "error_type": type(exc).__name__,
                "status_code": exc.status_code,
            },
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": type(exc).__name__,
                "message": exc.message,
                "details": exc.details,
            },
        )

    @app.get("/ping")
    def ping() -> Dict[str, str]:
        """Health check endpoint.

        Example:
            >>> response = client.get("/ping")
            >>> assert response.json() == {"status": "ok"}
        """
        return {"status": "ok"}

    @app.get("/metrics")
    def metrics() -> Dict:
        """Inference and retraining counters."""
        return metrics_service.get_metrics()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "tenantrec.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=get_settings().is_development,
    )
