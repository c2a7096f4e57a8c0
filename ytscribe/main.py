import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ytscribe import __version__
from ytscribe.api.cache import router as cache_router
from ytscribe.api.deps import get_services
from ytscribe.api.jobs import router as jobs_router
from ytscribe.api.transcribe import router as transcribe_router
from ytscribe.core.background import pending_tasks
from ytscribe.core.config import Settings, settings as default_settings
from ytscribe.core.errors import AppError
from ytscribe.services.extractors import Extractor
from ytscribe.services.registry import ServiceRegistry

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    ok: bool
    service: str
    version: str
    db_ok: bool
    queue: dict
    background_tasks: int


def create_app(settings: Settings | None = None, extractor: Extractor | None = None) -> FastAPI:
    app_settings = settings or default_settings
    logging.basicConfig(level=app_settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services = ServiceRegistry.build(app_settings, extractor=extractor)
        services.init_db()
        app.state.services = services
        services.eviction.start()
        logger.info("ytscribe started (env=%s db=%s)", app_settings.env, app_settings.database_url)
        try:
            yield
        finally:
            services.close()
            logger.info("ytscribe stopped")

    app = FastAPI(title="ytscribe", version=__version__, lifespan=lifespan)

    @app.exception_handler(AppError)
    async def app_error_handler(_request: Request, exc: AppError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s: %s", exc.code, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request) -> HealthResponse:
        services = get_services(request)
        return HealthResponse(
            ok=True,
            service="ytscribe",
            version=app.version,
            db_ok=services.db_ok(),
            queue=services.queue.stats().to_dict(),
            background_tasks=pending_tasks(),
        )

    app.include_router(transcribe_router)
    app.include_router(jobs_router)
    app.include_router(cache_router)
    return app


app = create_app()
