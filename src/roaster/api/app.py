from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.background import BackgroundTask

from roaster.api.routes import router as api_router
from roaster.config import Settings, get_settings
from roaster.core.runtime import RoasterServices, build_services
from roaster.db.init import init_database
from roaster.errors import RoasterError
from roaster.logging_config import configure_logging

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, services: RoasterServices | None = None) -> FastAPI:
    settings = settings or (services.settings if services else get_settings())
    configure_logging(settings)
    owns_services = services is None
    services = services or build_services(settings)

    app = FastAPI(title=settings.app_name)
    app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    def _startup() -> None:
        init_database(settings, services.database)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        if owns_services:
            await services.aclose()
        else:
            services.telemetry.flush()

    @app.exception_handler(RoasterError)
    async def _roaster_error(request: Request, exc: RoasterError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("Request failed path=%s error=%s", request.url.path, exc.message)
        return JSONResponse(
            exc.to_payload(),
            status_code=exc.status_code,
            background=BackgroundTask(services.telemetry.flush),
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = first.get("msg", "Invalid request")
        return JSONResponse({"error": f"{location}: {message}" if location else message}, status_code=400)

    @app.exception_handler(Exception)
    async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error path=%s", request.url.path)
        return JSONResponse(
            {"error": "Internal server error"},
            status_code=500,
            background=BackgroundTask(services.telemetry.flush),
        )

    @app.get("/health")
    def health() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    app.include_router(api_router)
    return app
