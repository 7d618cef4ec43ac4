# trainhub/main.py

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import Settings, get_settings
from .dependencies import Services, build_services
from .exceptions import DomainException
from .routers import bookings, payments, sessions, trainers

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[Services] = None,
    run_sync_loop: bool = True,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.services = services or build_services(settings)
        if run_sync_loop and app.state.services.sync_loop.scopes:
            await app.state.services.sync_loop.start()
        logger.info("TrainHub API started")
        try:
            yield
        finally:
            await app.state.services.aclose()
            logger.info("TrainHub API stopped")

    app = FastAPI(title="TrainHub API", lifespan=lifespan)

    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException):
        if exc.status_code >= 500:
            logger.warning(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
        http_exc = exc.to_http_exception()
        return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})

    app.include_router(bookings.router)
    app.include_router(trainers.router)
    app.include_router(sessions.router)
    app.include_router(payments.router)

    @app.get("/health")
    def health():
        state = app.state.services
        return {
            "status": "ok",
            "sync_loop": state.sync_loop.running,
            "outbox": len(state.reconciler.outbox),
        }

    return app


def run() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return create_app(settings)
