# backend/sessionbook/main.py
"""
FastAPI application factory for the SessionBook booking engine.

``create_app`` builds settings, the database engine, the session factory,
the clock and the payment gateway once, and stores them on ``app.state``
for the request dependencies.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker

from . import __version__
from .core.config import Settings, load_settings
from .core.exceptions import DomainException
from .core.timezone_utils import Clock
from .database import create_db_engine, create_session_factory
from .integrations.payment_gateway import PaymentGateway, build_payment_gateway
from .middleware.prometheus_middleware import PrometheusMiddleware
from .routes import prometheus
from .routes.v1 import (
    availability as availability_v1,
    bookings as bookings_v1,
    credits as credits_v1,
    payments as payments_v1,
)

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker[Session]] = None,
    gateway: Optional[PaymentGateway] = None,
    clock: Optional[Clock] = None,
) -> FastAPI:
    """Build the API application; every collaborator can be supplied by the caller."""
    settings = settings or load_settings()
    configure_logging(settings)

    if session_factory is None:
        session_factory = create_session_factory(create_db_engine(settings))

    app = FastAPI(title="SessionBook", version=__version__)
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.clock = clock or Clock(settings.platform_timezone)
    app.state.payment_gateway = gateway or build_payment_gateway(settings)

    app.add_middleware(PrometheusMiddleware)

    @app.exception_handler(DomainException)
    async def _domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
        http_exc = exc.to_http_exception()
        logger.warning("Unhandled domain error on %s: %s", request.url.path, exc.message)
        return JSONResponse(
            status_code=http_exc.status_code,
            content={"detail": http_exc.detail},
            headers=http_exc.headers,
        )

    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(availability_v1.router, prefix="/therapists")
    api_v1.include_router(bookings_v1.router, prefix="/bookings")
    api_v1.include_router(credits_v1.router)
    api_v1.include_router(payments_v1.router)
    app.include_router(api_v1)
    app.include_router(prometheus.router)

    @app.get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    logger.info("SessionBook API ready (payments via %s)", app.state.payment_gateway.provider)
    return app
