# backend/tutorcart/main.py
"""
Application entry point: FastAPI app wiring for the reservation engine.

Run with ``uvicorn tutorcart.main:app`` from the ``backend`` directory.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI

from . import __version__
from .core.config import settings
from .database import Base, engine
from .errors import register_error_handlers
from . import models  # noqa: F401
from .routes import prometheus
from .routes.v1 import cart as cart_v1, checkout as checkout_v1

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info(
        "Starting tutorcart",
        extra={
            "environment": settings.environment,
            "price_policy": settings.checkout_price_policy,
            "hold_ttl_minutes": settings.hold_ttl_minutes,
        },
    )
    if settings.is_sqlite:
        # Local development only; deployed databases are migrated separately
        Base.metadata.create_all(bind=engine)
    yield
    logger.info("Shutting down tutorcart")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Tutorcart",
        description="Slot holds, cart, pricing and checkout handoff for tutoring sessions",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=app_lifespan,
    )
    register_error_handlers(app)

    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(cart_v1.router, prefix="/cart")
    api_v1.include_router(checkout_v1.router, prefix="/checkout")
    app.include_router(api_v1)
    app.include_router(prometheus.router)

    @app.get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "ok", "environment": settings.environment}

    return app


app = create_app()
