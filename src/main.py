"""Scalesync API — FastAPI application entry point.

Run locally:
    uvicorn src.main:app --reload --port 8080
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from src.config import get_settings
from src.routers import dashboard, energy, fitbit, system
from src.services.container import build_container

# ---------- Logging ----------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("scalesync")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logging.getLogger("scalesync").setLevel(settings.log_level.upper())
    logger.info(
        "Starting Scalesync API v%s [%s]",
        settings.app_version,
        settings.environment,
    )
    app.state.services = await build_container(settings)
    yield
    await app.state.services.aclose()
    logger.info("Scalesync API shut down")


# ---------- App factory ----------

def create_app(with_lifespan: bool = True) -> FastAPI:
    """Build the app.  Tests pass ``with_lifespan=False`` and set ``app.state.services``."""
    app = FastAPI(
        title="Scalesync API",
        description="Fitbit weight and Health Auto Export energy sync.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url=None,
        lifespan=lifespan if with_lifespan else None,
    )

    app.include_router(system.router)
    app.include_router(fitbit.router)
    app.include_router(energy.router)
    app.include_router(dashboard.router)

    return app


app = create_app()
