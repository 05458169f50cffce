"""FastAPI server for the usage monitor."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from usage_monitor import __version__
from usage_monitor.api.routes import router
from usage_monitor.config import settings
from usage_monitor.token_tracker.aggregator import DataAggregator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the shared aggregator on startup."""
    app.state.aggregator = DataAggregator(settings.claude_config_dir)
    logger.info("Usage monitor reading %s", app.state.aggregator.scanner.config_dir)

    yield

    app.state.aggregator.clear_cache()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Claude Usage Monitor",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api")

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "version": __version__}

    return app


app = create_app()
