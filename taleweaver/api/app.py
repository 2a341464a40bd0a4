"""FastAPI application setup with lifespan and exception handlers."""

import asyncio
from contextlib import asynccontextmanager, suppress
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from taleweaver.api.routes import router
from taleweaver.config import Settings, settings as default_settings
from taleweaver.engine import Engine
from taleweaver.providers.base import GenerationProvider

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    provider: Optional[GenerationProvider] = None,
) -> FastAPI:
    """Build the API application.

    Args:
        settings: Settings to use instead of the module singleton
        provider: Provider to use instead of the configured variant

    Returns:
        FastAPI app whose lifespan owns one ``Engine``
    """
    cfg = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager.

        Startup:
            - Build the engine (stores, provider, job runner)
            - Start the periodic session/task sweeper

        Shutdown:
            - Stop the sweeper
            - Close provider HTTP clients
        """
        logger.info("Starting Taleweaver API...")
        engine = Engine(cfg, provider=provider)
        missing = cfg.missing_credentials()
        if missing:
            logger.warning(f"Missing provider credentials: {', '.join(missing)}")
        app.state.engine = engine
        sweeper = asyncio.create_task(engine.housekeeper.run(), name="housekeeper")
        logger.info(f"API startup complete (provider={engine.provider.name})")

        yield

        logger.info("Shutting down Taleweaver API...")
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper
        await engine.aclose()
        logger.info("API shutdown complete")

    app = FastAPI(
        title="Taleweaver API",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.server.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Catch-all exception handler to prevent stack traces in API responses."""
        logger.error(f"Unhandled exception in {request.method} {request.url.path}: {type(exc).__name__}: {str(exc)}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc),
            },
        )

    return app


app = create_app()
