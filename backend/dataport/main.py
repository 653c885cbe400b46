"""FastAPI application bootstrap."""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dataport.api.routers import column_mappings, health, jobs, products, uploads
from dataport.core.config import get_settings
from dataport.core.logging_setup import configure_logging

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Instantiate the FastAPI app and include top-level routers."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(title=settings.app_name, version="0.1.0")

    cors_origins = settings.cors_origins
    logger.info(f"[CORS] Allowed origins: {cors_origins}")

    # Origins from CORS_ORIGINS (comma-separated); localhost for development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(uploads.router, prefix="/api/imports", tags=["imports"])
    app.include_router(jobs.router, prefix="/api/jobs", tags=["jobs"])
    app.include_router(products.router, prefix="/api/products", tags=["products"])
    app.include_router(
        column_mappings.router, prefix="/api/admin/clients", tags=["admin"]
    )

    return app


app = create_app()
