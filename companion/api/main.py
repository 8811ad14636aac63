"""
Knowledge Companion FastAPI Application
=======================================

REST API around the grounded-answer core.

Endpoints:
    GET  /api/health          - Health check
    POST /api/chat            - Grounded answer with citations
    POST /api/ingest          - Add or refresh a document
    POST /api/feedback        - Record answer feedback
    GET  /api/feedback/gaps   - Knowledge gaps and suggestions

Usage:
    uvicorn companion.api.main:app --reload --port 8000

    Or with CLI:
    python -m companion.api.main
"""

from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from typing import Optional
import logging
import os

from .. import __version__
from ..config import get_settings
from ..logging_config import setup_logging
from ..services import Services, build_services
from .models import HealthResponse
from .routes import router

logger = logging.getLogger(__name__)


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the application.

    Args:
        services: Pre-built services (tests). Built from settings at startup
            when omitted, and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = services is None
        if owned:
            settings = get_settings()
            setup_logging(
                level=settings.logging.level,
                json_output=settings.logging.json_logs,
                log_file=settings.logging.log_file,
            )
            app.state.services = build_services(settings)
        else:
            app.state.services = services

        logger.info("Knowledge Companion API started")

        yield

        if owned:
            app.state.services.close()
        logger.info("Shutting down Knowledge Companion API...")

    app = FastAPI(
        title="Knowledge Companion API",
        description="Grounded answers over a tenant's knowledge base",
        version=__version__,
        lifespan=lifespan,
    )

    # CORS_ORIGINS: comma-separated extra origins
    origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
    extra_origins = os.getenv("CORS_ORIGINS", "")
    if extra_origins:
        origins.extend([o.strip() for o in extra_origins.split(",") if o.strip()])

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    @app.get("/api/health", response_model=HealthResponse)
    async def health_check(request: Request):
        """
        Health check endpoint.

        Reports the database, cache, embedding model and completion
        provider. The service is degraded (not down) when any is missing.
        """
        current: Services = request.app.state.services

        if current.db is not None:
            database = current.db.check_health()["status"]
        else:
            database = "in_memory"

        cache = current.cache.backend if current.cache is not None else "disabled"
        completion = "configured" if current.llm is not None else "not_configured"
        embedding_model = str(current.embedder.tag)

        degraded = (
            database == "disconnected"
            or current.llm is None
            or current.embedder.provider is None
        )

        return HealthResponse(
            status="degraded" if degraded else "healthy",
            version=__version__,
            database=database,
            cache=cache,
            embedding_model=embedding_model,
            completion=completion,
            chunks=current.chunks.stats() if database != "disconnected" else None,
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "companion.api.main:app",
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", "8000")),
        reload=False,
    )
