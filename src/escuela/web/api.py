"""FastAPI application factory.

Main entry point for the school Web API.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from escuela import __version__
from escuela.config.app_config import AppConfig, load_app_config
from escuela.core.services import build_services
from escuela.db.document_store import DocumentStore
from escuela.errors import EscuelaError
from escuela.utils.dates import Clock, utc_now
from escuela.web.errors import domain_error_handler
from escuela.web.routes import (
    health_router,
    users_router,
    courses_router,
    sections_router,
    lessons_router,
    tasks_router,
    exams_router,
    attendance_router,
    grading_router,
    enrollment_router,
    home_router,
    contact_router,
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan context manager for startup/shutdown events."""
    # Startup
    store: DocumentStore = app.state.services.store
    logger.info(
        "api_startup",
        db_path=str(store.root.absolute()),
        collections=store.collections(),
        leads_enabled=app.state.services.leads.enabled,
    )
    yield
    # Shutdown (nothing to do for now)


def create_app(config: AppConfig | None = None, clock: Clock = utc_now) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Application config; loaded from disk when omitted
        clock: Time source shared by all services

    Returns:
        Configured FastAPI app instance
    """
    config = config or load_app_config()

    app = FastAPI(
        title="Escuela Bíblica API",
        description="Web API for the online bible school",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    store = DocumentStore(config.storage.db_path)
    app.state.config = config
    app.state.services = build_services(store, config, clock)

    # CORS middleware for web clients
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(EscuelaError, domain_error_handler)

    # Include routers
    app.include_router(health_router)
    app.include_router(users_router)
    app.include_router(courses_router)
    app.include_router(sections_router)
    app.include_router(lessons_router)
    app.include_router(tasks_router)
    app.include_router(exams_router)
    app.include_router(attendance_router)
    app.include_router(grading_router)
    app.include_router(enrollment_router)
    app.include_router(home_router)
    app.include_router(contact_router)

    return app


# Default app instance for uvicorn
app = create_app()
