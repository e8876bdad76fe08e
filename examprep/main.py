"""
Main application entry point for the ExamPrep platform.

This module builds the FastAPI application, wires the exam services to the
configured repository backend and registers the routers and exception
handlers.

Usage:
    - Direct: python -m examprep.main
    - ASGI server: uvicorn examprep.main:app
"""

import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from examprep.api import main_router, register_exception_handlers, register_module
from examprep.common.db import close_database, get_session_factory, initialize_database
from examprep.common.logger import app_logger, configure_logger
from examprep.config import Settings, settings as default_settings
from examprep.exams.hierarchy import ContentHierarchy
from examprep.exams.lifecycle import SubmissionLifecycle
from examprep.exams.memory_repository import MemoryContentRepository, MemorySubmissionRepository
from examprep.exams.router import router as exams_router
from examprep.exams.scoring import ScoringAggregator
from examprep.exams.sql_repository import SqlContentRepository, SqlSubmissionRepository

# Setup module logger
logger = app_logger.getChild("main")

register_module("exams", exams_router)


def wire_services(app: FastAPI, content, submissions, settings: Settings) -> None:
    """Attach the exam services built on the given repositories to ``app.state``."""
    app.state.content_repository = content
    app.state.submission_repository = submissions
    app.state.hierarchy = ContentHierarchy(content, settings.CREATOR_EDIT_FAMILIES)
    app.state.lifecycle = SubmissionLifecycle(
        content,
        submissions,
        allow_multiple_submissions=settings.ALLOW_MULTIPLE_SUBMISSIONS
    )
    app.state.aggregator = ScoringAggregator(content, submissions)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        settings: Settings to use instead of the environment-loaded defaults
    """
    settings = settings or default_settings
    configure_logger(
        name="examprep",
        level=settings.LOG_LEVEL,
        use_json=settings.LOG_JSON,
        log_file=settings.LOG_FILE or None
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Initialize storage and services on startup and release them on shutdown.
        """
        try:
            if settings.REPOSITORY_BACKEND == "memory":
                wire_services(app, MemoryContentRepository(), MemorySubmissionRepository(), settings)
                logger.info("Using in-memory repositories")
            else:
                await initialize_database(
                    database_url=settings.DATABASE_URL,
                    echo=settings.SQL_ECHO,
                    pool_size=settings.DB_POOL_SIZE,
                    max_overflow=settings.DB_MAX_OVERFLOW,
                    pool_timeout=settings.DB_POOL_TIMEOUT,
                    create_schema=settings.DATABASE_URL.startswith("sqlite")
                )
                session_factory = get_session_factory()
                wire_services(
                    app,
                    SqlContentRepository(session_factory),
                    SqlSubmissionRepository(session_factory),
                    settings
                )
            logger.info("Application startup complete")
        except Exception as e:
            logger.error(f"Failed to initialize application: {str(e)}")
            raise

        yield

        if settings.REPOSITORY_BACKEND != "memory":
            await close_database()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title=f"{settings.PROJECT_NAME} API",
        description="API for composing, submitting and grading IELTS and PTE tests",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.settings = settings

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(main_router, prefix=settings.API_V1_STR)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {"message": f"Welcome to the {settings.PROJECT_NAME} API"}

    logger.info(f"Application initialized with {len(app.routes)} routes")
    return app


app = create_app()

# Entry point for running the application directly
if __name__ == "__main__":
    import uvicorn

    # Get configuration from environment or use defaults
    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", 8000))
    reload_enabled = os.environ.get("RELOAD", "true").lower() == "true"

    logger.info(f"Starting server on {host}:{port} (reload: {reload_enabled})")

    uvicorn.run(
        "examprep.main:app",
        host=host,
        port=port,
        reload=reload_enabled,
        log_level="info"
    )
