"""FastAPI application with lifespan and router mounting."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from stepflow import __version__
from stepflow.api.errors import register_error_handlers
from stepflow.api.routes import document_sets, health, jobs, reviews, steps, uploads, users
from stepflow.core.config import AppSettings
from stepflow.core.logging import configure_logging
from stepflow.core.protocols import ICacheBackend, IEntityStore, IFileStore
from stepflow.persistence import create_persistence
from stepflow.workflow.documents import DocumentLibrary
from stepflow.workflow.orchestrator import WorkflowOrchestrator
from stepflow.workflow.users import UserDirectory, read_seed_users

logger = logging.getLogger(__name__)

Persistence = tuple[IEntityStore, ICacheBackend, IFileStore]


def create_app(
    settings: AppSettings | None = None,
    persistence: Persistence | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    ``persistence`` overrides the backends selected by ``settings.backend``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Initialize and tear down application resources."""
        resolved = settings or AppSettings()
        configure_logging(resolved.log_level)
        store, cache, file_store = persistence or create_persistence(resolved)

        directory = UserDirectory(store)
        if resolved.seed_users_path:
            directory.register_all(read_seed_users(resolved.seed_users_path))

        app.state.settings = resolved
        app.state.store = store
        app.state.cache = cache
        app.state.file_store = file_store
        app.state.directory = directory
        app.state.orchestrator = WorkflowOrchestrator(
            store=store, cache=cache, settings=resolved,
        )
        app.state.documents = DocumentLibrary(store=store, settings=resolved)
        logger.info(
            "StepFlow API started (environment=%s, backend=%s)",
            resolved.environment, resolved.backend,
        )
        yield

    app = FastAPI(
        title="StepFlow Approval Workflow",
        version=__version__,
        lifespan=lifespan,
    )
    register_error_handlers(app)
    app.include_router(health.router)
    app.include_router(jobs.router, prefix="/jobs")
    app.include_router(steps.router)
    app.include_router(uploads.router, prefix="/uploads")
    app.include_router(reviews.router, prefix="/reviews")
    app.include_router(users.router)
    app.include_router(document_sets.router, prefix="/document-sets")
    return app
