"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires all services, registers routers, and runs startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from housing.controllers.accommodation_controller import router as accommodation_router
from housing.controllers.attendance_controller import router as attendance_router
from housing.controllers.auth_controller import router as auth_router
from housing.repository.allocation_store import AllocationStore
from housing.repository.data_repository import DataRepository
from housing.services.allocation_service import AccommodationAllocationService
from housing.services.auth_service import AuthService
from housing.services.policy_service import AllocationPolicyService
from housing.services.verification_service import VerificationGuard
from housing.utils.config import Settings, get_settings
from housing.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Every service shares one repository and one allocation store, and is
    exposed on app.state for dependency resolution.
    """
    settings = settings or get_settings()

    # --- Repository and ledger ---
    repository = DataRepository(settings)
    store = AllocationStore(repository)

    # --- Services ---
    policy_service = AllocationPolicyService(repository=repository, settings=settings)
    allocation_service = AccommodationAllocationService(
        repository=repository,
        settings=settings,
        store=store,
        policy_service=policy_service,
    )
    verification_service = VerificationGuard(
        repository=repository,
        settings=settings,
        store=store,
    )
    auth_service = AuthService(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app, settings)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(auth_router)
    app.include_router(accommodation_router)
    app.include_router(attendance_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.repository = repository
    app.state.allocation_store = store
    app.state.policy_service = policy_service
    app.state.allocation_service = allocation_service
    app.state.verification_service = verification_service
    app.state.auth_service = auth_service

    return app


def _startup(app: FastAPI, settings: Settings) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    The schema must exist before the optional demo seed runs.
    """
    repository: DataRepository = app.state.repository

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if settings.demo_seed_enabled:
        logger.info("Startup: seeding demo rooms and registrants (skipped if Rooms not empty)")
        repository.seed_demo_data()

    logger.info("Startup complete; accommodation engine ready")


# Module-level app object for uvicorn
app = create_app()
