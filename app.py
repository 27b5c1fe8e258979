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
from zoneinfo import ZoneInfo

from fastapi import FastAPI

from backend.controllers.admin_controller import router as admin_router
from backend.controllers.reservation_controller import router as reservation_router
from backend.repository.data_repository import DataRepository
from backend.services.approval_service import AdminReservationService
from backend.services.auth_service import AuthService
from backend.services.capacity_service import CapacityAllocator
from backend.services.email_service import EmailService
from backend.services.expiration_service import ExpirationScheduler, ExpirationSweepService
from backend.services.notification_service import NotificationService
from backend.services.reservation_service import ReservationService
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Instantiates all services with explicit dependency injection via app.state.
    No global singletons; every dependency is traceable from this function.
    """
    settings = settings or get_settings()

    # --- Repository (one SQLite connection per unit of work) ---
    repository = DataRepository(settings)

    # --- Side effects (notifications and email), scheduled as background tasks ---
    email_service = EmailService(settings=settings)
    notification_service = NotificationService(
        repository=repository,
        email_service=email_service,
    )

    # --- Reservation lifecycle ---
    allocator = CapacityAllocator(ZoneInfo(settings.building_timezone))
    reservation_service = ReservationService(
        repository=repository,
        notification_service=notification_service,
        settings=settings,
        allocator=allocator,
    )
    admin_service = AdminReservationService(
        repository=repository,
        notification_service=notification_service,
        settings=settings,
        allocator=allocator,
    )
    sweep_service = ExpirationSweepService(repository=repository)
    scheduler = ExpirationScheduler(
        sweep_service,
        interval_seconds=settings.expiration_sweep_interval_seconds,
        initial_delay_seconds=settings.expiration_sweep_initial_delay_seconds,
    )
    auth_service = AuthService(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app, settings)
        if settings.expiration_sweep_enabled:
            await scheduler.start()
        try:
            yield
        finally:
            await scheduler.stop()
            logger.info("Shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(reservation_router)
    app.include_router(admin_router)

    @app.get("/health", tags=["health"])
    def health() -> dict[str, str]:
        return {"status": "ok", "version": settings.app_version}

    # --- Inject services into app.state for dependency resolution ---
    app.state.settings = settings
    app.state.repository = repository
    app.state.email_service = email_service
    app.state.notification_service = notification_service
    app.state.reservation_service = reservation_service
    app.state.admin_service = admin_service
    app.state.sweep_service = sweep_service
    app.state.auth_service = auth_service

    return app


def _startup(app: FastAPI, settings: Settings) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Order matters:
      1. Schema must exist before seeding.
      2. Demo amenities and residents are seeded only into empty tables.
      3. Open admin access is reported before the first request arrives.
    """
    repository: DataRepository = app.state.repository

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if settings.seed_demo_data:
        logger.info("Startup: seeding demo amenities and residents (skipped if present)")
        repository.seed_demo_data()

    auth_service: AuthService = app.state.auth_service
    if not auth_service.auth_enabled:
        logger.warning(
            "Startup: ADMIN_TOKEN is not set, admin endpoints accept any caller"
        )

    logger.info("Startup complete, system ready")


# Module-level app object for uvicorn
app = create_app()
