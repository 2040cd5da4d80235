from contextlib import asynccontextmanager
import logging
import sys

import uvicorn
from fastapi import FastAPI, Request
from prometheus_fastapi_instrumentator import Instrumentator

from medreminder.core.config import settings
from medreminder.db.base import Base
from medreminder.db.session import SessionLocal, engine
from medreminder.reminders.api import router as reminders_router
from medreminder.reminders.coordinator import ReminderCoordinator
from medreminder.reminders.dispatcher import NotificationDispatcher
from medreminder.reminders.lifecycle import LifecycleMonitor
from medreminder.reminders.repository import ReminderStore
from medreminder.reminders.scheduler import LocalScheduler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)


def build_runtime(app: FastAPI, dispatcher: NotificationDispatcher = None, session_factory=SessionLocal) -> None:
    """Wire store, dispatcher, scheduler, coordinator and lifecycle monitor onto ``app.state``."""
    dispatcher = dispatcher or NotificationDispatcher()
    store = ReminderStore(session_factory)
    scheduler = LocalScheduler(dispatcher)
    coordinator = ReminderCoordinator(store, scheduler, dispatcher)
    app.state.dispatcher = dispatcher
    app.state.scheduler = scheduler
    app.state.coordinator = coordinator
    app.state.lifecycle = LifecycleMonitor(coordinator.resynchronize)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info(f"Starting up {settings.PROJECT_NAME} {settings.VERSION}...")
    Base.metadata.create_all(bind=engine)

    if getattr(app.state, "coordinator", None) is None:
        build_runtime(app)
    if settings.WATCHDOG_ENABLED:
        app.state.lifecycle.start_watchdog()
        logger.info(f"[Lifecycle] Sleep watchdog running every {settings.WATCHDOG_INTERVAL_SECONDS:.0f}s")

    yield

    logger.info("Shutting down, cancelling local reminder timers...")
    await app.state.lifecycle.stop()
    await app.state.scheduler.shutdown()
    app.state.coordinator.cancel_all()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    app = FastAPI(title=settings.PROJECT_NAME, version=settings.VERSION, lifespan=lifespan)
    app.include_router(reminders_router, tags=["reminders"])

    @app.get("/health")
    async def health_check(request: Request):
        scheduler = getattr(request.app.state, "scheduler", None)
        return {
            "status": "healthy",
            "version": settings.VERSION,
            "activeSlots": len(scheduler.active_handles()) if scheduler else 0,
            "emailConfigured": settings.smtp_configured,
        }

    if settings.METRICS_ENABLED:
        Instrumentator().instrument(app).expose(app, endpoint="/metrics")
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "medreminder.main:app",
        host=settings.SERVICE_HOST,
        port=settings.SERVICE_PORT,
        log_level="info",
    )
