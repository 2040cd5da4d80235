from typing import Optional

from fastapi import HTTPException, Request, status, Header

from medreminder.core import security
from medreminder.core.config import settings
from medreminder.reminders.coordinator import ReminderCoordinator
from medreminder.reminders.dispatcher import NotificationDispatcher
from medreminder.reminders.lifecycle import LifecycleMonitor


def verify_api_key_dependency(
    x_api_key: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None)
) -> bool:
    """
    Dependency to verify API key for specific endpoints
    """
    if not settings.REQUIRE_API_KEY:
        return True

    # Extract API key from headers
    api_key = None
    if x_api_key:
        api_key = x_api_key
    elif authorization and authorization.startswith("Bearer "):
        api_key = authorization.split(" ", 1)[1]

    if not api_key or not security.verify_api_key(api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )

    return True


def _runtime(request: Request, name: str):
    component = getattr(request.app.state, name, None)
    if component is None:
        raise HTTPException(status_code=503, detail="Reminder runtime not started")
    return component


def get_coordinator(request: Request) -> ReminderCoordinator:
    return _runtime(request, "coordinator")


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return _runtime(request, "dispatcher")


def get_lifecycle_monitor(request: Request) -> LifecycleMonitor:
    return _runtime(request, "lifecycle")
