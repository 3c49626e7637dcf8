"""Shared FastAPI dependencies."""

from fastapi import Request

from apptime.database import get_session as _get_session
from apptime.notifications.dispatcher import NotificationDispatcher

get_db = _get_session


def get_dispatcher(request: Request) -> NotificationDispatcher | None:
    """Notification dispatcher started by the app lifespan, if any."""
    return getattr(request.app.state, "dispatcher", None)
