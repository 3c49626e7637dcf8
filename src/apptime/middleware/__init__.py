"""Middleware registration."""

from fastapi import FastAPI

from apptime.config import Settings
from apptime.middleware.error_handler import setup_error_handlers
from apptime.middleware.logging import setup_logging
from apptime.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure logging, register error handlers and request id tagging."""
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
