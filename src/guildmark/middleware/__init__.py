"""Middleware registration."""

from fastapi import FastAPI

from guildmark.config import Settings
from guildmark.middleware.error_handler import setup_error_handlers
from guildmark.middleware.logging import setup_logging
from guildmark.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register logging, error handlers and request-id propagation."""
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
