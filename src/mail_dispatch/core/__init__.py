"""Core utilities for configuration, logging, errors, and timers."""

from .config import AppSettings, load_app_settings
from .errors import (
    ApiError,
    DispatchError,
    PayloadError,
    TransportError,
    ValidationError,
)
from .logging import configure_logging
from .notices import Notice, NoticeBoard, NoticeLevel
from .scheduling import Debouncer, PeriodicPoller

__all__ = [
    "ApiError",
    "AppSettings",
    "Debouncer",
    "DispatchError",
    "Notice",
    "NoticeBoard",
    "NoticeLevel",
    "PayloadError",
    "PeriodicPoller",
    "TransportError",
    "ValidationError",
    "configure_logging",
    "load_app_settings",
]
