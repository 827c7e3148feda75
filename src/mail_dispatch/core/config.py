"""Application configuration models and loader utilities."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

from dotenv import dotenv_values
from pydantic import BaseModel, Field, model_validator


class ApiSettings(BaseModel):
    """Settings controlling connectivity to the case-management backend."""

    base_url: str = Field(
        default="http://localhost:8000/api", description="Backend API root URL"
    )
    timeout_seconds: float = Field(
        default=15.0, gt=0, description="Request timeout for backend calls"
    )
    session_id: str | None = Field(
        default=None, description="Existing session cookie value"
    )
    session_cookie_name: str = Field(
        default="sessionid", description="Name of the session cookie"
    )
    csrf_token: str | None = Field(
        default=None, description="CSRF token matching the session"
    )
    csrf_cookie_name: str = Field(
        default="csrftoken", description="Cookie holding the CSRF token"
    )
    csrf_header_name: str = Field(
        default="X-CSRFToken", description="Header carrying the CSRF token"
    )


class BasketSettings(BaseModel):
    """Settings for the per-case mail basket."""

    refresh_interval_seconds: float = Field(
        default=60.0, gt=0, description="Background basket refresh cadence"
    )
    title_debounce_seconds: float = Field(
        default=0.8,
        ge=0.0,
        description="Quiet period before a title override edit is persisted",
    )


class PresenceSettings(BaseModel):
    """Settings describing bridge heartbeat expectations."""

    heartbeat_interval_seconds: int = Field(
        default=300, gt=0, description="Expected heartbeat cadence per agent"
    )
    online_window_seconds: int = Field(
        default=420,
        gt=0,
        description="Agents seen within this window are considered online",
    )
    poll_interval_seconds: float = Field(
        default=30.0, gt=0, description="Agent and account list poll cadence"
    )

    @model_validator(mode="after")
    def _window_covers_heartbeat(self) -> PresenceSettings:
        if self.online_window_seconds <= self.heartbeat_interval_seconds:
            raise ValueError(
                "online_window_seconds must be longer than heartbeat_interval_seconds"
            )
        return self


class OutboxSettings(BaseModel):
    """Settings for the outgoing message list."""

    list_limit: int = Field(
        default=5, ge=1, description="Messages listed per case"
    )
    refresh_interval_seconds: float = Field(
        default=30.0, gt=0, description="Message list poll cadence"
    )


class PreparationSettings(BaseModel):
    """Settings for the mail preparation workflow."""

    confirmation_seconds: float = Field(
        default=2.0, ge=0.0, description="How long the success state is shown"
    )


class LoggingSettings(BaseModel):
    """Logging preferences."""

    level: str = Field(default="INFO", description="Root logging level")
    structured: bool = Field(
        default=False, description="Toggle JSON structured logging"
    )


class AppSettings(BaseModel):
    """Aggregated application configuration."""

    api: ApiSettings = Field(default_factory=ApiSettings)
    basket: BasketSettings = Field(default_factory=BasketSettings)
    presence: PresenceSettings = Field(default_factory=PresenceSettings)
    outbox: OutboxSettings = Field(default_factory=OutboxSettings)
    preparation: PreparationSettings = Field(default_factory=PreparationSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


ENV_PREFIX = "MAIL_DISPATCH_"


def _normalize_key(raw_key: str) -> list[str]:
    """Convert an environment variable key into a nested attribute path."""
    trimmed = raw_key.removeprefix(ENV_PREFIX)
    return [segment.lower() for segment in trimmed.split("__") if segment]


def _merge_into_tree(tree: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign a value to a nested dictionary given a path."""
    cursor = tree
    for segment in path[:-1]:
        next_node = cursor.setdefault(segment, {})
        cursor = cast(dict[str, Any], next_node)
    cursor[path[-1]] = value


def _normalize_value(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    if value == "":
        return None
    lowercase_value = value.lower()
    if lowercase_value == "true":
        return True
    if lowercase_value == "false":
        return False
    return value


def _collect_env_values(
    env_file: Path | str | None, *, include_environment: bool
) -> dict[str, Any]:
    """Load configuration values from environment variables and optional file."""
    collected: dict[str, Any] = {}

    file_values = {}
    if env_file:
        env_path = Path(env_file)
        if env_path.is_file():
            file_values = {
                key: value
                for key, value in dotenv_values(env_path).items()
                if key and key.startswith(ENV_PREFIX)
            }

    env_values = {}
    if include_environment:
        env_values = {
            key: value
            for key, value in os.environ.items()
            if key.startswith(ENV_PREFIX)
        }

    combined: dict[str, Any] = {**file_values, **env_values}

    for key, value in combined.items():
        path = _normalize_key(key)
        if not path:
            continue
        _merge_into_tree(collected, path, _normalize_value(value))

    return collected


@lru_cache(maxsize=1)
def load_app_settings(
    env_file: Path | str | None = None,
    include_environment: bool = True,
    **overrides: Any,
) -> AppSettings:
    """Load application settings, applying env files and overrides."""
    collected = _collect_env_values(
        env_file, include_environment=include_environment
    )
    if overrides:
        collected.update(overrides)
    return AppSettings.model_validate(collected)


__all__ = [
    "ApiSettings",
    "AppSettings",
    "BasketSettings",
    "LoggingSettings",
    "OutboxSettings",
    "PreparationSettings",
    "PresenceSettings",
    "load_app_settings",
]
