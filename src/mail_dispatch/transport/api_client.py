"""Async JSON client for the case-management backend."""

from __future__ import annotations

import json
import logging
from types import TracebackType
from typing import Any

import httpx

from mail_dispatch.core.config import ApiSettings
from mail_dispatch.core.errors import ApiError, TransportError

LOGGER = logging.getLogger(__name__)

_MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


class ApiClient:
    """Thin wrapper around :class:`httpx.AsyncClient`.

    Forwards the session cookie, adds the CSRF header on mutating calls and
    maps failures onto :class:`TransportError` and :class:`ApiError`.

    Example:
        >>> async with ApiClient(settings.api) as client:
        ...     sources = await client.get("/kerne/informationskilder/")
    """

    def __init__(
        self,
        settings: ApiSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Create the underlying HTTP client.

        Args:
            settings: Backend connection settings.
            transport: Optional transport, used by tests to route requests
                to an in-process application.
        """
        self._settings = settings
        cookies: dict[str, str] = {}
        if settings.session_id:
            cookies[settings.session_cookie_name] = settings.session_id
        if settings.csrf_token:
            cookies[settings.csrf_cookie_name] = settings.csrf_token
        self._client = httpx.AsyncClient(
            base_url=settings.base_url.rstrip("/"),
            timeout=settings.timeout_seconds,
            cookies=cookies,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        """Release pooled connections."""
        await self._client.aclose()

    def _csrf_token(self) -> str | None:
        return (
            self._client.cookies.get(self._settings.csrf_cookie_name)
            or self._settings.csrf_token
        )

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
    ) -> Any:
        """Send a request and return the decoded JSON payload.

        Returns ``None`` for 204 and empty bodies.

        Raises:
            TransportError: The request never reached the backend.
            ApiError: The backend answered with a non-2xx status.
        """
        method = method.upper()
        headers: dict[str, str] = {}
        if method in _MUTATING_METHODS:
            token = self._csrf_token()
            if token:
                headers[self._settings.csrf_header_name] = token
            else:
                LOGGER.debug("No CSRF token available for %s %s", method, path)

        LOGGER.debug("%s %s params=%s", method, path, params)
        try:
            response = await self._client.request(
                method,
                path,
                params=params,
                json=json_body,
                headers=headers,
            )
        except httpx.TransportError as exc:
            LOGGER.warning("%s %s did not reach the backend: %s", method, path, exc)
            raise TransportError(f"Could not reach backend: {exc}") from exc

        if not response.is_success:
            detail = _extract_detail(response)
            LOGGER.warning(
                "%s %s failed with HTTP %s: %s",
                method,
                path,
                response.status_code,
                detail,
            )
            raise ApiError(response.status_code, detail)

        if response.status_code == httpx.codes.NO_CONTENT or not response.content:
            return None
        try:
            return response.json()
        except json.JSONDecodeError as exc:
            raise ApiError(
                response.status_code, "Backend returned invalid JSON"
            ) from exc

    async def get(self, path: str, *, params: dict[str, Any] | None = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json_body: Any = None) -> Any:
        return await self.request("POST", path, json_body=json_body)

    async def patch(self, path: str, json_body: Any = None) -> Any:
        return await self.request("PATCH", path, json_body=json_body)

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)


def _extract_detail(response: httpx.Response) -> str | None:
    """Return the server supplied message of an error response, if parseable."""
    try:
        payload = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if isinstance(payload, dict):
        for key in ("detail", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return json.dumps(payload, ensure_ascii=False) if payload else None
    if isinstance(payload, str) and payload.strip():
        return payload.strip()
    if isinstance(payload, list) and payload:
        return "; ".join(str(entry) for entry in payload)
    return None


__all__ = ["ApiClient"]
