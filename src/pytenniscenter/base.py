"""Shared HTTP behavior for services talking to the portal."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from .const import BASE_URL, DEFAULT_HEADERS, SESSION_COOKIE
from .exceptions import AuthError, NetworkError, ValidationError

_DEFAULT_TIMEOUT = aiohttp.ClientTimeout(total=30)
_REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})


@dataclass(frozen=True, slots=True)
class RawResponse:
    status: int
    text: str
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def is_redirect(self) -> bool:
        return self.status in _REDIRECT_STATUSES

    def header_values(self, name: str) -> list[str]:
        getall = getattr(self.headers, "getall", None)
        if getall is not None:
            return list(getall(name, []))
        value = self.headers.get(name)
        return [value] if value is not None else []


class BasePortalService:
    """Base class holding the HTTP session and request plumbing."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        base_url: str | None = None,
        timeout: aiohttp.ClientTimeout | None = None,
        retry_count: int = 0,
    ) -> None:
        if session is None:
            raise ValidationError("Session is required.")
        self._session = session
        self._base_url = self._normalize_base_url(base_url)
        self._timeout = timeout or _DEFAULT_TIMEOUT
        self._retry_count = max(0, retry_count)

    @property
    def base_url(self) -> str:
        return self._base_url

    def _build_url(self, path: str) -> str:
        if not isinstance(path, str) or not path:
            raise ValidationError("Path must be a non-empty string.")
        if path.startswith("http://") or path.startswith("https://"):
            raise ValidationError("Use relative paths when building portal requests.")
        normalized_path = path if path.startswith("/") else f"/{path}"
        return f"{self._base_url}{normalized_path}"

    def _build_headers(self, session_id: str | None = None, **extra: str) -> dict[str, str]:
        headers = dict(DEFAULT_HEADERS)
        if session_id:
            headers["Cookie"] = f"{SESSION_COOKIE}={session_id}"
        headers.update(extra)
        return headers

    async def _request_text(self, method: str, path: str, **kwargs: Any) -> str:
        response = await self._request_raw(method, path, **kwargs)
        self._raise_for_status(response.status)
        return response.text

    async def _request_raw(
        self,
        method: str,
        path: str,
        *,
        allow_redirects: bool = True,
        **kwargs: Any,
    ) -> RawResponse:
        url = self._build_url(path)
        retries = self._retry_count if method.upper() == "GET" else 0
        attempts = retries + 1
        last_error: Exception | None = None
        for attempt in range(attempts):
            try:
                async with self._session.request(
                    method,
                    url,
                    timeout=self._timeout,
                    allow_redirects=allow_redirects,
                    **kwargs,
                ) as response:
                    text = await response.text()
                    return RawResponse(
                        status=response.status,
                        text=text,
                        headers=response.headers,
                    )
            except (aiohttp.ClientError, TimeoutError) as exc:
                last_error = exc
                if attempt >= attempts - 1:
                    raise NetworkError(
                        "Network request failed.",
                        error_code="transport",
                        detail=f"{method} {url} failed: {exc}",
                    ) from exc
        raise NetworkError("Network request failed.") from last_error

    def _raise_for_status(self, status: int) -> None:
        if 200 <= status < 300:
            return
        if status in (401, 403):
            raise AuthError("Authentication failed.", error_code="session_expired")
        raise NetworkError(
            f"Portal request failed with status {status}.",
            error_code="http_status",
        )

    def _normalize_base_url(self, base_url: str | None) -> str:
        if base_url is None:
            return BASE_URL
        if not isinstance(base_url, str) or not base_url.strip():
            raise ValidationError("base_url must be a non-empty string.")
        return base_url.strip().rstrip("/")
