"""Authenticated portal session handling."""

from __future__ import annotations

import logging

import aiohttp

from .base import BasePortalService
from .const import (
    AUTHENTICITY_TOKEN_FIELD,
    COURT_INVITATION_ENDPOINT,
    LOGIN_ENDPOINT,
    LOGIN_PAGE_ENDPOINT,
    STORAGE_KEY_SESSION,
    STORAGE_KEY_TOKEN,
    UTF8_FIELD,
    UTF8_VALUE,
)
from .exceptions import AuthError, NetworkError, ValidationError
from .models import Credentials, SessionToken
from .parser import extract_authenticity_token, extract_session_id
from .storage import KeyValueStore, MemoryStore
from .util import mask_session_id

_LOGGER = logging.getLogger(__name__)


class SessionStore:
    """Persists the current session token under two fixed keys.

    Both keys are written and removed in a single storage call, and a
    half-present token reads as absent.
    """

    def __init__(self, storage: KeyValueStore) -> None:
        self._storage = storage

    @classmethod
    def create(cls, storage: KeyValueStore | None = None) -> SessionStore:
        return cls(storage if storage is not None else MemoryStore())

    def load(self) -> SessionToken | None:
        authenticity_token = self._storage.get(STORAGE_KEY_TOKEN)
        session_id = self._storage.get(STORAGE_KEY_SESSION)
        if not isinstance(authenticity_token, str) or not authenticity_token:
            return None
        if not isinstance(session_id, str) or not session_id:
            return None
        return SessionToken(authenticity_token=authenticity_token, session_id=session_id)

    def save(self, token: SessionToken) -> None:
        self._storage.update(
            {
                STORAGE_KEY_TOKEN: token.authenticity_token,
                STORAGE_KEY_SESSION: token.session_id,
            }
        )

    def clear(self) -> None:
        self._storage.remove((STORAGE_KEY_TOKEN, STORAGE_KEY_SESSION))


class SessionManager(BasePortalService):
    """Acquires, validates and refreshes the portal session for a credential pair.

    Concurrent callers holding a stale token may each log in again; the last
    token written wins and the portal accepts either.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        store: SessionStore,
        *,
        base_url: str | None = None,
        timeout: aiohttp.ClientTimeout | None = None,
        retry_count: int = 0,
    ) -> None:
        super().__init__(session, base_url=base_url, timeout=timeout, retry_count=retry_count)
        self._store = store

    @property
    def store(self) -> SessionStore:
        return self._store

    async def acquire_session(self, credentials: Credentials) -> SessionToken:
        """Return a valid token, logging in when the stored one is missing or stale."""
        self._validate_credentials(credentials)
        token = self._store.load()
        if token is not None:
            if await self._is_valid(token):
                return token
            _LOGGER.debug("Stored session %s is stale", mask_session_id(token.session_id))
            self._store.clear()
        token = await self._login(credentials)
        self._store.save(token)
        return token

    async def force_refresh(self, credentials: Credentials) -> SessionToken:
        self._store.clear()
        return await self.acquire_session(credentials)

    async def _is_valid(self, token: SessionToken) -> bool:
        try:
            response = await self._request_raw(
                "GET",
                COURT_INVITATION_ENDPOINT,
                allow_redirects=False,
                headers=self._build_headers(token.session_id),
            )
        except NetworkError as exc:
            _LOGGER.warning("Session probe failed, logging in again: %s", exc)
            return False
        return not response.is_redirect and response.status not in (401, 403)

    async def _login(self, credentials: Credentials) -> SessionToken:
        _LOGGER.debug("Login started")
        try:
            login_page = await self._request_raw("GET", LOGIN_PAGE_ENDPOINT, headers=self._build_headers())
        except NetworkError as exc:
            raise AuthError("Could not load the login page.", error_code="network_error") from exc
        form_token = extract_authenticity_token(login_page.text)
        if not form_token:
            raise AuthError(
                "Login page did not include an authenticity token.",
                error_code="missing_authenticity_token",
            )

        payload = {
            UTF8_FIELD: UTF8_VALUE,
            AUTHENTICITY_TOKEN_FIELD: form_token,
            "login": credentials.email,
            "p_id": credentials.user_id,
        }
        pre_login_session = extract_session_id(login_page.header_values("Set-Cookie"))
        try:
            response = await self._request_raw(
                "POST",
                LOGIN_ENDPOINT,
                data=payload,
                allow_redirects=False,
                headers=self._build_headers(pre_login_session),
            )
        except NetworkError as exc:
            raise AuthError("Login request failed.", error_code="network_error") from exc
        session_id = extract_session_id(response.header_values("Set-Cookie"))
        if not session_id:
            raise AuthError(
                "Login response did not set a session cookie.",
                error_code="missing_session_cookie",
            )

        try:
            page = await self._request_raw(
                "GET",
                COURT_INVITATION_ENDPOINT,
                allow_redirects=False,
                headers=self._build_headers(session_id),
            )
        except NetworkError as exc:
            raise AuthError("Could not load the booking page.", error_code="network_error") from exc
        if page.is_redirect:
            raise AuthError("Login was rejected by the portal.", error_code="login_rejected")
        authenticity_token = extract_authenticity_token(page.text) or form_token
        _LOGGER.debug("Login completed with session %s", mask_session_id(session_id))
        return SessionToken(authenticity_token=authenticity_token, session_id=session_id)

    def _validate_credentials(self, credentials: Credentials) -> None:
        if not isinstance(credentials, Credentials):
            raise ValidationError("credentials must be a Credentials instance.")
        if not credentials.email:
            raise ValidationError("email is required.")
        if not credentials.user_id:
            raise ValidationError("user_id is required.")
