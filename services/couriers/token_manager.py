# services/couriers/token_manager.py

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from urllib.parse import urlencode

import httpx

from .common import AccessToken, Credentials
from .errors import AuthError, CarrierUnavailableError, FailureKind
from .token_store import CredentialStore


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _preview(token: str) -> str:
    return f"{token[:12]}..." if token else "<empty>"


class TokenManager:
    """
    Hands out a valid OAuth access token for one carrier account.

    Refreshes run one at a time: callers that find the token expired while a
    refresh is already running wait on the lock and then reuse its result.
    A rejected refresh puts the manager in a failed state; every call raises
    AuthError until `reconfigure` or `exchange_authorization_code` succeeds.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        oauth_url: str,
        store: CredentialStore,
        safety_margin_seconds: int = 60,
        redirect_uri: str = "",
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.http = http
        self.oauth_url = oauth_url.rstrip("/")
        self.store = store
        self.safety_margin_seconds = safety_margin_seconds
        self.redirect_uri = redirect_uri
        self.clock = clock
        self._token: Optional[AccessToken] = None
        self._loaded = False
        self._lock = asyncio.Lock()
        self._auth_failure: Optional[AuthError] = None
        self.refresh_count = 0

    def seed(self, token: AccessToken):
        """Installs a token obtained elsewhere (e.g. a static token from settings)."""
        self._token = token

    def _usable(self, token: Optional[AccessToken]) -> bool:
        return token is not None and not token.is_expired(self.clock(), self.safety_margin_seconds)

    async def get_valid_token(self) -> AccessToken:
        if self._auth_failure:
            raise self._auth_failure
        token = self._token
        if self._usable(token):
            return token
        return await self._refresh_if_current(token)

    async def force_refresh(self, rejected: AccessToken) -> AccessToken:
        """Called after a 401. Does nothing if someone already replaced the rejected token."""
        if self._auth_failure:
            raise self._auth_failure
        return await self._refresh_if_current(rejected, force=True)

    async def _refresh_if_current(self, seen: Optional[AccessToken], force: bool = False) -> AccessToken:
        async with self._lock:
            if self._auth_failure:
                raise self._auth_failure

            if not self._loaded:
                stored = await self.store.load()
                self._loaded = True
                if stored and (self._token is None or stored.expires_at > self._token.expires_at):
                    self._token = stored

            current = self._token
            if current is not seen and self._usable(current):
                # Another caller refreshed while we were waiting.
                return current
            if not force and self._usable(current):
                return current

            token = await self._refresh()
            return token

    async def _refresh(self) -> AccessToken:
        credentials: Credentials = self.store.credentials
        refresh_token = credentials.refresh_token.get_secret_value()
        if not refresh_token:
            self._fail("No refresh token configured for the carrier account")

        logging.info(f"Requesting a new carrier access token for client {credentials.client_id}")
        data = await self._token_request({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret.get_secret_value(),
        })
        return await self._install(data)

    async def exchange_authorization_code(self, code: str) -> AccessToken:
        """
        Trades an OAuth authorization code for a token pair. Any earlier auth
        failure stays in place until the new pair has been stored.
        """
        credentials = self.store.credentials
        async with self._lock:
            data = await self._token_request({
                "grant_type": "authorization_code",
                "client_id": credentials.client_id,
                "client_secret": credentials.client_secret.get_secret_value(),
                "redirect_uri": self.redirect_uri,
                "code": code,
            }, fatal=False)
            token = await self._install(data)
            self._auth_failure = None
            self._loaded = True
            return token

    def authorization_url(self, state: str, scopes: list) -> str:
        query = urlencode({
            "client_id": self.store.credentials.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "state": state,
            "scope": " ".join(scopes),
        })
        return f"{self.oauth_url}/authorize?{query}"

    def reconfigure(self, credentials: Credentials):
        self.store.replace_credentials(credentials)
        self._token = None
        self._loaded = True
        self._auth_failure = None

    async def _token_request(self, body: dict, fatal: bool = True) -> dict:
        try:
            response = await self.http.post(f"{self.oauth_url}/token", json=body)
        except httpx.TransportError as e:
            logging.error(f"Carrier token endpoint unreachable: {e}")
            raise CarrierUnavailableError(f"Token endpoint unreachable: {e}", FailureKind.TRANSIENT_NETWORK, attempts=1)

        if response.status_code >= 500 or response.status_code == 429:
            kind = FailureKind.RATE_LIMITED if response.status_code == 429 else FailureKind.SERVER_ERROR
            logging.error(f"Carrier token endpoint failed with HTTP {response.status_code}")
            raise CarrierUnavailableError(
                f"Token endpoint returned HTTP {response.status_code}", kind,
                status_code=response.status_code, attempts=1,
            )

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if response.status_code >= 400 or not data.get("access_token"):
            reason = data.get("error_description") or data.get("error") or data.get("message") or f"HTTP {response.status_code}"
            message = f"Carrier rejected the token request: {reason}"
            if not fatal:
                # A bad authorization code says nothing about the token we hold.
                logging.error(message)
                raise AuthError(message, details=data)
            self._fail(message, details=data)
        return data

    async def _install(self, data: dict) -> AccessToken:
        expires_in = int(data.get("expires_in") or 3600)
        token = AccessToken(
            value=data["access_token"],
            expires_at=self.clock() + timedelta(seconds=expires_in),
        )
        await self.store.save(token, refresh_token=data.get("refresh_token"))
        self._token = token
        self.refresh_count += 1
        logging.info(
            f"Carrier token {_preview(data['access_token'])} obtained, expires at {token.expires_at.isoformat()}"
        )
        return token

    def _fail(self, message: str, details=None):
        logging.error(message)
        self._auth_failure = AuthError(message, details=details)
        self._token = None
        raise self._auth_failure
