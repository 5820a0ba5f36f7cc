"""Request authentication for DAV sessions."""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator

import httpx

from dav_mcp.config import PasswordCredentials, RemoteCredentials, TokenCredentials
from dav_mcp.dav.errors import RemoteTokenRefreshError, response_error_text

DEFAULT_TOKEN_LIFETIME_S = 3600
# Tokens are renewed this long before the server-declared expiry.
EXPIRY_MARGIN_S = 60
MIN_TOKEN_LIFETIME_S = 30


class OAuthRefreshAuth(httpx.Auth):
    """Bearer auth backed by an OAuth2 refresh token.

    The token exchange is yielded through the auth flow, so it shares the
    DAV client's transport. A 401 from the DAV server triggers one forced
    exchange and a single retry of the request.
    """

    def __init__(self, credentials: TokenCredentials) -> None:
        self._credentials = credentials
        self._access_token: str | None = None
        self._renew_at = 0.0

    @property
    def has_fresh_token(self) -> bool:
        return self._access_token is not None and time.monotonic() < self._renew_at

    def _token_request(self) -> httpx.Request:
        return httpx.Request(
            "POST",
            self._credentials.token_url,
            data={
                "client_id": self._credentials.client_id,
                "client_secret": self._credentials.client_secret,
                "refresh_token": self._credentials.refresh_token,
                "grant_type": "refresh_token",
            },
            headers={"Accept": "application/json"},
        )

    def _store_token(self, response: httpx.Response) -> None:
        if not response.is_success:
            raise RemoteTokenRefreshError(
                f"OAuth token refresh failed ({response.status_code}): "
                f"{response_error_text(response)}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise RemoteTokenRefreshError("OAuth token endpoint returned invalid JSON") from exc

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(token, str) or not token.strip():
            raise RemoteTokenRefreshError("OAuth token response has no access_token")

        lifetime = payload.get("expires_in")
        if isinstance(lifetime, bool) or not isinstance(lifetime, int | float) or lifetime <= 0:
            lifetime = DEFAULT_TOKEN_LIFETIME_S
        self._access_token = token.strip()
        self._renew_at = time.monotonic() + max(lifetime - EXPIRY_MARGIN_S, MIN_TOKEN_LIFETIME_S)

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        if not self.has_fresh_token:
            token_response = yield self._token_request()
            await token_response.aread()
            self._store_token(token_response)

        request.headers["Authorization"] = f"Bearer {self._access_token}"
        response = yield request
        if response.status_code != 401:
            return

        token_response = yield self._token_request()
        await token_response.aread()
        self._store_token(token_response)
        request.headers["Authorization"] = f"Bearer {self._access_token}"
        yield request


def auth_for(credentials: RemoteCredentials) -> httpx.Auth:
    """The httpx auth matching the credential mode."""
    if isinstance(credentials, TokenCredentials):
        return OAuthRefreshAuth(credentials)
    if isinstance(credentials, PasswordCredentials):
        return httpx.BasicAuth(credentials.username, credentials.password)
    raise TypeError(f"Unsupported credentials: {type(credentials).__name__}")
