"""Google OAuth2 token provider.

Only the refresh grant lives here; the authorization-code handshake is
handled by the login flow outside this service, which hands the resulting
tokens to ``steptrack.steps.accounts``.

Token endpoint: https://oauth2.googleapis.com/token
"""

from __future__ import annotations

import logging
from datetime import timedelta

import httpx

from steptrack.config import get_settings
from steptrack.steps.base import OAuthTokens, TokenProvider, utc_now
from steptrack.steps.config_loader import get_sync_config
from steptrack.steps.errors import RefreshDenied

logger = logging.getLogger("steptrack.steps.providers.google_oauth")


class GoogleTokenProvider(TokenProvider):
    """Exchanges Google refresh tokens for fresh access tokens.

    Google normally omits ``refresh_token`` from refresh responses.  In
    that case the returned OAuthTokens carries ``refresh_token=None`` and
    ``User.apply_tokens`` leaves the stored refresh token untouched.
    """

    SOURCE_ID = "google_fit"

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        token_url: str | None = None,
        timeout_seconds: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the token provider.

        Args:
            client_id:       OAuth2 client ID (GOOGLE_CLIENT_ID setting).
            client_secret:   OAuth2 client secret (GOOGLE_CLIENT_SECRET setting).
            token_url:       Token endpoint override (defaults to sync_config.yaml).
            timeout_seconds: Per-request timeout (defaults to sync_config.yaml).
            http_client:     Optional pre-configured httpx client (for testing).
        """
        settings = get_settings()
        provider_cfg = get_sync_config().provider
        self._client_id = client_id or settings.google_client_id
        self._client_secret = client_secret or settings.google_client_secret
        self._token_url = token_url or provider_cfg.token_url
        self._timeout = timeout_seconds or provider_cfg.http_timeout_seconds
        self._http_client = http_client

    async def refresh(self, refresh_token: str | None) -> OAuthTokens:
        """Exchange a refresh token for a new Google access token.

        Args:
            refresh_token: The user's stored refresh token.

        Returns:
            OAuthTokens; ``refresh_token`` is set only if Google rotated it.

        Raises:
            RefreshDenied: Missing token, rejected grant, network failure, or
                           a response without an access token.
        """
        if not refresh_token:
            raise RefreshDenied("No refresh token available")

        logger.info("Google: refreshing access token")
        form = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }

        try:
            response = await self._post(form)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            detail = _error_description(exc.response)
            logger.error(
                "Google token refresh rejected (HTTP %d): %s",
                exc.response.status_code,
                detail,
            )
            raise RefreshDenied(f"Failed to refresh access token: {detail}") from exc
        except httpx.HTTPError as exc:
            logger.error("Google token refresh failed: %s", exc)
            raise RefreshDenied(f"Failed to refresh access token: {exc}") from exc
        except ValueError as exc:
            raise RefreshDenied("Token endpoint returned a non-JSON body") from exc

        access_token = data.get("access_token") if isinstance(data, dict) else None
        if not access_token:
            raise RefreshDenied("Token endpoint response carried no access_token")

        expires_in = data.get("expires_in")
        expires_at = None
        if isinstance(expires_in, (int, float)):
            expires_at = utc_now() + timedelta(seconds=expires_in)

        logger.info("Google: access token refreshed")
        return OAuthTokens(
            access_token=access_token,
            refresh_token=data.get("refresh_token") or None,
            expires_at=expires_at,
            token_type=data.get("token_type", "Bearer"),
            scope=str(data.get("scope", "")).split(),
        )

    # ------------------------------------------------------------------
    # Private HTTP helper
    # ------------------------------------------------------------------

    async def _post(self, form: dict[str, str]) -> httpx.Response:
        if self._http_client:
            return await self._http_client.post(
                self._token_url, data=form, timeout=self._timeout
            )
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(self._token_url, data=form)


def _error_description(response: httpx.Response) -> str:
    """Best-effort human-readable reason from an OAuth error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(
            body.get("error_description") or body.get("error") or body
        )
    return str(body)
