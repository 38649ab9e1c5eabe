"""Google Fit aggregate step fetcher.

API base: https://www.googleapis.com/fitness/v1

Endpoint used:
    POST /users/me/dataset:aggregate — aggregate com.google.step_count.delta
                                       over one time bucket

Response shape (abridged)::

    {"bucket": [
        {"dataset": [
            {"point": [{"value": [{"intVal": 4321}]}]}
        ]}
    ]}
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import httpx

from steptrack.steps.base import StepDataFetcher
from steptrack.steps.config_loader import get_sync_config
from steptrack.steps.errors import NetworkError, ProviderError, Unauthorized
from steptrack.steps.windows import to_epoch_millis

logger = logging.getLogger("steptrack.steps.providers.google_fit")


class GoogleFitFetcher(StepDataFetcher):
    """Fetch aggregate step counts from the Google Fit REST API."""

    SOURCE_ID = "google_fit"

    def __init__(
        self,
        aggregate_url: str | None = None,
        data_type: str | None = None,
        timeout_seconds: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            aggregate_url:   Endpoint override (defaults to sync_config.yaml).
            data_type:       Aggregated data type name.
            timeout_seconds: Per-request timeout; a hung call becomes NetworkError.
            http_client:     Optional pre-configured httpx client (for testing).
        """
        provider_cfg = get_sync_config().provider
        self._aggregate_url = aggregate_url or provider_cfg.aggregate_url
        self._data_type = data_type or provider_cfg.data_type
        self._timeout = timeout_seconds or provider_cfg.http_timeout_seconds
        self._http_client = http_client

    async def fetch_steps(
        self, access_token: str, start: datetime, end: datetime
    ) -> int:
        """Return the total step count in ``[start, end)``.

        Args:
            access_token: Valid Google OAuth2 access token.
            start:        Window start (inclusive).
            end:          Window end (exclusive).

        Raises:
            Unauthorized:  HTTP 401 — the access token must be refreshed.
            ProviderError: Any other non-2xx response.
            NetworkError:  Timeout, transport or decoding failure, redirect loop,
                           or a non-JSON body.
        """
        body = self.build_request_body(start, end)
        try:
            response = await self._post(body, access_token)
        except httpx.TimeoutException as exc:
            raise NetworkError(
                f"Google Fit request timed out after {self._timeout}s"
            ) from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"Failed to reach Google Fit: {exc}") from exc
        except httpx.RequestError as exc:
            raise NetworkError(
                f"Google Fit request failed ({type(exc).__name__}): {exc}"
            ) from exc

        if response.status_code == 401:
            logger.warning("Google Fit API returned 401 - token expired")
            raise Unauthorized("Google Fit rejected the access token")
        if response.is_error:
            message = _provider_message(response)
            logger.error(
                "Google Fit API error (HTTP %d): %s", response.status_code, message
            )
            raise ProviderError(
                f"Google Fit API error: {message}", status_code=response.status_code
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise NetworkError("Google Fit returned a non-JSON body") from exc

        total = self.parse_step_total(payload)
        logger.debug("Google Fit: %d steps between %s and %s", total, start, end)
        return total

    def build_request_body(self, start: datetime, end: datetime) -> dict[str, Any]:
        """Aggregate request covering the whole window as a single bucket."""
        start_ms = to_epoch_millis(start)
        end_ms = to_epoch_millis(end)
        return {
            "aggregateBy": [{"dataTypeName": self._data_type}],
            "bucketByTime": {"durationMillis": end_ms - start_ms},
            "startTimeMillis": start_ms,
            "endTimeMillis": end_ms,
        }

    @classmethod
    def parse_step_total(cls, payload: Any) -> int:
        """Sum every point's first ``intVal`` across all datasets and buckets.

        This is a pure function.  Missing or malformed pieces count as zero.
        """
        if not isinstance(payload, dict):
            return 0

        total = 0
        for bucket in _as_list(payload.get("bucket")):
            if not isinstance(bucket, dict):
                continue
            for dataset in _as_list(bucket.get("dataset")):
                if not isinstance(dataset, dict):
                    continue
                for point in _as_list(dataset.get("point")):
                    if not isinstance(point, dict):
                        continue
                    values = _as_list(point.get("value"))
                    if values and isinstance(values[0], dict):
                        total += cls._safe_int(values[0].get("intVal"))
        return total

    # ------------------------------------------------------------------
    # Private HTTP helper
    # ------------------------------------------------------------------

    async def _post(self, body: dict[str, Any], access_token: str) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }
        if self._http_client:
            return await self._http_client.post(
                self._aggregate_url, json=body, headers=headers, timeout=self._timeout
            )
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(self._aggregate_url, json=body, headers=headers)


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _provider_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or "Unknown error"
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return str(body["error"].get("message") or "Unknown error")
    return "Unknown error"
