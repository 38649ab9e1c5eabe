"""Tests for the Google Fit fetcher — request shape, parsing, and error mapping."""

from __future__ import annotations

from datetime import date
from unittest.mock import AsyncMock, MagicMock
from zoneinfo import ZoneInfo

import httpx
import pytest

from steptrack.steps.errors import NetworkError, ProviderError, Unauthorized
from steptrack.steps.providers.google_fit import GoogleFitFetcher
from steptrack.steps.tests.conftest import TEST_DATE, UTC, json_response
from steptrack.steps.windows import day_window


@pytest.fixture
def fit_fetcher(mock_httpx_client: MagicMock) -> GoogleFitFetcher:
    return GoogleFitFetcher(timeout_seconds=5, http_client=mock_httpx_client)


def _payload(*values: object) -> dict:
    return {
        "bucket": [
            {"dataset": [{"point": [{"value": [{"intVal": v}]} for v in values]}]}
        ]
    }


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


class TestParseStepTotal:
    def test_sums_all_points(self) -> None:
        assert GoogleFitFetcher.parse_step_total(_payload(4000, 321, 6000)) == 10321

    def test_sums_across_buckets_and_datasets(self) -> None:
        payload = {
            "bucket": [
                {"dataset": [{"point": [{"value": [{"intVal": 10}]}]}]},
                {"dataset": [
                    {"point": [{"value": [{"intVal": 20}]}]},
                    {"point": [{"value": [{"intVal": 30}]}]},
                ]},
            ]
        }
        assert GoogleFitFetcher.parse_step_total(payload) == 60

    def test_empty_payload_is_zero(self) -> None:
        assert GoogleFitFetcher.parse_step_total({}) == 0
        assert GoogleFitFetcher.parse_step_total({"bucket": []}) == 0

    def test_non_dict_payload_is_zero(self) -> None:
        assert GoogleFitFetcher.parse_step_total(None) == 0
        assert GoogleFitFetcher.parse_step_total(["bucket"]) == 0

    def test_malformed_pieces_count_as_zero(self) -> None:
        payload = {
            "bucket": [
                "not-a-bucket",
                {"dataset": None},
                {"dataset": [{"point": "nope"}]},
                {"dataset": [{"point": [
                    {"value": []},
                    {"value": ["x"]},
                    {"value": [{"fpVal": 1.5}]},
                    {"value": [{"intVal": None}]},
                    {"value": [{"intVal": "abc"}]},
                    {"value": [{"intVal": True}]},
                    {"value": [{"intVal": 42}]},
                ]}]},
            ]
        }
        assert GoogleFitFetcher.parse_step_total(payload) == 42

    def test_numeric_string_int_val_is_counted(self) -> None:
        assert GoogleFitFetcher.parse_step_total(_payload("1500")) == 1500

    def test_only_first_value_is_read(self) -> None:
        payload = {"bucket": [{"dataset": [{"point": [
            {"value": [{"intVal": 7}, {"intVal": 1000}]}
        ]}]}]}
        assert GoogleFitFetcher.parse_step_total(payload) == 7


# ---------------------------------------------------------------------------
# Request body
# ---------------------------------------------------------------------------


class TestRequestBody:
    def test_single_bucket_covers_window(self, fit_fetcher: GoogleFitFetcher) -> None:
        start, end = day_window(TEST_DATE, UTC)
        body = fit_fetcher.build_request_body(start, end)
        assert body["aggregateBy"] == [{"dataTypeName": "com.google.step_count.delta"}]
        assert body["endTimeMillis"] - body["startTimeMillis"] == 86_400_000
        assert body["bucketByTime"]["durationMillis"] == 86_400_000
        assert body["startTimeMillis"] == 1771804800000  # 2026-02-23T00:00:00Z

    def test_dst_day_bucket_is_23_hours(self, fit_fetcher: GoogleFitFetcher) -> None:
        start, end = day_window(date(2026, 3, 8), ZoneInfo("America/New_York"))
        body = fit_fetcher.build_request_body(start, end)
        assert body["bucketByTime"]["durationMillis"] == 23 * 3_600_000


# ---------------------------------------------------------------------------
# HTTP behaviour (mocked client)
# ---------------------------------------------------------------------------


class TestFetchSteps:
    @pytest.mark.asyncio
    async def test_returns_total_and_sends_bearer_token(
        self, fit_fetcher: GoogleFitFetcher, mock_httpx_client: MagicMock
    ) -> None:
        mock_httpx_client.post = AsyncMock(return_value=json_response(200, _payload(1200, 34)))
        start, end = day_window(TEST_DATE, UTC)

        steps = await fit_fetcher.fetch_steps("access-abc", start, end)

        assert steps == 1234
        mock_httpx_client.post.assert_awaited_once()
        kwargs = mock_httpx_client.post.call_args.kwargs
        assert kwargs["headers"]["Authorization"] == "Bearer access-abc"
        assert kwargs["timeout"] == 5
        assert kwargs["json"]["startTimeMillis"] == 1771804800000

    @pytest.mark.asyncio
    async def test_401_raises_unauthorized(
        self, fit_fetcher: GoogleFitFetcher, mock_httpx_client: MagicMock
    ) -> None:
        mock_httpx_client.post = AsyncMock(
            return_value=json_response(401, {"error": {"message": "Invalid Credentials"}})
        )
        start, end = day_window(TEST_DATE, UTC)
        with pytest.raises(Unauthorized):
            await fit_fetcher.fetch_steps("expired", start, end)

    @pytest.mark.asyncio
    async def test_500_raises_provider_error_with_message(
        self, fit_fetcher: GoogleFitFetcher, mock_httpx_client: MagicMock
    ) -> None:
        mock_httpx_client.post = AsyncMock(
            return_value=json_response(500, {"error": {"message": "Backend Error"}})
        )
        start, end = day_window(TEST_DATE, UTC)
        with pytest.raises(ProviderError, match="Backend Error") as info:
            await fit_fetcher.fetch_steps("token", start, end)
        assert info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_403_is_provider_error_not_unauthorized(
        self, fit_fetcher: GoogleFitFetcher, mock_httpx_client: MagicMock
    ) -> None:
        mock_httpx_client.post = AsyncMock(return_value=json_response(403, text="forbidden"))
        start, end = day_window(TEST_DATE, UTC)
        with pytest.raises(ProviderError) as info:
            await fit_fetcher.fetch_steps("token", start, end)
        assert not isinstance(info.value, Unauthorized)
        assert info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_timeout_raises_network_error(
        self, fit_fetcher: GoogleFitFetcher, mock_httpx_client: MagicMock
    ) -> None:
        mock_httpx_client.post = AsyncMock(side_effect=httpx.ReadTimeout("timed out"))
        start, end = day_window(TEST_DATE, UTC)
        with pytest.raises(NetworkError, match="timed out"):
            await fit_fetcher.fetch_steps("token", start, end)

    @pytest.mark.asyncio
    async def test_connection_failure_raises_network_error(
        self, fit_fetcher: GoogleFitFetcher, mock_httpx_client: MagicMock
    ) -> None:
        mock_httpx_client.post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        start, end = day_window(TEST_DATE, UTC)
        with pytest.raises(NetworkError):
            await fit_fetcher.fetch_steps("token", start, end)

    @pytest.mark.asyncio
    async def test_corrupt_compressed_body_raises_network_error(
        self, fit_fetcher: GoogleFitFetcher, mock_httpx_client: MagicMock
    ) -> None:
        mock_httpx_client.post = AsyncMock(
            side_effect=httpx.DecodingError("Error -3 while decompressing data")
        )
        start, end = day_window(TEST_DATE, UTC)
        with pytest.raises(NetworkError, match="DecodingError"):
            await fit_fetcher.fetch_steps("token", start, end)

    @pytest.mark.asyncio
    async def test_redirect_loop_raises_network_error(
        self, fit_fetcher: GoogleFitFetcher, mock_httpx_client: MagicMock
    ) -> None:
        mock_httpx_client.post = AsyncMock(side_effect=httpx.TooManyRedirects("loop"))
        start, end = day_window(TEST_DATE, UTC)
        with pytest.raises(NetworkError, match="TooManyRedirects"):
            await fit_fetcher.fetch_steps("token", start, end)

    @pytest.mark.asyncio
    async def test_non_json_body_raises_network_error(
        self, fit_fetcher: GoogleFitFetcher, mock_httpx_client: MagicMock
    ) -> None:
        mock_httpx_client.post = AsyncMock(return_value=json_response(200, text="<html>"))
        start, end = day_window(TEST_DATE, UTC)
        with pytest.raises(NetworkError):
            await fit_fetcher.fetch_steps("token", start, end)

    @pytest.mark.asyncio
    async def test_mock_transport_round_trip(self) -> None:
        """Works against a real AsyncClient with a mocked transport."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_payload(900))

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            fetcher = GoogleFitFetcher(http_client=client)
            start, end = day_window(TEST_DATE, UTC)
            assert await fetcher.fetch_steps("tok", start, end) == 900

        assert seen[0].url.path.endswith("/dataset:aggregate")
        assert seen[0].headers["authorization"] == "Bearer tok"
