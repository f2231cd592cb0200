import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from alert_engine.exception import TelemetryQueryError
from alert_engine.model.enum.condition_enum import (
    AggregationScope,
    AggregationType,
    ConditionOperator,
    CriteriaKind,
)
from alert_engine.schema.telemetry_schema import QueryDescriptor
from alert_engine.telemetry.http_telemetry_client import HttpTelemetryClient

WINDOW_END = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
WINDOW_START = WINDOW_END - timedelta(minutes=5)


@pytest.fixture
def descriptor():
    return QueryDescriptor(
        rule_name="cpu_high",
        kind=CriteriaKind.STATIC_THRESHOLD,
        metric="host.cpu",
        aggregation=AggregationType.AVERAGE,
        scope=AggregationScope.WINDOW,
        operator=ConditionOperator.GREATER_THAN,
        threshold=80.0,
    )


def _client(handler, api_key=None) -> HttpTelemetryClient:
    transport = httpx.MockTransport(handler)
    return HttpTelemetryClient(
        url="http://telemetry.local/query",
        api_key=api_key,
        client=httpx.AsyncClient(transport=transport),
    )


class TestHttpTelemetryClient:

    @pytest.mark.asyncio
    async def test_when_backend_answers_then_result_parsed(self, descriptor):
        # Arrange
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"series": [70.0, 90.0], "value": None, "bucket_count": 2})

        client = _client(handler, api_key="k-123")

        # Act
        result = await client.query(WINDOW_START, WINDOW_END, descriptor)
        await client.close()

        # Assert
        assert result.series == [70.0, 90.0]
        assert result.bucket_count == 2
        assert seen["auth"] == "Bearer k-123"
        assert seen["body"]["window_start"] == WINDOW_START.isoformat()
        assert seen["body"]["descriptor"]["metric"] == "host.cpu"
        assert "query" not in seen["body"]["descriptor"]

    @pytest.mark.asyncio
    async def test_when_backend_errors_then_telemetry_query_error(self, descriptor):
        # Arrange
        client = _client(lambda request: httpx.Response(503, text="overloaded"))

        # Act / Assert
        with pytest.raises(TelemetryQueryError, match="503") as exc_info:
            await client.query(WINDOW_START, WINDOW_END, descriptor)
        assert exc_info.value.rule_name == "cpu_high"

    @pytest.mark.asyncio
    async def test_when_response_malformed_then_telemetry_query_error(self, descriptor):
        # Arrange
        client = _client(lambda request: httpx.Response(200, json={"bucket_count": -1}))

        # Act / Assert
        with pytest.raises(TelemetryQueryError, match="Malformed"):
            await client.query(WINDOW_START, WINDOW_END, descriptor)

    @pytest.mark.asyncio
    async def test_when_connection_fails_then_telemetry_query_error(self, descriptor):
        # Arrange
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = _client(handler)

        # Act / Assert
        with pytest.raises(TelemetryQueryError, match="request failed"):
            await client.query(WINDOW_START, WINDOW_END, descriptor)

    @pytest.mark.asyncio
    async def test_when_url_missing_then_telemetry_query_error(self, descriptor):
        # Arrange
        client = HttpTelemetryClient(url="")

        # Act / Assert
        with pytest.raises(TelemetryQueryError, match="not configured"):
            await client.query(WINDOW_START, WINDOW_END, descriptor)
        await client.close()
