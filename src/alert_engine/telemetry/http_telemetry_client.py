import logging
from datetime import datetime

import httpx
from pydantic import ValidationError

from alert_engine.exception import TelemetryQueryError
from alert_engine.schema.telemetry_schema import AggregateResult, QueryDescriptor
from alert_engine.telemetry.base import TelemetryClient


class HttpTelemetryClient(TelemetryClient):
    """
    Telemetry backend reached over HTTP.

    Request (POST, JSON):
        {"window_start": ISO8601, "window_end": ISO8601, "descriptor": {...}}
    Response (JSON):
        {"series": [..], "value": float | null, "bucket_count": int | null}
    """

    def __init__(
        self,
        url: str,
        api_key: str | None = None,
        timeout_sec: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.url = url
        self.api_key = api_key
        self.timeout_sec = timeout_sec
        self._client = client or httpx.AsyncClient(timeout=timeout_sec)

    async def query(self, window_start: datetime, window_end: datetime, descriptor: QueryDescriptor) -> AggregateResult:
        if not self.url:
            raise TelemetryQueryError("Telemetry URL not configured", rule_name=descriptor.rule_name)

        payload = {
            "window_start": window_start.isoformat(),
            "window_end": window_end.isoformat(),
            "descriptor": descriptor.model_dump(mode="json", exclude_none=True),
        }

        try:
            response = await self._client.post(self.url, json=payload, headers=self._get_headers())
        except httpx.TimeoutException as e:
            raise TelemetryQueryError(
                f"Telemetry query timed out after {self.timeout_sec}s", rule_name=descriptor.rule_name
            ) from e
        except httpx.HTTPError as e:
            raise TelemetryQueryError(f"Telemetry request failed: {e}", rule_name=descriptor.rule_name) from e

        if response.status_code != 200:
            raise TelemetryQueryError(
                f"Telemetry returned status {response.status_code}: {response.text[:200]}",
                rule_name=descriptor.rule_name,
            )

        try:
            return AggregateResult.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise TelemetryQueryError(f"Malformed telemetry response: {e}", rule_name=descriptor.rule_name) from e

    async def close(self) -> None:
        await self._client.aclose()

    def _get_headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers
