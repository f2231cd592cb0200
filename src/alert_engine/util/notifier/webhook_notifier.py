import logging

import httpx

from alert_engine.exception import DispatchError
from alert_engine.schema.notification_schema import NotificationEvent
from alert_engine.util.notifier.base import BaseNotifier


class WebhookNotifier(BaseNotifier):
    """
    Generic JSON webhook channel.
    Subclasses may override `_build_payload`, `_get_headers` and `_is_success`
    for platform-specific formats.
    """

    def __init__(
        self,
        channel_id: str,
        url: str,
        enabled: bool = True,
        timeout_sec: float = 5.0,
        headers: dict[str, str] | None = None,
    ):
        super().__init__(channel_id=channel_id, enabled=enabled)
        self.logger = logging.getLogger(self.__class__.__name__)
        self.url = url
        self.timeout_sec = timeout_sec
        self.extra_headers = dict(headers or {})

    async def send(self, event: NotificationEvent) -> bool:
        if not self.enabled:
            self.logger.debug(f"[{self.channel_id}] Notifier is disabled, skipping")
            return False

        if not self.url:
            raise DispatchError("Webhook URL not configured", channel_id=self.channel_id)

        payload = self._build_payload(event)
        headers = self._get_headers()

        try:
            async with httpx.AsyncClient(timeout=self.timeout_sec) as client:
                response = await client.post(self.url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise DispatchError(f"Timeout after {self.timeout_sec}s", channel_id=self.channel_id) from e
        except httpx.HTTPError as e:
            raise DispatchError(f"Request failed: {e}", channel_id=self.channel_id) from e

        if not self._is_success(response):
            raise DispatchError(
                f"Failed with status {response.status_code}: {response.text[:200]}", channel_id=self.channel_id
            )

        self.logger.info(f"[{self.channel_id}] Successfully sent: {event.rule_name} → {event.new_state}")
        return True

    def _build_payload(self, event: NotificationEvent) -> dict:
        return {
            "rule": event.rule_name,
            "state": event.new_state.value,
            "previous_state": event.previous_state.value,
            "severity": event.severity.value,
            "timestamp": event.timestamp.isoformat(),
            "description": event.description,
            "value": event.value,
            "failing_periods": f"{event.met_count}/{event.periods}",
            "sequence": event.sequence,
        }

    def _get_headers(self) -> dict:
        return {"Content-Type": "application/json", **self.extra_headers}

    def _is_success(self, response: httpx.Response) -> bool:
        return 200 <= response.status_code < 300
