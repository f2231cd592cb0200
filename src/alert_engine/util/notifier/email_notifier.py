import asyncio
import logging
import smtplib
from email.message import EmailMessage

from alert_engine.exception import DispatchError
from alert_engine.schema.notification_schema import NotificationEvent
from alert_engine.util.notifier.base import BaseNotifier


class EmailNotifier(BaseNotifier):
    def __init__(
        self,
        channel_id: str,
        smtp_host: str,
        smtp_port: int,
        from_addr: str,
        to_addrs: list[str],
        username: str | None = None,
        password: str | None = None,
        use_starttls: bool = True,
        enabled: bool = True,
    ):
        super().__init__(channel_id=channel_id, enabled=enabled)
        self.logger = logging.getLogger("EmailNotifier")
        self.smtp_host = smtp_host
        self.smtp_port = int(smtp_port)
        self.from_addr = from_addr
        self.to_addrs = list(to_addrs)
        self.username = username
        self.password = password
        self.use_starttls = use_starttls

    async def send(self, event: NotificationEvent) -> bool:
        if not self.enabled:
            self.logger.debug(f"[{self.channel_id}] Email notifier is disabled, skipping")
            return False

        if not self.to_addrs:
            raise DispatchError("No recipients configured", channel_id=self.channel_id)

        self.logger.info(f"[{self.channel_id}] Send Email: [{event.severity}] {event.rule_name} → {event.new_state}")

        loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._send_email_sync, event)
        except (smtplib.SMTPException, OSError) as e:
            raise DispatchError(f"SMTP delivery failed: {e}", channel_id=self.channel_id) from e

        self.logger.info(f"[{self.channel_id}] Successfully sent: {event.rule_name}")
        return True

    def build_message(self, event: NotificationEvent) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = f"[{event.new_state.value}][{event.severity.value}] {event.rule_name}"
        msg["From"] = self.from_addr
        msg["To"] = ", ".join(self.to_addrs)
        msg.set_content(
            f"{event.description}\n\n"
            f"Rule:            {event.rule_name}\n"
            f"State:           {event.previous_state.value} -> {event.new_state.value}\n"
            f"Severity:        {event.severity.value}\n"
            f"Time:            {event.timestamp.strftime('%Y-%m-%d %H:%M:%S %Z')}\n"
            f"Failing periods: {event.met_count}/{event.periods}\n"
        )
        return msg

    def _send_email_sync(self, event: NotificationEvent):
        msg = self.build_message(event)

        with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
            if self.use_starttls:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(msg)
