import logging

from alert_engine.schema.notification_schema import (
    EmailChannelConfig,
    NotificationConfigSchema,
    WebhookChannelConfig,
)
from alert_engine.util.config_manager import ConfigManager
from alert_engine.util.notifier.base import BaseNotifier
from alert_engine.util.notifier.email_notifier import EmailNotifier
from alert_engine.util.notifier.webhook_notifier import WebhookNotifier

logger = logging.getLogger("NotifierFactory")


def build_notifiers(config_path: str) -> list[BaseNotifier]:
    """
    Build notification channels from config with Pydantic validation.

    Disabled channels are still built so that rules referencing them are
    skipped quietly instead of being reported as configuration drift.
    """
    raw_config: dict = ConfigManager.load_yaml_with_env(config_path)

    try:
        config = NotificationConfigSchema(**raw_config)
        logger.info("Notification config validated successfully")
    except Exception as e:
        logger.error(f"Invalid notification config: {e}")
        raise

    return build_notifiers_from_schema(config)


def build_notifiers_from_schema(config: NotificationConfigSchema) -> list[BaseNotifier]:
    notifiers: list[BaseNotifier] = []

    for channel_id, channel in config.channels.items():
        if isinstance(channel, WebhookChannelConfig):
            if channel.enabled and not channel.url:
                logger.warning(f"[WEBHOOK] {channel_id}: enabled but url is empty")
            notifiers.append(
                WebhookNotifier(
                    channel_id=channel_id,
                    url=channel.url,
                    enabled=channel.enabled,
                    timeout_sec=channel.timeout_sec,
                    headers=channel.headers,
                )
            )
        elif isinstance(channel, EmailChannelConfig):
            notifiers.append(
                EmailNotifier(
                    channel_id=channel_id,
                    smtp_host=channel.smtp_host,
                    smtp_port=channel.smtp_port,
                    from_addr=channel.from_addr,
                    to_addrs=channel.to_addrs,
                    username=channel.username,
                    password=channel.password,
                    use_starttls=channel.use_starttls,
                    enabled=channel.enabled,
                )
            )

    enabled = [n for n in notifiers if n.enabled]
    logger.info(f"Built {len(enabled)}/{len(notifiers)} enabled channels:")
    for n in notifiers:
        logger.info(f"  → {n.channel_id} ({n.notifier_type}, enabled={n.enabled})")

    return notifiers
