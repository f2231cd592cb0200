from abc import ABC, abstractmethod

from alert_engine.schema.notification_schema import NotificationEvent


class BaseNotifier(ABC):
    """
    Base class for all notification channels.
    Each instance is registered under a channel ID that rules refer to.
    """

    def __init__(self, channel_id: str, enabled: bool = True):
        self.channel_id = channel_id
        self.enabled = enabled

    @abstractmethod
    async def send(self, event: NotificationEvent) -> bool:
        """
        Send notification.

        Returns:
            bool: True if delivered

        Raises:
            DispatchError: delivery failed
        """
        ...

    @property
    def notifier_type(self) -> str:
        """Return notifier type name for logging"""
        return self.__class__.__name__
