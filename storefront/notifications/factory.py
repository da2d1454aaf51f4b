"""Notification sender factory - returns the sender configured for a channel."""
from typing import Dict

from storefront.config.settings import config_settings
from storefront.notifications.base import NotificationSender
from storefront.notifications.console import ConsoleNotificationSender
from storefront.otp.constants import NotificationChannel

_senders: Dict[str, NotificationSender] = {}


def get_sender(channel) -> NotificationSender:
    channel = NotificationChannel(channel).value
    sender = _senders.get(channel)
    if sender is None:
        provider = config_settings.NOTIFICATION_PROVIDER.lower()
        if provider != "console":
            raise ValueError(f"unsupported notification provider: {provider}")
        sender = ConsoleNotificationSender(channel)
        _senders[channel] = sender
    return sender
