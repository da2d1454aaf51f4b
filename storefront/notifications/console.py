"""Console sender for development and tests"""
from storefront.common.logging_setup import get_logger
from storefront.notifications.base import ChannelResult, NotificationRequest, NotificationResult, NotificationSender, RecipientInfo

logger = get_logger("storefront.notifications")


class ConsoleNotificationSender(NotificationSender):
    """Logs the notification instead of delivering it."""

    def __init__(self, channel: str):
        self.channel = channel

    async def send(self, request: NotificationRequest, recipient: RecipientInfo) -> NotificationResult:
        logger.info("notification.console.sent", extra={
            "channel": self.channel,
            "to": request.to,
            "template": request.template,
            "template_keys": sorted(request.template_data),
        })
        return NotificationResult(channel_results=[ChannelResult(channel=self.channel, success=True)])
