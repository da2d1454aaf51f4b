"""Notification sender interface; delivery transports live behind it."""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class RecipientInfo:
    email: Optional[str] = None
    phone_number: Optional[str] = None
    name: Optional[str] = None


@dataclass
class NotificationRequest:
    to: str
    template: str
    template_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ChannelResult:
    channel: str
    success: bool
    error: Optional[str] = None


@dataclass
class NotificationResult:
    channel_results: List[ChannelResult] = field(default_factory=list)

    @property
    def any_succeeded(self) -> bool:
        return any(r.success for r in self.channel_results)


class NotificationSender(ABC):
    """Abstract base class for notification senders"""

    channel: str

    @abstractmethod
    async def send(self, request: NotificationRequest, recipient: RecipientInfo) -> NotificationResult:
        """
        Deliver a templated notification.

        Returns a result per channel attempted; a sender never raises for a
        delivery failure, it reports it in the channel result instead.
        """
        pass
