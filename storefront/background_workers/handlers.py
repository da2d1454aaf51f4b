from typing import Any, Callable, Dict

from storefront.auth.constants import WELCOME_TEMPLATE
from storefront.cart.repository import get_or_create_cart
from storefront.common.logging_setup import get_logger
from storefront.notifications.base import NotificationRequest, RecipientInfo
from storefront.notifications.factory import get_sender
from storefront.otp.constants import OtpPurpose
from storefront.otp.service import OtpService

logger = get_logger("storefront.outbox.handlers")

TOPIC_CART_CREATE = "cart.create"
TOPIC_WELCOME_NOTIFICATION = "notification.welcome"
TOPIC_OTP_CLEANUP = "otp.cleanup"


class PostRegistrationHandlers:
    """Side effects that follow a committed registration, one coroutine per outbox topic."""

    def __init__(self, session_factory: Callable[[], Any], otp_service: OtpService,
                 sender_factory: Callable = get_sender):
        self.session_factory = session_factory
        self.otp_service = otp_service
        self.sender_factory = sender_factory

    def registry(self) -> Dict[str, Callable]:
        return {
            TOPIC_CART_CREATE: self.create_cart,
            TOPIC_WELCOME_NOTIFICATION: self.send_welcome,
            TOPIC_OTP_CLEANUP: self.cleanup_otp,
        }

    async def create_cart(self, payload: Dict[str, Any]):
        async with self.session_factory() as session:
            cart_id = await get_or_create_cart(session, payload["user_id"])
        logger.info("cart.created_for_user", extra={"user_id": payload["user_id"], "cart_id": cart_id})

    async def send_welcome(self, payload: Dict[str, Any]):
        sender = self.sender_factory(payload["channel"])
        request = NotificationRequest(
            to=payload["to"],
            template=WELCOME_TEMPLATE,
            template_data={"name": payload.get("name"), "email": payload.get("email")},
        )
        recipient = RecipientInfo(email=payload.get("email"), phone_number=payload.get("phone_number"),
                                  name=payload.get("name"))
        result = await sender.send(request, recipient)
        if not result.any_succeeded:
            # raising lets the dispatcher retry with backoff
            raise RuntimeError(f"welcome notification not delivered on {payload['channel']}")

    async def cleanup_otp(self, payload: Dict[str, Any]):
        contact = payload["contact"]
        await self.otp_service.remove(contact, OtpPurpose(payload["purpose"]))
        await self.otp_service.clear_rate_limit(contact)
