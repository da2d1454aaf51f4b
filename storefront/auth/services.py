import asyncio
from typing import Any, Callable, Optional, Set

from sqlalchemy.exc import SQLAlchemyError

from storefront.auth.constants import (
    OTP_TEMPLATE,
    REGISTRATION_OTP_SENT_MESSAGE,
    RESET_OTP_SENT_MESSAGE,
    SEND_FAILED_MESSAGE,
    logger,
)
from storefront.auth.models import RegisterIn, ResetPasswordIn, VerifyOtpIn
from storefront.auth.password_crypto import PasswordCryptoError, encrypt
from storefront.auth.password_reset import PasswordResetCompleter
from storefront.auth.registration import RegistrationCompleter
from storefront.auth.utils import make_reset_token_plain
from storefront.common.result import ErrorCode, ServiceResult
from storefront.config.settings import config_settings
from storefront.notifications.base import NotificationRequest, RecipientInfo
from storefront.notifications.factory import get_sender
from storefront.otp.constants import TOO_MANY_REQUESTS_MESSAGE, OtpPurpose, VerifyStatus
from storefront.otp.exceptions import OtpStoreError, TooManyRequestsError
from storefront.otp.models import PasswordResetPayload, RegistrationPayload
from storefront.otp.service import OtpService, normalize_contact
from storefront.user.repository import contact_filter
from storefront.user.services import IdentityService

VERIFY_ERROR_CODES = {
    VerifyStatus.NOT_FOUND: ErrorCode.NOT_FOUND,
    VerifyStatus.EXPIRED: ErrorCode.EXPIRED,
    VerifyStatus.CHANNEL_MISMATCH: ErrorCode.CHANNEL_MISMATCH,
    VerifyStatus.MISMATCHED: ErrorCode.VALIDATION_FAILED,
    VerifyStatus.EXHAUSTED: ErrorCode.VALIDATION_FAILED,
    VerifyStatus.ALREADY_VERIFIED: ErrorCode.VALIDATION_FAILED,
}


def _throttled(e: TooManyRequestsError) -> ServiceResult:
    return ServiceResult.failure(TOO_MANY_REQUESTS_MESSAGE, ErrorCode.TOO_MANY_REQUESTS,
                                 data={"retry_after": e.retry_after_seconds})


def _store_down() -> ServiceResult:
    return ServiceResult.failure("Verification service is temporarily unavailable.", ErrorCode.INTERNAL_ERROR)


class AuthService:
    """
    Contact verification flows: request a code, then verify it and complete the
    pending registration or password reset it was issued for.
    """

    def __init__(self, otp_service: OtpService, session_factory: Callable[[], Any], *,
                 identity: Optional[IdentityService] = None,
                 sender_factory: Callable = get_sender,
                 encrypt_key: str = config_settings.PASSWORD_ENCRYPT_KEY,
                 default_role: str = config_settings.DEFAULT_ROLE,
                 tx_timeout: Optional[float] = None,
                 tx_isolation: Optional[str] = None):
        self.otp_service = otp_service
        self.session_factory = session_factory
        self.identity = identity or IdentityService()
        self.sender_factory = sender_factory
        self.encrypt_key = encrypt_key
        self._deliveries: Set[asyncio.Task] = set()
        self.registration = RegistrationCompleter(
            session_factory, self.identity, encrypt_key=encrypt_key, default_role=default_role,
            timeout=tx_timeout, isolation_level=tx_isolation)
        self.password_reset = PasswordResetCompleter(
            session_factory, self.identity, otp_service, encrypt_key=encrypt_key,
            timeout=tx_timeout, isolation_level=tx_isolation)

    async def _send_code(self, channel: str, to: str, code: str, purpose: OtpPurpose,
                         recipient: RecipientInfo) -> bool:
        sender = self.sender_factory(channel)
        request = NotificationRequest(
            to=to,
            template=OTP_TEMPLATE,
            template_data={
                "otp_code": code,
                "otp_type": purpose.value,
                "expires_in_minutes": self.otp_service.expiration_ms // 60000,
            },
        )
        try:
            result = await sender.send(request, recipient)
        except Exception:
            logger.exception("otp.notification.send_error", extra={"channel": channel, "to": to})
            return False
        return result.any_succeeded

    async def start_registration(self, data: RegisterIn) -> ServiceResult:
        contact = data.contact
        channel = data.otp_sent_channel.value
        logger.info("register.attempt", extra={"contact": contact, "channel": channel})

        try:
            payload = RegistrationPayload(
                email=data.email,
                phone_number=data.phone_number,
                first_name=data.first_name,
                last_name=data.last_name,
                gender=data.gender,
                date_of_birth=data.date_of_birth,
                encrypted_password=encrypt(data.password, self.encrypt_key),
                channel=channel,
            )
            code = await self.otp_service.issue(contact, OtpPurpose.REGISTRATION, channel, payload)
        except TooManyRequestsError as e:
            return _throttled(e)
        except PasswordCryptoError:
            logger.exception("register.password_encrypt_failed", extra={"contact": contact})
            return ServiceResult.failure(SEND_FAILED_MESSAGE, ErrorCode.INTERNAL_ERROR)
        except OtpStoreError:
            return _store_down()

        recipient = RecipientInfo(email=data.email, phone_number=data.phone_number,
                                  name=f"{data.first_name} {data.last_name}")
        if not await self._send_code(channel, contact, code, OtpPurpose.REGISTRATION, recipient):
            logger.error("register.otp_not_delivered", extra={"contact": contact, "channel": channel})
            return ServiceResult.failure(SEND_FAILED_MESSAGE, ErrorCode.INTERNAL_ERROR)

        return ServiceResult.ok(REGISTRATION_OTP_SENT_MESSAGE.format(channel=channel))

    async def start_password_reset(self, data: ResetPasswordIn) -> ServiceResult:
        """
        Issue a reset code for the contact. The response is the same whether or not
        an account exists, and delivery runs off the response path in both cases.
        """
        contact = data.contact
        channel = data.otp_sent_channel.value
        logger.info("password_reset.attempt", extra={"contact": contact, "channel": channel})

        try:
            async with self.session_factory() as session:
                user = await self.identity.find_by_contact(session, contact_filter(channel, contact))
        except SQLAlchemyError:
            logger.exception("password_reset.lookup_failed", extra={"contact": contact})
            return ServiceResult.failure("Failed to start password reset.", ErrorCode.INTERNAL_ERROR)

        # minted now, written only once the rate limiter has admitted the request
        reset_token = make_reset_token_plain() if user is not None else None

        # the record and the rate-limit slot are consumed whether or not the account exists
        try:
            payload = PasswordResetPayload(
                encrypted_password=encrypt(data.new_password, self.encrypt_key),
                reset_token=reset_token,
            )
            code = await self.otp_service.issue(contact, OtpPurpose.PASSWORD_RESET, channel, payload)
        except TooManyRequestsError as e:
            return _throttled(e)
        except PasswordCryptoError:
            logger.exception("password_reset.password_encrypt_failed", extra={"contact": contact})
            return ServiceResult.failure(SEND_FAILED_MESSAGE, ErrorCode.INTERNAL_ERROR)
        except OtpStoreError:
            return _store_down()

        if user is None:
            logger.info("password_reset.unknown_contact", extra={"contact": contact})
            return ServiceResult.ok(RESET_OTP_SENT_MESSAGE)

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await self.identity.generate_password_reset_token(session, user, reset_token)
        except SQLAlchemyError:
            logger.exception("password_reset.token_store_failed", extra={"contact": contact})
            await self._discard_code(contact, OtpPurpose.PASSWORD_RESET)
            return ServiceResult.failure("Failed to start password reset.", ErrorCode.INTERNAL_ERROR)

        recipient = RecipientInfo(email=user.email, phone_number=user.phone_number, name=user.name)
        self._deliver_in_background(self._deliver_reset_code(channel, contact, code, recipient))
        return ServiceResult.ok(RESET_OTP_SENT_MESSAGE)

    async def _deliver_reset_code(self, channel: str, contact: str, code: str, recipient: RecipientInfo):
        if not await self._send_code(channel, contact, code, OtpPurpose.PASSWORD_RESET, recipient):
            logger.error("password_reset.otp_not_delivered", extra={"contact": contact, "channel": channel})

    def _deliver_in_background(self, coro):
        task = asyncio.create_task(coro)
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def wait_for_deliveries(self):
        """Wait for codes still being delivered in the background."""
        if self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)

    async def _discard_code(self, contact: str, purpose: OtpPurpose):
        try:
            await self.otp_service.remove(contact, purpose)
        except OtpStoreError:
            logger.warning("otp.discard_failed", extra={"contact": contact, "purpose": purpose.value})

    async def verify_and_complete(self, data: VerifyOtpIn) -> ServiceResult:
        channel = data.otp_sent_channel.value
        contact = normalize_contact(data.contact)
        try:
            verification = await self.otp_service.verify(contact, data.otp, data.otp_type, channel)
        except OtpStoreError:
            return _store_down()

        if not verification.success:
            return ServiceResult.failure(verification.message, VERIFY_ERROR_CODES[verification.status],
                                         data=({"remaining_attempts": verification.remaining_attempts}
                                               if verification.remaining_attempts is not None else None))

        match verification.payload:
            case RegistrationPayload() as payload:
                return await self.registration.complete(contact, payload)
            case PasswordResetPayload() as payload:
                return await self.password_reset.complete(contact, channel, payload)
            case _:
                logger.error("otp.verify.unknown_payload", extra={"contact": contact})
                return ServiceResult.failure("Unsupported verification payload.", ErrorCode.INTERNAL_ERROR)
