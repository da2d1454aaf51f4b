from typing import Any, Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from storefront.auth.constants import PASSWORD_RESET_MESSAGE, logger
from storefront.auth.password_crypto import PasswordCryptoError, decrypt
from storefront.common.result import ErrorCode, ServiceResult
from storefront.config.settings import config_settings
from storefront.db.transaction import identity_transaction
from storefront.otp.constants import OtpPurpose
from storefront.otp.exceptions import OtpStoreError
from storefront.otp.models import PasswordResetPayload
from storefront.otp.service import OtpService
from storefront.user.repository import contact_filter
from storefront.user.services import IdentityService

INVALID_RESET_MESSAGE = "Invalid password reset request."


class _ResetAborted(Exception):

    def __init__(self, message: str, error_code: ErrorCode, errors: List[str]):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.errors = errors


class PasswordResetCompleter:
    """Applies a verified password reset, then drops the otp record and rate-limit state."""

    def __init__(self, session_factory: Callable[[], Any], identity: IdentityService, otp_service: OtpService, *,
                 encrypt_key: str = config_settings.PASSWORD_ENCRYPT_KEY,
                 timeout: Optional[float] = None,
                 isolation_level: Optional[str] = None):
        self.session_factory = session_factory
        self.identity = identity
        self.otp_service = otp_service
        self.encrypt_key = encrypt_key
        self.timeout = timeout
        self.isolation_level = isolation_level

    async def complete(self, contact: str, channel: str, payload: PasswordResetPayload) -> ServiceResult:
        try:
            new_password = decrypt(payload.encrypted_password, self.encrypt_key)
        except PasswordCryptoError:
            logger.error("password_reset.password_decrypt_failed", extra={"contact": contact})
            return ServiceResult.failure("Failed to update user", ErrorCode.INTERNAL_ERROR,
                                         ["Pending password reset could not be read"])

        async with self.session_factory() as session:
            try:
                async with identity_transaction(session, timeout=self.timeout,
                                                isolation_level=self.isolation_level):
                    user = await self.identity.find_by_contact(session, contact_filter(channel, contact))
                    if user is None or not payload.reset_token:
                        raise _ResetAborted(INVALID_RESET_MESSAGE, ErrorCode.UNAUTHORIZED, [])

                    result = await self.identity.reset_password(session, user, payload.reset_token, new_password)
                    if not result.succeeded:
                        raise _ResetAborted("Failed to update user", ErrorCode.VALIDATION_FAILED, result.errors)

            except _ResetAborted as e:
                logger.warning("password_reset.aborted", extra={"contact": contact, "reason": e.message,
                                                                "errors": e.errors})
                return ServiceResult.failure(e.message, e.error_code, e.errors)
            except TimeoutError:
                logger.error("password_reset.transaction_timeout", extra={"contact": contact})
                return ServiceResult.failure("Failed to update user", ErrorCode.INTERNAL_ERROR,
                                             ["Password reset timed out"])
            except SQLAlchemyError:
                logger.exception("password_reset.transaction_failed", extra={"contact": contact})
                return ServiceResult.failure("Failed to update user", ErrorCode.INTERNAL_ERROR)

        await self._cleanup(contact)
        logger.info("password_reset.completed", extra={"contact": contact})
        return ServiceResult.ok(PASSWORD_RESET_MESSAGE)

    async def _cleanup(self, contact: str):
        # the reset is committed; leftover otp state only costs the user a retry window
        try:
            await self.otp_service.remove(contact, OtpPurpose.PASSWORD_RESET)
            await self.otp_service.clear_rate_limit(contact)
        except OtpStoreError:
            logger.warning("password_reset.otp_cleanup_failed", extra={"contact": contact})
