from typing import Any, Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from storefront.auth.constants import REGISTERED_MESSAGE, logger
from storefront.auth.password_crypto import PasswordCryptoError, decrypt
from storefront.background_workers.handlers import TOPIC_CART_CREATE, TOPIC_OTP_CLEANUP, TOPIC_WELCOME_NOTIFICATION
from storefront.background_workers.repository import emit_outbox_event
from storefront.common.result import ErrorCode, ServiceResult
from storefront.config.settings import config_settings
from storefront.db.transaction import identity_transaction
from storefront.otp.constants import OtpPurpose
from storefront.otp.models import RegistrationPayload
from storefront.schema.full_schema import CustomerProfile, Users
from storefront.user.services import IdentityService


class _RegistrationAborted(Exception):
    """Raised inside the transaction so every write made so far is rolled back."""

    def __init__(self, message: str, errors: List[str]):
        super().__init__(message)
        self.message = message
        self.errors = errors


class RegistrationCompleter:
    """
    Turns a verified registration payload into an account.

    Account, credential, role link, profile and the follow-up outbox events are
    written in one transaction; cart creation, the welcome notification and otp
    cleanup run later from the outbox and cannot undo the registration.
    """

    def __init__(self, session_factory: Callable[[], Any], identity: IdentityService, *,
                 encrypt_key: str = config_settings.PASSWORD_ENCRYPT_KEY,
                 default_role: str = config_settings.DEFAULT_ROLE,
                 timeout: Optional[float] = None,
                 isolation_level: Optional[str] = None):
        self.session_factory = session_factory
        self.identity = identity
        self.encrypt_key = encrypt_key
        self.default_role = default_role
        self.timeout = timeout
        self.isolation_level = isolation_level

    async def complete(self, contact: str, payload: RegistrationPayload) -> ServiceResult:
        try:
            password = decrypt(payload.encrypted_password, self.encrypt_key)
        except PasswordCryptoError:
            logger.error("registration.password_decrypt_failed", extra={"contact": contact})
            return ServiceResult.failure("Failed to create user", ErrorCode.INTERNAL_ERROR,
                                         ["Pending registration could not be read"])

        full_name = f"{payload.first_name} {payload.last_name}".strip()
        async with self.session_factory() as session:
            try:
                async with identity_transaction(session, timeout=self.timeout,
                                                isolation_level=self.isolation_level):
                    user = Users(email=payload.email, phone_number=payload.phone_number, name=full_name)

                    result = await self.identity.create_account(session, user, password)
                    if not result.succeeded:
                        raise _RegistrationAborted("Failed to create user", result.errors)

                    result = await self.identity.assign_role(session, user, self.default_role)
                    if not result.succeeded:
                        raise _RegistrationAborted("Failed to add user to role", result.errors)

                    session.add(CustomerProfile(
                        user_id=user.id,
                        first_name=payload.first_name,
                        last_name=payload.last_name,
                        gender=payload.gender,
                        date_of_birth=payload.date_of_birth,
                    ))
                    await session.flush()
                    user_public_id = str(user.public_id)

                    await emit_outbox_event(session, TOPIC_CART_CREATE, {"user_id": user.id},
                                            aggregate_type="user", aggregate_id=user.id)
                    await emit_outbox_event(session, TOPIC_WELCOME_NOTIFICATION, {
                        "channel": payload.channel,
                        "to": contact,
                        "name": full_name,
                        "email": payload.email,
                        "phone_number": payload.phone_number,
                    }, aggregate_type="user", aggregate_id=user.id)
                    await emit_outbox_event(session, TOPIC_OTP_CLEANUP, {
                        "contact": contact,
                        "purpose": OtpPurpose.REGISTRATION.value,
                    }, aggregate_type="user", aggregate_id=user.id)

            except _RegistrationAborted as e:
                logger.warning("registration.aborted", extra={"contact": contact, "reason": e.message,
                                                              "errors": e.errors})
                return ServiceResult.failure(e.message, ErrorCode.VALIDATION_FAILED, e.errors)
            except TimeoutError:
                logger.error("registration.transaction_timeout", extra={"contact": contact})
                return ServiceResult.failure("Failed to create user", ErrorCode.INTERNAL_ERROR,
                                             ["Registration timed out"])
            except SQLAlchemyError:
                logger.exception("registration.transaction_failed", extra={"contact": contact})
                return ServiceResult.failure("Failed to create user", ErrorCode.INTERNAL_ERROR)

        logger.info("registration.completed", extra={"contact": contact, "user_public_id": user_public_id})
        return ServiceResult.ok(REGISTERED_MESSAGE, {"user_public_id": user_public_id})
