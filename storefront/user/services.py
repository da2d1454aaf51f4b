from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from sqlalchemy.exc import IntegrityError

from storefront.auth.utils import hash_password, hash_token, make_reset_token_plain, validate_password
from storefront.common.logging_setup import get_logger
from storefront.common.utils import now
from storefront.config.settings import config_settings
from storefront.schema.full_schema import Credential, CredentialType, PasswordResetToken, UserRole, Users
from storefront.user.repository import (
    find_user,
    password_credential,
    retire_reset_tokens,
    role_by_name,
    usable_reset_token,
    user_has_role,
    user_id_by_email,
    user_id_by_phone,
)

logger = get_logger("storefront.user")


@dataclass
class IdentityResult:
    succeeded: bool
    errors: List[str] = field(default_factory=list)

    @classmethod
    def ok(cls) -> "IdentityResult":
        return cls(succeeded=True)

    @classmethod
    def failed(cls, *errors: str) -> "IdentityResult":
        return cls(succeeded=False, errors=list(errors))


class IdentityService:
    """
    Account, credential and role mutations.

    Every method works inside the caller's transaction: it adds and flushes but
    never commits or rolls back, so the caller decides what is atomic.
    """

    def __init__(self, *, password_min_length: int = config_settings.PASSWORD_MIN_LENGTH,
                 reset_token_ttl_minutes: int = config_settings.PASSWORD_RESET_TOKEN_TTL_MINUTES,
                 provider: str = config_settings.SELF_PROVIDER):
        self.password_min_length = password_min_length
        self.reset_token_ttl = timedelta(minutes=reset_token_ttl_minutes)
        self.provider = provider

    async def find_by_contact(self, session, clause) -> Optional[Users]:
        return await find_user(session, clause)

    async def create_account(self, session, user: Users, password: str) -> IdentityResult:
        errors = []
        is_valid, detail = validate_password(password, self.password_min_length)
        if not is_valid:
            errors.append(detail)
        if user.email and await user_id_by_email(session, user.email):
            errors.append("Email is already registered")
        if user.phone_number and await user_id_by_phone(session, user.phone_number):
            errors.append("Phone number is already registered")
        if not user.email and not user.phone_number:
            errors.append("Either email or phone number is required")
        if errors:
            logger.warning("user.create.rejected", extra={"email": user.email, "errors": errors})
            return IdentityResult.failed(*errors)

        try:
            session.add(user)
            await session.flush()

            cred = Credential(user_id=user.id, type=CredentialType.PASSWORD.value,
                              provider=self.provider, password_hash=hash_password(password))
            session.add(cred)
            await session.flush()
        except IntegrityError:
            # lost a race with a concurrent registration of the same contact
            logger.warning("user.create.integrity_error", extra={"email": user.email})
            return IdentityResult.failed("Email or phone number is already registered")

        logger.info("user.created", extra={"user_public_id": str(user.public_id), "email": user.email})
        return IdentityResult.ok()

    async def assign_role(self, session, user: Users, role_name: str) -> IdentityResult:
        role = await role_by_name(session, role_name)
        if role is None:
            logger.error("user.role.missing", extra={"role": role_name})
            return IdentityResult.failed(f"Role '{role_name}' does not exist")
        if await user_has_role(session, user.id, role.id):
            return IdentityResult.failed(f"User is already in role '{role_name}'")

        session.add(UserRole(user_id=user.id, role_id=role.id))
        user.role_version += 1
        await session.flush()
        logger.info("user.role.assigned", extra={"user_public_id": str(user.public_id), "role": role_name})
        return IdentityResult.ok()

    async def generate_password_reset_token(self, session, user: Users, plain: Optional[str] = None) -> str:
        """
        Persist a single-use reset token (minted here unless `plain` is given).
        Earlier unused tokens for the user are retired.
        """
        await retire_reset_tokens(session, user.id)
        plain = plain or make_reset_token_plain()
        session.add(PasswordResetToken(user_id=user.id, token_hash=hash_token(plain),
                                       expires_at=now() + self.reset_token_ttl))
        await session.flush()
        logger.info("user.reset_token.issued", extra={"user_public_id": str(user.public_id)})
        return plain

    async def reset_password(self, session, user: Users, token: str, new_password: str) -> IdentityResult:
        is_valid, detail = validate_password(new_password, self.password_min_length)
        if not is_valid:
            return IdentityResult.failed(detail)

        reset_token = await usable_reset_token(session, user.id, hash_token(token or ""))
        if reset_token is None:
            logger.warning("user.reset_password.invalid_token", extra={"user_public_id": str(user.public_id)})
            return IdentityResult.failed("Invalid or expired password reset token")

        cred = await password_credential(session, user.id)
        if cred is None:
            cred = Credential(user_id=user.id, type=CredentialType.PASSWORD.value, provider=self.provider)
            session.add(cred)
        cred.password_hash = hash_password(new_password)
        cred.updated_at = now()

        reset_token.used_at = now()
        # any other outstanding token dies with the old password
        await retire_reset_tokens(session, user.id)
        user.credential_version += 1
        await session.flush()

        logger.info("user.password.reset", extra={"user_public_id": str(user.public_id)})
        return IdentityResult.ok()
