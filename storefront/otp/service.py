import hashlib
import hmac
import secrets
import string
import time
from typing import Callable, Dict, Optional

from storefront.config.settings import config_settings
from storefront.otp.constants import MS_PER_MINUTE, OtpPurpose, VerifyStatus, logger
from storefront.otp.exceptions import TooManyRequestsError
from storefront.otp.models import (
    OtpRecord,
    OtpVerification,
    RateLimitPolicy,
    RateLimitTracker,
    load_payload,
    payload_purpose,
)
from storefront.otp.store import OtpStore


def normalize_contact(contact: str) -> str:
    value = (contact or "").strip().lower()
    if not value:
        raise ValueError("contact must not be empty")
    return value


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


def _rate_limit_settings(settings, prefix: str, fallback: Optional[dict] = None) -> Optional[dict]:
    fields = ("MAX_REQUESTS", "WINDOW_MINUTES", "COOLDOWN_SECONDS", "BLOCK_MINUTES")
    values = {name: getattr(settings, f"{prefix}_{name}", None) for name in fields}
    if fallback is None:
        return values
    if all(v is None for v in values.values()):
        return None
    return {name: fallback[name] if values[name] is None else values[name] for name in fields}


def _policy(values: dict) -> RateLimitPolicy:
    return RateLimitPolicy.from_minutes(values["MAX_REQUESTS"], values["WINDOW_MINUTES"],
                                        values["COOLDOWN_SECONDS"], values["BLOCK_MINUTES"])


class OtpService:
    """
    Issues and verifies one-time codes for a (contact, purpose) pair.

    Codes are only ever stored as a keyed hash. Throttling is per contact and
    is checked and incremented atomically with the record write.

    Both purposes share one tracker per contact; each purpose may bring its
    own policy, otherwise `rate_limit` applies.
    """

    def __init__(
        self,
        store: OtpStore,
        *,
        hash_secret: str,
        code_length: int = 6,
        expiration_minutes: int = 5,
        max_attempts: int = 5,
        record_grace_minutes: int = 10,
        rate_limit: Optional[RateLimitPolicy] = None,
        purpose_rate_limits: Optional[Dict[OtpPurpose, RateLimitPolicy]] = None,
        clock: Callable[[], int] = _wall_clock_ms,
    ):
        if code_length < 4:
            raise ValueError("otp code length must be at least 4")
        if not hash_secret:
            raise ValueError("otp hash secret must be set")
        self.store = store
        self.hash_secret = hash_secret.encode("utf-8")
        self.code_length = code_length
        self.expiration_ms = expiration_minutes * MS_PER_MINUTE
        self.max_attempts = max_attempts
        self.record_grace_ms = record_grace_minutes * MS_PER_MINUTE
        self.rate_limit = rate_limit or RateLimitPolicy.from_minutes(3, 60)
        self.purpose_rate_limits = dict(purpose_rate_limits or {})
        self.clock = clock

    @classmethod
    def from_settings(cls, store: OtpStore, settings=config_settings, **overrides) -> "OtpService":
        shared = _rate_limit_settings(settings, "OTP_RATE_LIMIT")
        options = dict(
            hash_secret=settings.OTP_HASH_SECRET or settings.PASSWORD_ENCRYPT_KEY,
            code_length=settings.OTP_LENGTH,
            expiration_minutes=settings.OTP_EXPIRATION_MINUTES,
            max_attempts=settings.OTP_MAX_ATTEMPTS,
            record_grace_minutes=settings.OTP_RECORD_GRACE_MINUTES,
            rate_limit=_policy(shared),
            purpose_rate_limits={
                purpose: _policy(values) for purpose, values in (
                    (OtpPurpose.REGISTRATION, _rate_limit_settings(settings, "OTP_REGISTRATION_RATE_LIMIT", shared)),
                    (OtpPurpose.PASSWORD_RESET, _rate_limit_settings(settings, "OTP_PASSWORD_RESET_RATE_LIMIT", shared)),
                ) if values is not None
            },
        )
        options.update(overrides)
        return cls(store, **options)

    def policy_for(self, purpose: OtpPurpose) -> RateLimitPolicy:
        return self.purpose_rate_limits.get(purpose, self.rate_limit)

    def generate_code(self) -> str:
        return "".join(secrets.choice(string.digits) for _ in range(self.code_length))

    def hash_code(self, contact: str, purpose: OtpPurpose, code: str) -> str:
        message = f"{purpose.value}:{contact}:{code}".encode("utf-8")
        return hmac.new(self.hash_secret, message, hashlib.sha256).hexdigest()

    async def issue(self, contact: str, purpose: OtpPurpose, channel: str, payload) -> str:
        """
        Create a fresh code for (contact, purpose), replacing any live record.

        Returns the plaintext code for delivery. Raises TooManyRequestsError
        when the contact is over its issuance limit; no record is written then.
        """
        contact = normalize_contact(contact)
        if payload_purpose(payload) is not purpose:
            raise ValueError(f"payload of type {payload.purpose} cannot be issued for {purpose.value}")

        now_ms = self.clock()
        code = self.generate_code()
        record = OtpRecord(
            contact=contact,
            purpose=purpose,
            channel=channel,
            code_hash=self.hash_code(contact, purpose, code),
            payload=payload,
            issued_at_ms=now_ms,
            expires_at_ms=now_ms + self.expiration_ms,
            attempt_count=0,
            max_attempts=self.max_attempts,
        )
        # keep expired records around a little so verify can say "expired"
        outcome = await self.store.issue(
            contact, purpose, record.to_redis_fields(), self.policy_for(purpose),
            now_ms, self.expiration_ms + self.record_grace_ms,
        )

        if not outcome.allowed:
            retry_after = -(-outcome.retry_after_ms // 1000)
            logger.info("otp.issue.throttled",
                        extra={"contact": contact, "purpose": purpose.value, "retry_after": retry_after})
            raise TooManyRequestsError(contact, retry_after)

        logger.info("otp.issued", extra={"contact": contact, "purpose": purpose.value,
                                         "channel": channel, "issuance_count": outcome.issuance_count})
        return code

    async def verify(self, contact: str, code: str, purpose: OtpPurpose, channel: str) -> OtpVerification:
        """
        Check a submitted code. A match marks the record verified and returns its
        payload; the record stays until `remove` or a repeated verification.
        """
        contact = normalize_contact(contact)
        code = (code or "").strip()
        outcome = await self.store.verify(
            contact, purpose, channel, self.hash_code(contact, purpose, code), self.clock(),
        )

        extra = {"contact": contact, "purpose": purpose.value, "status": outcome.status.value}
        if outcome.status is VerifyStatus.VERIFIED:
            logger.info("otp.verify.succeeded", extra=extra)
            return OtpVerification(status=outcome.status, payload=load_payload(outcome.payload_raw))

        if outcome.status is VerifyStatus.MISMATCHED:
            extra["remaining_attempts"] = outcome.remaining_attempts
        logger.info(f"otp.verify.{outcome.status.value}", extra=extra)
        return OtpVerification(status=outcome.status, remaining_attempts=outcome.remaining_attempts)

    async def remove(self, contact: str, purpose: OtpPurpose) -> None:
        contact = normalize_contact(contact)
        await self.store.delete_record(contact, purpose)
        logger.debug("otp.removed", extra={"contact": contact, "purpose": purpose.value})

    async def clear_rate_limit(self, contact: str) -> None:
        contact = normalize_contact(contact)
        await self.store.delete_tracker(contact)
        logger.debug("otp.rate_limit.cleared", extra={"contact": contact})

    async def get_record(self, contact: str, purpose: OtpPurpose) -> Optional[OtpRecord]:
        raw = await self.store.load_record(normalize_contact(contact), purpose)
        if raw is None:
            return None
        return OtpRecord.from_redis(raw)

    async def remaining_attempts(self, contact: str, purpose: OtpPurpose) -> int:
        record = await self.get_record(contact, purpose)
        if record is None or record.is_expired(self.clock()):
            return 0
        return record.remaining_attempts()

    async def remaining_seconds(self, contact: str, purpose: OtpPurpose) -> int:
        record = await self.get_record(contact, purpose)
        if record is None:
            return 0
        return record.remaining_seconds(self.clock())

    async def get_rate_limit(self, contact: str) -> Optional[RateLimitTracker]:
        contact = normalize_contact(contact)
        raw = await self.store.load_tracker(contact)
        if raw is None:
            return None
        return RateLimitTracker.from_redis(contact, raw)
