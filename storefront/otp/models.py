from dataclasses import dataclass
from datetime import date
from typing import Annotated, Dict, Literal, Optional, Union

import orjson
from pydantic import BaseModel, Field, TypeAdapter

from storefront.cache.utils import as_text
from storefront.otp.constants import MS_PER_MINUTE, MS_PER_SECOND, OtpPurpose, VerifyStatus, VERIFY_MESSAGES


# ---------------------------------------------------------------------------
# business payload parked next to an otp (tagged on `purpose`)

class RegistrationPayload(BaseModel):
    purpose: Literal["registration"] = "registration"
    email: Optional[str] = None
    phone_number: Optional[str] = None
    first_name: str
    last_name: str
    gender: Optional[str] = None
    date_of_birth: Optional[date] = None
    encrypted_password: str
    channel: str


class PasswordResetPayload(BaseModel):
    purpose: Literal["password_reset"] = "password_reset"
    encrypted_password: str
    # None when the contact has no account; issuance looks the same either way
    reset_token: Optional[str] = None


OtpPayload = Annotated[Union[RegistrationPayload, PasswordResetPayload], Field(discriminator="purpose")]

_payload_adapter: TypeAdapter = TypeAdapter(OtpPayload)


def dump_payload(payload: BaseModel) -> bytes:
    return orjson.dumps(payload.model_dump(mode="json"))


def load_payload(raw: Union[bytes, str]) -> Union[RegistrationPayload, PasswordResetPayload]:
    return _payload_adapter.validate_python(orjson.loads(raw))


def payload_purpose(payload: BaseModel) -> OtpPurpose:
    return OtpPurpose(payload.purpose)


# ---------------------------------------------------------------------------
# state kept in redis hashes

def _int(raw: Dict[bytes, bytes], name: str, default: int = 0) -> int:
    value = raw.get(name.encode())
    return int(value) if value not in (None, b"") else default


@dataclass
class OtpRecord:
    contact: str
    purpose: OtpPurpose
    channel: str
    code_hash: str
    payload: Union[RegistrationPayload, PasswordResetPayload]
    issued_at_ms: int
    expires_at_ms: int
    attempt_count: int
    max_attempts: int
    verified: bool = False
    verified_at_ms: Optional[int] = None

    def to_redis_fields(self) -> Dict[str, Union[str, int, bytes]]:
        return {
            "contact": self.contact,
            "purpose": self.purpose.value,
            "channel": self.channel,
            "code_hash": self.code_hash,
            "payload": dump_payload(self.payload),
            "issued_at_ms": self.issued_at_ms,
            "expires_at_ms": self.expires_at_ms,
            "attempt_count": self.attempt_count,
            "max_attempts": self.max_attempts,
            "verified": 1 if self.verified else 0,
        }

    @classmethod
    def from_redis(cls, raw: Dict[bytes, bytes]) -> "OtpRecord":
        verified_at = _int(raw, "verified_at_ms", 0)
        return cls(
            contact=as_text(raw[b"contact"]),
            purpose=OtpPurpose(as_text(raw[b"purpose"])),
            channel=as_text(raw[b"channel"]),
            code_hash=as_text(raw[b"code_hash"]),
            payload=load_payload(raw[b"payload"]),
            issued_at_ms=_int(raw, "issued_at_ms"),
            expires_at_ms=_int(raw, "expires_at_ms"),
            attempt_count=_int(raw, "attempt_count"),
            max_attempts=_int(raw, "max_attempts"),
            verified=_int(raw, "verified") == 1,
            verified_at_ms=verified_at or None,
        )

    def is_expired(self, now_ms: int) -> bool:
        return self.expires_at_ms <= now_ms

    def remaining_attempts(self) -> int:
        return max(0, self.max_attempts - self.attempt_count)

    def remaining_seconds(self, now_ms: int) -> int:
        return max(0, (self.expires_at_ms - now_ms) // MS_PER_SECOND)


@dataclass
class RateLimitTracker:
    contact: str
    issuance_count: int
    window_started_ms: int
    last_issued_ms: int
    locked_until_ms: Optional[int] = None

    @classmethod
    def from_redis(cls, contact: str, raw: Dict[bytes, bytes]) -> "RateLimitTracker":
        locked_until = _int(raw, "locked_until_ms", 0)
        return cls(
            contact=contact,
            issuance_count=_int(raw, "issuance_count"),
            window_started_ms=_int(raw, "window_started_ms"),
            last_issued_ms=_int(raw, "last_issued_ms"),
            locked_until_ms=locked_until or None,
        )

    def is_locked(self, now_ms: int) -> bool:
        return self.locked_until_ms is not None and self.locked_until_ms > now_ms


@dataclass(frozen=True)
class RateLimitPolicy:
    max_requests: int
    window_ms: int
    cooldown_ms: int = 0
    block_ms: int = 0

    @classmethod
    def from_minutes(cls, max_requests: int, window_minutes: int,
                     cooldown_seconds: int = 0, block_minutes: int = 0) -> "RateLimitPolicy":
        return cls(
            max_requests=max_requests,
            window_ms=window_minutes * MS_PER_MINUTE,
            cooldown_ms=cooldown_seconds * MS_PER_SECOND,
            block_ms=block_minutes * MS_PER_MINUTE,
        )


# ---------------------------------------------------------------------------
# outcomes

@dataclass
class IssueOutcome:
    allowed: bool
    issuance_count: int = 0
    retry_after_ms: int = 0


@dataclass
class VerifyOutcome:
    status: VerifyStatus
    payload_raw: Optional[bytes] = None
    remaining_attempts: Optional[int] = None


@dataclass
class OtpVerification:
    status: VerifyStatus
    payload: Optional[Union[RegistrationPayload, PasswordResetPayload]] = None
    remaining_attempts: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.status is VerifyStatus.VERIFIED

    @property
    def message(self) -> str:
        return VERIFY_MESSAGES[self.status]
