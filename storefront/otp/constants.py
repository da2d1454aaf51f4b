from enum import Enum
from storefront.common.logging_setup import get_logger

logger = get_logger("storefront.otp")

OTP_KEY_PREFIX = "otp"
RATE_LIMIT_KEY_PART = "rl"

MS_PER_SECOND = 1000
MS_PER_MINUTE = 60 * MS_PER_SECOND


class OtpPurpose(str, Enum):
    REGISTRATION = "registration"
    PASSWORD_RESET = "password_reset"


class NotificationChannel(str, Enum):
    EMAIL = "email"
    SMS = "sms"


class VerifyStatus(str, Enum):
    VERIFIED = "verified"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    CHANNEL_MISMATCH = "channel_mismatch"
    MISMATCHED = "mismatched"
    EXHAUSTED = "exhausted"
    ALREADY_VERIFIED = "already_verified"


NO_VALID_OTP_MESSAGE = "No valid OTP found or OTP has expired."

# not_found and expired share a message so callers cannot tell whether a code was issued
VERIFY_MESSAGES = {
    VerifyStatus.VERIFIED: "OTP verified successfully.",
    VerifyStatus.NOT_FOUND: NO_VALID_OTP_MESSAGE,
    VerifyStatus.EXPIRED: NO_VALID_OTP_MESSAGE,
    VerifyStatus.CHANNEL_MISMATCH: "OTP channel mismatch.",
    VerifyStatus.MISMATCHED: "Invalid OTP code.",
    VerifyStatus.EXHAUSTED: "Max OTP attempts exceeded.",
    VerifyStatus.ALREADY_VERIFIED: "OTP has already been verified.",
}

TOO_MANY_REQUESTS_MESSAGE = "Too many OTP requests. Please try again later."
