from typing import Optional


class OtpError(Exception):
    """Base class for otp subsystem failures."""
    pass


class TooManyRequestsError(OtpError):
    """Issuance refused by the per-contact rate limiter."""

    def __init__(self, contact: str, retry_after_seconds: int, message: Optional[str] = None):
        self.contact = contact
        self.retry_after_seconds = max(1, int(retry_after_seconds))
        super().__init__(message or f"otp issuance throttled, retry after {self.retry_after_seconds}s")


class OtpStoreError(OtpError):
    """The backing store could not be reached or returned an unexpected reply."""
    pass
