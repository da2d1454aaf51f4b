from storefront.auth.utils import pwd_context
from storefront.notifications.base import ChannelResult, NotificationResult, NotificationSender

ENCRYPT_KEY = "test-encrypt-key"
STRONG_PASSWORD = "Sup3r$ecret"
NEW_PASSWORD = "N3w&Improved"


class FakeClock:
    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, *, seconds: float = 0, minutes: float = 0):
        self.now_ms += int((seconds + minutes * 60) * 1000)


class RecordingSender(NotificationSender):
    def __init__(self, channel: str):
        self.channel = channel
        self.succeed = True
        self.sent = []

    async def send(self, request, recipient):
        self.sent.append((request, recipient))
        return NotificationResult(channel_results=[ChannelResult(channel=self.channel, success=self.succeed)])

    def last_code(self) -> str:
        request, _ = self.sent[-1]
        return request.template_data["otp_code"]


def password_matches(plain: str, password_hash: str) -> bool:
    return pwd_context.verify(plain, password_hash)


def fixed_codes(*codes):
    """Replacement for OtpService.generate_code that hands out the given codes in order."""
    it = iter(codes)
    return lambda: next(it)
