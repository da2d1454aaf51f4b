import asyncio

import pytest

from storefront.config.settings import config_settings
from storefront.otp.constants import OtpPurpose, VerifyStatus
from storefront.otp.exceptions import TooManyRequestsError
from storefront.otp.models import PasswordResetPayload, RateLimitPolicy, RegistrationPayload
from storefront.otp.service import OtpService
from storefront.otp.store import RedisOtpStore
from tests.helpers import fixed_codes

CONTACT = "alice@mailbox.org"


def registration_payload(email=CONTACT):
    return RegistrationPayload(email=email, first_name="Alice", last_name="Doe",
                               encrypted_password="sealed", channel="email")


async def issue(service, contact=CONTACT):
    return await service.issue(contact, OtpPurpose.REGISTRATION, "email", registration_payload(contact))


@pytest.mark.asyncio
async def test_issuance_is_refused_after_the_limit(otp_service):
    for _ in range(3):
        await issue(otp_service)

    with pytest.raises(TooManyRequestsError) as exc:
        await issue(otp_service)

    # window is 5 minutes and no time has passed
    assert exc.value.retry_after_seconds == 300
    tracker = await otp_service.get_rate_limit(CONTACT)
    assert tracker.issuance_count == 3


@pytest.mark.asyncio
async def test_concurrent_requests_admit_exactly_the_limit(otp_service):
    results = await asyncio.gather(*(issue(otp_service) for _ in range(10)), return_exceptions=True)

    codes = [r for r in results if isinstance(r, str)]
    refused = [r for r in results if isinstance(r, TooManyRequestsError)]
    assert len(codes) == 3
    assert len(refused) == 7
    assert (await otp_service.get_rate_limit(CONTACT)).issuance_count == 3


@pytest.mark.asyncio
async def test_refused_issuance_keeps_the_previous_code(otp_service):
    otp_service.generate_code = fixed_codes("111111", "222222", "333333", "444444")
    for _ in range(3):
        await issue(otp_service)

    with pytest.raises(TooManyRequestsError):
        await issue(otp_service)

    result = await otp_service.verify(CONTACT, "333333", OtpPurpose.REGISTRATION, "email")
    assert result.status is VerifyStatus.VERIFIED


@pytest.mark.asyncio
async def test_window_rolls_over(otp_service, clock):
    for _ in range(3):
        await issue(otp_service)

    clock.advance(minutes=4)
    with pytest.raises(TooManyRequestsError) as exc:
        await issue(otp_service)
    assert exc.value.retry_after_seconds == 60

    clock.advance(minutes=1)
    await issue(otp_service)
    tracker = await otp_service.get_rate_limit(CONTACT)
    assert tracker.issuance_count == 1
    assert tracker.window_started_ms == clock()


@pytest.mark.asyncio
async def test_clear_rate_limit_allows_new_issuance(otp_service):
    for _ in range(3):
        await issue(otp_service)

    await otp_service.clear_rate_limit(CONTACT)

    assert await otp_service.get_rate_limit(CONTACT) is None
    await issue(otp_service)


@pytest.mark.asyncio
async def test_limits_are_per_contact(otp_service):
    for _ in range(3):
        await issue(otp_service)

    await issue(otp_service, "bob@mailbox.org")
    with pytest.raises(TooManyRequestsError):
        await issue(otp_service)


@pytest.mark.asyncio
async def test_limit_is_shared_between_purposes(otp_service):
    for _ in range(3):
        await issue(otp_service)

    with pytest.raises(TooManyRequestsError):
        await otp_service.issue(CONTACT, OtpPurpose.PASSWORD_RESET, "email",
                                PasswordResetPayload(encrypted_password="sealed"))


@pytest.mark.asyncio
async def test_contact_is_normalized_before_counting(otp_service):
    await issue(otp_service, CONTACT)
    await issue(otp_service, "  ALICE@Mailbox.org ")
    tracker = await otp_service.get_rate_limit("Alice@mailbox.org")
    assert tracker.issuance_count == 2


@pytest.mark.asyncio
async def test_cooldown_between_issuances(redis, clock):
    service = OtpService(
        RedisOtpStore(redis), hash_secret="s3cret", clock=clock,
        rate_limit=RateLimitPolicy.from_minutes(max_requests=5, window_minutes=60, cooldown_seconds=30),
    )
    await issue(service)

    clock.advance(seconds=10)
    with pytest.raises(TooManyRequestsError) as exc:
        await issue(service)
    assert exc.value.retry_after_seconds == 20

    clock.advance(seconds=20)
    await issue(service)


@pytest.mark.asyncio
async def test_block_after_limit(redis, clock):
    service = OtpService(
        RedisOtpStore(redis), hash_secret="s3cret", clock=clock,
        rate_limit=RateLimitPolicy.from_minutes(max_requests=2, window_minutes=1, block_minutes=15),
    )
    await issue(service)
    await issue(service)

    with pytest.raises(TooManyRequestsError) as exc:
        await issue(service)
    assert exc.value.retry_after_seconds == 15 * 60

    # the window is long over but the block still holds
    clock.advance(minutes=5)
    with pytest.raises(TooManyRequestsError) as exc:
        await issue(service)
    assert exc.value.retry_after_seconds == 10 * 60
    tracker = await service.get_rate_limit(CONTACT)
    assert tracker.is_locked(clock())

    clock.advance(minutes=10)
    await issue(service)


@pytest.mark.asyncio
async def test_each_purpose_applies_its_own_policy_to_the_shared_tracker(redis, clock):
    service = OtpService(
        RedisOtpStore(redis), hash_secret="s3cret", clock=clock,
        rate_limit=RateLimitPolicy.from_minutes(max_requests=2, window_minutes=5),
        purpose_rate_limits={OtpPurpose.PASSWORD_RESET: RateLimitPolicy.from_minutes(max_requests=4, window_minutes=5)},
    )
    reset_payload = PasswordResetPayload(encrypted_password="sealed")
    await issue(service)
    await issue(service)

    with pytest.raises(TooManyRequestsError):
        await issue(service)

    # registrations already on the tracker count towards the reset allowance
    await service.issue(CONTACT, OtpPurpose.PASSWORD_RESET, "email", reset_payload)
    await service.issue(CONTACT, OtpPurpose.PASSWORD_RESET, "email", reset_payload)
    with pytest.raises(TooManyRequestsError):
        await service.issue(CONTACT, OtpPurpose.PASSWORD_RESET, "email", reset_payload)
    assert (await service.get_rate_limit(CONTACT)).issuance_count == 4


@pytest.mark.asyncio
async def test_purpose_policies_from_settings(redis):
    settings = config_settings.model_copy(update={
        "OTP_RATE_LIMIT_MAX_REQUESTS": 3,
        "OTP_RATE_LIMIT_WINDOW_MINUTES": 60,
        "OTP_RATE_LIMIT_COOLDOWN_SECONDS": 0,
        "OTP_RATE_LIMIT_BLOCK_MINUTES": 0,
        "OTP_REGISTRATION_RATE_LIMIT_MAX_REQUESTS": None,
        "OTP_REGISTRATION_RATE_LIMIT_WINDOW_MINUTES": None,
        "OTP_REGISTRATION_RATE_LIMIT_COOLDOWN_SECONDS": None,
        "OTP_REGISTRATION_RATE_LIMIT_BLOCK_MINUTES": None,
        "OTP_PASSWORD_RESET_RATE_LIMIT_MAX_REQUESTS": None,
        "OTP_PASSWORD_RESET_RATE_LIMIT_WINDOW_MINUTES": 5,
        "OTP_PASSWORD_RESET_RATE_LIMIT_COOLDOWN_SECONDS": 60,
        "OTP_PASSWORD_RESET_RATE_LIMIT_BLOCK_MINUTES": 15,
    })

    service = OtpService.from_settings(RedisOtpStore(redis), settings)

    assert service.policy_for(OtpPurpose.REGISTRATION) == RateLimitPolicy.from_minutes(3, 60)
    assert service.policy_for(OtpPurpose.PASSWORD_RESET) == RateLimitPolicy.from_minutes(
        max_requests=3, window_minutes=5, cooldown_seconds=60, block_minutes=15)


@pytest.mark.asyncio
async def test_payload_must_match_purpose(otp_service):
    with pytest.raises(ValueError):
        await otp_service.issue(CONTACT, OtpPurpose.PASSWORD_RESET, "email", registration_payload())
    assert await otp_service.get_rate_limit(CONTACT) is None


@pytest.mark.asyncio
async def test_empty_contact_is_rejected(otp_service):
    with pytest.raises(ValueError):
        await issue(otp_service, "   ")
