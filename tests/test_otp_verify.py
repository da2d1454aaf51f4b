import asyncio

import pytest

from storefront.otp.constants import NO_VALID_OTP_MESSAGE, OtpPurpose, VerifyStatus
from storefront.otp.models import PasswordResetPayload, RegistrationPayload
from tests.helpers import fixed_codes

CONTACT = "alice@mailbox.org"
REG = OtpPurpose.REGISTRATION


def registration_payload():
    return RegistrationPayload(email=CONTACT, phone_number="0911122233", first_name="Alice",
                               last_name="Doe", encrypted_password="sealed", channel="email")


@pytest.fixture
def issued(otp_service):
    otp_service.generate_code = fixed_codes("123456", "654321", "999999")

    async def _issue(contact=CONTACT, purpose=REG, channel="email"):
        payload = registration_payload() if purpose is REG else PasswordResetPayload(encrypted_password="sealed")
        return await otp_service.issue(contact, purpose, channel, payload)

    return _issue


@pytest.mark.asyncio
async def test_correct_code_returns_the_payload(otp_service, issued):
    code = await issued()
    assert code == "123456"

    result = await otp_service.verify(CONTACT, code, REG, "email")

    assert result.success
    assert result.message == "OTP verified successfully."
    assert result.payload == registration_payload()
    record = await otp_service.get_record(CONTACT, REG)
    assert record.verified
    assert record.verified_at_ms is not None


@pytest.mark.asyncio
async def test_code_is_single_use(otp_service, issued):
    code = await issued()
    assert (await otp_service.verify(CONTACT, code, REG, "email")).success

    again = await otp_service.verify(CONTACT, code, REG, "email")
    assert again.status is VerifyStatus.ALREADY_VERIFIED
    assert again.payload is None

    third = await otp_service.verify(CONTACT, code, REG, "email")
    assert third.status is VerifyStatus.NOT_FOUND


@pytest.mark.asyncio
async def test_new_code_replaces_the_old_one(otp_service, issued):
    first = await issued()
    second = await issued()

    assert (await otp_service.verify(CONTACT, first, REG, "email")).status is VerifyStatus.MISMATCHED
    assert (await otp_service.verify(CONTACT, second, REG, "email")).success


@pytest.mark.asyncio
async def test_expired_code(otp_service, issued, clock):
    code = await issued()
    clock.advance(minutes=5)

    result = await otp_service.verify(CONTACT, code, REG, "email")
    assert result.status is VerifyStatus.EXPIRED
    assert result.message == NO_VALID_OTP_MESSAGE

    # the expired record is gone afterwards
    result = await otp_service.verify(CONTACT, code, REG, "email")
    assert result.status is VerifyStatus.NOT_FOUND
    assert result.message == NO_VALID_OTP_MESSAGE


@pytest.mark.asyncio
async def test_unknown_contact_is_not_found(otp_service):
    result = await otp_service.verify("nobody@mailbox.org", "123456", REG, "email")
    assert result.status is VerifyStatus.NOT_FOUND
    assert not result.success


@pytest.mark.asyncio
async def test_channel_mismatch_does_not_consume_an_attempt(otp_service, issued):
    code = await issued()

    result = await otp_service.verify(CONTACT, code, REG, "sms")
    assert result.status is VerifyStatus.CHANNEL_MISMATCH
    assert result.message == "OTP channel mismatch."
    assert await otp_service.remaining_attempts(CONTACT, REG) == 3

    assert (await otp_service.verify(CONTACT, code, REG, "email")).success


@pytest.mark.asyncio
async def test_wrong_codes_exhaust_the_record(otp_service, issued):
    code = await issued()

    first = await otp_service.verify(CONTACT, "000000", REG, "email")
    assert first.status is VerifyStatus.MISMATCHED
    assert first.remaining_attempts == 2
    assert first.message == "Invalid OTP code."

    second = await otp_service.verify(CONTACT, "000001", REG, "email")
    assert second.remaining_attempts == 1

    third = await otp_service.verify(CONTACT, "000002", REG, "email")
    assert third.status is VerifyStatus.EXHAUSTED
    assert third.message == "Max OTP attempts exceeded."

    # even the right code is useless once the record is exhausted
    assert (await otp_service.verify(CONTACT, code, REG, "email")).status is VerifyStatus.NOT_FOUND


@pytest.mark.asyncio
async def test_concurrent_wrong_codes_exhaust_after_max_attempts(otp_service, issued):
    await issued()

    results = await asyncio.gather(*(otp_service.verify(CONTACT, f"00000{i}", REG, "email") for i in range(5)))

    statuses = sorted(r.status.value for r in results)
    assert statuses == sorted([VerifyStatus.MISMATCHED.value] * 2 + [VerifyStatus.EXHAUSTED.value]
                              + [VerifyStatus.NOT_FOUND.value] * 2)
    assert await otp_service.get_record(CONTACT, REG) is None


@pytest.mark.asyncio
async def test_code_is_stored_hashed(otp_service, issued, redis):
    code = await issued()

    record = await otp_service.get_record(CONTACT, REG)
    assert record.code_hash != code
    assert record.code_hash == otp_service.hash_code(CONTACT, REG, code)

    raw = await redis.hgetall(otp_service.store.record_key(CONTACT, REG))
    assert all(code.encode() not in value for value in raw.values())


@pytest.mark.asyncio
async def test_contact_lookup_ignores_case_and_whitespace(otp_service, issued):
    code = await issued()
    result = await otp_service.verify("  Alice@MAILBOX.org ", code, REG, "email")
    assert result.success


@pytest.mark.asyncio
async def test_purposes_are_isolated(otp_service, issued):
    reset_code = await issued(purpose=OtpPurpose.PASSWORD_RESET)

    result = await otp_service.verify(CONTACT, reset_code, REG, "email")
    assert result.status is VerifyStatus.NOT_FOUND

    result = await otp_service.verify(CONTACT, reset_code, OtpPurpose.PASSWORD_RESET, "email")
    assert result.success
    assert isinstance(result.payload, PasswordResetPayload)


@pytest.mark.asyncio
async def test_remove_drops_the_record(otp_service, issued):
    code = await issued()
    await otp_service.remove(CONTACT, REG)

    assert await otp_service.get_record(CONTACT, REG) is None
    assert (await otp_service.verify(CONTACT, code, REG, "email")).status is VerifyStatus.NOT_FOUND


@pytest.mark.asyncio
async def test_remaining_seconds_and_attempts(otp_service, issued, clock):
    assert await otp_service.remaining_seconds(CONTACT, REG) == 0
    assert await otp_service.remaining_attempts(CONTACT, REG) == 0

    await issued()
    assert await otp_service.remaining_seconds(CONTACT, REG) == 300

    clock.advance(seconds=90)
    assert await otp_service.remaining_seconds(CONTACT, REG) == 210

    clock.advance(minutes=10)
    assert await otp_service.remaining_seconds(CONTACT, REG) == 0
    assert await otp_service.remaining_attempts(CONTACT, REG) == 0


@pytest.mark.asyncio
async def test_generated_codes_have_the_configured_length(otp_service):
    code = otp_service.generate_code()
    assert len(code) == 6
    assert code.isdigit()
