import asyncio

import pytest
from sqlalchemy import select

from storefront.auth.models import RegisterIn, VerifyOtpIn
from storefront.background_workers.handlers import PostRegistrationHandlers
from storefront.background_workers.outbox_dispatcher import OutboxDispatcher, compute_backoff
from storefront.background_workers.repository import emit_outbox_event
from storefront.otp.constants import OtpPurpose
from storefront.schema.full_schema import Cart, OutboxEvent, OutboxEventStatus, Users
from tests.helpers import STRONG_PASSWORD

EMAIL = "dave@mailbox.org"


async def emit(session_factory, topic, payload):
    async with session_factory() as session:
        async with session.begin():
            return await emit_outbox_event(session, topic, payload)


async def load_events(session_factory):
    async with session_factory() as session:
        res = await session.execute(select(OutboxEvent).order_by(OutboxEvent.id))
        return res.scalars().all()


@pytest.mark.asyncio
async def test_post_registration_effects_run_from_the_outbox(auth_service, otp_service, senders,
                                                             session_factory, sender_factory):
    await auth_service.start_registration(RegisterIn(
        email=EMAIL, first_name="Dave", last_name="Lin",
        password=STRONG_PASSWORD, confirm_password=STRONG_PASSWORD,
    ))
    result = await auth_service.verify_and_complete(VerifyOtpIn(
        contact=EMAIL, otp=senders["email"].last_code(), otp_type=OtpPurpose.REGISTRATION))
    assert result.success
    assert await otp_service.get_record(EMAIL, OtpPurpose.REGISTRATION) is not None

    handlers = PostRegistrationHandlers(session_factory, otp_service, sender_factory)
    dispatcher = OutboxDispatcher(session_factory, handlers.registry())
    assert await dispatcher.process_batch() == 3

    events = await load_events(session_factory)
    assert [e.status for e in events] == [OutboxEventStatus.DONE.value] * 3
    assert all(e.processed_at is not None and e.attempts == 1 for e in events)

    async with session_factory() as session:
        user = (await session.execute(select(Users))).scalar_one()
        cart = (await session.execute(select(Cart).where(Cart.user_id == user.id))).scalar_one_or_none()
    assert cart is not None

    welcome, recipient = senders["email"].sent[-1]
    assert welcome.template == "welcome"
    assert welcome.to == EMAIL
    assert recipient.name == "Dave Lin"

    assert await otp_service.get_record(EMAIL, OtpPurpose.REGISTRATION) is None
    assert await otp_service.get_rate_limit(EMAIL) is None

    # nothing left to claim
    assert await dispatcher.process_batch() == 0


@pytest.mark.asyncio
async def test_failed_handler_is_retried_with_backoff(session_factory):
    calls = []

    async def flaky(payload):
        calls.append(payload)
        raise RuntimeError("downstream unavailable")

    await emit(session_factory, "flaky", {"n": 1})
    dispatcher = OutboxDispatcher(session_factory, {"flaky": flaky}, max_attempts=3)

    assert await dispatcher.process_batch() == 1
    event = (await load_events(session_factory))[0]
    assert event.status == OutboxEventStatus.PENDING.value
    assert event.attempts == 1
    assert event.next_retry_at is not None
    assert event.locked_until is None
    assert event.last_error == "downstream unavailable"

    # not due again until the backoff has passed
    assert await dispatcher.process_batch() == 0
    assert calls == [{"n": 1}]


@pytest.mark.asyncio
async def test_handler_failing_at_max_attempts_is_parked(session_factory):
    async def broken(payload):
        raise ValueError("bad payload")

    await emit(session_factory, "broken", {})
    dispatcher = OutboxDispatcher(session_factory, {"broken": broken}, max_attempts=1)

    await dispatcher.process_batch()

    event = (await load_events(session_factory))[0]
    assert event.status == OutboxEventStatus.FAILED.value
    assert event.attempts == 1
    assert event.last_error == "bad payload"


@pytest.mark.asyncio
async def test_unknown_topic_is_parked(session_factory):
    await emit(session_factory, "nobody.listens", {})
    dispatcher = OutboxDispatcher(session_factory, {})

    await dispatcher.process_batch()

    event = (await load_events(session_factory))[0]
    assert event.status == OutboxEventStatus.FAILED.value
    assert "no handler" in event.last_error


@pytest.mark.asyncio
async def test_failed_welcome_notification_is_retried(session_factory, otp_service, sender_factory, senders):
    senders["sms"].succeed = False
    await emit(session_factory, "notification.welcome",
               {"channel": "sms", "to": "0912345678", "name": "Dave Lin", "phone_number": "0912345678"})
    handlers = PostRegistrationHandlers(session_factory, otp_service, sender_factory)
    dispatcher = OutboxDispatcher(session_factory, handlers.registry())

    await dispatcher.process_batch()

    event = (await load_events(session_factory))[0]
    assert event.status == OutboxEventStatus.PENDING.value
    assert event.attempts == 1
    assert len(senders["sms"].sent) == 1


@pytest.mark.asyncio
async def test_batch_size_limits_a_claim(session_factory):
    seen = []

    async def record(payload):
        seen.append(payload["n"])

    for n in range(5):
        await emit(session_factory, "count", {"n": n})
    dispatcher = OutboxDispatcher(session_factory, {"count": record}, batch_size=2)

    assert await dispatcher.process_batch() == 2
    assert await dispatcher.process_batch() == 2
    assert await dispatcher.process_batch() == 1
    assert seen == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_background_loop_dispatches_and_stops(session_factory):
    done = asyncio.Event()

    async def handler(payload):
        done.set()

    dispatcher = OutboxDispatcher(session_factory, {"ping": handler}, poll_interval=0.01)
    await emit(session_factory, "ping", {})
    dispatcher.start()

    await asyncio.wait_for(done.wait(), timeout=5)
    await dispatcher.shutdown(timeout=5)

    assert dispatcher._task is None
    event = (await load_events(session_factory))[0]
    assert event.status == OutboxEventStatus.DONE.value


def test_compute_backoff_doubles_up_to_the_cap():
    assert compute_backoff(1) == 5.0
    assert compute_backoff(2) == 10.0
    assert compute_backoff(4) == 40.0
    assert compute_backoff(20) == 3600.0
