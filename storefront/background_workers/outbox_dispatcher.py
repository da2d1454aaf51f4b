import asyncio
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy import select, or_, and_, update

from storefront.common.logging_setup import get_logger
from storefront.common.utils import now
from storefront.schema.full_schema import OutboxEvent, OutboxEventStatus

logger = get_logger("storefront.outbox")

DEFAULT_BATCH = 10
DEFAULT_POLL_SECONDS = 1.0
DEFAULT_LOCK_SECONDS = 60
MAX_DISPATCH_ATTEMPTS = 6
BACKOFF_BASE = 5.0

OutboxHandler = Callable[[Dict[str, Any]], Awaitable[None]]


def compute_backoff(attempt: int, base: float = BACKOFF_BASE, cap: float = 3600.0) -> float:
    sec = base * (2 ** (attempt - 1))
    return min(sec, cap)


class OutboxDispatcher:
    """
    Polls the outbox and runs the handler registered for each event's topic.

    Rows are claimed with a lease (FOR UPDATE SKIP LOCKED where supported) so several
    app instances can dispatch concurrently. A failing handler is retried with
    exponential backoff until max_attempts, then the row is parked as FAILED.
    The loop runs in its own task, independent of any request.
    """

    def __init__(
        self,
        session_factory: Callable[[], Any],
        handlers: Dict[str, OutboxHandler],
        *,
        batch_size: int = DEFAULT_BATCH,
        poll_interval: float = DEFAULT_POLL_SECONDS,
        lock_seconds: int = DEFAULT_LOCK_SECONDS,
        max_attempts: int = MAX_DISPATCH_ATTEMPTS,
    ):
        self.session_factory = session_factory
        self.handlers = dict(handlers)
        self.batch_size = batch_size
        self.poll_interval = poll_interval
        self.lock_seconds = lock_seconds
        self.max_attempts = max_attempts
        self._stop = False
        self._task: Optional[asyncio.Task] = None

    def start(self) -> asyncio.Task:
        if self._task is None:
            self._stop = False
            self._task = asyncio.create_task(self.run(), name="outbox-dispatcher")
        return self._task

    def stop(self):
        self._stop = True

    async def shutdown(self, timeout: float = 10.0):
        self.stop()
        if self._task is None:
            return
        try:
            await asyncio.wait_for(self._task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("outbox.dispatcher.shutdown_timeout")
        finally:
            self._task = None

    async def run(self):
        logger.info("outbox.dispatcher.started", extra={"topics": sorted(self.handlers)})
        while not self._stop:
            try:
                processed = await self.process_batch()
            except Exception:
                logger.exception("outbox.dispatcher.loop_error")
                processed = 0
            if not processed:
                await asyncio.sleep(self.poll_interval)
        logger.info("outbox.dispatcher.stopped")

    async def _claim_batch(self) -> List[Tuple]:
        now_expr = now()

        async with self.session_factory() as session:
            async with session.begin():
                pending_cond = and_(
                    OutboxEvent.status == OutboxEventStatus.PENDING.value,
                    or_(OutboxEvent.next_retry_at == None, OutboxEvent.next_retry_at <= now_expr),
                    or_(OutboxEvent.locked_until == None, OutboxEvent.locked_until <= now_expr),
                )

                stmt = (
                    select(
                        OutboxEvent.id,
                        OutboxEvent.topic,
                        OutboxEvent.payload,
                        OutboxEvent.attempts,
                    )
                    .where(pending_cond)
                    .order_by(OutboxEvent.id)
                    .limit(self.batch_size)
                    .with_for_update(skip_locked=True)
                )

                res = await session.execute(stmt)
                rows: List[Tuple] = res.all()

                if not rows:
                    return []

                lease_until = now() + timedelta(seconds=self.lock_seconds)
                claimed_ids = [r[0] for r in rows]
                await session.execute(
                    update(OutboxEvent)
                    .where(OutboxEvent.id.in_(claimed_ids))
                    .values(locked_until=lease_until)
                )
        return rows

    async def _mark(self, outbox_id: int, **values):
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(OutboxEvent)
                    .where(OutboxEvent.id == outbox_id)
                    .values(locked_until=None, updated_at=now(), **values)
                )

    async def process_batch(self) -> int:
        """Claim and dispatch one batch. Returns the number of rows claimed."""
        rows = await self._claim_batch()

        for r in rows:
            outbox_id = int(r[0])
            topic = r[1]
            payload = r[2] or {}
            attempts = int(r[3] or 0)

            handler = self.handlers.get(topic)
            if handler is None:
                logger.error("outbox.dispatch.no_handler", extra={"outbox_id": outbox_id, "topic": topic})
                await self._mark(outbox_id, status=OutboxEventStatus.FAILED.value,
                                 last_error=f"no handler registered for topic {topic}")
                continue

            try:
                await handler(payload)
            except Exception as ex:
                attempts += 1
                if attempts >= self.max_attempts:
                    logger.exception("outbox.dispatch.failed_permanently",
                                     extra={"outbox_id": outbox_id, "topic": topic, "attempts": attempts})
                    await self._mark(outbox_id, status=OutboxEventStatus.FAILED.value,
                                     attempts=attempts, next_retry_at=None, last_error=str(ex)[:1000])
                else:
                    backoff = compute_backoff(attempts)
                    logger.warning("outbox.dispatch.retry_scheduled",
                                   extra={"outbox_id": outbox_id, "topic": topic,
                                          "attempts": attempts, "backoff_seconds": backoff, "error": str(ex)})
                    await self._mark(outbox_id, status=OutboxEventStatus.PENDING.value, attempts=attempts,
                                     next_retry_at=now() + timedelta(seconds=backoff), last_error=str(ex)[:1000])
                continue

            await self._mark(outbox_id, status=OutboxEventStatus.DONE.value, attempts=attempts + 1,
                             processed_at=now(), last_error=None)
            logger.info("outbox.dispatch.done", extra={"outbox_id": outbox_id, "topic": topic})

        return len(rows)
