from datetime import datetime
from typing import Any, Dict, Optional

from storefront.common.utils import now
from storefront.schema.full_schema import OutboxEvent, OutboxEventStatus


async def emit_outbox_event(session, topic: str, payload: Dict[str, Any],
                            aggregate_type: Optional[str] = None,
                            aggregate_id: Optional[int] = None,
                            next_retry_at: Optional[datetime] = None) -> int:
    """Queue post-commit work inside the caller's transaction; it becomes visible only if that commits."""
    event = OutboxEvent(
        topic=topic,
        payload=payload,
        aggregate_type=aggregate_type,
        aggregate_id=aggregate_id,
        status=OutboxEventStatus.PENDING.value,
        attempts=0,
        next_retry_at=next_retry_at,
        created_at=now(),
    )
    session.add(event)
    await session.flush()
    return event.id
