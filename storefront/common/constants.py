import contextvars
from typing import Optional

# Context variable for the per-request id set by RequestIdMiddleware
request_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("request_id", default=None)
