from typing import Optional

_ASYNC_DRIVERS = (
    ("postgres://", "postgresql+asyncpg://"),
    ("postgresql://", "postgresql+asyncpg://"),
    ("sqlite://", "sqlite+aiosqlite://"),
)


def _normalize_db_url(url: Optional[str]) -> Optional[str]:
    """Map sync-style urls (as handed out by hosting providers) onto the async driver for that database."""
    if not url:
        return None
    url = url.strip().strip('"').strip("'")
    for plain, async_prefix in _ASYNC_DRIVERS:
        if url.startswith(plain):
            return async_prefix + url[len(plain):]
    return url
