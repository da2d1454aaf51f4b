import pytest

from storefront.db.utils import _normalize_db_url


@pytest.mark.parametrize("raw, expected", [
    ("postgres://u:p@db/shop", "postgresql+asyncpg://u:p@db/shop"),
    ("postgresql://u:p@db/shop", "postgresql+asyncpg://u:p@db/shop"),
    ("postgresql+asyncpg://u:p@db/shop", "postgresql+asyncpg://u:p@db/shop"),
    ("sqlite:///shop.db", "sqlite+aiosqlite:///shop.db"),
    ("sqlite+aiosqlite:///:memory:", "sqlite+aiosqlite:///:memory:"),
    ('"postgres://u:p@db/shop"', "postgresql+asyncpg://u:p@db/shop"),
    ("", None),
    (None, None),
])
def test_normalize_db_url(raw, expected):
    assert _normalize_db_url(raw) == expected
