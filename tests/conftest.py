"""Pytest configuration and test helpers."""

from __future__ import annotations

import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Callable

import pytest


# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where ``app`` sits
# at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.config import Settings  # noqa: E402
from app.database import Database  # noqa: E402
from app.security import TokenService  # noqa: E402
from app.services.accounts import AccountService  # noqa: E402
from app.services.catalog import CatalogService  # noqa: E402
from app.services.profiles import ProfileService  # noqa: E402
from app.services.watchlist import WatchlistService  # noqa: E402

# Keeps password hashing fast in tests.
TEST_PASSWORD_ITERATIONS = 1_000


def build_settings(**overrides: Any) -> Settings:
    """Return a settings object with defaults suitable for tests."""

    base: dict[str, Any] = {"SECRET_KEY": "test-secret"}
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


@dataclass
class ServiceStack:
    settings: Settings
    database: Database
    tokens: TokenService
    watchlist: WatchlistService
    profiles: ProfileService
    catalog: CatalogService
    accounts: AccountService


@pytest.fixture
def service_stack(tmp_path) -> Callable[..., Any]:
    """Return a factory opening services over a fresh SQLite file.

    Each test drives the whole scenario inside a single ``asyncio.run`` call so
    the engine never outlives the event loop that created it.
    """

    database_path = tmp_path / "animeshelf.db"

    @asynccontextmanager
    async def factory(
        *,
        settings: Settings | None = None,
        jikan: Any = None,
        watchlist: WatchlistService | None = None,
    ) -> AsyncIterator[ServiceStack]:
        config = settings or build_settings()
        database = Database(f"sqlite+aiosqlite:///{database_path}")
        await database.create_all()
        watchlist_service = watchlist or WatchlistService(database.session_factory)
        profiles = ProfileService(config, database.session_factory, watchlist_service)
        tokens = TokenService(config.secret_key, config.token_ttl_seconds)
        stack = ServiceStack(
            settings=config,
            database=database,
            tokens=tokens,
            watchlist=watchlist_service,
            profiles=profiles,
            catalog=CatalogService(database.session_factory, jikan),
            accounts=AccountService(
                config,
                database.session_factory,
                profiles,
                tokens,
                password_iterations=TEST_PASSWORD_ITERATIONS,
            ),
        )
        try:
            yield stack
        finally:
            await database.dispose()

    return factory
