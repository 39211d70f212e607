"""Shared fixtures for print queue tests."""

import asyncio
from datetime import datetime

import pytest

import printqueue.config as config_module
import printqueue.db as db_module
from printqueue.config import Settings
from printqueue.db import close_db, configure_database, get_session, init_db
from printqueue.db.repositories.users import UserRepository


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Give every test default settings and no database override."""
    settings = Settings(_env_file=None)
    monkeypatch.setattr(config_module, "_settings", settings)
    monkeypatch.setattr(db_module, "_database_url", None)
    monkeypatch.setattr(db_module, "_engine", None)
    monkeypatch.setattr(db_module, "_session_factory", None)
    return settings


@pytest.fixture
def database_url(tmp_path):
    """SQLite database file for one test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}"


@pytest.fixture
def run_db(database_url):
    """Run an async scenario against a fresh database."""
    def runner(scenario):
        async def main():
            await configure_database(database_url)
            await init_db()
            try:
                return await scenario()
            finally:
                await close_db()

        return asyncio.run(main())

    return runner


@pytest.fixture
def add_user():
    """Create a user and return its ID."""
    async def _add(username: str, hours: float = 0.0) -> str:
        async with get_session() as session:
            user = await UserRepository(session).create_user(
                username=username,
                name=username.title(),
                accumulated_print_time=hours,
            )
        return user.id

    return _add


@pytest.fixture
def fixed_clock():
    """Clock frozen at a known instant."""
    return lambda: datetime(2025, 1, 14, 9, 30, 0)
