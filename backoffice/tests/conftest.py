"""Shared fixtures for backoffice tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest


def make_session_factory(db):
    """An async_sessionmaker stand-in whose sessions and transactions all yield ``db``."""
    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=db)
    ctx.__aexit__ = AsyncMock(return_value=False)
    factory = MagicMock(return_value=ctx)
    factory.begin.return_value = ctx
    return factory


@pytest.fixture
def mock_db():
    """Mocked AsyncSession; add/add_all are synchronous like the real ones."""
    db = AsyncMock()
    db.add = MagicMock()
    db.add_all = MagicMock()
    db.info = {}
    return db


@pytest.fixture
def session_factory(mock_db):
    return make_session_factory(mock_db)
