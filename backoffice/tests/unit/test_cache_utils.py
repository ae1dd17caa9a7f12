"""Tests for billing cache helpers.

Tests cover:
- Balance invalidations queued on the session run after commit only
- Rollbacks drop queued invalidations
- Cache errors are swallowed
"""

import asyncio

from unittest.mock import AsyncMock, patch

import pytest

from sqlalchemy.orm import Session

from backoffice.src.billing.shared import cache_utils
from backoffice.src.billing.shared.cache_utils import (
    PENDING_INVALIDATIONS_KEY,
    invalidate,
    invalidate_credit_caches_on_commit,
)

CACHE = 'backoffice.src.billing.shared.cache_utils'


async def drain():
    await asyncio.gather(*list(cache_utils._invalidation_tasks))


class TestInvalidateOnCommit:
    """Tests for post-commit balance invalidation."""

    @pytest.mark.asyncio
    async def test_nothing_runs_before_commit(self, mock_db):
        """Test queuing an invalidation does not touch the cache yet."""
        with patch(f'{CACHE}.invalidate_credit_caches', AsyncMock()) as mock_invalidate:
            invalidate_credit_caches_on_commit(mock_db, 'tenant-1')
            invalidate_credit_caches_on_commit(mock_db, 'tenant-1')
            await drain()

        mock_invalidate.assert_not_awaited()
        assert mock_db.info[PENDING_INVALIDATIONS_KEY] == {'tenant-1'}

    @pytest.mark.asyncio
    async def test_commit_runs_queued_invalidations(self):
        """Test a real session commit invalidates every queued tenant once."""
        session = Session()
        session.info[PENDING_INVALIDATIONS_KEY] = {'tenant-1', 'tenant-2'}

        with patch(f'{CACHE}.invalidate_credit_caches', AsyncMock()) as mock_invalidate:
            session.commit()
            await drain()

        assert sorted(call.args[0] for call in mock_invalidate.await_args_list) == ['tenant-1', 'tenant-2']
        assert PENDING_INVALIDATIONS_KEY not in session.info

    @pytest.mark.asyncio
    async def test_rollback_discards_queue(self):
        """Test a rolled back transaction leaves the cache alone."""
        session = Session()
        session.info[PENDING_INVALIDATIONS_KEY] = {'tenant-1'}

        with patch(f'{CACHE}.invalidate_credit_caches', AsyncMock()) as mock_invalidate:
            cache_utils._discard_after_rollback(session)
            cache_utils._invalidate_after_commit(session)
            await drain()

        mock_invalidate.assert_not_awaited()

    def test_commit_without_event_loop(self):
        """Test a commit outside the event loop leaves the snapshot to expire."""
        session = Session()
        session.info[PENDING_INVALIDATIONS_KEY] = {'tenant-1'}

        with patch(f'{CACHE}.invalidate_credit_caches') as mock_invalidate:
            cache_utils._invalidate_after_commit(session)

        mock_invalidate.assert_not_called()
        assert PENDING_INVALIDATIONS_KEY not in session.info


class TestInvalidate:
    """Tests for key deletion."""

    @pytest.mark.asyncio
    async def test_redis_error_is_swallowed(self):
        """Test a Redis failure reports False instead of raising."""
        with patch('backoffice.database.redis.redis_client.delete', AsyncMock(side_effect=ConnectionError('down'))):
            assert await invalidate('aiyou:credits:balance:tenant-1') is False
