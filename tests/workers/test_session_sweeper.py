"""Tests for the session sweeper background task."""

import asyncio
from unittest.mock import MagicMock

from watchsync.domain.watch.session_domain import WatchSessionService
from watchsync.workers.session_sweeper import run_session_sweeper, start_session_sweeper, sweep_once


class TestSessionSweeper:
    """Tests for run_session_sweeper."""

    async def test_sweep_once(self):
        """Test a single sweep returns the number of removed sessions."""
        service = MagicMock(spec=WatchSessionService)
        service.sweep_expired_sessions.return_value = 2

        assert await sweep_once(service) == 2

    async def test_runs_periodically_until_cancelled(self):
        """Test the sweeper keeps sweeping and exits cleanly on cancel."""
        # Arrange
        service = MagicMock(spec=WatchSessionService)
        service.sweep_expired_sessions.return_value = 0

        # Act
        task = start_session_sweeper(service, interval_seconds=0.01)
        await asyncio.sleep(0.05)
        task.cancel()
        await task

        # Assert
        assert service.sweep_expired_sessions.await_count >= 2
        assert task.done()

    async def test_failure_does_not_stop_sweeper(self):
        """Test an unexpected error in one sweep is logged and the loop continues."""
        service = MagicMock(spec=WatchSessionService)
        service.sweep_expired_sessions.side_effect = [RuntimeError("boom"), 1, 0, 0, 0, 0, 0, 0, 0, 0]

        task = asyncio.create_task(run_session_sweeper(service, interval_seconds=0.01))
        await asyncio.sleep(0.05)
        task.cancel()
        await task

        assert service.sweep_expired_sessions.await_count >= 2
