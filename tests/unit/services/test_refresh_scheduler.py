"""Tests for the background token refresh scheduler."""

import asyncio

import pytest

from invoice_exchange_core.constants import ConnectionStatus
from invoice_exchange_core.services.refresh_scheduler import TokenRefreshScheduler


class TestTokenRefreshScheduler:
    """Loop lifecycle and single runs."""

    def test_interval_defaults_to_policy(self, token_manager):
        scheduler = TokenRefreshScheduler(token_manager)
        assert scheduler.interval_seconds == 900

    @pytest.mark.asyncio
    async def test_run_once(self, token_manager, connected, provider):
        scheduler = TokenRefreshScheduler(token_manager)

        result = await scheduler.run_once()

        assert result.refreshed is True
        assert scheduler.last_result is result
        assert scheduler.runs == 1
        assert len(provider.token_calls()) == 1

    @pytest.mark.asyncio
    async def test_run_once_not_connected(self, token_manager):
        scheduler = TokenRefreshScheduler(token_manager)

        result = await scheduler.run_once()

        assert result.status == ConnectionStatus.DISCONNECTED
        assert result.skipped_reason == "not_connected"

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_loop(self, token_manager, connected, provider):
        provider.token_endpoint_unreachable = True
        scheduler = TokenRefreshScheduler(token_manager, interval_seconds=0.01)

        scheduler.start()
        for _ in range(100):
            if scheduler.runs >= 2:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()

        assert scheduler.runs >= 2
        assert scheduler.last_result.error is not None
        assert scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, token_manager):
        scheduler = TokenRefreshScheduler(token_manager, interval_seconds=60)

        scheduler.start()
        task = scheduler._task
        scheduler.start()

        assert scheduler._task is task
        assert scheduler.is_running is True
        await scheduler.stop()
        assert scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_stop_without_start(self, token_manager):
        await TokenRefreshScheduler(token_manager).stop()
