"""
Tests for bounded polling.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from runeswap.polling import PollResult, PollStatus, poll_with_budget


class TestPollWithBudget:
    @pytest.mark.asyncio
    async def test_resolves_on_first_attempt(self) -> None:
        action = AsyncMock(return_value=PollResult.resolved("done"))
        result = await poll_with_budget(action, interval=0, max_attempts=3)
        assert result.is_resolved
        assert result.value == "done"
        assert result.attempts == 1
        action.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_resolves_after_pending(self) -> None:
        action = AsyncMock(
            side_effect=[PollResult.pending("wait"), PollResult.pending(), PollResult.resolved(7)]
        )
        result = await poll_with_budget(action, interval=0, max_attempts=5)
        assert result.value == 7
        assert result.attempts == 3

    @pytest.mark.asyncio
    async def test_budget_exhausted(self) -> None:
        action = AsyncMock(return_value=PollResult.pending("not yet"))
        result = await poll_with_budget(action, interval=0, max_attempts=4)
        assert result.status == PollStatus.PENDING
        assert result.reason == "not yet"
        assert result.attempts == 4
        assert action.await_count == 4

    @pytest.mark.asyncio
    async def test_fatal_stops_early(self) -> None:
        action = AsyncMock(side_effect=[PollResult.pending(), PollResult.fatal("rejected")])
        result = await poll_with_budget(action, interval=0, max_attempts=10)
        assert result.status == PollStatus.FATAL
        assert result.reason == "rejected"
        assert action.await_count == 2

    @pytest.mark.asyncio
    async def test_waits_before_each_attempt(self) -> None:
        """Worst case wait is interval * max_attempts."""
        action = AsyncMock(return_value=PollResult.pending())
        with patch("runeswap.polling.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await poll_with_budget(action, interval=2.5, max_attempts=3)
        assert sleep.await_count == 3
        assert all(call.args == (2.5,) for call in sleep.await_args_list)

    @pytest.mark.asyncio
    async def test_exceptions_propagate(self) -> None:
        action = AsyncMock(side_effect=ConnectionError("boom"))
        with pytest.raises(ConnectionError):
            await poll_with_budget(action, interval=0, max_attempts=3)
        action.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_invalid_budget(self) -> None:
        with pytest.raises(ValueError):
            await poll_with_budget(AsyncMock(), interval=0, max_attempts=0)
