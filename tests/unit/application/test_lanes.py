"""
Unit Tests for LaneManager

Per-session FIFO serialization, cross-session concurrency and the
cancellation token registry.
"""

import asyncio

import pytest

from agentlane.application.lanes import LaneManager


class TestLanes:
    """Tasks on one session never overlap; other sessions run concurrently."""

    @pytest.mark.asyncio
    async def test_same_session_tasks_never_overlap(self):
        lanes = LaneManager()
        active = 0
        max_active = 0

        async def task():
            nonlocal active, max_active
            active += 1
            max_active = max(max_active, active)
            await asyncio.sleep(0.01)
            active -= 1

        await asyncio.gather(*(lanes.run_exclusive("chat:42", task) for _ in range(5)))

        assert max_active == 1

    @pytest.mark.asyncio
    async def test_same_session_runs_in_arrival_order(self):
        lanes = LaneManager()
        order = []

        def make(i):
            async def task():
                await asyncio.sleep(0.001 * (5 - i))
                order.append(i)
                return i

            return task

        results = await asyncio.gather(*(lanes.run_exclusive("s", make(i)) for i in range(5)))

        assert order == [0, 1, 2, 3, 4]
        assert results == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_different_sessions_run_concurrently(self):
        lanes = LaneManager()
        both_started = asyncio.Event()
        started = set()

        def make(session_id):
            async def task():
                started.add(session_id)
                if len(started) == 2:
                    both_started.set()
                await asyncio.wait_for(both_started.wait(), timeout=1)
                return session_id

            return task

        results = await asyncio.gather(
            lanes.run_exclusive("chat:42", make("chat:42")),
            lanes.run_exclusive("chat:43", make("chat:43")),
        )

        assert results == ["chat:42", "chat:43"]

    @pytest.mark.asyncio
    async def test_failure_does_not_poison_lane(self):
        lanes = LaneManager()

        async def boom():
            raise RuntimeError("boom")

        async def ok():
            return "ok"

        first = asyncio.ensure_future(lanes.run_exclusive("s", boom))
        second = asyncio.ensure_future(lanes.run_exclusive("s", ok))

        with pytest.raises(RuntimeError):
            await first
        assert await second == "ok"

    @pytest.mark.asyncio
    async def test_lane_cleaned_up_when_idle(self):
        lanes = LaneManager()

        async def task():
            assert lanes.is_busy("s")
            assert lanes.pending("s") == 1

        await lanes.run_exclusive("s", task)

        assert lanes.active_lanes() == []
        assert not lanes.is_busy("s")
        assert lanes.pending("s") == 0


class TestCancellationTokens:
    def test_unregister_non_latest_token_keeps_latest_active(self):
        lanes = LaneManager()
        first = lanes.register_token("s")
        second = lanes.register_token("s")

        lanes.unregister_token("s", first)

        assert lanes.active_token("s") is second
        assert lanes.live_tokens("s") == [second]

    def test_active_token_is_most_recent(self):
        lanes = LaneManager()
        lanes.register_token("s")
        latest = lanes.register_token("s")

        assert lanes.active_token("s") is latest

    def test_abort_cancels_all_live_tokens(self):
        lanes = LaneManager()
        tokens = [lanes.register_token("s") for _ in range(3)]
        other = lanes.register_token("t")

        assert lanes.abort_session("s") is True
        assert all(t.cancelled for t in tokens)
        assert not other.cancelled

    def test_abort_without_live_tokens_returns_false(self):
        lanes = LaneManager()
        assert lanes.abort_session("nobody") is False

        token = lanes.register_token("s")
        token.cancel()
        assert lanes.abort_session("s") is False

    @pytest.mark.asyncio
    async def test_cancellation_scope_unregisters(self):
        lanes = LaneManager()

        async with lanes.cancellation_scope("s") as token:
            assert lanes.active_token("s") is token

        assert lanes.active_token("s") is None
