"""Tests for the cooperative cancel token."""

from __future__ import annotations

import asyncio

import pytest

from textstream.cancellation import CancelToken
from textstream.errors import StreamCancelled


class TestSignal:
    def test_initial_state(self):
        token = CancelToken()
        assert not token.is_cancelled()
        assert not token.cancelled
        assert token.reason is None
        token.raise_if_cancelled()

    def test_signal_is_idempotent(self):
        calls: list[str] = []
        token = CancelToken()
        token.add_callback(lambda: calls.append("fired"))
        token.signal("first")
        token.signal("second")
        assert token.cancelled
        assert token.reason == "first"
        assert calls == ["fired"]

    def test_callback_after_signal_runs_immediately(self):
        token = CancelToken()
        token.signal()
        calls: list[int] = []
        token.add_callback(lambda: calls.append(1))
        assert calls == [1]

    def test_failing_callback_does_not_stop_others(self):
        calls: list[str] = []
        token = CancelToken()

        def broken() -> None:
            raise RuntimeError("boom")

        token.add_callback(broken)
        token.add_callback(lambda: calls.append("ok"))
        token.signal("stop")
        assert calls == ["ok"]

    def test_raise_if_cancelled_carries_reason(self):
        token = CancelToken()
        token.signal("user")
        with pytest.raises(StreamCancelled) as exc_info:
            token.raise_if_cancelled()
        assert exc_info.value.reason == "user"


class TestGuard:
    async def test_returns_result(self):
        async def work() -> int:
            await asyncio.sleep(0)
            return 42

        assert await CancelToken().guard(work()) == 42

    async def test_propagates_inner_error(self):
        async def work() -> None:
            raise ValueError("inner")

        with pytest.raises(ValueError, match="inner"):
            await CancelToken().guard(work())

    async def test_already_cancelled_never_starts_work(self):
        started = False

        async def work() -> None:
            nonlocal started
            started = True

        token = CancelToken()
        token.signal("early")
        with pytest.raises(StreamCancelled):
            await token.guard(work())
        assert not started

    async def test_signal_interrupts_and_cleans_up(self):
        cleaned = asyncio.Event()
        entered = asyncio.Event()

        async def work() -> None:
            try:
                entered.set()
                await asyncio.Event().wait()
            finally:
                cleaned.set()

        token = CancelToken()
        task = asyncio.ensure_future(token.guard(work()))
        await entered.wait()
        token.signal("stop")
        with pytest.raises(StreamCancelled):
            await asyncio.wait_for(task, timeout=1)
        assert cleaned.is_set()

    async def test_outer_task_cancel_propagates(self):
        entered = asyncio.Event()

        async def work() -> None:
            entered.set()
            await asyncio.Event().wait()

        token = CancelToken()
        task = asyncio.ensure_future(token.guard(work()))
        await entered.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert not token.cancelled

    async def test_sleep_is_cancellable(self):
        token = CancelToken()
        asyncio.get_running_loop().call_later(0.01, token.signal, "wake")
        with pytest.raises(StreamCancelled):
            await asyncio.wait_for(token.sleep(60), timeout=1)

    async def test_wait(self):
        token = CancelToken()
        asyncio.get_running_loop().call_soon(token.signal)
        await asyncio.wait_for(token.wait(), timeout=1)
        assert token.cancelled
