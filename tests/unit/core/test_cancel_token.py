"""Unit tests for cancellation support."""

import asyncio
from asyncio import CancelledError

import pytest

from agentcore.core.cancel import CancellationToken, wait_cancellable


class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_not_cancelled_initially(self):
        """Token is not cancelled when created."""
        assert CancellationToken().is_cancelled is False

    def test_cancel_is_idempotent(self):
        """Calling cancel() multiple times is safe."""
        token = CancellationToken()
        token.cancel()
        token.cancel()
        assert token.is_cancelled is True

    def test_raise_if_cancelled_does_nothing_when_not_cancelled(self):
        CancellationToken().raise_if_cancelled()

    def test_raise_if_cancelled_raises_when_cancelled(self):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(CancelledError):
            token.raise_if_cancelled()

    def test_on_cancel_callback_called_once(self):
        """on_cancel() callbacks fire on the first cancel() only."""
        token = CancellationToken()
        called = []
        token.on_cancel(lambda: called.append(True))

        token.cancel()
        token.cancel()

        assert called == [True]

    def test_on_cancel_after_cancel_runs_immediately(self):
        token = CancellationToken()
        token.cancel()

        called = []
        token.on_cancel(lambda: called.append(True))
        assert called == [True]

    def test_failing_callback_does_not_block_others(self):
        token = CancellationToken()
        called = []

        def boom():
            raise RuntimeError("callback failed")

        token.on_cancel(boom)
        token.on_cancel(lambda: called.append(True))
        token.cancel()

        assert called == [True]
        assert token.is_cancelled


class TestWaitCancellable:
    """Tests for wait_cancellable()."""

    @pytest.mark.asyncio
    async def test_no_token_awaits_normally(self):
        async def work():
            return 42

        assert await wait_cancellable(work(), None) == 42

    @pytest.mark.asyncio
    async def test_result_returned_when_not_cancelled(self):
        async def work():
            await asyncio.sleep(0)
            return "done"

        assert await wait_cancellable(work(), CancellationToken()) == "done"

    @pytest.mark.asyncio
    async def test_already_cancelled_raises_without_running(self):
        ran = []

        async def work():
            ran.append(True)

        token = CancellationToken()
        token.cancel()

        with pytest.raises(CancelledError):
            await wait_cancellable(work(), token)
        assert ran == []

    @pytest.mark.asyncio
    async def test_cancel_abandons_pending_work(self):
        """Cancelling the token interrupts a pending awaitable."""
        started = asyncio.Event()
        finished = []

        async def slow():
            started.set()
            try:
                await asyncio.sleep(10)
            finally:
                finished.append(True)

        token = CancellationToken()

        async def cancel_soon():
            await started.wait()
            token.cancel()

        canceller = asyncio.create_task(cancel_soon())
        with pytest.raises(CancelledError):
            await wait_cancellable(slow(), token)
        await canceller

        assert finished == [True]

    @pytest.mark.asyncio
    async def test_errors_propagate(self):
        async def failing():
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await wait_cancellable(failing(), CancellationToken())
