"""Tests for the cooperative cancellation scope."""

import asyncio

import pytest

from restful.utils.cancellation import CancelScope
from restful.utils.exceptions import CanceledError


class TestCancelScope:
    @pytest.mark.asyncio
    async def test_sleep_returns_after_delay(self):
        scope = CancelScope()
        await scope.sleep(0.01)
        await scope.sleep(0)
        await scope.sleep(-1)

    @pytest.mark.asyncio
    async def test_cancel_interrupts_sleep(self):
        scope = CancelScope()
        task = asyncio.create_task(scope.sleep(10))
        await asyncio.sleep(0)

        scope.cancel()

        with pytest.raises(CanceledError):
            await task

    @pytest.mark.asyncio
    async def test_sleep_on_cancelled_scope(self):
        scope = CancelScope()
        scope.cancel()

        assert scope.cancelled
        with pytest.raises(CanceledError):
            await scope.sleep(0)

    @pytest.mark.asyncio
    async def test_run_returns_result(self):
        async def work():
            return 42

        assert await CancelScope().run(work()) == 42

    @pytest.mark.asyncio
    async def test_run_propagates_errors(self):
        async def work():
            raise KeyError("x")

        with pytest.raises(KeyError):
            await CancelScope().run(work())

    @pytest.mark.asyncio
    async def test_cancel_aborts_in_flight_work(self):
        scope = CancelScope()
        finished = False

        async def work():
            nonlocal finished
            await asyncio.sleep(10)
            finished = True

        task = asyncio.create_task(scope.run(work()))
        await asyncio.sleep(0)
        scope.cancel()

        with pytest.raises(CanceledError):
            await task
        assert not finished

    @pytest.mark.asyncio
    async def test_run_on_cancelled_scope_never_starts(self):
        scope = CancelScope()
        scope.cancel()
        started = False

        async def work():
            nonlocal started
            started = True

        with pytest.raises(CanceledError):
            await scope.run(work())
        assert not started

    def test_raise_if_cancelled(self):
        scope = CancelScope()
        scope.raise_if_cancelled()
        scope.cancel()
        with pytest.raises(CanceledError):
            scope.raise_if_cancelled()
