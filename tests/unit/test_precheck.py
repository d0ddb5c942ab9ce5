"""Tests for the precheck gate."""

import asyncio

import httpx
import pytest
import respx

from restful.execution.precheck import precheck
from restful.models.resource import PollStatus, PrecheckApi, PrecheckMutex
from restful.utils.cancellation import CancelScope
from restful.utils.exceptions import CanceledError, PollFailedError
from restful.utils.locking import get_mutex_registry

BASE = "https://api.example.com"

READY = PollStatus(success="Ready", pending=["Busy"])


class TestApiPrecheck:
    @pytest.mark.asyncio
    async def test_waits_for_ready_status(self, client, sleeps):
        item = PrecheckApi(path="/gates/$(body.gate)", status_locator="body.state", status=READY)
        ran = False
        with respx.mock:
            route = respx.get(f"{BASE}/gates/g1").mock(
                side_effect=[
                    httpx.Response(200, json={"state": "Busy"}),
                    httpx.Response(200, json={"state": "Ready"}),
                ]
            )

            async with precheck(client, [item], default_path="/posts", body={"gate": "g1"}):
                ran = True

            assert route.call_count == 2

        assert ran

    @pytest.mark.asyncio
    async def test_defaults_to_phase_path_and_query(self, client, sleeps):
        item = PrecheckApi(status_locator="body.state", status=READY)
        with respx.mock:
            route = respx.get(f"{BASE}/posts/1").mock(
                return_value=httpx.Response(200, json={"state": "ready"})
            )

            async with precheck(
                client, [item], default_path="/posts/1", query={"v": ["2"]}, header={"X-A": "a"}
            ):
                pass

            request = route.calls.last.request
            assert request.url.params["v"] == "2"
            assert request.headers["X-A"] == "a"

    @pytest.mark.asyncio
    async def test_path_resolves_bound_names(self, client, sleeps):
        item = PrecheckApi(path="$(id)/status", status_locator="body.state", status=READY)
        with respx.mock:
            route = respx.get(f"{BASE}/posts/1/status").mock(
                return_value=httpx.Response(200, json={"state": "Ready"})
            )

            async with precheck(
                client, [item], default_path="posts/1", body={}, names={"id": "posts/1"}
            ):
                pass

            assert route.call_count == 1

    @pytest.mark.asyncio
    async def test_failed_precheck_blocks_the_phase(self, client, sleeps):
        item = PrecheckApi(path="/gate", status_locator="body.state", status=READY)
        entered = False
        with respx.mock:
            respx.get(f"{BASE}/gate").mock(return_value=httpx.Response(200, json={"state": "Broken"}))

            with pytest.raises(PollFailedError):
                async with precheck(client, [item]):
                    entered = True

        assert not entered


class TestMutexPrecheck:
    @pytest.mark.asyncio
    async def test_same_name_serializes(self, client):
        order: list[str] = []
        first_inside = asyncio.Event()
        release_first = asyncio.Event()

        async def first():
            async with precheck(client, [PrecheckMutex(name="lease")]):
                order.append("first-start")
                first_inside.set()
                await release_first.wait()
                order.append("first-end")

        async def second():
            await first_inside.wait()
            async with precheck(client, [PrecheckMutex(name="lease")]):
                order.append("second")

        tasks = [asyncio.create_task(first()), asyncio.create_task(second())]
        await first_inside.wait()
        await asyncio.sleep(0)
        assert get_mutex_registry().locked("lease")
        release_first.set()
        await asyncio.gather(*tasks)

        assert order == ["first-start", "first-end", "second"]

    @pytest.mark.asyncio
    async def test_different_names_run_concurrently(self, client):
        async with precheck(client, [PrecheckMutex(name="a")]):
            async with precheck(client, [PrecheckMutex(name="b")]):
                assert get_mutex_registry().locked("a")
                assert get_mutex_registry().locked("b")

    @pytest.mark.asyncio
    async def test_lock_released_when_phase_fails(self, client):
        with pytest.raises(RuntimeError):
            async with precheck(client, [PrecheckMutex(name="lease")]):
                raise RuntimeError("phase failed")

        assert not get_mutex_registry().locked("lease")

    @pytest.mark.asyncio
    async def test_lock_released_when_later_item_fails(self, client, sleeps):
        items = [
            PrecheckMutex(name="lease"),
            PrecheckApi(path="/gate", status_locator="body.state", status=READY),
        ]
        with respx.mock:
            respx.get(f"{BASE}/gate").mock(return_value=httpx.Response(200, json={"state": "Gone"}))

            with pytest.raises(PollFailedError):
                async with precheck(client, items):
                    pass

        assert not get_mutex_registry().locked("lease")

    @pytest.mark.asyncio
    async def test_cancel_while_waiting_for_mutex(self, client):
        cancel = CancelScope()

        async def waiter():
            async with precheck(client, [PrecheckMutex(name="lease")], cancel=cancel):
                pass

        async with precheck(client, [PrecheckMutex(name="lease")]):
            task = asyncio.create_task(waiter())
            await asyncio.sleep(0)
            cancel.cancel()
            with pytest.raises(CanceledError):
                await task

        assert not get_mutex_registry().locked("lease")
