"""Tests for RestClient request handling, retry and authentication refresh."""

import asyncio
import json
import warnings
from unittest.mock import MagicMock

import httpx
import pytest
import respx

from restful.api.auth import Authenticator
from restful.api.client import NO_CONTENT, RestClient
from restful.api.response import RequestOptions, Response
from restful.api.retry import RetryPolicy, build_retrying, wait_retry_after
from restful.constants import DEFAULT_RETRY_WAIT_SEC
from restful.observability.metrics import get_global_collector
from restful.utils.cancellation import CancelScope
from restful.utils.exceptions import CanceledError, ConfigError, HTTPStatusError, RetryExhaustedError

BASE = "https://api.example.com"


class RotatingTokenAuthenticator(Authenticator):
    """Static token that changes on every refresh."""

    refreshable = True

    def __init__(self) -> None:
        self.generation = 0

    async def apply(self, request: httpx.Request, http: httpx.AsyncClient) -> None:
        request.headers["Authorization"] = f"Bearer token-{self.generation}"

    async def refresh(self, http: httpx.AsyncClient) -> None:
        self.generation += 1


class TestRequestEncoding:
    """Test URL joining, bodies, query and headers."""

    def test_url_for(self, client):
        assert client.url_for("posts/1") == f"{BASE}/posts/1"
        assert client.url_for("/posts/1") == f"{BASE}/posts/1"
        assert client.url_for("") == BASE
        assert client.url_for("https://other.example.com/x") == "https://other.example.com/x"

    @pytest.mark.asyncio
    async def test_json_body_and_default_content_type(self, client):
        with respx.mock:
            route = respx.post(f"{BASE}/posts").mock(
                return_value=httpx.Response(201, json={"id": 1})
            )

            response = await client.create("posts", {"foo": "bar"}, RequestOptions(method="POST"))

            request = route.calls.last.request
            assert json.loads(request.content) == {"foo": "bar"}
            assert request.headers["Content-Type"] == "application/json"

        assert response.status_code == 201
        assert response.json() == {"id": 1}
        assert response.url == f"{BASE}/posts"

    @pytest.mark.asyncio
    async def test_merge_patch_content_type(self, client):
        with respx.mock:
            route = respx.patch(f"{BASE}/posts/1").mock(return_value=httpx.Response(200))

            await client.update(
                "posts/1", {"b": None}, RequestOptions(method="PATCH", merge_patch=True)
            )

            request = route.calls.last.request
            assert request.headers["Content-Type"] == "application/merge-patch+json"
            assert json.loads(request.content) == {"b": None}

    @pytest.mark.asyncio
    async def test_explicit_content_type_wins(self, client):
        with respx.mock:
            route = respx.post(f"{BASE}/forms").mock(return_value=httpx.Response(200))

            await client.operation(
                "forms",
                {"a": "x", "b": 1},
                RequestOptions(
                    method="POST", header={"content-type": "application/x-www-form-urlencoded"}
                ),
            )

            assert route.calls.last.request.content == b"a=x&b=1"

    @pytest.mark.asyncio
    async def test_query_and_headers(self, client):
        with respx.mock:
            route = respx.get(f"{BASE}/posts").mock(return_value=httpx.Response(200, json=[]))

            await client.read(
                "posts",
                RequestOptions(method="GET", query={"tag": ["a", "b"]}, header={"X-Trace": "1"}),
            )

            request = route.calls.last.request
            assert request.url.params.get_list("tag") == ["a", "b"]
            assert request.headers["X-Trace"] == "1"
            assert request.content == b""

    @pytest.mark.asyncio
    async def test_no_content_sends_no_body(self, client):
        with respx.mock:
            route = respx.delete(f"{BASE}/posts/1").mock(return_value=httpx.Response(204))

            await client.delete("posts/1", RequestOptions(method="DELETE"), body=NO_CONTENT)

            assert route.calls.last.request.content == b""
            assert "Content-Type" not in route.calls.last.request.headers

    @pytest.mark.asyncio
    async def test_raw_bytes_body(self, client):
        with respx.mock:
            route = respx.delete(f"{BASE}/posts/1").mock(return_value=httpx.Response(204))

            await client.delete("posts/1", RequestOptions(method="DELETE"), body=b"raw")

            assert route.calls.last.request.content == b"raw"

    @pytest.mark.asyncio
    async def test_method_not_allowed_for_phase(self, client):
        with pytest.raises(ConfigError, match="not allowed for create"):
            await client.create("posts", {}, RequestOptions(method="GET"))


class TestStatusHandling:
    @pytest.mark.asyncio
    async def test_404_is_returned_not_raised(self, client):
        with respx.mock:
            respx.get(f"{BASE}/posts/1").mock(return_value=httpx.Response(404))

            response = await client.read("posts/1", RequestOptions(method="GET"))

        assert response.is_not_found
        with pytest.raises(HTTPStatusError) as exc_info:
            response.raise_for_status("read")
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_metrics_are_recorded(self, client):
        with respx.mock:
            respx.get(f"{BASE}/posts").mock(return_value=httpx.Response(200))
            await client.read("posts", RequestOptions(method="GET"))

        summary = get_global_collector().get_summary()
        assert summary["counters"]["restful_api_requests_total[method=GET]"] == 1


class TestRetry:
    """Test status and network retry."""

    @pytest.mark.asyncio
    async def test_retry_after_is_honoured(self, client_config, sleeps):
        client = RestClient(
            client_config, retry=RetryPolicy(status_codes=frozenset({503}), count=3, wait=1, max_wait=30)
        )
        with respx.mock:
            route = respx.get(f"{BASE}/posts/1").mock(
                side_effect=[
                    httpx.Response(503, headers={"Retry-After": "5"}),
                    httpx.Response(503, headers={"Retry-After": "5"}),
                    httpx.Response(200, json={"id": 1}),
                ]
            )

            response = await client.read("posts/1", RequestOptions(method="GET"))

            assert route.call_count == 3
        await client.close()

        assert response.status_code == 200
        assert sleeps == [5.0, 5.0]
        assert sum(sleeps) >= 10

    @pytest.mark.asyncio
    async def test_retry_after_capped_by_max_wait(self, client_config, sleeps):
        client = RestClient(
            client_config, retry=RetryPolicy(status_codes=frozenset({429}), count=2, wait=0, max_wait=3)
        )
        with respx.mock:
            respx.get(f"{BASE}/x").mock(
                side_effect=[
                    httpx.Response(429, headers={"Retry-After": "60"}),
                    httpx.Response(200),
                ]
            )
            await client.read("x", RequestOptions(method="GET"))
        await client.close()

        assert sleeps == [3.0]

    @pytest.mark.asyncio
    async def test_retry_exhausted(self, client_config, sleeps):
        client = RestClient(
            client_config, retry=RetryPolicy(status_codes=frozenset({503}), count=3, wait=0)
        )
        with respx.mock:
            route = respx.get(f"{BASE}/x").mock(return_value=httpx.Response(503, text="busy"))

            with pytest.raises(RetryExhaustedError) as exc_info:
                await client.read("x", RequestOptions(method="GET"))

            assert route.call_count == 3
        await client.close()

        assert exc_info.value.last_status == 503
        assert exc_info.value.attempts == 3
        assert exc_info.value.text == "busy"

    @pytest.mark.asyncio
    async def test_per_request_policy_overrides_client(self, client, sleeps):
        with respx.mock:
            route = respx.get(f"{BASE}/x").mock(
                side_effect=[httpx.Response(500), httpx.Response(200)]
            )
            options = RequestOptions(
                method="GET", retry=RetryPolicy(status_codes=frozenset({500}), count=2, wait=0)
            )

            response = await client.read("x", options)

            assert route.call_count == 2

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_status_not_retried_without_policy(self, client, sleeps):
        with respx.mock:
            route = respx.get(f"{BASE}/x").mock(return_value=httpx.Response(503))

            response = await client.read("x", RequestOptions(method="GET"))

            assert route.call_count == 1

        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_network_error_retried_once_by_default(self, client, sleeps):
        with respx.mock:
            route = respx.get(f"{BASE}/x").mock(side_effect=httpx.ConnectError("refused"))

            with pytest.raises(RetryExhaustedError) as exc_info:
                await client.read("x", RequestOptions(method="GET"))

            assert route.call_count == 2

        assert exc_info.value.last_status is None
        assert isinstance(exc_info.value.original_error, httpx.ConnectError)
        assert len(sleeps) == 1
        assert 0 < sleeps[0] <= 2 * DEFAULT_RETRY_WAIT_SEC


class TestBackoff:
    """Test the wait strategy shared by every policy."""

    def test_building_policies_emits_no_warnings(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            build_retrying(None, asyncio.sleep)
            build_retrying(RetryPolicy(status_codes=frozenset({503}), wait=2, max_wait=10), asyncio.sleep)

    def test_delay_grows_and_is_capped(self):
        wait = wait_retry_after(initial=1, maximum=5)
        state = MagicMock(outcome=None)

        state.attempt_number = 1
        assert 1 <= wait(state) <= 2
        state.attempt_number = 2
        assert 2 <= wait(state) <= 3
        state.attempt_number = 10
        assert wait(state) == 5


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_401_triggers_one_refresh(self, client_config):
        authenticator = RotatingTokenAuthenticator()
        client = RestClient(client_config, authenticator=authenticator)
        with respx.mock:
            route = respx.get(f"{BASE}/x").mock(
                side_effect=[httpx.Response(401), httpx.Response(200)]
            )

            response = await client.read("x", RequestOptions(method="GET"))

            assert [call.request.headers["Authorization"] for call in route.calls] == [
                "Bearer token-0",
                "Bearer token-1",
            ]
        await client.close()

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_second_401_is_returned(self, client_config):
        client = RestClient(client_config, authenticator=RotatingTokenAuthenticator())
        with respx.mock:
            route = respx.get(f"{BASE}/x").mock(return_value=httpx.Response(401))

            response = await client.read("x", RequestOptions(method="GET"))

            assert route.call_count == 2
        await client.close()

        assert response.status_code == 401


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_scope_aborts_request(self, client):
        cancel = CancelScope()
        cancel.cancel()

        with respx.mock(assert_all_called=False):
            route = respx.get(f"{BASE}/x").mock(return_value=httpx.Response(200))

            with pytest.raises(CanceledError):
                await client.read("x", RequestOptions(method="GET"), cancel)

            assert not route.called


class TestResponse:
    def test_retry_after_seconds(self):
        response = Response(status_code=503, headers=httpx.Headers({"Retry-After": "7"}))
        assert response.retry_after() == 7.0

    def test_retry_after_http_date_in_past(self):
        response = Response(
            status_code=503, headers=httpx.Headers({"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"})
        )
        assert response.retry_after() == 0.0

    def test_retry_after_absent_or_garbage(self):
        assert Response(status_code=503).retry_after() is None
        garbage = Response(status_code=503, headers=httpx.Headers({"Retry-After": "soon"}))
        assert garbage.retry_after() is None

    def test_json_or_none(self):
        assert Response(status_code=200, content=b"").json_or_none() is None
        assert Response(status_code=200, content=b"text").json_or_none() is None
        assert Response(status_code=200, content=b"[1]").json_or_none() == [1]
