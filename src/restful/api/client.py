"""HTTP client for arbitrary REST APIs.

Architecture Overview:
---------------------
One RestClient wraps one httpx.AsyncClient and is shared by every resource
handled by a provider. It adds:
- Lifecycle-flavoured entry points (create/read/update/delete/operation)
  that only differ in the methods they accept
- Retry on transport failures and configurable statuses, honouring
  Retry-After (see api/retry.py)
- Pluggable authenticators, including lazily refreshed OAuth2 tokens
- Custom CA bundles, client certificates and an optional cookie jar
- Cooperative cancellation through a CancelScope

Status Handling:
---------------
The client returns every completed response, successful or not, so callers
can tell a 404 during Read from a real failure. ``Response.raise_for_status``
turns any non-2xx into HTTPStatusError. The only statuses handled here are
the retried ones and a single credential refresh on 401 for authenticators
that can refresh.
"""

import asyncio
import json
import ssl
from typing import Any
from urllib.parse import urlencode

import httpx
import structlog
from tenacity import RetryError

from ..config import ClientConfig
from ..constants import (
    CONTENT_TYPE_FORM,
    CONTENT_TYPE_JSON,
    CONTENT_TYPE_MERGE_PATCH,
    CREATE_METHODS,
    DATA_SOURCE_METHODS,
    DELETE_METHODS,
    OPERATION_METHODS,
    READ_METHODS,
    UPDATE_METHODS,
)
from ..observability.metrics import get_global_collector
from ..utils.cancellation import CancelScope
from ..utils.exceptions import ConfigError, HTTPStatusError, RetryExhaustedError
from .auth import Authenticator
from .response import RequestOptions, Response
from .retry import RetryPolicy, build_retrying

logger = structlog.get_logger(__name__)

# Distinguishes "no body" from a JSON null body
NO_CONTENT: Any = object()


class RestClient:
    """
    REST API client used by every lifecycle phase.

    Features:
    - Base URL joining, absolute URLs passed through untouched
    - JSON, merge-patch and form encoded bodies
    - Retry with backoff, jitter and Retry-After
    - Authentication and token refresh
    - Connection pooling via httpx.AsyncClient
    """

    def __init__(
        self,
        config: ClientConfig,
        authenticator: Authenticator | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            config: Connection settings.
            authenticator: Optional request decorator supplying credentials.
            retry: Default retry policy, None for the network-only default.
        """
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.authenticator = authenticator
        self.retry = retry

        self._client: httpx.AsyncClient | None = None  # Lazy-loaded
        self.collector = get_global_collector()

    async def __aenter__(self) -> "RestClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """
        Get HTTP client with lazy initialization.

        The connection pool is only built on first use so configuration can
        still change between construction and the first request.
        """
        if self._client is None:
            self._client = httpx.AsyncClient(
                verify=self._build_verify(),
                timeout=self.config.timeout,
                limits=httpx.Limits(
                    max_connections=self.config.max_connections,
                    max_keepalive_connections=self.config.max_keepalive,
                ),
            )
        return self._client

    def _build_verify(self) -> ssl.SSLContext | bool:
        if not self.config.verify_ssl:
            return False
        if not self.config.ca_certs and not self.config.client_cert:
            return True

        context = ssl.create_default_context()
        for ca in self.config.ca_certs:
            if "-----BEGIN" in ca:
                context.load_verify_locations(cadata=ca)
            else:
                context.load_verify_locations(cafile=ca)
        if self.config.client_cert:
            context.load_cert_chain(self.config.client_cert, self.config.client_key)
        return context

    def url_for(self, path: str) -> str:
        """Join ``path`` onto the base URL unless it is already absolute."""
        if path.startswith(("http://", "https://")):
            return path
        if not path:
            return self.base_url
        return f"{self.base_url}/{path.lstrip('/')}"

    # =========================================================================
    # Lifecycle entry points
    # =========================================================================

    async def create(
        self,
        path: str,
        body: Any,
        options: RequestOptions,
        cancel: CancelScope | None = None,
    ) -> Response:
        """Issue the create call (POST, PUT or PATCH)."""
        _check_method("create", options.method, CREATE_METHODS)
        return await self.request(options.method, path, body, options, cancel)

    async def read(
        self,
        path: str,
        options: RequestOptions,
        cancel: CancelScope | None = None,
        body: Any = NO_CONTENT,
    ) -> Response:
        """Issue the read call (GET, or POST for query style APIs)."""
        _check_method("read", options.method, READ_METHODS)
        return await self.request(options.method, path, body, options, cancel)

    async def update(
        self,
        path: str,
        body: Any,
        options: RequestOptions,
        cancel: CancelScope | None = None,
    ) -> Response:
        """Issue the update call (PUT, PATCH or POST)."""
        _check_method("update", options.method, UPDATE_METHODS)
        return await self.request(options.method, path, body, options, cancel)

    async def delete(
        self,
        path: str,
        options: RequestOptions,
        cancel: CancelScope | None = None,
        body: Any = NO_CONTENT,
    ) -> Response:
        """Issue the delete call (DELETE, POST, PUT or PATCH), optionally with a body."""
        _check_method("delete", options.method, DELETE_METHODS)
        return await self.request(options.method, path, body, options, cancel)

    async def operation(
        self,
        path: str,
        body: Any,
        options: RequestOptions,
        cancel: CancelScope | None = None,
    ) -> Response:
        """Issue a one-shot operation or action call."""
        _check_method("operation", options.method, OPERATION_METHODS)
        return await self.request(options.method, path, body, options, cancel)

    async def read_data_source(
        self,
        path: str,
        options: RequestOptions,
        cancel: CancelScope | None = None,
        body: Any = NO_CONTENT,
    ) -> Response:
        """Issue a data source read (GET, POST or HEAD)."""
        _check_method("data source read", options.method, DATA_SOURCE_METHODS)
        return await self.request(options.method, path, body, options, cancel)

    async def custom_request(
        self,
        method: str,
        path: str,
        body: Any = NO_CONTENT,
        options: RequestOptions | None = None,
        cancel: CancelScope | None = None,
    ) -> Response:
        """Issue an arbitrary request."""
        options = options or RequestOptions(method=method)
        return await self.request(method, path, body, options, cancel)

    # =========================================================================
    # Core request
    # =========================================================================

    async def request(
        self,
        method: str,
        path: str,
        body: Any,
        options: RequestOptions,
        cancel: CancelScope | None = None,
    ) -> Response:
        """
        Send one logical request, retrying as the policy allows.

        Args:
            method: HTTP method.
            path: Path relative to the base URL, or an absolute URL.
            body: Decoded JSON body, NO_CONTENT for none.
            options: Query, headers, retry override and merge-patch flag.
            cancel: Cancellation signal for the whole exchange.

        Returns:
            Response: The final response, whatever its status.

        Raises:
            RetryExhaustedError: If every attempt failed or returned a retried status.
            HTTPStatusError: For non-retriable transport failures.
            CanceledError: If the cancel scope fires.
        """
        cancel = cancel or CancelScope()
        url = self.url_for(path)
        headers = dict(options.header)
        content = self._encode_body(body, headers, options.merge_patch)

        policy = options.retry if options.retry is not None else self.retry
        retrying = build_retrying(policy, cancel.sleep)

        try:
            return await retrying(
                self._send, method, url, options.query, headers, content, cancel
            )
        except RetryError as e:
            last = e.last_attempt
            if last.failed:
                error = last.exception()
                logger.error(
                    "Request retries exhausted",
                    method=method,
                    url=url,
                    attempts=last.attempt_number,
                    error=str(error),
                )
                raise RetryExhaustedError(
                    None,
                    last.attempt_number,
                    original_error=error if isinstance(error, Exception) else None,
                ) from error
            response: Response = last.result()
            logger.error(
                "Request retries exhausted",
                method=method,
                url=url,
                attempts=last.attempt_number,
                status=response.status_code,
            )
            raise RetryExhaustedError(
                response.status_code, last.attempt_number, body=response.content
            ) from e
        except httpx.HTTPError as e:
            raise HTTPStatusError(f"HTTP request failed: {e}") from e

    def _encode_body(self, body: Any, headers: dict[str, str], merge_patch: bool) -> bytes | None:
        if body is NO_CONTENT:
            return None

        content_type = next(
            (value for key, value in headers.items() if key.lower() == "content-type"), None
        )
        if content_type is None:
            content_type = CONTENT_TYPE_MERGE_PATCH if merge_patch else CONTENT_TYPE_JSON
            headers["Content-Type"] = content_type

        if content_type.split(";")[0].strip().lower() == CONTENT_TYPE_FORM:
            if not isinstance(body, dict):
                raise ConfigError("form encoded bodies must be JSON objects")
            return urlencode(
                {key: value if isinstance(value, str) else json.dumps(value) for key, value in body.items()}
            ).encode()

        if isinstance(body, (bytes, bytearray)):
            return bytes(body)
        return json.dumps(body).encode()

    async def _send(
        self,
        method: str,
        url: str,
        params: dict[str, list[str]],
        headers: dict[str, str],
        content: bytes | None,
        cancel: CancelScope,
        _auth_retry: bool = False,
    ) -> Response:
        request = self.client.build_request(
            method, url, params=params or None, headers=headers, content=content
        )
        if self.authenticator is not None:
            await self.authenticator.apply(request, self.client)

        self.collector.count_request(method)
        start_time = asyncio.get_running_loop().time()

        raw = await cancel.run(self.client.send(request))
        response = Response.from_httpx(raw)

        duration = (asyncio.get_running_loop().time() - start_time) * 1000
        self.collector.record_request_latency(method, duration)

        if not self.config.cookie_enabled:
            self.client.cookies.clear()

        logger.debug(
            "HTTP exchange",
            method=method,
            url=response.url,
            status=response.status_code,
            duration_ms=round(duration, 2),
        )

        # One refresh-and-resend for expired tokens; a second 401 is returned as is
        if (
            response.status_code == 401
            and self.authenticator is not None
            and self.authenticator.refreshable
            and not _auth_retry
        ):
            logger.info("Credentials rejected, refreshing token", url=response.url)
            await self.authenticator.refresh(self.client)
            return await self._send(
                method, url, params, headers, content, cancel, _auth_retry=True
            )

        return response


def _check_method(action: str, method: str, allowed: frozenset[str]) -> None:
    if method.upper() not in allowed:
        raise ConfigError(
            f"method {method!r} is not allowed for {action}, expect one of {sorted(allowed)}"
        )
