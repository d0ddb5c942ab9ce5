"""Poller - Drive an asynchronous operation to a terminal status.

A phase that starts long running work on the server (a 202 with a status
URL, a resource that reports "Provisioning") hands the initiating response
to a Pollable. The Pollable GETs the status URL until the status locator
yields the success sentinel, a failure sentinel, or something unexpected.

Timing:
- The first GET waits for the initiating response's Retry-After, if any
- A pending status waits for that response's Retry-After, else the
  configured default delay
- There is no attempt cap; the host bounds the loop through cancellation
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs, urlsplit, urlunsplit

import structlog

from ..api import locator as locators
from ..api.client import RestClient
from ..api.response import Header, Query, RequestOptions, Response
from ..models.resource import PollSpec, PollStatus, PrecheckApi
from ..observability.metrics import get_global_collector
from ..utils.cancellation import CancelScope
from ..utils.exceptions import PollFailedError

logger = structlog.get_logger(__name__)

ResponseCallback = Callable[[Response], None]


@dataclass
class Pollable:
    """
    A resolved polling target.

    Attributes:
        url: URL to GET, absolute or relative to the client base URL.
        status_locator: Where the status lives in each poll response.
        status: Success, pending and failure sentinels.
        query: Query parameters sent with every poll.
        header: Headers sent with every poll.
        default_delay: Seconds between polls when no Retry-After is given.
        init_delay: Seconds to wait before the first poll.
    """

    url: str
    status_locator: locators.Locator
    status: PollStatus
    query: Query = field(default_factory=dict)
    header: Header = field(default_factory=dict)
    default_delay: float = 10.0
    init_delay: float = 0.0

    @classmethod
    def from_response(
        cls,
        response: Response,
        spec: PollSpec,
        context_body: Any = None,
        fallback_url: str | None = None,
        query: Query | None = None,
        header: Header | None = None,
    ) -> "Pollable":
        """
        Build a Pollable from the response that started the operation.

        Args:
            response: The initiating response.
            spec: Poll settings.
            context_body: Document that $(body...) references in the locators resolve against.
            fallback_url: URL polled when no url_locator is set, default the request URL.
            query: Query of the initiating phase, used unless the poll settings override it.
            header: Headers of the initiating phase, used unless the poll settings override it.

        Raises:
            PollFailedError: If the url locator finds nothing.
        """
        status_locator = locators.with_request_body(
            locators.parse(spec.status_locator), context_body
        )
        poll_query = dict(spec.query if spec.query is not None else (query or {}))
        poll_header = dict(spec.header if spec.header is not None else (header or {}))

        if spec.url_locator is not None:
            url_locator = locators.with_request_body(locators.parse(spec.url_locator), context_body)
            raw_url = url_locator.locate(response)
            if not raw_url:
                raise PollFailedError(
                    f"no polling URL found by {url_locator}", body=response.content
                )
            # A discovered URL is complete; its own query replaces the phase query
            parts = urlsplit(raw_url)
            poll_query = dict(parse_qs(parts.query))
            url = urlunsplit((parts.scheme, parts.netloc, parts.path, "", parts.fragment))
        else:
            url = fallback_url or response.url

        return cls(
            url=url,
            status_locator=status_locator,
            status=spec.status,
            query=poll_query,
            header=poll_header,
            default_delay=spec.default_delay_sec,
            init_delay=response.retry_after() or 0.0,
        )

    @classmethod
    def for_precheck(
        cls,
        url: str,
        item: PrecheckApi,
        context_body: Any = None,
        query: Query | None = None,
        header: Header | None = None,
    ) -> "Pollable":
        """Build a Pollable for a precheck, which polls a fixed URL from the start."""
        return cls(
            url=url,
            status_locator=locators.with_request_body(
                locators.parse(item.status_locator), context_body
            ),
            status=item.status,
            query=dict(query or {}),
            header=dict(header or {}),
            default_delay=item.default_delay_sec,
        )

    async def poll_until_done(
        self,
        client: RestClient,
        cancel: CancelScope | None = None,
        on_response: ResponseCallback | None = None,
    ) -> Response:
        """
        Poll until the status reaches success.

        Args:
            client: Client used for the GETs.
            cancel: Cancellation signal, checked before every wait.
            on_response: Called with every poll response before its status is judged.

        Returns:
            Response: The response carrying the success status.

        Raises:
            PollFailedError: On a failure or unexpected status, or when no status is found.
            HTTPStatusError: If a poll GET fails and the status is not read from the code.
            CanceledError: If the cancel scope fires.
        """
        cancel = cancel or CancelScope()
        collector = get_global_collector()
        success = self.status.success.casefold()
        pending = {value.casefold() for value in self.status.pending}
        failure = (
            None
            if self.status.failure is None
            else {value.casefold() for value in self.status.failure}
        )

        await cancel.sleep(self.init_delay)
        attempt = 0
        while True:
            attempt += 1
            response = await client.custom_request(
                "GET",
                self.url,
                options=RequestOptions(method="GET", query=self.query, header=self.header),
                cancel=cancel,
            )

            # Surface a failed GET before judging a status read from its body
            if not isinstance(self.status_locator, locators.CodeLocator):
                response.raise_for_status("poll")

            if on_response is not None:
                on_response(response)

            status = self.status_locator.locate(response)
            if status == "":
                raise PollFailedError(
                    f"no status value found by {self.status_locator}",
                    observed_status=status,
                    body=response.content,
                )
            collector.count_poll(status)

            folded = status.casefold()
            if folded == success:
                logger.debug("Polling succeeded", url=self.url, status=status, attempts=attempt)
                return response

            if folded in pending:
                delay = response.retry_after()
                if delay is None:
                    delay = self.default_delay
                logger.debug(
                    "Polling pending",
                    url=self.url,
                    status=status,
                    attempt=attempt,
                    delay_sec=delay,
                )
                await cancel.sleep(delay)
                continue

            if failure is not None and folded in failure:
                message = f"polling reached failure status {status!r}"
            else:
                message = f"unexpected polling status {status!r}"
            logger.warning("Polling failed", url=self.url, status=status, attempts=attempt)
            raise PollFailedError(message, observed_status=status, body=response.content)
