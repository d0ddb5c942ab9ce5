"""HTTP response value and per-request options."""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import httpx

from ..core.expander import ExpansionContext, expand
from ..utils.exceptions import HTTPStatusError, ShapingError

Query = dict[str, list[str]]
Header = dict[str, str]


@dataclass
class Response:
    """
    A completed HTTP exchange.

    Attributes:
        status_code: HTTP status code.
        content: Raw response body.
        headers: Response headers, case-insensitive.
        url: URL of the originating request.
        method: Method of the originating request.
    """

    status_code: int
    content: bytes = b""
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    url: str = ""
    method: str = "GET"

    @classmethod
    def from_httpx(cls, response: httpx.Response) -> "Response":
        """Capture an httpx response."""
        return cls(
            status_code=response.status_code,
            content=response.content,
            headers=response.headers,
            url=str(response.request.url),
            method=response.request.method,
        )

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    def json(self) -> Any:
        """
        Decode the body as JSON.

        Raises:
            ShapingError: If the body is not valid JSON.
        """
        try:
            return json.loads(self.content)
        except ValueError as e:
            raise ShapingError(f"response body of {self.method} {self.url} is not valid JSON: {e}") from e

    def json_or_none(self) -> Any:
        """Decode the body as JSON, returning None for empty or non-JSON bodies."""
        if not self.content:
            return None
        try:
            return json.loads(self.content)
        except ValueError:
            return None

    def retry_after(self) -> float | None:
        """
        Parse the Retry-After header.

        Returns:
            float | None: Seconds to wait, None if absent or unparsable.
        """
        value = self.headers.get("Retry-After")
        if not value:
            return None
        value = value.strip()
        if value.isdigit():
            return float(value)
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())

    def raise_for_status(self, action: str = "request") -> "Response":
        """
        Raise HTTPStatusError for any non-2xx response.

        Args:
            action: Short description used in the error message, e.g. "create".

        Returns:
            Response: self, for chaining.
        """
        if not self.is_success:
            raise HTTPStatusError(
                f"{action}: {self.method} {self.url} returned {self.status_code}: {self.text}",
                status_code=self.status_code,
                body=self.content,
            )
        return self


def take_or_self(base: dict[str, Any], override: dict[str, Any] | None) -> dict[str, Any]:
    """Return a copy of ``override`` when set, else a copy of ``base``."""
    if override is None:
        return dict(base)
    return dict(override)


def expand_query(query: Query, body: Any) -> Query:
    """Expand $(body...) references in query values against a request body."""
    context = ExpansionContext(body=body)
    return {key: [expand(value, context) for value in values] for key, values in query.items()}


def expand_header(header: Header, body: Any) -> Header:
    """Expand $(body...) references in header values against a request body."""
    context = ExpansionContext(body=body)
    return {key: expand(value, context) for key, value in header.items()}


@dataclass
class RequestOptions:
    """
    Per-request knobs layered over the client defaults.

    Attributes:
        method: HTTP method.
        query: Query parameters, each key mapping to one or more values.
        header: Extra request headers.
        retry: Retry override, None to use the client policy.
        merge_patch: Send the body as application/merge-patch+json.
    """

    method: str
    query: Query = field(default_factory=dict)
    header: Header = field(default_factory=dict)
    retry: Any = None
    merge_patch: bool = False
