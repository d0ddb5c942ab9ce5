"""Ephemeral resources: short lived credentials or sessions.

An ephemeral resource is opened for the duration of one run, renewed before
it expires, and closed at the end. Renew and close requests are templates
expanded against the open response, which is kept in private state together
with the computed expiry.
"""

from dataclasses import replace
from datetime import datetime
from typing import Any

import structlog

from ..api.client import NO_CONTENT, RestClient
from ..api.response import RequestOptions, Response, expand_header, expand_query, take_or_self
from ..core import shaper
from ..core.expander import ExpansionContext, expand, expand_json
from ..models.resource import EphemeralRequest, EphemeralResourceConfig
from ..models.state import EphemeralResult
from ..persistence.private_state import PrivateState, compute_expiry
from ..utils.cancellation import CancelScope
from .phase import PhaseState, PhaseTracker

logger = structlog.get_logger(__name__)


class EphemeralResourceManager:
    """Open, renew and close ephemeral resources."""

    def __init__(self, client: RestClient) -> None:
        self.client = client

    def _options(
        self, config: EphemeralResourceConfig, request: EphemeralRequest, context_body: Any
    ) -> RequestOptions:
        query = take_or_self(config.query, request.query)
        header = take_or_self(config.header, request.header)
        if context_body is not None:
            query = expand_query(query, context_body)
            header = expand_header(header, context_body)
        return RequestOptions(
            method=request.method,
            query=query,
            header=header,
            retry=config.retry.to_policy() if config.retry else None,
        )

    async def _send(
        self,
        config: EphemeralResourceConfig,
        request: EphemeralRequest,
        context_body: Any,
        cancel: CancelScope,
    ) -> Response:
        context = ExpansionContext(path=config.open.path, body=context_body)
        path = request.path if context_body is None else expand(request.path, context)
        body: Any = NO_CONTENT
        if request.body is not None:
            body = request.body if context_body is None else expand_json(request.body, context)
        options = self._options(config, request, context_body)
        return await self.client.operation(path, body, options, cancel)

    def _expiry(
        self, config: EphemeralResourceConfig, response: Response, now: datetime | None
    ) -> datetime | None:
        if config.expiry_locator is None or config.expiry_type is None:
            return None
        return compute_expiry(
            response, config.expiry_locator, config.expiry_type, config.expiry_ahead, now=now
        )

    async def open(
        self,
        config: EphemeralResourceConfig,
        cancel: CancelScope | None = None,
        now: datetime | None = None,
    ) -> EphemeralResult:
        """
        Open the ephemeral resource.

        Returns:
            EphemeralResult: Filtered output, the open response and the expiry.

        Raises:
            HTTPStatusError: If the open call fails.
            ConfigError: If the expiry cannot be computed.
        """
        cancel = cancel or CancelScope()
        with PhaseTracker("ephemeral-open", config.open.path) as tracker:
            tracker.advance(PhaseState.ISSUING)
            response = await self._send(config, config.open, None, cancel)
            response.raise_for_status("ephemeral open")

            private = PrivateState(op_output=response.content, expiry=self._expiry(config, response, now))
            output = shaper.filter_attrs(response.json_or_none(), config.output_attrs)
            logger.info("Ephemeral resource opened", path=config.open.path, has_expiry=private.expiry is not None)
            return EphemeralResult(output=output, private=private)

    async def renew(
        self,
        config: EphemeralResourceConfig,
        opened: EphemeralResult,
        cancel: CancelScope | None = None,
        now: datetime | None = None,
    ) -> EphemeralResult:
        """
        Renew the resource and recompute its expiry from the renew response.

        Without a renew request the result is returned unchanged.
        """
        if config.renew is None:
            return opened
        cancel = cancel or CancelScope()
        with PhaseTracker("ephemeral-renew", config.renew.path) as tracker:
            tracker.advance(PhaseState.ISSUING)
            response = await self._send(
                config, config.renew, opened.private.op_output_json(), cancel
            )
            response.raise_for_status("ephemeral renew")
            private = replace(opened.private, expiry=self._expiry(config, response, now))
            logger.info("Ephemeral resource renewed", path=config.renew.path)
            return EphemeralResult(output=opened.output, private=private)

    async def close(
        self,
        config: EphemeralResourceConfig,
        opened: EphemeralResult,
        cancel: CancelScope | None = None,
    ) -> None:
        """Close the resource; a resource already gone counts as closed."""
        if config.close is None:
            return
        cancel = cancel or CancelScope()
        with PhaseTracker("ephemeral-close", config.close.path) as tracker:
            tracker.advance(PhaseState.ISSUING)
            response = await self._send(
                config, config.close, opened.private.op_output_json(), cancel
            )
            if response.is_not_found:
                logger.info("Ephemeral resource already closed", path=config.close.path)
                return
            response.raise_for_status("ephemeral close")
            logger.info("Ephemeral resource closed", path=config.close.path)

    def needs_renewal(self, opened: EphemeralResult, now: datetime | None = None) -> bool:
        return opened.private.expired(now)
