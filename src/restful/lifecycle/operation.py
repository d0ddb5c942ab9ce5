"""One-shot calls: Operations and Actions.

An Operation performs its call on create and keeps the response as its
output; destroying it optionally issues a mirror call (turning a feature
back off, releasing a lease). It never reads back and never tracks drift.

An Action only reports progress: it issues its call, optionally polls, and
streams a templated message rendered from every poll response.
"""

import copy
from collections.abc import Callable
from typing import Any

import structlog

from ..api.client import NO_CONTENT, RestClient
from ..api.response import RequestOptions, Response, expand_header, expand_query, take_or_self
from ..core import shaper
from ..core.expander import ExpansionContext, expand, expand_json
from ..execution.poller import Pollable
from ..execution.precheck import precheck
from ..models.resource import ActionConfig, OperationConfig
from ..models.state import ResourceState
from ..persistence.private_state import PrivateState, record_ephemeral
from ..utils.cancellation import CancelScope
from ..utils.exceptions import UnresolvedReferenceError
from .phase import PhaseState, PhaseTracker
from .resource import check_disjoint

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[str], None]


def _decode_output(response: Response) -> Any:
    document = response.json_or_none()
    if document is None and response.content:
        return response.text
    return document


class OperationRunner:
    """Run Operation create and delete calls."""

    def __init__(self, client: RestClient) -> None:
        self.client = client

    async def create(self, config: OperationConfig, cancel: CancelScope | None = None) -> ResourceState:
        """
        Invoke the operation and record its response as output.

        Returns:
            ResourceState: State whose output is the filtered response; the raw
            response is kept in private state.

        Raises:
            DisjointViolationError: If body and ephemeral_body overlap; nothing is sent.
            HTTPStatusError: If the call fails.
            PollFailedError: If polling fails.
        """
        cancel = cancel or CancelScope()

        with PhaseTracker("operation", config.path) as tracker:
            check_disjoint(config.body, config.ephemeral_body)
            query = dict(config.query)
            header = dict(config.header)
            if config.body is not None:
                query = expand_query(query, config.body)
                header = expand_header(header, config.body)
            options = RequestOptions(
                method=config.method,
                query=query,
                header=header,
                retry=config.retry.to_policy() if config.retry else None,
            )

            tracker.advance(PhaseState.PRECHECKING)
            async with precheck(
                self.client, config.precheck, default_path=config.path, query=query, header=header, cancel=cancel
            ):
                tracker.advance(PhaseState.ISSUING)
                payload = shaper.merge_bodies(config.body, config.ephemeral_body)
                response = await self.client.operation(
                    config.path, NO_CONTENT if payload is None else payload, options, cancel
                )
                response.raise_for_status("operation")

                document = _decode_output(response)
                resource_id = config.path
                if config.id_builder:
                    resource_id = expand(
                        config.id_builder, ExpansionContext(path=config.path, body=document)
                    )

                if config.poll:
                    tracker.advance(PhaseState.POLLING)
                    pollable = Pollable.from_response(
                        response,
                        config.poll,
                        context_body=document,
                        fallback_url=self.client.url_for(resource_id),
                        query=query,
                        header=header,
                    )
                    await pollable.poll_until_done(self.client, cancel)

            private = record_ephemeral(PrivateState(op_output=response.content), config.ephemeral_body)
            output = document
            if isinstance(document, (dict, list)):
                output = shaper.filter_attrs(document, config.output_attrs)
                if private.eph_null is not None:
                    output = shaper.difference(output, private.eph_null)

            logger.info("Operation invoked", id=resource_id, status=response.status_code)
            return ResourceState(
                id=resource_id,
                path=config.path,
                body=copy.deepcopy(config.body),
                query=query,
                header=header,
                private=private,
            ).with_output(output, config.use_sensitive_output)

    async def delete(
        self,
        config: OperationConfig,
        state: ResourceState,
        cancel: CancelScope | None = None,
    ) -> None:
        """
        Issue the mirror call, if one is configured.

        Templates in the mirror resolve $(path) to the operation path and
        $(body...) against the recorded operation response.

        Raises:
            HTTPStatusError: If the mirror call fails with anything but 404.
        """
        mirror = config.delete
        if mirror is None:
            logger.debug("Operation has no delete call", id=state.id)
            return
        cancel = cancel or CancelScope()

        with PhaseTracker("operation-delete", state.id) as tracker:
            recorded = state.private.op_output_json() if state.private.op_output else None
            context = ExpansionContext(path=config.path, body=recorded, names={"id": state.id})
            path = expand(mirror.path, context) if mirror.path else state.id
            query = take_or_self(config.query, mirror.query)
            header = take_or_self(config.header, mirror.header)
            if recorded is not None:
                query = expand_query(query, recorded)
                header = expand_header(header, recorded)
            options = RequestOptions(
                method=mirror.method,
                query=query,
                header=header,
                retry=config.retry.to_policy() if config.retry else None,
            )
            body = NO_CONTENT if mirror.body is None else expand_json(mirror.body, context)

            tracker.advance(PhaseState.PRECHECKING)
            async with precheck(
                self.client,
                mirror.precheck,
                default_path=path,
                query=query,
                header=header,
                body=recorded,
                names={"id": state.id},
                cancel=cancel,
            ):
                tracker.advance(PhaseState.ISSUING)
                response = await self.client.operation(path, body, options, cancel)
                if response.is_not_found:
                    logger.info("Operation target already gone", id=state.id)
                    return
                response.raise_for_status("operation delete")

                if mirror.poll:
                    tracker.advance(PhaseState.POLLING)
                    pollable = Pollable.from_response(
                        response, mirror.poll, context_body=recorded, query=query, header=header
                    )
                    await pollable.poll_until_done(self.client, cancel)
            logger.info("Operation delete call done", id=state.id, status=response.status_code)


class ActionRunner:
    """Invoke Actions and stream their progress."""

    def __init__(self, client: RestClient) -> None:
        self.client = client

    def _report(
        self,
        config: ActionConfig,
        response: Response,
        on_progress: ProgressCallback | None,
    ) -> None:
        if not config.progress_message:
            return
        try:
            message = expand(config.progress_message, ExpansionContext(body=response.json_or_none()))
        except UnresolvedReferenceError as e:
            logger.warning("Cannot render progress message", error=str(e))
            return
        logger.info("Action progress", message=message)
        if on_progress is not None:
            on_progress(message)

    async def invoke(
        self,
        config: ActionConfig,
        cancel: CancelScope | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> Response:
        """
        Invoke the action.

        Args:
            config: Action configuration.
            cancel: Cancellation signal.
            on_progress: Receives every rendered progress message.

        Returns:
            Response: The initial response, or the final poll response when polling.
        """
        cancel = cancel or CancelScope()

        with PhaseTracker("action", config.path) as tracker:
            query = dict(config.query)
            header = dict(config.header)
            if config.body is not None:
                query = expand_query(query, config.body)
                header = expand_header(header, config.body)
            options = RequestOptions(
                method=config.method,
                query=query,
                header=header,
                retry=config.retry.to_policy() if config.retry else None,
            )

            tracker.advance(PhaseState.PRECHECKING)
            async with precheck(
                self.client, config.precheck, default_path=config.path, query=query, header=header, cancel=cancel
            ):
                tracker.advance(PhaseState.ISSUING)
                body = NO_CONTENT if config.body is None else config.body
                response = await self.client.operation(config.path, body, options, cancel)
                response.raise_for_status("action")
                self._report(config, response, on_progress)

                if config.poll:
                    tracker.advance(PhaseState.POLLING)
                    pollable = Pollable.from_response(
                        response,
                        config.poll,
                        context_body=response.json_or_none(),
                        query=query,
                        header=header,
                    )
                    response = await pollable.poll_until_done(
                        self.client,
                        cancel,
                        on_response=lambda polled: self._report(config, polled, on_progress),
                    )
            return response
