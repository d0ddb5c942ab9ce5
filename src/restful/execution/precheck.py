"""Precheck Gate - Conditions a mutating phase waits on before it starts.

Items run in declared order:
- ``api`` items poll a GET until the remote reports the success status
- ``mutex`` items acquire a process-wide named lock

Locks taken by the gate are held for the whole phase and released in
reverse order when the phase completes or fails.
"""

from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import structlog

from ..api.client import RestClient
from ..api.response import Header, Query, expand_header, expand_query
from ..core.expander import NO_BODY, expand_path
from ..models.resource import PrecheckApi, PrecheckMutex
from ..utils.cancellation import CancelScope
from ..utils.locking import get_mutex_registry
from .poller import Pollable

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def precheck(
    client: RestClient,
    items: Sequence[PrecheckApi | PrecheckMutex],
    default_path: str = "",
    query: Query | None = None,
    header: Header | None = None,
    body: Any = NO_BODY,
    names: Mapping[str, str] | None = None,
    cancel: CancelScope | None = None,
) -> AsyncIterator[None]:
    """
    Run precheck items, holding acquired mutexes for the duration of the block.

    USAGE:
        async with precheck(client, config.precheck_update, default_path=state.id):
            await client.update(...)

    Args:
        client: Client used by api items.
        items: Precheck items in declared order.
        default_path: Path polled by api items that set none, and value of $(path).
        query: Phase query, used by api items that set none.
        header: Phase headers, used by api items that set none.
        body: Document $(body...) references resolve against.
        names: Other bare names visible to api item paths, e.g. {"id": "posts/1"}.
        cancel: Cancellation signal.

    Raises:
        PollFailedError: If an api item reaches a failure status.
        UnresolvedReferenceError: If an api item path cannot be expanded.
        CanceledError: If the cancel scope fires.
    """
    cancel = cancel or CancelScope()
    registry = get_mutex_registry()

    async with AsyncExitStack() as stack:
        for index, item in enumerate(items):
            cancel.raise_if_cancelled()

            if isinstance(item, PrecheckMutex):
                logger.debug("Acquiring precheck mutex", index=index, name=item.name)
                await cancel.run(stack.enter_async_context(registry.hold(item.name)))
                continue

            path = default_path
            if item.path is not None:
                path = expand_path(item.path, path=default_path, body=body, **(names or {}))
            context_body = None if body is NO_BODY else body
            item_query = item.query if item.query is not None else (query or {})
            item_header = item.header if item.header is not None else (header or {})
            if context_body is not None:
                item_query = expand_query(item_query, context_body)
                item_header = expand_header(item_header, context_body)

            pollable = Pollable.for_precheck(
                client.url_for(path),
                item,
                context_body=context_body,
                query=item_query,
                header=item_header,
            )
            logger.debug("Running precheck", index=index, url=pollable.url)
            await pollable.poll_until_done(client, cancel)

        yield
