"""Retry policy for outgoing requests.

Two failure classes share one attempt budget:

- transport failures (connection reset, timeouts)
- responses whose status is listed in ``status_codes``

Between attempts the client waits an exponentially growing, jittered delay,
raised to the server's Retry-After when that is longer, and capped at
``max_wait``. Without an explicit policy only transport failures are
retried, once.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from tenacity.wait import wait_base

from ..constants import (
    DEFAULT_NETWORK_RETRY_ATTEMPTS,
    DEFAULT_RETRY_COUNT,
    DEFAULT_RETRY_MAX_WAIT_SEC,
    DEFAULT_RETRY_WAIT_SEC,
)
from .response import Response

logger = structlog.get_logger(__name__)

TRANSIENT_ERRORS = (httpx.NetworkError, httpx.TimeoutException, httpx.RemoteProtocolError)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry settings.

    Attributes:
        status_codes: Response statuses that trigger a retry.
        count: Maximum total attempts.
        wait: Initial backoff in seconds.
        max_wait: Upper bound of a single delay in seconds.
    """

    status_codes: frozenset[int] = field(default_factory=frozenset)
    count: int = DEFAULT_RETRY_COUNT
    wait: float = DEFAULT_RETRY_WAIT_SEC
    max_wait: float = DEFAULT_RETRY_MAX_WAIT_SEC


class wait_retry_after(wait_base):
    """Exponential backoff with jitter that honours the Retry-After header."""

    def __init__(self, initial: float, maximum: float) -> None:
        self.maximum = maximum
        self._backoff = wait_exponential(multiplier=initial, max=maximum) + wait_random(0, initial)

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = self._backoff(retry_state)
        outcome = retry_state.outcome
        if outcome is not None and not outcome.failed:
            retry_after = outcome.result().retry_after()
            if retry_after is not None:
                delay = max(delay, retry_after)
        return min(self.maximum, delay)


def _log_before_sleep(retry_state: RetryCallState) -> None:
    outcome = retry_state.outcome
    next_sleep = retry_state.next_action.sleep if retry_state.next_action else None
    if outcome is not None and outcome.failed:
        logger.warning(
            "Request failed, retrying",
            attempt=retry_state.attempt_number,
            error=str(outcome.exception()),
            wait=next_sleep,
        )
    elif outcome is not None:
        response: Response = outcome.result()
        logger.warning(
            "Retriable status, retrying",
            attempt=retry_state.attempt_number,
            status=response.status_code,
            url=response.url,
            wait=next_sleep,
        )


def build_retrying(
    policy: RetryPolicy | None,
    sleep: Callable[[float], Awaitable[None]],
) -> AsyncRetrying:
    """
    Build a tenacity controller for one request.

    Args:
        policy: Retry settings, None for the network-only default.
        sleep: Awaitable sleep, normally bound to the phase's cancel scope.

    Returns:
        AsyncRetrying: Controller raising tenacity.RetryError on exhaustion.
    """
    if policy is None:
        return AsyncRetrying(
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            stop=stop_after_attempt(DEFAULT_NETWORK_RETRY_ATTEMPTS),
            wait=wait_retry_after(DEFAULT_RETRY_WAIT_SEC, DEFAULT_RETRY_MAX_WAIT_SEC),
            sleep=sleep,
            before_sleep=_log_before_sleep,
        )

    status_codes = policy.status_codes
    return AsyncRetrying(
        retry=(
            retry_if_exception_type(TRANSIENT_ERRORS)
            | retry_if_result(lambda response: response.status_code in status_codes)
        ),
        stop=stop_after_attempt(max(1, policy.count)),
        wait=wait_retry_after(policy.wait, policy.max_wait),
        sleep=sleep,
        before_sleep=_log_before_sleep,
    )
