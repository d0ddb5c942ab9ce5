"""Per-phase state machine tracking."""

import time
from enum import Enum
from types import TracebackType

import structlog

from ..observability.logger import LogContext
from ..observability.metrics import get_global_collector
from ..utils.exceptions import GoneError

logger = structlog.get_logger(__name__)


class PhaseState(str, Enum):
    """State of one lifecycle phase."""

    PENDING = "pending"
    PRECHECKING = "prechecking"
    ISSUING = "issuing"
    POLLING = "polling"
    POST_READING = "post-reading"
    DONE = "done"
    FAILED = "failed"
    GONE = "gone"


TERMINAL_STATES = frozenset({PhaseState.DONE, PhaseState.FAILED, PhaseState.GONE})

_ORDER = [
    PhaseState.PENDING,
    PhaseState.PRECHECKING,
    PhaseState.ISSUING,
    PhaseState.POLLING,
    PhaseState.POST_READING,
]


class PhaseTracker:
    """
    Track the progress of one phase of one resource.

    Used as a context manager: leaving the block normally ends the phase in
    DONE (unless it already reached a terminal state), GoneError ends it in GONE and
    any other exception in FAILED. Every transition is logged, and the
    outcome and duration are recorded as metrics.

    States only move forward; a phase may skip states it does not need.
    """

    def __init__(self, phase: str, resource: str | None = None) -> None:
        self.phase = phase
        self.resource = resource
        self.state = PhaseState.PENDING
        self.history: list[PhaseState] = [PhaseState.PENDING]
        self._start = 0.0
        self._log_context = LogContext(phase=phase, resource=resource)

    def __enter__(self) -> "PhaseTracker":
        self._log_context.__enter__()
        self._start = time.perf_counter()
        logger.debug("Phase started", phase=self.phase, resource=self.resource)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        try:
            if exc_val is None:
                if self.state not in TERMINAL_STATES:
                    self.advance(PhaseState.DONE)
            elif isinstance(exc_val, GoneError):
                self.advance(PhaseState.GONE)
            else:
                self.advance(PhaseState.FAILED)
                logger.warning(
                    "Phase failed",
                    phase=self.phase,
                    resource=self.resource,
                    error_type=type(exc_val).__name__,
                    error=str(exc_val),
                )

            duration = (time.perf_counter() - self._start) * 1000
            collector = get_global_collector()
            collector.count_phase(self.phase, self.state.value)
            collector.record_phase_latency(self.phase, duration)
            logger.info(
                "Phase finished",
                phase=self.phase,
                resource=self.resource,
                outcome=self.state.value,
                duration_ms=round(duration, 2),
            )
        finally:
            self._log_context.__exit__(exc_type, exc_val, exc_tb)

    def advance(self, state: PhaseState) -> None:
        """
        Move to ``state``.

        Raises:
            ValueError: If the phase already ended or ``state`` is behind the current one.
        """
        if self.state in TERMINAL_STATES:
            raise ValueError(f"phase {self.phase} already ended in {self.state.value}")
        if state not in TERMINAL_STATES and _ORDER.index(state) < _ORDER.index(self.state):
            raise ValueError(f"cannot move phase {self.phase} from {self.state.value} to {state.value}")
        logger.debug(
            "Phase transition",
            phase=self.phase,
            resource=self.resource,
            from_state=self.state.value,
            to_state=state.value,
        )
        self.state = state
        self.history.append(state)
