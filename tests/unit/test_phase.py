"""Tests for the phase state machine."""

import logging

import pytest
import structlog

from restful.lifecycle.phase import PhaseState, PhaseTracker
from restful.observability.logger import configure_logging
from restful.observability.metrics import get_global_collector
from restful.utils.exceptions import GoneError, HTTPStatusError


def _phase_counters() -> dict[str, int]:
    counters = get_global_collector().get_summary()["counters"]
    return {key: value for key, value in counters.items() if key.startswith("restful_phase_total")}


class TestPhaseTracker:
    def test_normal_exit_is_done(self):
        with PhaseTracker("create", "/posts") as tracker:
            tracker.advance(PhaseState.ISSUING)
            tracker.advance(PhaseState.POLLING)

        assert tracker.state == PhaseState.DONE
        assert tracker.history == [
            PhaseState.PENDING,
            PhaseState.ISSUING,
            PhaseState.POLLING,
            PhaseState.DONE,
        ]
        assert _phase_counters() == {"restful_phase_total[outcome=done,phase=create]": 1}

    def test_gone_error_ends_in_gone(self):
        with pytest.raises(GoneError):
            with PhaseTracker("read", "/posts/1") as tracker:
                raise GoneError("/posts/1")

        assert tracker.state == PhaseState.GONE
        assert _phase_counters() == {"restful_phase_total[outcome=gone,phase=read]": 1}

    def test_other_errors_end_in_failed(self):
        with pytest.raises(HTTPStatusError):
            with PhaseTracker("update") as tracker:
                tracker.advance(PhaseState.ISSUING)
                raise HTTPStatusError("update failed", status_code=500)

        assert tracker.state == PhaseState.FAILED

    def test_terminal_state_is_kept_on_normal_exit(self):
        with PhaseTracker("read") as tracker:
            tracker.advance(PhaseState.GONE)

        assert tracker.state == PhaseState.GONE
        assert tracker.history[-1] == PhaseState.GONE

    def test_states_only_move_forward(self):
        tracker = PhaseTracker("create")
        tracker.advance(PhaseState.POLLING)

        with pytest.raises(ValueError, match="cannot move"):
            tracker.advance(PhaseState.ISSUING)

    def test_no_transition_after_terminal(self):
        tracker = PhaseTracker("create")
        tracker.advance(PhaseState.DONE)

        with pytest.raises(ValueError, match="already ended"):
            tracker.advance(PhaseState.POLLING)

    def test_latency_is_recorded(self):
        with PhaseTracker("delete"):
            pass

        timings = get_global_collector().get_summary()["timings"]
        assert timings["restful_phase_duration_ms[phase=delete]"]["count"] == 1


class TestPhaseLogging:
    """Transitions must log under any structlog configuration."""

    @pytest.fixture(autouse=True)
    def reset_logging(self):
        yield
        structlog.reset_defaults()
        logging.getLogger().handlers.clear()

    def test_transitions_with_default_structlog(self):
        structlog.reset_defaults()

        with PhaseTracker("create", "/posts") as tracker:
            tracker.advance(PhaseState.PRECHECKING)
            tracker.advance(PhaseState.ISSUING)
            tracker.advance(PhaseState.POST_READING)

        assert tracker.state == PhaseState.DONE

    @pytest.mark.parametrize("level", ["TRACE", "VERBOSE", "INFO"])
    def test_transitions_with_configured_levels(self, level):
        configure_logging(level=level)

        with pytest.raises(GoneError):
            with PhaseTracker("read", "/posts/1") as tracker:
                tracker.advance(PhaseState.ISSUING)
                raise GoneError("/posts/1")

        assert tracker.history == [PhaseState.PENDING, PhaseState.ISSUING, PhaseState.GONE]
