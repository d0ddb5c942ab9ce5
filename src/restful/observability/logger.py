"""Structured logging for the engine.

Verbosity ladder, from quiet to chatty:
- INFO (20): one event per finished phase (default)
- DEBUG (10): phase transitions and every HTTP exchange

TRACE (5) and VERBOSE (15) are registered as standard library level names so
hosts can pass them to configure_logging; engine events themselves are
emitted at DEBUG and above.

Every event passes through two engine processors: one injecting the
resource/phase fields bound with LogContext, one masking secret values.
"""

import logging
import sys
from contextvars import ContextVar
from pathlib import Path
from typing import Any

import structlog

TRACE = 5
VERBOSE = 15

for _level, _name in ((TRACE, "TRACE"), (VERBOSE, "VERBOSE")):
    logging.addLevelName(_level, _name)

REDACTED = "***"

# Matched case-insensitively against event keys
SENSITIVE_KEYS = frozenset(
    {
        "authorization",
        "password",
        "client_secret",
        "token",
        "access_token",
        "refresh_token",
        "ephemeral_body",
        "sensitive_output",
    }
)

_bound_fields: ContextVar[dict[str, Any]] = ContextVar("restful_log_fields", default={})


# =============================================================================
# Context binding
# =============================================================================


def _bind(fields: dict[str, Any]) -> Any:
    return _bound_fields.set({**_bound_fields.get(), **fields})


class LogContext:
    """
    Bind fields to every event logged inside a block.

    Blocks nest; leaving one restores the fields of the enclosing block.

    Usage:
        with LogContext(phase="create", resource="posts"):
            logger.info("Issuing request")
    """

    def __init__(self, **fields: Any) -> None:
        self.fields = fields
        self._token: Any = None

    def __enter__(self) -> "LogContext":
        self._token = _bind(self.fields)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._token is not None:
            _bound_fields.reset(self._token)
            self._token = None


def add_context(**fields: Any) -> None:
    """Bind fields for the rest of the current task."""
    _bind(fields)


def clear_all_context() -> None:
    _bound_fields.set({})


# =============================================================================
# Processors
# =============================================================================


def _context_processor(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Copy bound fields into the event; explicit event values win."""
    for key, value in _bound_fields.get().items():
        event_dict.setdefault(key, value)
    return event_dict


def redact_processor(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Mask credentials and secret payloads before rendering."""
    for key, value in event_dict.items():
        if value is not None and key.lower() in SENSITIVE_KEYS:
            event_dict[key] = REDACTED
    return event_dict


# =============================================================================
# Setup
# =============================================================================


def get_log_level(level: str) -> int:
    """Resolve a level name, custom ones included; unknown names mean INFO."""
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _handlers(log_file: str | Path | None) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        target = Path(log_file)
        target.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(target))
    return handlers


def _quiet_other_components(log_filter: str) -> None:
    keep = [part.strip() for part in log_filter.split(",") if part.strip()]
    for name in list(logging.root.manager.loggerDict):
        if name.startswith("restful") and not any(part in name for part in keep):
            logging.getLogger(name).setLevel(logging.WARNING)


def _processors(json_logs: bool) -> list[Any]:
    renderer: Any = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
        _context_processor,
        redact_processor,
        renderer,
    ]


def configure_logging(
    level: str = "INFO",
    json_logs: bool = False,
    log_file: str | Path | None = None,
    log_filter: str | None = None,
) -> None:
    """
    Route structlog through the standard library to stderr and, optionally, a file.

    Args:
        level: Level name, TRACE and VERBOSE included.
        json_logs: Render events as JSON lines instead of console output.
        log_file: Also write events to this file; parent directories are created.
        log_filter: Comma-separated component names (e.g. "poller,client") that
            keep the configured level; other engine loggers drop to WARNING.
    """
    numeric = get_log_level(level)
    logging.basicConfig(format="%(message)s", level=numeric, handlers=_handlers(log_file), force=True)
    # The client logs each exchange itself
    logging.getLogger("httpx").setLevel(max(numeric, logging.WARNING))

    if log_filter:
        _quiet_other_components(log_filter)

    structlog.configure(
        processors=_processors(json_logs),
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
