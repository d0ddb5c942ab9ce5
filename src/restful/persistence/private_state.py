"""Per-resource private state.

The host stores this blob next to the resource and hands it back on every
call, treating it as opaque bytes. The layout is a flat JSON object whose
fields are all optional:

    {
      "eph_hash": "<sha256 hex of the canonical ephemeral body>",
      "eph_null": { <ephemeral body with every leaf set to null> },
      "op_output": "<base64 of a one-shot response body>",
      "expiry": "<RFC 3339 timestamp>"
    }

Unknown keys are ignored on load so newer engines can add fields without
breaking older state.
"""

import base64
import hashlib
import json
import re
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from ..api import locator as locators
from ..api.response import Response
from ..constants import (
    EXPIRY_TYPE_DURATION,
    EXPIRY_TYPE_DURATION_IN_SECONDS,
    EXPIRY_TYPE_TIME,
)
from ..core.shaper import canonical_json, nullify
from ..utils.exceptions import ConfigError, ShapingError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PrivateState:
    """
    Out-of-band metadata attached to one resource.

    Attributes:
        eph_hash: Hex SHA-256 of the last applied ephemeral body, None if none applied.
        eph_null: Key skeleton of that body, used to strip it from read output.
        op_output: Raw response body of a one-shot call.
        expiry: When an ephemeral resource must be renewed.
    """

    eph_hash: str | None = None
    eph_null: Any = None
    op_output: bytes | None = None
    expiry: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.eph_hash is not None:
            data["eph_hash"] = self.eph_hash
        if self.eph_null is not None:
            data["eph_null"] = self.eph_null
        if self.op_output is not None:
            data["op_output"] = base64.b64encode(self.op_output).decode()
        if self.expiry is not None:
            data["expiry"] = format_rfc3339(self.expiry)
        return data

    def to_bytes(self) -> bytes:
        """Serialize to the stable JSON layout."""
        return json.dumps(self.to_dict(), sort_keys=True).encode()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PrivateState":
        """
        Load from the JSON layout.

        Raises:
            ShapingError: If a field is malformed.
        """
        op_output = None
        if data.get("op_output") is not None:
            try:
                op_output = base64.b64decode(data["op_output"], validate=True)
            except (TypeError, ValueError) as e:
                raise ShapingError(f"invalid base64: {e}", path="op_output") from e
        expiry = None
        if data.get("expiry") is not None:
            try:
                expiry = parse_rfc3339(data["expiry"])
            except ValueError as e:
                raise ShapingError(f"invalid timestamp: {e}", path="expiry") from e
        return cls(
            eph_hash=data.get("eph_hash"),
            eph_null=data.get("eph_null"),
            op_output=op_output,
            expiry=expiry,
        )

    @classmethod
    def from_bytes(cls, raw: bytes | None) -> "PrivateState":
        """Load from bytes; empty input yields an empty state."""
        if not raw:
            return cls()
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise ShapingError(f"private state is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ShapingError("private state must be a JSON object")
        return cls.from_dict(data)

    def op_output_json(self) -> Any:
        """Decode op_output as JSON, None when absent."""
        if self.op_output is None:
            return None
        try:
            return json.loads(self.op_output)
        except ValueError as e:
            raise ShapingError(f"op_output is not valid JSON: {e}", path="op_output") from e

    def expired(self, now: datetime | None = None) -> bool:
        """Check whether the recorded expiry has passed; no expiry never expires."""
        if self.expiry is None:
            return False
        return (now or datetime.now(timezone.utc)) >= self.expiry


# =============================================================================
# Ephemeral body tracking
# =============================================================================


def hash_ephemeral_body(ephemeral_body: Any) -> str:
    """SHA-256 hex digest of the canonical JSON encoding."""
    return hashlib.sha256(canonical_json(ephemeral_body).encode()).hexdigest()


def ephemeral_changed(private: PrivateState, ephemeral_body: Any) -> bool:
    """
    Tell whether ``ephemeral_body`` differs from the last applied one.

    Without a recorded hash a change exists exactly when a body is given.
    """
    if private.eph_hash is None:
        return ephemeral_body is not None
    if ephemeral_body is None:
        return True
    return hash_ephemeral_body(ephemeral_body) != private.eph_hash


def record_ephemeral(private: PrivateState, ephemeral_body: Any) -> PrivateState:
    """Return a copy tracking ``ephemeral_body``, or forgetting it when None."""
    if ephemeral_body is None:
        return replace(private, eph_hash=None, eph_null=None)
    return replace(
        private,
        eph_hash=hash_ephemeral_body(ephemeral_body),
        eph_null=nullify(ephemeral_body),
    )


# =============================================================================
# Time handling
# =============================================================================


def format_rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_rfc3339(value: str) -> datetime:
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(text: str) -> timedelta:
    """
    Parse a duration such as ``1h30m``, ``45s``, ``1.5h`` or ``-10s``.

    Raises:
        ConfigError: If the text is not a valid duration.
    """
    value = text.strip()
    sign = 1.0
    if value and value[0] in "+-":
        sign = -1.0 if value[0] == "-" else 1.0
        value = value[1:]
    if value == "0":
        return timedelta(0)
    if not value:
        raise ConfigError(f"invalid duration {text!r}")

    seconds = 0.0
    position = 0
    for match in _DURATION_PART.finditer(value):
        if match.start() != position:
            raise ConfigError(f"invalid duration {text!r}")
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position != len(value):
        raise ConfigError(f"invalid duration {text!r}")
    return timedelta(seconds=sign * seconds)


# Reference-time tokens, longest first so "2006" wins over "06"
_REFERENCE_LAYOUT_TOKENS = [
    ("Z07:00", "%z"),
    ("-07:00", "%z"),
    ("-0700", "%z"),
    ("January", "%B"),
    ("Monday", "%A"),
    (".000000", ".%f"),
    (".000", ".%f"),
    ("2006", "%Y"),
    ("Jan", "%b"),
    ("Mon", "%a"),
    ("MST", "%Z"),
    ("01", "%m"),
    ("02", "%d"),
    ("15", "%H"),
    ("03", "%I"),
    ("04", "%M"),
    ("05", "%S"),
    ("06", "%y"),
    ("PM", "%p"),
]


def layout_to_strftime(layout: str) -> str:
    """
    Convert a reference-time layout (``2006-01-02 15:04:05``) to strftime.

    Layouts already containing ``%`` directives are returned unchanged.
    """
    if "%" in layout:
        return layout
    out: list[str] = []
    i = 0
    while i < len(layout):
        for token, directive in _REFERENCE_LAYOUT_TOKENS:
            if layout.startswith(token, i):
                out.append(directive)
                i += len(token)
                break
        else:
            out.append(layout[i])
            i += 1
    return "".join(out)


def _parse_time(value: str, layout: str | None) -> datetime:
    if layout is None:
        return parse_rfc3339(value)
    parsed = datetime.strptime(value, layout_to_strftime(layout))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def compute_expiry(
    response: Response,
    expiry_locator: str,
    expiry_type: str,
    expiry_ahead: str | None = None,
    now: datetime | None = None,
) -> datetime:
    """
    Compute when an ephemeral resource must be renewed.

    Args:
        response: The open/renew response carrying the expiry.
        expiry_locator: Locator of the expiry value, e.g. ``body.expires_in``.
        expiry_type: ``time[.<layout>]``, ``duration`` or ``duration_in_seconds``.
        expiry_ahead: Safety margin subtracted from the result, e.g. ``30s``.
        now: Reference time for relative expiries.

    Returns:
        datetime: The timezone-aware expiry.

    Raises:
        ConfigError: If the located value cannot be interpreted.
    """
    now = now or datetime.now(timezone.utc)
    raw = locators.parse(expiry_locator).locate(response)
    if raw == "":
        raise ConfigError(f"no expiry value found by locator {expiry_locator!r}")

    kind, _, layout = expiry_type.partition(".")
    try:
        if kind == EXPIRY_TYPE_TIME:
            expiry = _parse_time(raw, layout or None)
        elif kind == EXPIRY_TYPE_DURATION:
            expiry = now + parse_duration(raw)
        elif kind == EXPIRY_TYPE_DURATION_IN_SECONDS:
            expiry = now + timedelta(seconds=float(raw))
        else:
            raise ConfigError(f"unknown expiry_type {expiry_type!r}")
    except ValueError as e:
        raise ConfigError(f"cannot parse expiry {raw!r} as {expiry_type}: {e}") from e

    if expiry_ahead:
        expiry -= parse_duration(expiry_ahead)
    logger.debug("Computed expiry", expiry=format_rfc3339(expiry), expiry_type=expiry_type)
    return expiry
