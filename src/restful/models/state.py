"""Persisted state models."""

import copy
from dataclasses import dataclass, field
from typing import Any

from ..persistence.private_state import PrivateState


@dataclass
class ResourceState:
    """
    Recorded state of a managed resource.

    Attributes:
        id: Canonical resource path relative to the base URL.
        path: The create path the resource was born from.
        body: The body as last sent, never the server echo; base for diffs.
        output: Projected result of the latest read.
        sensitive_output: Same as output, for resources marked sensitive.
        query: Query parameters in effect when the state was recorded.
        header: Headers in effect when the state was recorded.
        private: Out-of-band metadata.
    """

    id: str
    path: str
    body: Any = None
    output: Any = None
    sensitive_output: Any = None
    query: dict[str, list[str]] = field(default_factory=dict)
    header: dict[str, str] = field(default_factory=dict)
    private: PrivateState = field(default_factory=PrivateState)

    def __post_init__(self) -> None:
        if self.output is not None and self.sensitive_output is not None:
            raise ValueError("output and sensitive_output are mutually exclusive")

    @property
    def current_output(self) -> Any:
        """Whichever of output and sensitive_output is set."""
        return self.sensitive_output if self.sensitive_output is not None else self.output

    def with_output(self, output: Any, sensitive: bool) -> "ResourceState":
        """Return a copy carrying ``output`` in the right slot."""
        clone = copy.deepcopy(self)
        clone.output = None if sensitive else output
        clone.sensitive_output = output if sensitive else None
        return clone

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "path": self.path,
            "body": self.body,
            "output": self.output,
            "sensitive_output": self.sensitive_output,
            "query": self.query,
            "header": self.header,
            "private": self.private.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResourceState":
        return cls(
            id=data["id"],
            path=data.get("path", data["id"]),
            body=data.get("body"),
            output=data.get("output"),
            sensitive_output=data.get("sensitive_output"),
            query=data.get("query") or {},
            header=data.get("header") or {},
            private=PrivateState.from_dict(data.get("private") or {}),
        )


@dataclass
class UpdatePlan:
    """
    Outcome of comparing recorded state with the desired configuration.

    Attributes:
        body_changed: The desired body differs from the recorded one.
        merge_patch: RFC 7396 patch from the recorded body to the desired one,
            empty when the bodies are equal.
        ephemeral_changed: The ephemeral body hash differs from the recorded one.
        replace_reasons: Why the change cannot be applied in place, empty if it can.
    """

    body_changed: bool = False
    merge_patch: Any = field(default_factory=dict)
    ephemeral_changed: bool = False
    replace_reasons: list[str] = field(default_factory=list)

    @property
    def requires_replace(self) -> bool:
        return bool(self.replace_reasons)

    @property
    def has_changes(self) -> bool:
        return self.body_changed or self.ephemeral_changed or self.requires_replace


@dataclass
class DataSourceResult:
    """Result of a data source read."""

    id: str
    output: Any = None
    exists: bool = True


@dataclass
class EphemeralResult:
    """Result of opening or renewing an ephemeral resource."""

    output: Any
    private: PrivateState = field(default_factory=PrivateState)
