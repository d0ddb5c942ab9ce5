"""Configuration and state models."""

from .resource import (
    ActionConfig,
    BodyPatch,
    DataSourceConfig,
    EphemeralRequest,
    EphemeralResourceConfig,
    ImportSpec,
    OperationConfig,
    OperationDelete,
    PollSpec,
    PollStatus,
    PostCreateRead,
    PrecheckApi,
    PrecheckItem,
    PrecheckMutex,
    ResourceConfig,
    RetrySpec,
)
from .state import DataSourceResult, EphemeralResult, ResourceState, UpdatePlan

__all__ = [
    "ActionConfig",
    "BodyPatch",
    "DataSourceConfig",
    "DataSourceResult",
    "EphemeralRequest",
    "EphemeralResourceConfig",
    "EphemeralResult",
    "ImportSpec",
    "OperationConfig",
    "OperationDelete",
    "PollSpec",
    "PollStatus",
    "PostCreateRead",
    "PrecheckApi",
    "PrecheckItem",
    "PrecheckMutex",
    "ResourceConfig",
    "ResourceState",
    "RetrySpec",
    "UpdatePlan",
]
