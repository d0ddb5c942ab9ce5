"""Lifecycle runners for resources, operations, actions, data sources and ephemeral resources."""

from .data_source import DataSourceReader
from .ephemeral import EphemeralResourceManager
from .operation import ActionRunner, OperationRunner
from .phase import PhaseState, PhaseTracker
from .resource import ResourceOrchestrator

__all__ = [
    "ActionRunner",
    "DataSourceReader",
    "EphemeralResourceManager",
    "OperationRunner",
    "PhaseState",
    "PhaseTracker",
    "ResourceOrchestrator",
]
