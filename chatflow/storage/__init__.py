"""Storage for executions and compiled flows."""

from chatflow.storage.execution_store import (
    ExecutionNotFoundError,
    ExecutionStore,
    FileExecutionStore,
)
from chatflow.storage.flow_store import FlowNotActiveError, FlowStore

__all__ = [
    "ExecutionNotFoundError",
    "ExecutionStore",
    "FileExecutionStore",
    "FlowNotActiveError",
    "FlowStore",
]
