"""
chatflow - chat automation flows.

Operators draw a graph of triggers, actions and conditions; chatflow
validates it, compiles it into an immutable executable form and steps
each contact through it, suspending on delays and awaited button clicks.
"""

from chatflow.config import RuntimeConfig
from chatflow.graph import (
    EdgeSpec,
    FlowGraph,
    FlowValidationError,
    NodeSpec,
    ValidationResult,
    compile_flow,
    validate,
    validate_graph,
)
from chatflow.runtime.cancellation import CancellationService, CancelResult
from chatflow.runtime.event_bus import EventBus, FlowEvent, FlowEventType
from chatflow.runtime.executor import FlowExecutor
from chatflow.runtime.flow_runtime import FlowRuntime
from chatflow.schemas import ContactSnapshot, ExecutableFlow, Execution, ExecutionStatus
from chatflow.storage import ExecutionNotFoundError, FlowNotActiveError

__all__ = [
    "CancelResult",
    "CancellationService",
    "ContactSnapshot",
    "EdgeSpec",
    "EventBus",
    "ExecutableFlow",
    "Execution",
    "ExecutionNotFoundError",
    "ExecutionStatus",
    "FlowEvent",
    "FlowEventType",
    "FlowExecutor",
    "FlowGraph",
    "FlowNotActiveError",
    "FlowRuntime",
    "FlowValidationError",
    "NodeSpec",
    "RuntimeConfig",
    "ValidationResult",
    "compile_flow",
    "validate",
    "validate_graph",
]
