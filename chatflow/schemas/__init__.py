"""Schemas shared by the compiler, the runtime and the stores."""

from chatflow.schemas.contact import ContactSnapshot
from chatflow.schemas.executable_flow import CompiledNode, ExecutableFlow, TriggerSpec
from chatflow.schemas.execution import (
    LIVE_STATUSES,
    TERMINAL_STATUSES,
    Execution,
    ExecutionStatus,
    WaitKind,
)

__all__ = [
    "CompiledNode",
    "ContactSnapshot",
    "ExecutableFlow",
    "Execution",
    "ExecutionStatus",
    "LIVE_STATUSES",
    "TERMINAL_STATUSES",
    "TriggerSpec",
    "WaitKind",
]
