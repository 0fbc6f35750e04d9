"""
Execution Schema - One run of a flow for one contact.

An Execution is the only mutable state shared between steps. It is created
when a trigger matches, mutated only by the executor or the cancellation
service, and frozen once it reaches a terminal status.
"""

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class ExecutionStatus(StrEnum):
    """Status of an execution.

    State transitions:
        RUNNING -> WAITING -> RUNNING (resume)
        RUNNING -> COMPLETED | FAILED
        RUNNING | WAITING -> CANCELLED
    """

    RUNNING = "running"  # Actively stepping through nodes
    WAITING = "waiting"  # Suspended on a delay or a button click
    COMPLETED = "completed"  # Reached the end of a path
    CANCELLED = "cancelled"  # Halted by the cancellation service
    FAILED = "failed"  # An action reported failure


LIVE_STATUSES = frozenset({ExecutionStatus.RUNNING, ExecutionStatus.WAITING})
TERMINAL_STATUSES = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.CANCELLED, ExecutionStatus.FAILED}
)


class WaitKind(StrEnum):
    """What a WAITING execution is suspended on."""

    DELAY = "delay"
    BUTTON = "button"


def utc_now() -> datetime:
    return datetime.now(UTC)


def new_execution_id() -> str:
    return uuid.uuid4().hex


class Execution(BaseModel):
    """Persisted progress of a single flow run."""

    id: str = Field(default_factory=new_execution_id)
    flow_id: str
    flow_version: int = 1
    contact_id: str

    current_node_id: str | None = None  # None means the next step completes
    status: ExecutionStatus = ExecutionStatus.RUNNING
    waiting_for: WaitKind | None = None
    resume_at: datetime | None = None  # Only set while waiting on a delay

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None

    failed_node_id: str | None = None
    error: str | None = None

    steps_taken: int = 0  # Node transitions persisted so far
    path: list[str] = Field(default_factory=list)  # Node IDs executed
    trigger_data: dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "allow"}

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES
