"""Shared fixtures: fake clock and scheduler, in-memory collaborators, graph builder."""

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from chatflow.adapters import InMemoryContactStore, InMemoryMessageSender
from chatflow.config import RuntimeConfig
from chatflow.graph import FlowGraph
from chatflow.observability import clear_trace_context
from chatflow.runtime.event_bus import EventBus
from chatflow.runtime.flow_runtime import FlowRuntime
from chatflow.schemas import ContactSnapshot

# A Monday, 10:00 UTC
START = datetime(2026, 3, 2, 10, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeScheduler:
    """Records wake-ups instead of arming timers."""

    def __init__(self):
        self.scheduled: dict[str, datetime] = {}
        self.cancelled: list[str] = []

    def schedule(self, execution_id: str, resume_at: datetime) -> None:
        self.scheduled[execution_id] = resume_at

    def cancel(self, execution_id: str) -> bool:
        self.cancelled.append(execution_id)
        return self.scheduled.pop(execution_id, None) is not None


def build_graph(
    nodes: dict[str, tuple[str, dict[str, Any]]],
    edges: list[tuple],
) -> FlowGraph:
    """
    Build a FlowGraph from compact literals.

    nodes: {"id": ("node_type", config)}
    edges: [(source, target)] or [(source, target, handle)]
    """
    return FlowGraph.from_dict(
        {
            "nodes": [
                {"id": node_id, "type": node_type, "config": config}
                for node_id, (node_type, config) in nodes.items()
            ],
            "edges": [
                {
                    "id": f"e{i}",
                    "source": edge[0],
                    "target": edge[1],
                    "sourceHandle": edge[2] if len(edge) > 2 else None,
                }
                for i, edge in enumerate(edges)
            ],
        }
    )


@pytest.fixture(autouse=True)
def _reset_trace_context():
    yield
    clear_trace_context()


@pytest.fixture
def graph_builder():
    return build_graph


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def contacts() -> InMemoryContactStore:
    return InMemoryContactStore(
        [
            ContactSnapshot(
                id="c1",
                name="Maria Silva",
                phone_number="5511999990000",
                custom_fields={"city": "Recife", "plan": "Gold"},
            ),
            ContactSnapshot(id="c2", name="Joao", phone_number="5511888880000", tags=("vip",)),
        ]
    )


@pytest.fixture
def sender() -> InMemoryMessageSender:
    return InMemoryMessageSender()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def runtime(contacts, sender, scheduler, bus, clock) -> FlowRuntime:
    return FlowRuntime(
        contacts,
        sender,
        config=RuntimeConfig(),
        scheduler=scheduler,
        event_bus=bus,
        clock=clock,
    )
