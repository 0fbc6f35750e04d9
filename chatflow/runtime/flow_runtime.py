"""
Flow Runtime - activation, trigger matching and wiring of the collaborators.

The runtime is what an embedding service talks to:

    runtime = FlowRuntime(contact_store, message_sender, event_bus=bus)
    runtime.subscribe()

    result = await runtime.activate("welcome", "Welcome", graph)
    if not result.is_valid:
        print(result.errors)

    await bus.emit_message_received(contact_id="c1", text="hi")

Inbound events start executions of every active flow whose trigger matches
and step them immediately. Button clicks first go to the contact's waiting
executions; only an unconsumed click starts trigger_button_click flows.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from chatflow.config import RuntimeConfig
from chatflow.graph import FlowGraph, ValidationResult, compile_flow, get_node_type, validate_graph
from chatflow.graph.triggers import TriggerNode
from chatflow.observability import reset_trace_context, set_trace_context
from chatflow.runtime.cancellation import CancellationService, CancelResult
from chatflow.runtime.event_bus import INBOUND_EVENT_TYPES, EventBus, FlowEvent, FlowEventType
from chatflow.runtime.executor import FlowExecutor
from chatflow.runtime.interfaces import ContactStore, MessageSender, Scheduler, WebhookInvoker
from chatflow.runtime.locks import ContactLockRegistry
from chatflow.runtime.scheduler import AsyncioScheduler
from chatflow.schemas.executable_flow import ExecutableFlow
from chatflow.schemas.execution import Execution, ExecutionStatus, WaitKind, utc_now
from chatflow.storage.execution_store import (
    ExecutionNotFoundError,
    ExecutionStore,
    FileExecutionStore,
)
from chatflow.storage.flow_store import FlowStore

logger = logging.getLogger(__name__)


class FlowRuntime:
    """Entry point tying the stores, the executor and the event bus together."""

    def __init__(
        self,
        contact_store: ContactStore,
        message_sender: MessageSender,
        webhook_invoker: WebhookInvoker | None = None,
        *,
        config: RuntimeConfig | None = None,
        flow_store: FlowStore | None = None,
        execution_store: ExecutionStore | None = None,
        scheduler: Scheduler | None = None,
        event_bus: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config or RuntimeConfig()
        storage_path = self.config.storage_path

        self.contact_store = contact_store
        self.flow_store = flow_store or FlowStore(storage_path)
        if execution_store is not None:
            self.execution_store = execution_store
        elif storage_path is not None:
            self.execution_store = FileExecutionStore(storage_path)
        else:
            self.execution_store = ExecutionStore()

        self.scheduler = scheduler or AsyncioScheduler(self.resume, clock=clock)
        self.event_bus = event_bus
        self.locks = ContactLockRegistry()
        self._clock = clock
        self._subscription_id: str | None = None

        self.executor = FlowExecutor(
            flow_store=self.flow_store,
            execution_store=self.execution_store,
            contact_store=contact_store,
            message_sender=message_sender,
            webhook_invoker=webhook_invoker,
            scheduler=self.scheduler,
            event_bus=event_bus,
            locks=self.locks,
            timezone=self.config.timezone,
            clock=clock,
        )
        self.cancellation = CancellationService(
            execution_store=self.execution_store,
            contact_store=contact_store,
            scheduler=self.scheduler,
            event_bus=event_bus,
            optout_tag=self.config.optout_tag,
            clock=clock,
        )

    # === FLOW LIFECYCLE ===

    async def activate(
        self,
        flow_id: str,
        name: str,
        graph: FlowGraph | dict[str, Any],
    ) -> ValidationResult:
        """
        Validate, compile and publish a new active version of a flow.

        An invalid graph is not activated; the previous active version, if
        any, stays in place. Returns the validation result either way.
        """
        if isinstance(graph, dict):
            graph = FlowGraph.from_dict(graph)

        result = validate_graph(graph, allow_fan_out=self.config.allow_fan_out)
        if not result.is_valid:
            logger.warning(f"Flow '{flow_id}' not activated: {result.error}")
            return result

        version = await self.flow_store.next_version(flow_id)
        flow = compile_flow(flow_id, name, graph, version, allow_fan_out=self.config.allow_fan_out)
        await self.flow_store.save(flow, activate=True)
        logger.info(f"Activated flow '{flow_id}' v{version}")
        return result

    async def deactivate(self, flow_id: str) -> bool:
        """Stop matching new events. Running executions keep their pinned version."""
        return await self.flow_store.deactivate(flow_id)

    # === EXECUTIONS ===

    async def create_execution(
        self,
        flow_id: str,
        contact_id: str,
        trigger_data: dict[str, Any] | None = None,
    ) -> Execution:
        """
        Create a RUNNING execution at the active version's start node.

        Raises:
            FlowNotActiveError: If the flow has no active version
        """
        flow = await self.flow_store.get_active(flow_id)
        execution = Execution(
            flow_id=flow.id,
            flow_version=flow.version,
            contact_id=contact_id,
            current_node_id=flow.start_node_id,
            created_at=self._clock(),
            trigger_data=trigger_data or {},
        )
        execution = await self.execution_store.create(execution)
        logger.info(f"Started execution {execution.id} of flow '{flow_id}' for {contact_id}")

        if self.event_bus is not None:
            await self.event_bus.emit_execution_event(
                FlowEventType.EXECUTION_STARTED, execution, node_id=execution.current_node_id
            )
        return execution

    async def step(self, execution_id: str, event: FlowEvent | None = None) -> Execution:
        return await self.executor.step(execution_id, event)

    async def cancel_all(self, contact_id: str) -> CancelResult:
        return await self.cancellation.cancel_all(contact_id)

    async def resume(self, execution_id: str) -> Execution | None:
        """Scheduler wake-up callback. Unknown executions are logged and ignored."""
        try:
            return await self.executor.step(execution_id)
        except ExecutionNotFoundError:
            logger.warning(f"Wake-up for unknown execution {execution_id}")
            return None

    async def rearm_timers(self) -> int:
        """Schedule every persisted WAITING-on-delay execution again."""
        count = 0
        for execution in await self.execution_store.list_waiting():
            if execution.waiting_for == WaitKind.DELAY and execution.resume_at is not None:
                self.scheduler.schedule(execution.id, execution.resume_at)
                count += 1
        return count

    # === INBOUND EVENTS ===

    def subscribe(self, event_bus: EventBus | None = None) -> str:
        """Subscribe ``handle_event`` to the inbound event types on the bus."""
        bus = event_bus or self.event_bus
        if bus is None:
            raise ValueError("No event bus to subscribe to")
        self._subscription_id = bus.subscribe(
            event_types=list(INBOUND_EVENT_TYPES),
            handler=self.handle_event,
        )
        return self._subscription_id

    async def handle_event(self, event: FlowEvent) -> list[Execution]:
        """
        Route one inbound event.

        Returns:
            The executions resumed or started by the event, as stepped
        """
        if event.type not in INBOUND_EVENT_TYPES:
            return []
        if not event.contact_id:
            logger.debug(f"Ignoring {event.type} without a contact")
            return []

        token = set_trace_context(contact_id=event.contact_id)
        try:
            return await self._route(event)
        finally:
            reset_trace_context(token)

    async def _route(self, event: FlowEvent) -> list[Execution]:
        if event.is_button_click:
            resumed = await self._deliver_click(event)
            if resumed:
                return resumed

        contact = await self.contact_store.get_contact(event.contact_id)
        if contact is None:
            logger.warning(f"Ignoring {event.type} for unknown contact {event.contact_id}")
            return []
        if contact.opted_out or contact.has_tag(self.config.optout_tag):
            logger.info(f"Contact {contact.id} opted out; no flow started")
            return []

        started = []
        for flow in await self.flow_store.active_flows():
            if not self._trigger_matches(flow, event):
                continue
            execution = await self.create_execution(
                flow.id, contact.id, trigger_data=event.to_dict()
            )
            started.append(await self.executor.step(execution.id))
        return started

    def _trigger_matches(self, flow: ExecutableFlow, event: FlowEvent) -> bool:
        trigger = get_node_type(flow.trigger.type)
        if not isinstance(trigger, TriggerNode):
            return False
        return trigger.matches(trigger.parse_config(flow.trigger.config), event, flow.id)

    async def _deliver_click(self, event: FlowEvent) -> list[Execution]:
        """Offer a click to the contact's button-waiting executions."""
        if event.execution_id:
            candidate = await self.execution_store.find(event.execution_id)
            candidates = [candidate] if candidate and candidate.contact_id == event.contact_id else []
        else:
            candidates = await self.execution_store.list_by_contact(
                event.contact_id, [ExecutionStatus.WAITING]
            )

        consumed = []
        for execution in candidates:
            if execution.status != ExecutionStatus.WAITING:
                continue
            if execution.waiting_for != WaitKind.BUTTON:
                continue
            after = await self.executor.step(execution.id, event)
            if after.steps_taken != execution.steps_taken or after.status != execution.status:
                consumed.append(after)
        return consumed
