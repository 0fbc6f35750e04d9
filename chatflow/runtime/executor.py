"""
Flow Executor - steps executions through the compiled IR.

One call to ``step`` takes the contact's lock and then advances node by node
until the execution suspends (delay, button wait) or reaches a terminal
status. Each node transition is persisted with a compare-and-set on status as
the last thing the node does, which gives two guarantees:

- re-invoking a step after a crash repeats at most the unfinished node, with
  the same idempotency key, so at-least-once delivery does not double-send
- a cancellation that lands mid-node wins: the node's transition is rejected
  by the compare-and-set and the execution stays CANCELLED
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from chatflow.graph.node import NodeContext, NodeResult, get_node_type
from chatflow.observability import reset_trace_context, set_trace_context
from chatflow.runtime.event_bus import EventBus, FlowEvent, FlowEventType
from chatflow.runtime.interfaces import ContactStore, MessageSender, Scheduler, WebhookInvoker
from chatflow.runtime.locks import ContactLockRegistry
from chatflow.schemas.contact import ContactSnapshot
from chatflow.schemas.executable_flow import CompiledNode, ExecutableFlow
from chatflow.schemas.execution import Execution, ExecutionStatus, WaitKind, utc_now
from chatflow.storage.execution_store import ExecutionStore
from chatflow.storage.flow_store import FlowStore

logger = logging.getLogger(__name__)


def idempotency_key(execution: Execution, node_id: str) -> str:
    """Key handed to collaborators; stable until the node's transition is persisted."""
    return f"{execution.id}:{node_id}:{execution.steps_taken}"


class FlowExecutor:
    """
    Per-contact state machine over ExecutableFlow.

    Example:
        executor = FlowExecutor(flow_store, execution_store, contacts, sender)
        execution = await executor.step(execution_id)
        if execution.status == ExecutionStatus.WAITING:
            ...  # a scheduler wake-up or a button click will step it again
    """

    def __init__(
        self,
        flow_store: FlowStore,
        execution_store: ExecutionStore,
        contact_store: ContactStore,
        message_sender: MessageSender,
        webhook_invoker: WebhookInvoker | None = None,
        scheduler: Scheduler | None = None,
        event_bus: EventBus | None = None,
        locks: ContactLockRegistry | None = None,
        timezone: str = "UTC",
        clock: Callable[[], datetime] = utc_now,
    ):
        self.flow_store = flow_store
        self.execution_store = execution_store
        self.contact_store = contact_store
        self.message_sender = message_sender
        self.webhook_invoker = webhook_invoker
        self.scheduler = scheduler
        self.event_bus = event_bus
        self.locks = locks or ContactLockRegistry()
        self.timezone = timezone
        self._clock = clock

    async def step(self, execution_id: str, event: FlowEvent | None = None) -> Execution:
        """
        Advance an execution as far as it can go right now.

        Args:
            execution_id: Execution to step
            event: The inbound event that caused this step, if any. None for
                a fresh execution or a scheduler wake-up.

        Returns:
            The execution as persisted after the step

        Raises:
            ExecutionNotFoundError: If the execution does not exist
        """
        execution = await self.execution_store.get(execution_id)
        async with self.locks.hold(execution.contact_id):
            token = set_trace_context(
                execution_id=execution.id,
                contact_id=execution.contact_id,
                flow_id=execution.flow_id,
            )
            try:
                return await self._step_locked(execution_id, event)
            finally:
                reset_trace_context(token)

    async def _step_locked(self, execution_id: str, event: FlowEvent | None) -> Execution:
        execution = await self.execution_store.get(execution_id)
        if not execution.is_live:
            logger.debug(f"Execution {execution_id} is {execution.status}, nothing to do")
            return execution

        flow = await self.flow_store.get(execution.flow_id, execution.flow_version)
        if flow is None:
            return await self._fail(
                execution,
                execution.current_node_id,
                f"Flow '{execution.flow_id}' v{execution.flow_version} not found",
            )

        if execution.status == ExecutionStatus.WAITING:
            execution = await self._resume(flow, execution, event)
            if execution.status != ExecutionStatus.RUNNING:
                return execution

        units = 0
        while True:
            if execution.current_node_id is None:
                return await self._complete(execution)

            if units >= len(flow.nodes):
                return await self._fail(
                    execution,
                    execution.current_node_id,
                    "Flow loops without a delay or button wait",
                )

            node = flow.get_node(execution.current_node_id)
            if node is None:
                return await self._fail(
                    execution,
                    execution.current_node_id,
                    f"Node '{execution.current_node_id}' is not part of the flow",
                )

            units += 1
            execution = await self._run_node(execution, node)
            if execution.status != ExecutionStatus.RUNNING:
                return execution

    # === NODE DISPATCH ===

    async def _run_node(self, execution: Execution, node: CompiledNode) -> Execution:
        # Last look at the status before any side effect
        current = await self.execution_store.get(execution.id)
        if current.status != ExecutionStatus.RUNNING:
            logger.info(f"Execution {execution.id} is {current.status}; skipping node {node.id}")
            return current

        set_trace_context(node_id=node.id)
        contact = await self.contact_store.get_contact(execution.contact_id)
        if contact is None:
            return await self._fail(current, node.id, f"Contact '{execution.contact_id}' not found")

        node_type = get_node_type(node.type)
        ctx = self._context(current, node, contact)
        try:
            config = node_type.parse_config(node.config)
            result = await node_type.execute(config, ctx)
        except Exception as e:
            logger.exception(f"Node {node.id} ({node.type}) raised")
            result = NodeResult(success=False, error=str(e) or type(e).__name__)

        logger.info(
            f"Node {node.id} ({node.type}) finished: success={result.success}",
            extra={"event": "node_executed", "node_id": node.id, "node_type": node.type},
        )
        updated = self._apply(current, node, result)
        committed = await self._commit(updated, ExecutionStatus.RUNNING)
        if committed is not updated:
            return committed

        await self._publish(
            FlowEventType.NODE_EXECUTED,
            committed,
            node_id=node.id,
            node_type=node.type,
            success=result.success,
            output=result.output,
        )
        await self._after_transition(committed)
        return committed

    def _context(
        self,
        execution: Execution,
        node: CompiledNode,
        contact: ContactSnapshot,
        event: FlowEvent | None = None,
    ) -> NodeContext:
        return NodeContext(
            execution=execution,
            node=node,
            contact=contact,
            contact_store=self.contact_store,
            message_sender=self.message_sender,
            webhook_invoker=self.webhook_invoker,
            now=self._clock(),
            timezone=self.timezone,
            idempotency_key=idempotency_key(execution, node.id),
            event=event,
        )

    def _apply(self, execution: Execution, node: CompiledNode, result: NodeResult) -> Execution:
        """Fold a node result into the next execution record."""
        now = self._clock()
        changes: dict[str, Any] = {
            "steps_taken": execution.steps_taken + 1,
            "path": [*execution.path, node.id],
        }

        if not result.success:
            changes.update(
                status=ExecutionStatus.FAILED,
                failed_node_id=node.id,
                error=result.error or "Node failed",
                completed_at=now,
            )
        elif result.terminate:
            changes.update(
                status=ExecutionStatus.COMPLETED,
                current_node_id=None,
                completed_at=now,
            )
        elif result.suspend is not None:
            changes.update(
                status=ExecutionStatus.WAITING,
                waiting_for=result.suspend.kind,
                resume_at=result.suspend.resume_at,
            )
        else:
            # An unwired branch resolves to None: a dead end, not an error
            changes["current_node_id"] = node.resolve(result.branch)

        return execution.model_copy(update=changes)

    # === RESUMPTION ===

    async def _resume(
        self,
        flow: ExecutableFlow,
        execution: Execution,
        event: FlowEvent | None,
    ) -> Execution:
        node = flow.get_node(execution.current_node_id) if execution.current_node_id else None
        if node is None:
            return await self._fail(
                execution,
                execution.current_node_id,
                f"Waiting node '{execution.current_node_id}' is not part of the flow",
                expected=ExecutionStatus.WAITING,
            )

        contact = await self.contact_store.get_contact(execution.contact_id)
        if contact is None:
            return await self._fail(
                execution,
                node.id,
                f"Contact '{execution.contact_id}' not found",
                expected=ExecutionStatus.WAITING,
            )

        node_type = get_node_type(node.type)
        ctx = self._context(execution, node, contact, event)
        result = node_type.resume(node_type.parse_config(node.config), ctx)
        if result is None:
            logger.debug(f"Execution {execution.id} stays waiting on {node.id}")
            if (
                event is None
                and self.scheduler is not None
                and execution.waiting_for == WaitKind.DELAY
                and execution.resume_at is not None
            ):
                # Timer fired ahead of resume_at; arm it again
                self.scheduler.schedule(execution.id, execution.resume_at)
            return execution

        updated = execution.model_copy(
            update={
                "status": ExecutionStatus.RUNNING,
                "waiting_for": None,
                "resume_at": None,
                "current_node_id": node.resolve(result.branch),
                "steps_taken": execution.steps_taken + 1,
            }
        )
        committed = await self._commit(updated, ExecutionStatus.WAITING)
        if committed is updated:
            logger.info(f"Execution {execution.id} resumed from {node.id}")
            await self._publish(
                FlowEventType.EXECUTION_RESUMED, committed, node_id=node.id, **result.output
            )
        return committed

    # === TRANSITIONS ===

    async def _commit(self, updated: Execution, expected: ExecutionStatus) -> Execution:
        """
        Persist a transition. Returns ``updated`` itself when it was applied,
        or the stored record when the status moved on underneath us.
        """
        if await self.execution_store.compare_and_set(updated, expected):
            return updated
        stored = await self.execution_store.get(updated.id)
        logger.info(
            f"Discarded transition of execution {updated.id}: status is now {stored.status}"
        )
        return stored

    async def _after_transition(self, execution: Execution) -> None:
        if execution.status == ExecutionStatus.WAITING:
            if execution.waiting_for == WaitKind.DELAY and execution.resume_at is not None:
                if self.scheduler is not None:
                    self.scheduler.schedule(execution.id, execution.resume_at)
                else:
                    logger.warning(f"No scheduler configured to wake execution {execution.id}")
            await self._publish(
                FlowEventType.EXECUTION_WAITING,
                execution,
                node_id=execution.current_node_id,
                waiting_for=str(execution.waiting_for),
            )
        elif execution.status == ExecutionStatus.COMPLETED:
            await self._publish(FlowEventType.EXECUTION_COMPLETED, execution)
        elif execution.status == ExecutionStatus.FAILED:
            logger.error(
                f"Execution {execution.id} failed at {execution.failed_node_id}: {execution.error}"
            )
            await self._publish(
                FlowEventType.EXECUTION_FAILED,
                execution,
                node_id=execution.failed_node_id,
                error=execution.error,
            )

    async def _complete(self, execution: Execution) -> Execution:
        updated = execution.model_copy(
            update={"status": ExecutionStatus.COMPLETED, "completed_at": self._clock()}
        )
        committed = await self._commit(updated, ExecutionStatus.RUNNING)
        if committed is updated:
            logger.info(f"Execution {execution.id} completed after {execution.steps_taken} node(s)")
            await self._after_transition(committed)
        return committed

    async def _fail(
        self,
        execution: Execution,
        node_id: str | None,
        error: str,
        expected: ExecutionStatus = ExecutionStatus.RUNNING,
    ) -> Execution:
        updated = execution.model_copy(
            update={
                "status": ExecutionStatus.FAILED,
                "failed_node_id": node_id,
                "error": error,
                "completed_at": self._clock(),
                "resume_at": None,
            }
        )
        committed = await self._commit(updated, expected)
        if committed is updated:
            await self._after_transition(committed)
        return committed

    async def _publish(
        self,
        event_type: FlowEventType,
        execution: Execution,
        node_id: str | None = None,
        **data: Any,
    ) -> None:
        if self.event_bus is not None:
            await self.event_bus.emit_execution_event(event_type, execution, node_id=node_id, **data)
