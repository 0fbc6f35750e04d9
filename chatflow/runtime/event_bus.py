"""
Event Bus - Pub/sub between the chat channel and the flow runtime.

Carries two families of events:
- Inbound events (message received, button clicked, contact created,
  webhook received), each correlated to a contact and, for button clicks,
  optionally to a specific execution
- Execution lifecycle events published by the executor and the
  cancellation service for observability
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)

# Buses whose handler slot the current task already holds
_held_slots: ContextVar[frozenset[int]] = ContextVar("event_bus_held_slots", default=frozenset())


class FlowEventType(StrEnum):
    """Types of events that can be published."""

    # Inbound (trigger matching and resumption)
    MESSAGE_RECEIVED = "message_received"
    BUTTON_CLICKED = "button_clicked"
    CONTACT_CREATED = "contact_created"
    WEBHOOK_RECEIVED = "webhook_received"

    # Execution lifecycle
    EXECUTION_STARTED = "execution_started"
    EXECUTION_WAITING = "execution_waiting"
    EXECUTION_RESUMED = "execution_resumed"
    EXECUTION_COMPLETED = "execution_completed"
    EXECUTION_FAILED = "execution_failed"
    EXECUTION_CANCELLED = "execution_cancelled"
    NODE_EXECUTED = "node_executed"


INBOUND_EVENT_TYPES = (
    FlowEventType.MESSAGE_RECEIVED,
    FlowEventType.BUTTON_CLICKED,
    FlowEventType.CONTACT_CREATED,
    FlowEventType.WEBHOOK_RECEIVED,
)


@dataclass
class FlowEvent:
    """An event in the flow system."""

    type: FlowEventType
    contact_id: str | None = None
    execution_id: str | None = None  # Set on button clicks aimed at one execution
    flow_id: str | None = None
    node_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)
    correlation_id: str | None = None

    @property
    def text(self) -> str:
        return str(self.data.get("text") or "")

    @property
    def button_id(self) -> str | None:
        return self.data.get("button_id")

    @property
    def button_text(self) -> str:
        return str(self.data.get("button_text") or "")

    @property
    def is_button_click(self) -> bool:
        return self.type == FlowEventType.BUTTON_CLICKED

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type.value,
            "contact_id": self.contact_id,
            "execution_id": self.execution_id,
            "flow_id": self.flow_id,
            "node_id": self.node_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
            "correlation_id": self.correlation_id,
        }


# Type for event handlers
EventHandler = Callable[[FlowEvent], Awaitable[None]]


@dataclass
class Subscription:
    """A subscription to events."""

    id: str
    event_types: set[FlowEventType]
    handler: EventHandler
    filter_contact: str | None = None
    filter_execution: str | None = None
    filter_flow: str | None = None


class EventBus:
    """
    Pub/sub event bus.

    Features:
    - Async event handling, handlers isolated from each other's failures
    - Type-based subscriptions with contact/execution/flow filters
    - Event history for debugging

    Example:
        bus = EventBus()

        async def on_click(event: FlowEvent):
            await runtime.handle_event(event)

        bus.subscribe(event_types=[FlowEventType.BUTTON_CLICKED], handler=on_click)

        await bus.emit_button_clicked(contact_id="c1", button_id="btn_0")
    """

    def __init__(
        self,
        max_history: int = 1000,
        max_concurrent_handlers: int = 10,
    ):
        """
        Initialize event bus.

        Args:
            max_history: Maximum events to keep in history
            max_concurrent_handlers: Maximum concurrent handler executions
        """
        self._subscriptions: dict[str, Subscription] = {}
        self._event_history: list[FlowEvent] = []
        self._max_history = max_history
        self._semaphore = asyncio.Semaphore(max_concurrent_handlers)
        self._subscription_counter = 0
        self._lock = asyncio.Lock()

    def subscribe(
        self,
        event_types: list[FlowEventType] | tuple[FlowEventType, ...],
        handler: EventHandler,
        filter_contact: str | None = None,
        filter_execution: str | None = None,
        filter_flow: str | None = None,
    ) -> str:
        """
        Subscribe to events.

        Returns:
            Subscription ID (use to unsubscribe)
        """
        self._subscription_counter += 1
        sub_id = f"sub_{self._subscription_counter}"

        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            event_types=set(event_types),
            handler=handler,
            filter_contact=filter_contact,
            filter_execution=filter_execution,
            filter_flow=filter_flow,
        )
        logger.debug(f"Subscription {sub_id} registered for {list(event_types)}")
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription. Returns True if it existed."""
        if subscription_id in self._subscriptions:
            del self._subscriptions[subscription_id]
            logger.debug(f"Subscription {subscription_id} removed")
            return True
        return False

    async def publish(self, event: FlowEvent) -> None:
        """Publish an event to all matching subscribers."""
        async with self._lock:
            self._event_history.append(event)
            if len(self._event_history) > self._max_history:
                self._event_history = self._event_history[-self._max_history :]

        matching_handlers = [
            subscription.handler
            for subscription in self._subscriptions.values()
            if self._matches(subscription, event)
        ]

        if matching_handlers:
            await self._execute_handlers(event, matching_handlers)

    def _matches(self, subscription: Subscription, event: FlowEvent) -> bool:
        if event.type not in subscription.event_types:
            return False
        if subscription.filter_contact and subscription.filter_contact != event.contact_id:
            return False
        if subscription.filter_execution and subscription.filter_execution != event.execution_id:
            return False
        if subscription.filter_flow and subscription.filter_flow != event.flow_id:
            return False
        return True

    async def _execute_handlers(
        self,
        event: FlowEvent,
        handlers: list[EventHandler],
    ) -> None:
        """
        Execute handlers concurrently with rate limiting.

        Only top-level publishes take a semaphore slot. Events published from
        inside a handler (lifecycle events from a stepped execution) run on the
        slot already held, so a saturated bus cannot wait on itself.
        """
        nested = id(self) in _held_slots.get()

        async def invoke(handler: EventHandler) -> None:
            try:
                await handler(event)
            except Exception:
                logger.exception(f"Handler error for {event.type}")

        async def run_handler(handler: EventHandler) -> None:
            if nested:
                await invoke(handler)
                return
            async with self._semaphore:
                _held_slots.set(_held_slots.get() | {id(self)})
                await invoke(handler)

        await asyncio.gather(*[run_handler(h) for h in handlers], return_exceptions=True)

    # === INBOUND PUBLISHERS ===

    async def emit_message_received(
        self,
        contact_id: str,
        text: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        """Emit an inbound chat message."""
        await self.publish(
            FlowEvent(
                type=FlowEventType.MESSAGE_RECEIVED,
                contact_id=contact_id,
                data={**(data or {}), "text": text},
            )
        )

    async def emit_button_clicked(
        self,
        contact_id: str,
        button_id: str | None = None,
        button_text: str = "",
        execution_id: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        """Emit an inbound button click, optionally aimed at one execution."""
        await self.publish(
            FlowEvent(
                type=FlowEventType.BUTTON_CLICKED,
                contact_id=contact_id,
                execution_id=execution_id,
                data={**(data or {}), "button_id": button_id, "button_text": button_text},
            )
        )

    async def emit_contact_created(
        self,
        contact_id: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        await self.publish(
            FlowEvent(
                type=FlowEventType.CONTACT_CREATED,
                contact_id=contact_id,
                data=data or {},
            )
        )

    async def emit_webhook_received(
        self,
        source_id: str,
        contact_id: str | None,
        payload: dict[str, Any],
        path: str = "",
        method: str = "POST",
    ) -> None:
        """Emit a webhook received event (external trigger)."""
        await self.publish(
            FlowEvent(
                type=FlowEventType.WEBHOOK_RECEIVED,
                contact_id=contact_id,
                data={
                    "source_id": source_id,
                    "path": path,
                    "method": method,
                    "payload": payload,
                },
            )
        )

    # === LIFECYCLE PUBLISHERS ===

    async def emit_execution_event(
        self,
        event_type: FlowEventType,
        execution: Any,
        node_id: str | None = None,
        **data: Any,
    ) -> None:
        """Emit a lifecycle event for an execution."""
        await self.publish(
            FlowEvent(
                type=event_type,
                contact_id=execution.contact_id,
                execution_id=execution.id,
                flow_id=execution.flow_id,
                node_id=node_id,
                data={"status": str(execution.status), **data},
            )
        )

    # === QUERY OPERATIONS ===

    def get_history(
        self,
        event_type: FlowEventType | None = None,
        contact_id: str | None = None,
        execution_id: str | None = None,
        limit: int = 100,
    ) -> list[FlowEvent]:
        """
        Get event history for debugging.

        Returns:
            List of matching events (most recent first)
        """
        events = self._event_history[::-1]

        if event_type:
            events = [e for e in events if e.type == event_type]
        if contact_id:
            events = [e for e in events if e.contact_id == contact_id]
        if execution_id:
            events = [e for e in events if e.execution_id == execution_id]

        return events[:limit]

    def get_stats(self) -> dict:
        """Get event bus statistics."""
        type_counts: dict[str, int] = {}
        for event in self._event_history:
            type_counts[event.type.value] = type_counts.get(event.type.value, 0) + 1

        return {
            "total_events": len(self._event_history),
            "subscriptions": len(self._subscriptions),
            "events_by_type": type_counts,
        }

    # === WAITING OPERATIONS ===

    async def wait_for(
        self,
        event_type: FlowEventType,
        contact_id: str | None = None,
        execution_id: str | None = None,
        timeout: float | None = None,
    ) -> FlowEvent | None:
        """
        Wait for a specific event to occur.

        Returns:
            The event if received, None on timeout
        """
        result: FlowEvent | None = None
        event_received = asyncio.Event()

        async def handler(event: FlowEvent) -> None:
            nonlocal result
            result = event
            event_received.set()

        sub_id = self.subscribe(
            event_types=[event_type],
            handler=handler,
            filter_contact=contact_id,
            filter_execution=execution_id,
        )

        try:
            if timeout:
                try:
                    await asyncio.wait_for(event_received.wait(), timeout=timeout)
                except TimeoutError:
                    return None
            else:
                await event_received.wait()

            return result
        finally:
            self.unsubscribe(sub_id)
