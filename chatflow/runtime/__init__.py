"""Runtime: event bus, collaborator interfaces, executor and flow runtime."""

from chatflow.runtime.event_bus import EventBus, FlowEvent, FlowEventType
from chatflow.runtime.interfaces import (
    ContactStore,
    MessageSender,
    Scheduler,
    SendResult,
    WebhookInvoker,
    WebhookResult,
)

__all__ = [
    "ContactStore",
    "EventBus",
    "FlowEvent",
    "FlowEventType",
    "MessageSender",
    "Scheduler",
    "SendResult",
    "WebhookInvoker",
    "WebhookResult",
]
