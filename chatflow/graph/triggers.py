"""
Trigger nodes - the single entry point of a flow.

Triggers never run inside an execution. They decide whether an inbound event
starts one; the compiler turns their outgoing edge into ``startNodeId``.
"""

from typing import Any

from chatflow.graph.node import NodeConfig, NodeShape, NodeType, register_node_type
from chatflow.runtime.event_bus import FlowEvent, FlowEventType


class TriggerNode(NodeType):
    shape = NodeShape.TRIGGER
    kind_label = "Trigger"
    event_type: FlowEventType | None = None

    def matches(self, config: Any, event: FlowEvent, flow_id: str) -> bool:
        return event.type == self.event_type


@register_node_type
class MessageTrigger(TriggerNode):
    """Any inbound message."""

    type_name = "trigger_message"
    event_type = FlowEventType.MESSAGE_RECEIVED


class KeywordConfig(NodeConfig):
    keywords: list[str] = []
    exact_match: bool = False


@register_node_type
class KeywordTrigger(TriggerNode):
    """Inbound message containing (or equal to) one of the keywords."""

    type_name = "trigger_keyword"
    config_model = KeywordConfig
    event_type = FlowEventType.MESSAGE_RECEIVED

    def config_errors(self, config: KeywordConfig, label: str) -> list[str]:
        if not [k for k in config.keywords if k.strip()]:
            return [f'Trigger "{label}" needs at least one keyword']
        return []

    def matches(self, config: KeywordConfig, event: FlowEvent, flow_id: str) -> bool:
        if event.type != self.event_type:
            return False
        text = event.text.strip().lower()
        if not text:
            return False
        for keyword in config.keywords:
            keyword = keyword.strip().lower()
            if not keyword:
                continue
            if config.exact_match and text == keyword:
                return True
            if not config.exact_match and keyword in text:
                return True
        return False


class ButtonClickConfig(NodeConfig):
    button_id: str | None = None


@register_node_type
class ButtonClickTrigger(TriggerNode):
    """A button click that no waiting execution consumed."""

    type_name = "trigger_button_click"
    config_model = ButtonClickConfig
    event_type = FlowEventType.BUTTON_CLICKED

    def matches(self, config: ButtonClickConfig, event: FlowEvent, flow_id: str) -> bool:
        if event.type != self.event_type:
            return False
        if not config.button_id:
            return True
        return config.button_id in (event.button_id, event.button_text)


@register_node_type
class ContactCreatedTrigger(TriggerNode):
    type_name = "trigger_contact_created"
    event_type = FlowEventType.CONTACT_CREATED


class WebhookTriggerConfig(NodeConfig):
    webhook_id: str | None = None


@register_node_type
class WebhookTrigger(TriggerNode):
    """External webhook addressed to this flow (by webhookId, else by flow id)."""

    type_name = "trigger_webhook"
    config_model = WebhookTriggerConfig
    event_type = FlowEventType.WEBHOOK_RECEIVED

    def matches(self, config: WebhookTriggerConfig, event: FlowEvent, flow_id: str) -> bool:
        if event.type != self.event_type:
            return False
        return event.data.get("source_id") == (config.webhook_id or flow_id)
