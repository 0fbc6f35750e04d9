"""
Action nodes - side effects performed through the external collaborators.

Every action runs to completion within one step and advances along ``next``.
A failed send or webhook call is returned as ``NodeResult(success=False)``;
the executor turns that into a FAILED execution.
"""

import logging
from typing import Any

from pydantic import Field

from chatflow.graph.node import NodeConfig, NodeContext, NodeResult, NodeType, register_node_type
from chatflow.graph.templating import render_text, render_value

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_LANGUAGE = "pt_BR"


class ActionNode(NodeType):
    kind_label = "Action"


def _send_outcome(result: Any, what: str) -> NodeResult:
    if result.success:
        return NodeResult(output={"message_id": result.message_id})
    return NodeResult(success=False, error=result.error or f"Failed to send {what}")


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class SendTextConfig(NodeConfig):
    message: str = ""


@register_node_type
class SendTextAction(ActionNode):
    type_name = "action_send_text"
    config_model = SendTextConfig

    def config_errors(self, config: SendTextConfig, label: str) -> list[str]:
        if not config.message.strip():
            return [f'Action "{label}" needs a message']
        return []

    async def execute(self, config: SendTextConfig, ctx: NodeContext) -> NodeResult:
        text = render_text(config.message, ctx.contact)
        result = await ctx.message_sender.send_text(
            ctx.contact, text, idempotency_key=ctx.idempotency_key
        )
        return _send_outcome(result, "text message")


class SendTemplateConfig(NodeConfig):
    template_id: str | None = None
    template_name: str | None = None
    template_language: str = DEFAULT_TEMPLATE_LANGUAGE
    template_variables: list[str] = Field(default_factory=list)


@register_node_type
class SendTemplateAction(ActionNode):
    """Approved message template; variables are rendered against the contact."""

    type_name = "action_send_template"
    config_model = SendTemplateConfig

    def config_errors(self, config: SendTemplateConfig, label: str) -> list[str]:
        if not (config.template_id or config.template_name):
            return [f'Action "{label}" needs a template']
        return []

    async def execute(self, config: SendTemplateConfig, ctx: NodeContext) -> NodeResult:
        variables = [render_text(v, ctx.contact) for v in config.template_variables]
        result = await ctx.message_sender.send_template(
            ctx.contact,
            config.template_name or config.template_id or "",
            config.template_language or DEFAULT_TEMPLATE_LANGUAGE,
            variables,
            idempotency_key=ctx.idempotency_key,
        )
        return _send_outcome(result, "template")


class SendMediaConfig(NodeConfig):
    media_url: str = ""
    media_type: str = "image"
    caption: str = ""


@register_node_type
class SendMediaAction(ActionNode):
    type_name = "action_send_media"
    config_model = SendMediaConfig

    def config_errors(self, config: SendMediaConfig, label: str) -> list[str]:
        if not config.media_url.strip():
            return [f'Action "{label}" needs a media URL']
        return []

    async def execute(self, config: SendMediaConfig, ctx: NodeContext) -> NodeResult:
        result = await ctx.message_sender.send_media(
            ctx.contact,
            config.media_url,
            config.media_type,
            render_text(config.caption, ctx.contact),
            idempotency_key=ctx.idempotency_key,
        )
        return _send_outcome(result, "media")


class SendButtonsConfig(NodeConfig):
    body: str = ""
    buttons: list[dict[str, str]] = Field(default_factory=list)


@register_node_type
class SendButtonsAction(ActionNode):
    """Interactive message; pair it with a condition_button to wait for the click."""

    type_name = "action_send_buttons"
    config_model = SendButtonsConfig

    def config_errors(self, config: SendButtonsConfig, label: str) -> list[str]:
        if not config.body.strip():
            return [f'Action "{label}" needs a message body']
        return []

    async def execute(self, config: SendButtonsConfig, ctx: NodeContext) -> NodeResult:
        result = await ctx.message_sender.send_buttons(
            ctx.contact,
            render_text(config.body, ctx.contact),
            config.buttons,
            idempotency_key=ctx.idempotency_key,
        )
        return _send_outcome(result, "buttons")


# ---------------------------------------------------------------------------
# Contact writes
# ---------------------------------------------------------------------------


class TagConfig(NodeConfig):
    tag: str = ""


class _TagAction(ActionNode):
    config_model = TagConfig

    def config_errors(self, config: TagConfig, label: str) -> list[str]:
        if not config.tag.strip():
            return [f'Action "{label}" needs a tag']
        return []


@register_node_type
class AddTagAction(_TagAction):
    type_name = "action_add_tag"

    async def execute(self, config: TagConfig, ctx: NodeContext) -> NodeResult:
        if not ctx.contact.has_tag(config.tag):
            await ctx.contact_store.add_tag(ctx.contact.id, config.tag)
        return NodeResult(output={"tag": config.tag})


@register_node_type
class RemoveTagAction(_TagAction):
    type_name = "action_remove_tag"

    async def execute(self, config: TagConfig, ctx: NodeContext) -> NodeResult:
        if ctx.contact.has_tag(config.tag):
            await ctx.contact_store.remove_tag(ctx.contact.id, config.tag)
        return NodeResult(output={"tag": config.tag})


class UpdateFieldConfig(NodeConfig):
    field: str = ""
    value: Any = None


@register_node_type
class UpdateFieldAction(ActionNode):
    type_name = "action_update_field"
    config_model = UpdateFieldConfig

    def config_errors(self, config: UpdateFieldConfig, label: str) -> list[str]:
        if not config.field.strip():
            return [f'Action "{label}" needs a field name']
        return []

    async def execute(self, config: UpdateFieldConfig, ctx: NodeContext) -> NodeResult:
        value = render_value(config.value, ctx.contact)
        await ctx.contact_store.set_field(ctx.contact.id, config.field, value)
        return NodeResult(output={"field": config.field})


# ---------------------------------------------------------------------------
# Webhook and end
# ---------------------------------------------------------------------------


class WebhookConfig(NodeConfig):
    url: str = ""
    method: str = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    request_body: Any = None


@register_node_type
class WebhookAction(ActionNode):
    """
    Call an external HTTP endpoint.

    Without a configured ``requestBody`` the payload describes the execution
    and the contact. Non-2xx answers and transport errors fail the execution.
    """

    type_name = "action_webhook"
    config_model = WebhookConfig

    def config_errors(self, config: WebhookConfig, label: str) -> list[str]:
        if not config.url.strip():
            return [f'Action "{label}" needs a webhook URL']
        return []

    def default_payload(self, ctx: NodeContext) -> dict[str, Any]:
        execution = ctx.execution
        return {
            "event": "flow_webhook",
            "flow_id": execution.flow_id,
            "execution_id": execution.id,
            "node_id": ctx.node.id,
            "contact": {
                "id": ctx.contact.id,
                "name": ctx.contact.name,
                "phone": ctx.contact.phone_number,
            },
            "trigger_data": execution.trigger_data,
            "timestamp": ctx.now.isoformat(),
        }

    async def execute(self, config: WebhookConfig, ctx: NodeContext) -> NodeResult:
        if ctx.webhook_invoker is None:
            return NodeResult(success=False, error="No webhook invoker configured")

        if config.request_body is None:
            payload = self.default_payload(ctx)
        else:
            payload = render_value(config.request_body, ctx.contact)

        result = await ctx.webhook_invoker.invoke(
            config.url,
            method=config.method.upper(),
            headers=config.headers,
            payload=payload,
            idempotency_key=ctx.idempotency_key,
        )
        if not result.success:
            return NodeResult(
                success=False,
                error=result.error or f"Webhook returned {result.status_code}",
            )
        return NodeResult(output={"status_code": result.status_code})


@register_node_type
class EndAction(ActionNode):
    """Terminate the execution regardless of outgoing edges."""

    type_name = "action_end"

    async def execute(self, config: NodeConfig, ctx: NodeContext) -> NodeResult:
        return NodeResult(terminate=True)
