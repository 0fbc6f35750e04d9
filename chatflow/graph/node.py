"""
Node Protocol - The building blocks of a flow.

Every node type is a distinct variant registered under its tag
("action_send_text", "condition_tag", ...). A variant owns:
- its config model (camelCase keys as stored by the editor)
- its required-config rule, used by the validator
- its output shape, used by the validator and the compiler
- its step handler, used by the executor

The validator, compiler and executor only ever talk to the NodeType
interface; none of them branch on the type string.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from chatflow.schemas.execution import WaitKind

if TYPE_CHECKING:
    from chatflow.runtime.event_bus import FlowEvent
    from chatflow.runtime.interfaces import ContactStore, MessageSender, WebhookInvoker
    from chatflow.schemas.contact import ContactSnapshot
    from chatflow.schemas.executable_flow import CompiledNode
    from chatflow.schemas.execution import Execution


class NodeShape(StrEnum):
    """How a node's outgoing edges are interpreted."""

    TRIGGER = "trigger"  # Entry node; its target becomes startNodeId
    SINGLE = "single"  # One semantic output -> next
    BINARY = "binary"  # "true"/"false" handles -> nextOnTrue/nextOnFalse
    BY_HANDLE = "by_handle"  # One handle per configured branch -> nextByButton


class NodeConfig(BaseModel):
    """Base for per-type config models. Keys are camelCase in stored documents."""

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "extra": "allow",
        "frozen": True,
    }


@dataclass(frozen=True)
class Suspension:
    """A request from a handler to suspend the execution."""

    kind: WaitKind
    resume_at: datetime | None = None


@dataclass
class NodeResult:
    """
    The output of running a node.

    ``branch`` picks the outgoing pointer: None for ``next``, "true"/"false"
    for binary conditions, a handle for button conditions.
    """

    success: bool = True
    branch: str | None = None
    suspend: Suspension | None = None
    terminate: bool = False
    error: str | None = None
    output: dict[str, Any] = field(default_factory=dict)


@dataclass
class NodeContext:
    """
    Everything a handler may read while running one node.

    The contact is a read-only snapshot; writes go through the collaborators.
    """

    execution: Execution
    node: CompiledNode
    contact: ContactSnapshot
    contact_store: ContactStore
    message_sender: MessageSender
    webhook_invoker: WebhookInvoker | None
    now: datetime
    timezone: str = "UTC"
    idempotency_key: str = ""
    event: FlowEvent | None = None


class NodeType:
    """
    Base class for node variants.

    Subclasses set ``type_name``, ``shape`` and ``config_model`` and override
    ``config_errors`` and ``execute``.
    """

    type_name: ClassVar[str] = ""
    shape: ClassVar[NodeShape] = NodeShape.SINGLE
    config_model: ClassVar[type[NodeConfig]] = NodeConfig
    kind_label: ClassVar[str] = "Node"

    def parse_config(self, raw: dict[str, Any] | None) -> NodeConfig:
        return self.config_model.model_validate(raw or {})

    def validate_config(self, raw: dict[str, Any] | None, label: str) -> list[str]:
        """Return human-readable errors for missing or malformed configuration."""
        try:
            config = self.parse_config(raw)
        except ValidationError as e:
            fields = ", ".join(
                ".".join(str(part) for part in err["loc"]) or "config" for err in e.errors()
            )
            return [f'{self.kind_label} "{label}" has invalid configuration: {fields}']
        return self.config_errors(config, label)

    def config_errors(self, config: Any, label: str) -> list[str]:
        return []

    def branch_handles(self, config: Any) -> list[str]:
        """Handles that must each be wired to an outgoing edge."""
        if self.shape == NodeShape.BINARY:
            return ["true", "false"]
        return []

    async def execute(self, config: Any, ctx: NodeContext) -> NodeResult:
        raise NotImplementedError(f"Node type '{self.type_name}' cannot be executed")

    def resume(self, config: Any, ctx: NodeContext) -> NodeResult | None:
        """
        Decide whether a WAITING execution parked on this node may continue.

        ``ctx.event`` is None for a scheduler wake-up. Returning None leaves
        the execution WAITING.
        """
        return None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.type_name}>"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

NODE_TYPES: dict[str, NodeType] = {}


def register_node_type(cls: type[NodeType]) -> type[NodeType]:
    """Class decorator registering a node variant under its ``type_name``."""
    if not cls.type_name:
        raise ValueError(f"{cls.__name__} must define type_name")
    if cls.type_name in NODE_TYPES:
        raise ValueError(f"Node type '{cls.type_name}' is already registered")
    NODE_TYPES[cls.type_name] = cls()
    return cls


def get_node_type(type_name: str) -> NodeType:
    """Look up a registered node variant, raising ValueError for unknown tags."""
    try:
        return NODE_TYPES[type_name]
    except KeyError:
        raise ValueError(f"Unknown node type '{type_name}'") from None


class NodeSpec(BaseModel):
    """
    A node in the editable graph.

    Examples:
        NodeSpec(id="welcome", type="action_send_text", config={"message": "Hi {{first_name}}"})
        NodeSpec(id="is-vip", type="condition_tag", label="VIP?", config={"tag": "vip"})
    """

    id: str
    type: str
    label: str | None = Field(default=None, validation_alias=AliasChoices("label", "name"))
    config: dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "allow", "populate_by_name": True}

    @model_validator(mode="before")
    @classmethod
    def _flatten_canvas_data(cls, data: Any) -> Any:
        # Canvas nodes keep type/label/config under "data"
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            inner = data["data"]
            data = {**data, "type": inner.get("type", data.get("type"))}
            for key in ("label", "config"):
                if key in inner and key not in data:
                    data[key] = inner[key]
        return data

    @field_validator("config", mode="before")
    @classmethod
    def _config_none_to_empty(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("type")
    @classmethod
    def _known_type(cls, value: str) -> str:
        get_node_type(value)
        return value

    @property
    def display_name(self) -> str:
        return self.label or self.id
