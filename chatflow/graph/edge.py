"""
Edge Protocol - How nodes connect in a flow graph.

Edges carry:
1. Source and target node ids
2. An optional output handle on the source ("true", "false", a button output)

Edges are kept in creation order. The compiler relies on that order when a
node's single output has to be picked from several edges.

Both the canvas shape (source/target/sourceHandle) and the persisted row shape
(source_node_id/target_node_id/source_handle) are accepted on input.
"""

import uuid
from typing import Any

from pydantic import AliasChoices, BaseModel, Field

from chatflow.graph.node import NodeShape, NodeSpec, NodeType, get_node_type


def _edge_id() -> str:
    return f"edge_{uuid.uuid4().hex[:8]}"


class EdgeSpec(BaseModel):
    """
    An edge between two nodes.

    Examples:
        # Plain connection
        EdgeSpec(source="send-welcome", target="wait-1h")

        # Branch of a binary condition
        EdgeSpec(source="is-vip", target="send-vip", source_handle="true")

        # Branch of a button condition
        EdgeSpec(source="which-button", target="confirm", source_handle="btn_0")
    """

    id: str = Field(default_factory=_edge_id)
    source: str = Field(
        validation_alias=AliasChoices("source", "source_node_id"),
        description="Source node ID",
    )
    target: str = Field(
        validation_alias=AliasChoices("target", "target_node_id"),
        description="Target node ID",
    )
    source_handle: str | None = Field(
        default=None,
        validation_alias=AliasChoices("source_handle", "sourceHandle"),
        description="Output handle on the source node",
    )
    label: str | None = None

    model_config = {"extra": "allow", "populate_by_name": True}


class FlowGraph(BaseModel):
    """
    Editable flow graph: nodes plus edges.

    This is the authoring model. The runtime never reads it; it only sees the
    ExecutableFlow the compiler snapshots from it.
    """

    nodes: list[NodeSpec] = Field(default_factory=list)
    edges: list[EdgeSpec] = Field(default_factory=list)

    model_config = {"extra": "allow"}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FlowGraph":
        return cls.model_validate(data)

    def get_node(self, node_id: str) -> NodeSpec | None:
        """Get a node by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_outgoing_edges(self, node_id: str) -> list[EdgeSpec]:
        """Get all edges leaving a node, in creation order."""
        return [e for e in self.edges if e.source == node_id]

    def get_incoming_edges(self, node_id: str) -> list[EdgeSpec]:
        """Get all edges entering a node."""
        return [e for e in self.edges if e.target == node_id]

    def trigger_nodes(self) -> list[NodeSpec]:
        return [n for n in self.nodes if self.node_type(n).shape == NodeShape.TRIGGER]

    def node_type(self, node: NodeSpec) -> NodeType:
        return get_node_type(node.type)
