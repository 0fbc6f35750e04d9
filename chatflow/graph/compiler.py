"""
Flow compiler - editable graph to executable IR.

A pure, deterministic builder: the same valid graph always yields an equal
ExecutableFlow. The trigger is lifted out of the node map and its target
becomes ``startNodeId``. When several edges leave the same output (only
possible with ``allow_fan_out``), the first edge in creation order wins.
"""

import logging
from typing import Any

from chatflow.graph.edge import EdgeSpec, FlowGraph
from chatflow.graph.node import NodeShape, NodeSpec, get_node_type
from chatflow.graph.validator import ValidationResult, validate_graph
from chatflow.schemas.executable_flow import CompiledNode, ExecutableFlow, TriggerSpec

logger = logging.getLogger(__name__)


class FlowValidationError(ValueError):
    """Raised when compiling a graph that does not pass validation."""

    def __init__(self, result: ValidationResult):
        self.errors = list(result.errors)
        super().__init__(f"Flow is not valid: {result.error}")


def _compile_node(node: NodeSpec, edges: list[EdgeSpec]) -> CompiledNode:
    shape = get_node_type(node.type).shape
    fields: dict[str, Any] = {"id": node.id, "type": node.type, "config": dict(node.config)}

    if shape == NodeShape.SINGLE:
        fields["next"] = edges[0].target if edges else None
    elif shape == NodeShape.BINARY:
        for edge in edges:
            if edge.source_handle == "true":
                fields.setdefault("next_on_true", edge.target)
            elif edge.source_handle == "false":
                fields.setdefault("next_on_false", edge.target)
    elif shape == NodeShape.BY_HANDLE:
        by_handle: dict[str, str] = {}
        for edge in edges:
            if edge.source_handle:
                by_handle.setdefault(edge.source_handle, edge.target)
        fields["next_by_button"] = by_handle

    return CompiledNode(**fields)


def compile_flow(
    flow_id: str,
    name: str,
    graph: FlowGraph | dict[str, Any],
    version: int = 1,
    *,
    allow_fan_out: bool = False,
) -> ExecutableFlow:
    """
    Compile a flow graph into its executable IR.

    Raises:
        FlowValidationError: If the graph does not pass validation
    """
    if isinstance(graph, dict):
        graph = FlowGraph.from_dict(graph)

    result = validate_graph(graph, allow_fan_out=allow_fan_out)
    if not result.is_valid:
        raise FlowValidationError(result)

    trigger = graph.trigger_nodes()[0]
    trigger_edges = graph.get_outgoing_edges(trigger.id)

    nodes = {
        node.id: _compile_node(node, graph.get_outgoing_edges(node.id))
        for node in graph.nodes
        if node.id != trigger.id
    }

    flow = ExecutableFlow(
        id=flow_id,
        name=name,
        version=version,
        trigger=TriggerSpec(type=trigger.type, config=dict(trigger.config)),
        start_node_id=trigger_edges[0].target if trigger_edges else None,
        nodes=nodes,
    )
    logger.info(f"Compiled flow '{flow_id}' v{version} with {len(nodes)} node(s)")
    return flow
