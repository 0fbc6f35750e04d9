"""
Flow validation - gate every activation of a flow.

All checks run and every problem is collected; nothing here raises on an
invalid graph. Validation must be repeated before each re-activation since an
edit can break a graph that was valid before.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field

from pydantic import ValidationError

from chatflow.graph.edge import EdgeSpec, FlowGraph
from chatflow.graph.node import NodeShape, NodeSpec, get_node_type

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result of validating a flow graph."""

    errors: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def error(self) -> str:
        return "; ".join(self.errors)


def validate(
    nodes: list[NodeSpec],
    edges: list[EdgeSpec],
    *,
    allow_fan_out: bool = False,
) -> ValidationResult:
    """
    Check that a graph is executable.

    Args:
        nodes: Graph nodes
        edges: Graph edges, in creation order
        allow_fan_out: Accept several edges leaving one output and let the
            compiler keep the first one

    Returns:
        ValidationResult listing every problem found
    """
    errors: list[str] = []
    by_id: dict[str, NodeSpec] = {}

    for node_id, count in Counter(n.id for n in nodes).items():
        if count > 1:
            errors.append(f"Duplicate node ID '{node_id}'")
    for node in nodes:
        by_id.setdefault(node.id, node)

    for edge in edges:
        if edge.source not in by_id:
            errors.append(f"Edge '{edge.id}' references missing source '{edge.source}'")
        if edge.target not in by_id:
            errors.append(f"Edge '{edge.id}' references missing target '{edge.target}'")

    outgoing: dict[str, list[EdgeSpec]] = {}
    incoming: dict[str, list[EdgeSpec]] = {}
    for edge in edges:
        outgoing.setdefault(edge.source, []).append(edge)
        incoming.setdefault(edge.target, []).append(edge)

    # Trigger count and wiring
    triggers = [n for n in by_id.values() if get_node_type(n.type).shape == NodeShape.TRIGGER]
    if not triggers:
        errors.append("Flow needs a trigger")
    elif len(triggers) > 1:
        names = ", ".join(f'"{t.display_name}"' for t in triggers)
        errors.append(f"Flow must have exactly one trigger, found {len(triggers)}: {names}")

    for trigger in triggers:
        if not outgoing.get(trigger.id):
            errors.append(f'Trigger "{trigger.display_name}" is not connected to any node')

    for node in by_id.values():
        node_type = get_node_type(node.type)
        label = node.display_name
        node_edges = outgoing.get(node.id, [])

        if node_type.shape != NodeShape.TRIGGER and not incoming.get(node.id):
            errors.append(f'Node "{label}" is not connected (no incoming edge)')

        config_errors = node_type.validate_config(node.config, label)
        errors.extend(config_errors)

        if node_type.shape in (NodeShape.TRIGGER, NodeShape.SINGLE):
            if len(node_edges) > 1 and not allow_fan_out:
                errors.append(
                    f'Node "{label}" has {len(node_edges)} outgoing edges; '
                    "only one is allowed"
                )
            continue

        # Branching nodes: every required handle wired, at most once
        try:
            config = node_type.parse_config(node.config)
        except ValidationError:
            continue

        handles = Counter(e.source_handle for e in node_edges if e.source_handle)
        for handle in node_type.branch_handles(config):
            if handle not in handles:
                if node_type.shape == NodeShape.BINARY:
                    errors.append(f'Condition "{label}" is missing its "{handle}" path')
                else:
                    errors.append(f'Condition "{label}" has no path for button "{handle}"')
        if not allow_fan_out:
            for handle, count in handles.items():
                if count > 1:
                    errors.append(
                        f'Condition "{label}" has {count} edges on output "{handle}"; '
                        "only one is allowed"
                    )

    if errors:
        logger.debug(f"Flow validation found {len(errors)} error(s)")
    return ValidationResult(errors=errors)


def validate_graph(graph: FlowGraph, *, allow_fan_out: bool = False) -> ValidationResult:
    """Validate a FlowGraph."""
    return validate(graph.nodes, graph.edges, allow_fan_out=allow_fan_out)
