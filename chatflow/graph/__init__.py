"""Graph structures: node variants, edges, validation and compilation."""

# Importing the variant modules registers every node type
from chatflow.graph import actions, conditions, control, triggers  # noqa: F401
from chatflow.graph.compiler import FlowValidationError, compile_flow
from chatflow.graph.edge import EdgeSpec, FlowGraph
from chatflow.graph.node import (
    NODE_TYPES,
    NodeContext,
    NodeResult,
    NodeShape,
    NodeSpec,
    NodeType,
    Suspension,
    get_node_type,
    register_node_type,
)
from chatflow.graph.triggers import TriggerNode
from chatflow.graph.validator import ValidationResult, validate, validate_graph

__all__ = [
    "EdgeSpec",
    "FlowGraph",
    "FlowValidationError",
    "NODE_TYPES",
    "NodeContext",
    "NodeResult",
    "NodeShape",
    "NodeSpec",
    "NodeType",
    "Suspension",
    "TriggerNode",
    "ValidationResult",
    "compile_flow",
    "get_node_type",
    "register_node_type",
    "validate",
    "validate_graph",
]
