"""
Executable Flow - The compiled, immutable IR the runtime steps through.

Produced only by the compiler. The JSON document keeps the camelCase keys
stored per active flow version (startNodeId, nextOnTrue, nextOnFalse,
nextByButton); Python code uses the snake_case attribute names.
"""

from typing import Any

from pydantic import BaseModel, Field

_IR_CONFIG = {"frozen": True, "populate_by_name": True}


class TriggerSpec(BaseModel):
    """The flow's entry trigger (type + config)."""

    type: str
    config: dict[str, Any] = Field(default_factory=dict)

    model_config = _IR_CONFIG


class CompiledNode(BaseModel):
    """A node with its outgoing edges resolved to target ids."""

    id: str
    type: str
    config: dict[str, Any] = Field(default_factory=dict)
    next: str | None = None
    next_on_true: str | None = Field(default=None, alias="nextOnTrue")
    next_on_false: str | None = Field(default=None, alias="nextOnFalse")
    next_by_button: dict[str, str] | None = Field(default=None, alias="nextByButton")

    model_config = _IR_CONFIG

    def resolve(self, branch: str | None) -> str | None:
        """
        Resolve the successor for a branch label.

        None selects ``next``. A button node (one with ``next_by_button``) looks
        every label up in its handle map, so outputs named "true" or "false"
        stay button handles. Otherwise "true"/"false" select the binary
        pointers. Unwired branches give None.
        """
        if branch is None:
            return self.next
        if self.next_by_button is not None:
            return self.next_by_button.get(branch)
        if branch == "true":
            return self.next_on_true
        if branch == "false":
            return self.next_on_false
        return None


class ExecutableFlow(BaseModel):
    """Flattened flow: trigger, start pointer and node map."""

    id: str
    name: str
    version: int = 1
    trigger: TriggerSpec
    start_node_id: str | None = Field(default=None, alias="startNodeId")
    nodes: dict[str, CompiledNode] = Field(default_factory=dict)

    model_config = _IR_CONFIG

    def get_node(self, node_id: str) -> CompiledNode | None:
        return self.nodes.get(node_id)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)
