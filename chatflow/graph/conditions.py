"""
Condition nodes - branching on the contact snapshot, the clock or a click.

Binary conditions pick the "true" or "false" handle. ``condition_button``
is the dynamic-branch variant: it suspends until a button click and then
picks the handle of the matching configured branch.
"""

import re
from datetime import datetime
from typing import Any, Literal
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field

from chatflow.graph.node import (
    NodeConfig,
    NodeContext,
    NodeResult,
    NodeShape,
    NodeType,
    Suspension,
    register_node_type,
)
from chatflow.schemas.execution import WaitKind

_HHMM = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")

# Outputs that catch any click no configured branch matched
FALLBACK_OUTPUTS = ("default", "else")


class BinaryCondition(NodeType):
    shape = NodeShape.BINARY
    kind_label = "Condition"

    def evaluate(self, config: Any, ctx: NodeContext) -> bool:
        raise NotImplementedError

    async def execute(self, config: Any, ctx: NodeContext) -> NodeResult:
        outcome = self.evaluate(config, ctx)
        return NodeResult(branch="true" if outcome else "false", output={"result": outcome})


# ---------------------------------------------------------------------------
# Contact-based
# ---------------------------------------------------------------------------


class TagConditionConfig(NodeConfig):
    tag: str = ""
    has_tag: bool = True


@register_node_type
class TagCondition(BinaryCondition):
    """True when the contact has (or, with ``hasTag: false``, lacks) the tag."""

    type_name = "condition_tag"
    config_model = TagConditionConfig

    def config_errors(self, config: TagConditionConfig, label: str) -> list[str]:
        if not config.tag.strip():
            return [f'Condition "{label}" needs a tag']
        return []

    def evaluate(self, config: TagConditionConfig, ctx: NodeContext) -> bool:
        return ctx.contact.has_tag(config.tag) == config.has_tag


class FieldConditionConfig(NodeConfig):
    field: str = ""
    operator: Literal["equals", "not_equals", "contains", "empty", "not_empty"] = "equals"
    value: Any = None


def _as_text(value: Any) -> str:
    return "" if value is None else str(value).strip().lower()


@register_node_type
class FieldCondition(BinaryCondition):
    """Compare a contact attribute or custom field. String comparisons ignore case."""

    type_name = "condition_field"
    config_model = FieldConditionConfig

    def config_errors(self, config: FieldConditionConfig, label: str) -> list[str]:
        if not config.field.strip():
            return [f'Condition "{label}" needs a field name']
        return []

    def evaluate(self, config: FieldConditionConfig, ctx: NodeContext) -> bool:
        actual = _as_text(ctx.contact.get_field(config.field))
        expected = _as_text(config.value)

        match config.operator:
            case "equals":
                return actual == expected
            case "not_equals":
                return actual != expected
            case "contains":
                return expected in actual
            case "empty":
                return actual == ""
            case "not_empty":
                return actual != ""
        return False


# ---------------------------------------------------------------------------
# Clock-based
# ---------------------------------------------------------------------------


class TimeRange(BaseModel):
    start: str = ""
    end: str = ""


class TimeConditionConfig(NodeConfig):
    time_range: TimeRange = Field(default_factory=TimeRange)


def _minutes(hhmm: str) -> int:
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)


def _local(now: datetime, timezone: str) -> datetime:
    return now.astimezone(ZoneInfo(timezone))


@register_node_type
class TimeCondition(BinaryCondition):
    """
    True inside ``timeRange`` (inclusive, local time).

    A range whose end precedes its start wraps past midnight, so
    22:00-06:00 covers the night.
    """

    type_name = "condition_time"
    config_model = TimeConditionConfig

    def config_errors(self, config: TimeConditionConfig, label: str) -> list[str]:
        bounds = (config.time_range.start, config.time_range.end)
        if not all(_HHMM.match(b) for b in bounds):
            return [f'Condition "{label}" needs a time range in HH:MM format']
        return []

    def evaluate(self, config: TimeConditionConfig, ctx: NodeContext) -> bool:
        local = _local(ctx.now, ctx.timezone)
        current = local.hour * 60 + local.minute
        start = _minutes(config.time_range.start)
        end = _minutes(config.time_range.end)
        if start <= end:
            return start <= current <= end
        return current >= start or current <= end


class DayConditionConfig(NodeConfig):
    days: list[int] = Field(default_factory=list)


@register_node_type
class DayCondition(BinaryCondition):
    """True on the listed weekdays, 0 = Sunday through 6 = Saturday."""

    type_name = "condition_day"
    config_model = DayConditionConfig

    def config_errors(self, config: DayConditionConfig, label: str) -> list[str]:
        if not config.days:
            return [f'Condition "{label}" needs at least one day']
        if any(day < 0 or day > 6 for day in config.days):
            return [f'Condition "{label}" has days outside 0-6']
        return []

    def evaluate(self, config: DayConditionConfig, ctx: NodeContext) -> bool:
        local = _local(ctx.now, ctx.timezone)
        # Python counts Monday as 0
        day = (local.weekday() + 1) % 7
        return day in config.days


# ---------------------------------------------------------------------------
# Button wait
# ---------------------------------------------------------------------------


class ButtonBranch(BaseModel):
    button_text: str = Field(default="", alias="buttonText")
    output: str

    model_config = {"populate_by_name": True}


class ButtonConditionConfig(NodeConfig):
    conditions: list[ButtonBranch] = Field(default_factory=list)


@register_node_type
class ButtonCondition(NodeType):
    """
    Wait for a button click and branch on it.

    Each configured branch exposes its ``output`` as a handle. A click is
    matched by handle first, then by button text, then by a "default"/"else"
    branch; anything else keeps the execution waiting.
    """

    type_name = "condition_button"
    shape = NodeShape.BY_HANDLE
    config_model = ButtonConditionConfig
    kind_label = "Condition"

    def config_errors(self, config: ButtonConditionConfig, label: str) -> list[str]:
        if not config.conditions:
            return [f'Condition "{label}" needs at least one button branch']
        return []

    def branch_handles(self, config: ButtonConditionConfig) -> list[str]:
        return [branch.output for branch in config.conditions]

    async def execute(self, config: ButtonConditionConfig, ctx: NodeContext) -> NodeResult:
        return NodeResult(suspend=Suspension(kind=WaitKind.BUTTON))

    def resolve_click(
        self, config: ButtonConditionConfig, by_handle: dict[str, str], button_id: str | None, text: str
    ) -> str | None:
        if button_id and button_id in by_handle:
            return button_id

        clicked = text.strip().lower()
        if clicked:
            for branch in config.conditions:
                expected = branch.button_text.strip().lower()
                if expected and expected in clicked and branch.output in by_handle:
                    return branch.output

        for fallback in FALLBACK_OUTPUTS:
            if fallback in by_handle:
                return fallback
        return None

    def resume(self, config: ButtonConditionConfig, ctx: NodeContext) -> NodeResult | None:
        event = ctx.event
        if event is None or not event.is_button_click:
            return None
        handle = self.resolve_click(
            config, ctx.node.next_by_button or {}, event.button_id, event.button_text
        )
        if handle is None:
            return None
        return NodeResult(branch=handle, output={"button": handle})
