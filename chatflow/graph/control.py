"""Control nodes - time-based suspension."""

from datetime import timedelta
from typing import Literal

from pydantic import Field

from chatflow.graph.node import (
    NodeConfig,
    NodeContext,
    NodeResult,
    NodeType,
    Suspension,
    register_node_type,
)
from chatflow.schemas.execution import WaitKind


class DelayConfig(NodeConfig):
    amount: float = Field(default=0)
    unit: Literal["seconds", "minutes", "hours", "days"] | None = None

    def as_timedelta(self) -> timedelta:
        return timedelta(**{self.unit: self.amount})


@register_node_type
class DelayAction(NodeType):
    """
    Suspend the execution for ``amount`` ``unit``s.

    Arriving at the node parks the execution with ``resume_at`` set; only a
    scheduler wake-up at or after that instant moves it along ``next``.
    """

    type_name = "action_delay"
    config_model = DelayConfig
    kind_label = "Delay"

    def config_errors(self, config: DelayConfig, label: str) -> list[str]:
        errors = []
        if config.amount <= 0:
            errors.append(f'Delay "{label}" needs a positive amount')
        if config.unit is None:
            errors.append(f'Delay "{label}" needs a unit')
        return errors

    async def execute(self, config: DelayConfig, ctx: NodeContext) -> NodeResult:
        resume_at = ctx.now + config.as_timedelta()
        return NodeResult(
            suspend=Suspension(kind=WaitKind.DELAY, resume_at=resume_at),
            output={"resume_at": resume_at.isoformat()},
        )

    def resume(self, config: DelayConfig, ctx: NodeContext) -> NodeResult | None:
        if ctx.event is not None:
            return None
        resume_at = ctx.execution.resume_at
        if resume_at is not None and ctx.now < resume_at:
            return None
        return NodeResult()
