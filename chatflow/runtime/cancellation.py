"""
Cancellation Service - halt every live execution of a contact.

Cancellation is a status flag, never a delete. It does not take the contact
lock: a step already applying a side effect finishes it, but its transition
is rejected by the store's compare-and-set, so at most one extra side effect
can happen and a cancelled execution is never resurrected.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from chatflow.config import DEFAULT_OPTOUT_TAG
from chatflow.runtime.event_bus import EventBus, FlowEventType
from chatflow.runtime.interfaces import ContactStore, Scheduler
from chatflow.schemas.execution import LIVE_STATUSES, ExecutionStatus, utc_now
from chatflow.storage.execution_store import ExecutionStore

logger = logging.getLogger(__name__)


@dataclass
class CancelResult:
    """Outcome of cancelling a contact's executions."""

    cancelled_count: int = 0
    execution_ids: list[str] = field(default_factory=list)
    opt_out_recorded: bool = False


class CancellationService:
    def __init__(
        self,
        execution_store: ExecutionStore,
        contact_store: ContactStore,
        scheduler: Scheduler | None = None,
        event_bus: EventBus | None = None,
        optout_tag: str = DEFAULT_OPTOUT_TAG,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.execution_store = execution_store
        self.contact_store = contact_store
        self.scheduler = scheduler
        self.event_bus = event_bus
        self.optout_tag = optout_tag
        self._clock = clock

    async def cancel_all(self, contact_id: str, record_opt_out: bool = True) -> CancelResult:
        """
        Cancel every RUNNING or WAITING execution of a contact.

        Args:
            contact_id: Contact whose executions are halted
            record_opt_out: Also mark the contact as opted out so no new
                execution starts for it

        Returns:
            CancelResult with the executions actually moved to CANCELLED
        """
        result = CancelResult()

        for execution in await self.execution_store.list_by_contact(contact_id, LIVE_STATUSES):
            cancelled = await self.execution_store.update_if(
                execution.id,
                LIVE_STATUSES,
                status=ExecutionStatus.CANCELLED,
                completed_at=self._clock(),
                resume_at=None,
            )
            if cancelled is None:
                # Finished or cancelled by someone else in the meantime
                continue

            if self.scheduler is not None:
                self.scheduler.cancel(execution.id)

            result.cancelled_count += 1
            result.execution_ids.append(execution.id)
            if self.event_bus is not None:
                await self.event_bus.emit_execution_event(
                    FlowEventType.EXECUTION_CANCELLED,
                    cancelled,
                    node_id=cancelled.current_node_id,
                )

        if record_opt_out:
            await self.contact_store.mark_opted_out(contact_id, self.optout_tag)
            result.opt_out_recorded = True

        logger.info(
            f"Cancelled {result.cancelled_count} execution(s) for contact {contact_id}",
            extra={"event": "contact_cancelled"},
        )
        return result
