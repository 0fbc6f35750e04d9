"""
Execution Store - Persisted progress of every execution.

The only mutable state shared between steps is the Execution record, so every
write is a compare-and-set on status: a writer states which status it read and
loses if the record moved on meanwhile (typically to CANCELLED).

  {base_path}/executions/{execution_id}.json
"""

import asyncio
import logging
from collections.abc import Iterable
from pathlib import Path

from chatflow.schemas.execution import Execution, ExecutionStatus, utc_now
from chatflow.utils.io import atomic_write

logger = logging.getLogger(__name__)


class ExecutionNotFoundError(KeyError):
    """Raised when an execution id is unknown."""

    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Execution '{execution_id}' not found")


class ExecutionStore:
    """
    In-memory execution store with compare-and-set writes.

    Records are copied on the way in and out so callers never share an
    instance with the store.
    """

    def __init__(self):
        self._executions: dict[str, Execution] = {}
        self._lock = asyncio.Lock()

    async def create(self, execution: Execution) -> Execution:
        """Insert a new execution. Raises ValueError if the id is taken."""
        async with self._lock:
            await self._ensure_loaded()
            if execution.id in self._executions:
                raise ValueError(f"Execution '{execution.id}' already exists")
            stored = execution.model_copy(deep=True)
            self._executions[stored.id] = stored
            await self._persist(stored)
        logger.debug(f"Created execution {execution.id} for contact {execution.contact_id}")
        return stored.model_copy(deep=True)

    async def get(self, execution_id: str) -> Execution:
        """Return a copy of the execution, raising ExecutionNotFoundError if unknown."""
        execution = await self.find(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        return execution

    async def find(self, execution_id: str) -> Execution | None:
        async with self._lock:
            await self._ensure_loaded()
            execution = self._executions.get(execution_id)
            return execution.model_copy(deep=True) if execution else None

    async def compare_and_set(
        self,
        execution: Execution,
        expected: ExecutionStatus | Iterable[ExecutionStatus],
    ) -> bool:
        """
        Replace the stored record only if its status is still ``expected``.

        Returns:
            True if the write was applied, False if the record moved on
        """
        allowed = {expected} if isinstance(expected, ExecutionStatus) else set(expected)

        async with self._lock:
            await self._ensure_loaded()
            current = self._executions.get(execution.id)
            if current is None:
                raise ExecutionNotFoundError(execution.id)
            if current.status not in allowed:
                logger.debug(
                    f"CAS rejected for {execution.id}: status is {current.status}, "
                    f"expected {sorted(allowed)}"
                )
                return False

            stored = execution.model_copy(deep=True, update={"updated_at": utc_now()})
            self._executions[stored.id] = stored
            await self._persist(stored)
            return True

    async def update_if(
        self,
        execution_id: str,
        expected: Iterable[ExecutionStatus],
        **changes,
    ) -> Execution | None:
        """
        Apply field changes to the stored record if its status is in ``expected``.

        Unlike compare_and_set this never writes back a stale copy, so a
        concurrent writer's progress is kept. Returns the updated record, or
        None if the status did not match.
        """
        allowed = set(expected)
        async with self._lock:
            await self._ensure_loaded()
            current = self._executions.get(execution_id)
            if current is None:
                raise ExecutionNotFoundError(execution_id)
            if current.status not in allowed:
                return None
            stored = current.model_copy(deep=True, update={**changes, "updated_at": utc_now()})
            self._executions[execution_id] = stored
            await self._persist(stored)
            return stored.model_copy(deep=True)

    async def list_by_contact(
        self,
        contact_id: str,
        statuses: Iterable[ExecutionStatus] | None = None,
    ) -> list[Execution]:
        """List a contact's executions, oldest first, optionally filtered by status."""
        wanted = set(statuses) if statuses is not None else None
        async with self._lock:
            await self._ensure_loaded()
            matches = [
                e.model_copy(deep=True)
                for e in self._executions.values()
                if e.contact_id == contact_id and (wanted is None or e.status in wanted)
            ]
        matches.sort(key=lambda e: e.created_at)
        return matches

    async def list_waiting(self) -> list[Execution]:
        """All WAITING executions (used to re-arm timers after a restart)."""
        async with self._lock:
            await self._ensure_loaded()
            return [
                e.model_copy(deep=True)
                for e in self._executions.values()
                if e.status == ExecutionStatus.WAITING
            ]

    # Persistence hooks, no-ops in memory

    async def _ensure_loaded(self) -> None:
        return None

    async def _persist(self, execution: Execution) -> None:
        return None


class FileExecutionStore(ExecutionStore):
    """
    Write-through execution store backed by one JSON file per execution.

    The memory map stays authoritative for compare-and-set; every accepted
    write is flushed with an atomic temp-file rename before the lock is
    released.
    """

    def __init__(self, base_path: Path):
        super().__init__()
        self.base_path = Path(base_path)
        self.executions_dir = self.base_path / "executions"
        self._loaded = False

    def get_execution_path(self, execution_id: str) -> Path:
        return self.executions_dir / f"{execution_id}.json"

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return

        def _scan() -> list[Execution]:
            executions = []
            if not self.executions_dir.exists():
                return executions
            for path in self.executions_dir.glob("*.json"):
                try:
                    executions.append(Execution.model_validate_json(path.read_text()))
                except (OSError, ValueError) as e:
                    logger.warning(f"Failed to load {path}: {e}")
            return executions

        for execution in await asyncio.to_thread(_scan):
            self._executions[execution.id] = execution
        self._loaded = True
        logger.debug(f"Loaded {len(self._executions)} execution(s) from {self.executions_dir}")

    async def _persist(self, execution: Execution) -> None:
        def _write():
            path = self.get_execution_path(execution.id)
            path.parent.mkdir(parents=True, exist_ok=True)
            with atomic_write(path) as f:
                f.write(execution.model_dump_json(indent=2))

        await asyncio.to_thread(_write)
