"""
Flow Store - Compiled flow versions and the active-version pointer.

Every publish stores a new immutable IR version. Executions pin the version
they were created against, so old versions stay readable after republish.

  {base_path}/flows/{flow_id}/v{version}.json
  {base_path}/flows/{flow_id}/active.json     # {"version": N}
"""

import asyncio
import json
import logging
from pathlib import Path

from chatflow.schemas.executable_flow import ExecutableFlow
from chatflow.utils.io import atomic_write

logger = logging.getLogger(__name__)


class FlowNotActiveError(LookupError):
    """Raised when a flow has no active version."""

    def __init__(self, flow_id: str):
        self.flow_id = flow_id
        super().__init__(f"Flow '{flow_id}' is not active")


class FlowStore:
    """Versioned IR storage; memory only when no base path is given."""

    def __init__(self, base_path: Path | None = None):
        self.base_path = Path(base_path) if base_path else None
        self._versions: dict[str, dict[int, ExecutableFlow]] = {}
        self._active: dict[str, int] = {}
        self._lock = asyncio.Lock()
        self._loaded = self.base_path is None

    @property
    def flows_dir(self) -> Path | None:
        return self.base_path / "flows" if self.base_path else None

    async def next_version(self, flow_id: str) -> int:
        async with self._lock:
            await self._ensure_loaded()
            versions = self._versions.get(flow_id, {})
            return max(versions, default=0) + 1

    async def save(self, flow: ExecutableFlow, activate: bool = True) -> None:
        """Store an IR version and optionally make it the active one."""
        async with self._lock:
            await self._ensure_loaded()
            versions = self._versions.setdefault(flow.id, {})
            if flow.version in versions:
                raise ValueError(f"Flow '{flow.id}' v{flow.version} already exists")
            versions[flow.version] = flow
            if activate:
                self._active[flow.id] = flow.version

            if self.flows_dir is not None:
                await asyncio.to_thread(self._write_version, flow, activate)

        logger.info(f"Stored flow '{flow.id}' v{flow.version} (active={activate})")

    async def get(self, flow_id: str, version: int) -> ExecutableFlow | None:
        """Return a specific version, active or not."""
        async with self._lock:
            await self._ensure_loaded()
            return self._versions.get(flow_id, {}).get(version)

    async def get_active(self, flow_id: str) -> ExecutableFlow:
        """Return the active version, raising FlowNotActiveError otherwise."""
        async with self._lock:
            await self._ensure_loaded()
            version = self._active.get(flow_id)
            if version is None:
                raise FlowNotActiveError(flow_id)
            return self._versions[flow_id][version]

    async def active_flows(self) -> list[ExecutableFlow]:
        async with self._lock:
            await self._ensure_loaded()
            return [self._versions[fid][v] for fid, v in sorted(self._active.items())]

    async def deactivate(self, flow_id: str) -> bool:
        """Clear the active pointer. Returns True if the flow was active."""
        async with self._lock:
            await self._ensure_loaded()
            if self._active.pop(flow_id, None) is None:
                return False
            if self.flows_dir is not None:
                pointer = self.flows_dir / flow_id / "active.json"
                await asyncio.to_thread(pointer.unlink, missing_ok=True)
        logger.info(f"Deactivated flow '{flow_id}'")
        return True

    def _write_version(self, flow: ExecutableFlow, activate: bool) -> None:
        flow_dir = self.flows_dir / flow.id
        flow_dir.mkdir(parents=True, exist_ok=True)
        with atomic_write(flow_dir / f"v{flow.version}.json") as f:
            f.write(flow.to_json())
        if activate:
            with atomic_write(flow_dir / "active.json") as f:
                json.dump({"version": flow.version}, f)

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return

        def _scan() -> tuple[dict[str, dict[int, ExecutableFlow]], dict[str, int]]:
            versions: dict[str, dict[int, ExecutableFlow]] = {}
            active: dict[str, int] = {}
            if not self.flows_dir.exists():
                return versions, active
            for flow_dir in self.flows_dir.iterdir():
                if not flow_dir.is_dir():
                    continue
                for path in flow_dir.glob("v*.json"):
                    try:
                        flow = ExecutableFlow.model_validate_json(path.read_text())
                    except (OSError, ValueError) as e:
                        logger.warning(f"Failed to load {path}: {e}")
                        continue
                    versions.setdefault(flow.id, {})[flow.version] = flow
                pointer = flow_dir / "active.json"
                if pointer.exists():
                    try:
                        active[flow_dir.name] = int(json.loads(pointer.read_text())["version"])
                    except (OSError, ValueError, KeyError) as e:
                        logger.warning(f"Failed to load {pointer}: {e}")
            return versions, active

        versions, active = await asyncio.to_thread(_scan)
        self._versions.update(versions)
        self._active.update(
            {fid: v for fid, v in active.items() if v in self._versions.get(fid, {})}
        )
        self._loaded = True
