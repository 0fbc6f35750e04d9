"""Shared chatflow configuration.

Reads ~/.chatflow/configuration.json once per call, with CHATFLOW_* environment
variables taking precedence, so the CLI, the inbound server and embedding
services agree on one set of settings.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

CHATFLOW_CONFIG_FILE = Path.home() / ".chatflow" / "configuration.json"

DEFAULT_OPTOUT_TAG = "optout"
DEFAULT_WEBHOOK_TIMEOUT = 30.0


def get_chatflow_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration from ~/.chatflow/configuration.json (empty dict if absent)."""
    config_file = path or CHATFLOW_CONFIG_FILE
    if not config_file.exists():
        return {}
    try:
        with open(config_file, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


def _env_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


# ---------------------------------------------------------------------------
# RuntimeConfig
# ---------------------------------------------------------------------------


@dataclass
class RuntimeConfig:
    """Flow runtime configuration."""

    storage_path: Path | None = None  # None keeps executions and flows in memory
    timezone: str = "UTC"  # Used by condition_time / condition_day
    allow_fan_out: bool = False
    optout_tag: str = DEFAULT_OPTOUT_TAG
    webhook_timeout: float = DEFAULT_WEBHOOK_TIMEOUT
    inbound_host: str = "127.0.0.1"
    inbound_port: int = 8080
    inbound_secret: str | None = None
    log_level: str = "INFO"
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def load(cls, path: Path | None = None) -> "RuntimeConfig":
        """Build a config from the configuration file plus environment overrides."""
        data = get_chatflow_config(path)
        runtime = data.get("runtime", {})
        inbound = data.get("inbound", {})

        config = cls(
            storage_path=Path(runtime["storage_path"]).expanduser()
            if runtime.get("storage_path")
            else None,
            timezone=runtime.get("timezone", "UTC"),
            allow_fan_out=bool(runtime.get("allow_fan_out", False)),
            optout_tag=runtime.get("optout_tag", DEFAULT_OPTOUT_TAG),
            webhook_timeout=float(runtime.get("webhook_timeout", DEFAULT_WEBHOOK_TIMEOUT)),
            inbound_host=inbound.get("host", "127.0.0.1"),
            inbound_port=int(inbound.get("port", 8080)),
            inbound_secret=inbound.get("secret"),
            log_level=data.get("log_level", "INFO"),
            extra={k: v for k, v in data.items() if k not in {"runtime", "inbound", "log_level"}},
        )
        config.apply_env(os.environ)
        return config

    def apply_env(self, env: dict[str, str] | Any) -> None:
        """Apply CHATFLOW_* overrides from a mapping of environment variables."""
        if env.get("CHATFLOW_STORAGE_PATH"):
            self.storage_path = Path(env["CHATFLOW_STORAGE_PATH"]).expanduser()
        if env.get("CHATFLOW_TIMEZONE"):
            self.timezone = env["CHATFLOW_TIMEZONE"]
        if env.get("CHATFLOW_ALLOW_FAN_OUT"):
            self.allow_fan_out = _env_bool(env["CHATFLOW_ALLOW_FAN_OUT"])
        if env.get("CHATFLOW_WEBHOOK_TIMEOUT"):
            self.webhook_timeout = float(env["CHATFLOW_WEBHOOK_TIMEOUT"])
        if env.get("CHATFLOW_INBOUND_PORT"):
            self.inbound_port = int(env["CHATFLOW_INBOUND_PORT"])
        if env.get("CHATFLOW_INBOUND_SECRET"):
            self.inbound_secret = env["CHATFLOW_INBOUND_SECRET"]
        if env.get("CHATFLOW_LOG_LEVEL"):
            self.log_level = env["CHATFLOW_LOG_LEVEL"]
