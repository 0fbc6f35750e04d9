"""
Collaborator interfaces consumed by the runtime.

The core never talks to a database, a messaging API or an HTTP endpoint
directly; it goes through these protocols. In-memory and HTTP
implementations live in ``chatflow.adapters``.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from chatflow.schemas.contact import ContactSnapshot


@dataclass
class SendResult:
    """Outcome reported by a MessageSender."""

    success: bool
    message_id: str | None = None
    error: str | None = None


@dataclass
class WebhookResult:
    """Outcome reported by a WebhookInvoker."""

    success: bool
    status_code: int | None = None
    error: str | None = None
    body: Any = None


@runtime_checkable
class ContactStore(Protocol):
    """Reads contact snapshots and records tag/field/opt-out writes."""

    async def get_contact(self, contact_id: str) -> ContactSnapshot | None: ...

    async def add_tag(self, contact_id: str, tag: str) -> None: ...

    async def remove_tag(self, contact_id: str, tag: str) -> None: ...

    async def set_field(self, contact_id: str, field: str, value: Any) -> None: ...

    async def mark_opted_out(self, contact_id: str, tag: str) -> None: ...


@runtime_checkable
class MessageSender(Protocol):
    """
    Sends outbound chat messages.

    Delivery is at-least-once from the runtime's point of view: the same
    ``idempotency_key`` may be presented more than once and must not produce
    a second message.
    """

    async def send_text(
        self, contact: ContactSnapshot, text: str, *, idempotency_key: str
    ) -> SendResult: ...

    async def send_template(
        self,
        contact: ContactSnapshot,
        template: str,
        language: str,
        variables: list[str],
        *,
        idempotency_key: str,
    ) -> SendResult: ...

    async def send_media(
        self,
        contact: ContactSnapshot,
        url: str,
        media_type: str,
        caption: str,
        *,
        idempotency_key: str,
    ) -> SendResult: ...

    async def send_buttons(
        self,
        contact: ContactSnapshot,
        body: str,
        buttons: list[dict[str, str]],
        *,
        idempotency_key: str,
    ) -> SendResult: ...


@runtime_checkable
class WebhookInvoker(Protocol):
    """Fires the HTTP call behind action_webhook nodes."""

    async def invoke(
        self,
        url: str,
        *,
        method: str = "POST",
        headers: dict[str, str] | None = None,
        payload: Any = None,
        idempotency_key: str = "",
    ) -> WebhookResult: ...


@runtime_checkable
class Scheduler(Protocol):
    """Wakes WAITING-on-delay executions at (or after) their resume time."""

    def schedule(self, execution_id: str, resume_at: datetime) -> None: ...

    def cancel(self, execution_id: str) -> bool: ...
