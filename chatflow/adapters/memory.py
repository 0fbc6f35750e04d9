"""
In-memory collaborators.

Useful for tests, local runs and as a reference for real adapters. The
message sender keeps every send it accepted and treats a repeated
idempotency key as already delivered.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from chatflow.runtime.interfaces import SendResult
from chatflow.schemas.contact import ContactSnapshot

logger = logging.getLogger(__name__)


class InMemoryContactStore:
    """Dict-backed contact store handing out immutable snapshots."""

    def __init__(self, contacts: list[ContactSnapshot] | None = None):
        self._contacts: dict[str, ContactSnapshot] = {c.id: c for c in contacts or []}

    def add(self, contact: ContactSnapshot) -> None:
        self._contacts[contact.id] = contact

    async def get_contact(self, contact_id: str) -> ContactSnapshot | None:
        return self._contacts.get(contact_id)

    async def add_tag(self, contact_id: str, tag: str) -> None:
        contact = self._require(contact_id)
        if tag not in contact.tags:
            self._contacts[contact_id] = contact.model_copy(update={"tags": (*contact.tags, tag)})

    async def remove_tag(self, contact_id: str, tag: str) -> None:
        contact = self._require(contact_id)
        tags = tuple(t for t in contact.tags if t != tag)
        self._contacts[contact_id] = contact.model_copy(update={"tags": tags})

    async def set_field(self, contact_id: str, field: str, value: Any) -> None:
        contact = self._require(contact_id)
        if field in ("name", "email", "phone_number"):
            self._contacts[contact_id] = contact.model_copy(update={field: value})
            return
        custom = {**contact.custom_fields, field: value}
        self._contacts[contact_id] = contact.model_copy(update={"custom_fields": custom})

    async def mark_opted_out(self, contact_id: str, tag: str) -> None:
        contact = self._contacts.get(contact_id)
        if contact is None:
            logger.warning(f"Opt-out for unknown contact {contact_id}")
            return
        tags = contact.tags if tag in contact.tags else (*contact.tags, tag)
        self._contacts[contact_id] = contact.model_copy(
            update={"tags": tags, "opted_out": True, "opted_in": False}
        )

    def _require(self, contact_id: str) -> ContactSnapshot:
        try:
            return self._contacts[contact_id]
        except KeyError:
            raise KeyError(f"Contact '{contact_id}' not found") from None


@dataclass
class SentMessage:
    """A message accepted by InMemoryMessageSender."""

    kind: str  # text, template, media, buttons
    contact_id: str
    idempotency_key: str
    content: dict[str, Any] = field(default_factory=dict)
    message_id: str = field(default_factory=lambda: f"msg_{uuid.uuid4().hex[:12]}")


class InMemoryMessageSender:
    """Records sends instead of delivering them."""

    def __init__(self):
        self.sent: list[SentMessage] = []
        self._by_key: dict[str, SentMessage] = {}

    def texts(self, contact_id: str | None = None) -> list[str]:
        """Bodies of the text messages sent, optionally for one contact."""
        return [
            m.content["text"]
            for m in self.sent
            if m.kind == "text" and (contact_id is None or m.contact_id == contact_id)
        ]

    def _record(
        self, kind: str, contact: ContactSnapshot, idempotency_key: str, **content: Any
    ) -> SendResult:
        if idempotency_key and idempotency_key in self._by_key:
            previous = self._by_key[idempotency_key]
            logger.debug(f"Duplicate send {idempotency_key} ignored")
            return SendResult(success=True, message_id=previous.message_id)

        message = SentMessage(
            kind=kind, contact_id=contact.id, idempotency_key=idempotency_key, content=content
        )
        self.sent.append(message)
        if idempotency_key:
            self._by_key[idempotency_key] = message
        return SendResult(success=True, message_id=message.message_id)

    async def send_text(
        self, contact: ContactSnapshot, text: str, *, idempotency_key: str
    ) -> SendResult:
        return self._record("text", contact, idempotency_key, text=text)

    async def send_template(
        self,
        contact: ContactSnapshot,
        template: str,
        language: str,
        variables: list[str],
        *,
        idempotency_key: str,
    ) -> SendResult:
        return self._record(
            "template",
            contact,
            idempotency_key,
            template=template,
            language=language,
            variables=list(variables),
        )

    async def send_media(
        self,
        contact: ContactSnapshot,
        url: str,
        media_type: str,
        caption: str,
        *,
        idempotency_key: str,
    ) -> SendResult:
        return self._record(
            "media", contact, idempotency_key, url=url, media_type=media_type, caption=caption
        )

    async def send_buttons(
        self,
        contact: ContactSnapshot,
        body: str,
        buttons: list[dict[str, str]],
        *,
        idempotency_key: str,
    ) -> SendResult:
        return self._record("buttons", contact, idempotency_key, body=body, buttons=list(buttons))
