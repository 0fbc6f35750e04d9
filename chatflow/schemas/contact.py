"""
Contact Snapshot - Read-only view of a contact handed to node handlers.

Handlers never mutate contacts directly; writes go through the ContactStore.
A fresh snapshot is taken before every node so a tag added by one node is
visible to the condition that follows it.
"""

from typing import Any

from pydantic import BaseModel, Field

# Attributes that condition_field resolves on the contact itself before
# falling back to custom fields
CONTACT_ATTRIBUTES = ("name", "email", "phone_number")


class ContactSnapshot(BaseModel):
    """Immutable contact state at the moment a node runs."""

    id: str
    name: str = ""
    phone_number: str = ""
    email: str | None = None
    tags: tuple[str, ...] = ()
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    opted_in: bool = True
    opted_out: bool = False

    model_config = {"frozen": True, "extra": "allow"}

    @property
    def first_name(self) -> str:
        parts = self.name.split()
        return parts[0] if parts else ""

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags

    def get_field(self, field_name: str) -> Any | None:
        """Resolve a contact attribute or custom field by name."""
        if field_name in CONTACT_ATTRIBUTES:
            return getattr(self, field_name)
        return self.custom_fields.get(field_name)
