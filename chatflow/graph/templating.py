"""Contact variable substitution for message text and webhook payloads."""

import re
from typing import Any

from chatflow.schemas.contact import ContactSnapshot

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z0-9_]+)\s*\}\}")


def _builtin_values(contact: ContactSnapshot) -> dict[str, str]:
    return {
        "name": contact.name,
        "nome": contact.name,
        "first_name": contact.first_name,
        "primeiro_nome": contact.first_name,
        "phone": contact.phone_number,
        "telefone": contact.phone_number,
        "email": contact.email or "",
    }


def render_text(text: str | None, contact: ContactSnapshot) -> str:
    """
    Replace ``{{placeholders}}`` with contact values.

    Built-in names win over custom fields; names are matched case-insensitively.
    Unknown placeholders are left untouched.
    """
    if not text:
        return ""

    values = {k.lower(): "" if v is None else str(v) for k, v in contact.custom_fields.items()}
    values.update(_builtin_values(contact))

    def _replace(match: re.Match) -> str:
        key = match.group(1).lower()
        if key in values:
            return values[key]
        return match.group(0)

    return _PLACEHOLDER.sub(_replace, text)


def render_value(value: Any, contact: ContactSnapshot) -> Any:
    """Render strings nested anywhere inside dicts and lists."""
    if isinstance(value, str):
        return render_text(value, contact)
    if isinstance(value, dict):
        return {k: render_value(v, contact) for k, v in value.items()}
    if isinstance(value, list):
        return [render_value(v, contact) for v in value]
    return value
