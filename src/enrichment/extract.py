"""Defensive extraction of contact values from enrichment poll payloads.

Providers are not consistent about where a person record lives or which key
holds an email or phone number, so every lookup tries a fixed list of
candidates and takes the first non-empty one.
"""

from typing import Any

from pydantic import BaseModel, Field

COMPLETED = "COMPLETED"

EMAIL_FIELDS = ("email", "value", "emailAddress")
PHONE_FIELDS = ("number", "phoneNumber", "phone", "mobilePhone", "value")


class PollSnapshot(BaseModel):
    """What one successful poll response tells us."""

    emails: list[str] = Field(default_factory=list)
    phones: list[str] = Field(default_factory=list)
    status: str | None = None

    @property
    def completed(self) -> bool:
        return self.status == COMPLETED


def first_value(entry: Any, fields: tuple[str, ...]) -> str | None:
    """A bare string, or the first non-empty string among ``fields`` of a dict."""
    if isinstance(entry, str):
        return entry or None
    if isinstance(entry, dict):
        for field in fields:
            value = entry.get(field)
            if isinstance(value, str) and value:
                return value
    return None


def extract_values(entries: Any, fields: tuple[str, ...]) -> list[str]:
    if not isinstance(entries, list):
        return []
    values = (first_value(entry, fields) for entry in entries)
    return [v for v in values if v]


def person_record(payload: dict[str, Any]) -> dict[str, Any]:
    for key in ("people", "results"):
        items = payload.get(key)
        if isinstance(items, list) and items and isinstance(items[0], dict):
            return items[0]
    person = payload.get("person")
    return person if isinstance(person, dict) else {}


def parse_poll_payload(payload: Any) -> PollSnapshot:
    if not isinstance(payload, dict):
        return PollSnapshot()
    person = person_record(payload)
    status = person.get("status") or payload.get("status")
    return PollSnapshot(
        emails=extract_values(person.get("emails"), EMAIL_FIELDS),
        phones=extract_values(person.get("mobilePhones"), PHONE_FIELDS),
        status=status if isinstance(status, str) else None,
    )
