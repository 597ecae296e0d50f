"""Request and response schemas for the identify API.

Fields are snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from contact_identity.resolution import ContactView


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class IdentifyRequest(_CamelModel):
    """Body of POST /api/v1/identify. Both fields optional; at least one is required."""

    email: str | None = None
    phone_number: str | None = None

    @field_validator("phone_number", mode="before")
    @classmethod
    def _phone_number_as_text(cls, value: Any) -> Any:
        # Clients commonly send phone numbers as JSON numbers
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class ContactPayload(_CamelModel):
    """Consolidated contact as returned to callers."""

    primary_contact_id: int
    emails: list[str] = Field(default_factory=list)
    phone_numbers: list[str] = Field(default_factory=list)
    secondary_contact_ids: list[int] = Field(default_factory=list)

    @classmethod
    def from_view(cls, view: ContactView) -> ContactPayload:
        return cls(
            primary_contact_id=view.primary_contact_id,
            emails=list(view.emails),
            phone_numbers=list(view.phone_numbers),
            secondary_contact_ids=list(view.secondary_contact_ids),
        )


class IdentifyResponse(BaseModel):
    contact: ContactPayload


class ErrorDetail(BaseModel):
    message: str
    status: int


class ErrorResponse(BaseModel):
    error: ErrorDetail
