"""Pydantic schemas for the users API."""

import re
from datetime import datetime
from typing import Self
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator, model_validator

_WHITESPACE = re.compile(r"\s+")


class UserProfileResponse(BaseModel):
    """Profile of the authenticated user."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    external_id: str | None
    email: str
    display_name: str
    avatar_url: str | None
    email_verified: bool
    created_at: datetime
    updated_at: datetime
    last_login_at: datetime | None


class UserProfileUpdate(BaseModel):
    """
    Partial profile update.

    An empty ``avatar_url`` clears the avatar, as does an explicit null.
    """

    model_config = ConfigDict(extra="forbid")

    display_name: str | None = Field(default=None, min_length=1, max_length=120)
    avatar_url: HttpUrl | None = None

    @field_validator("display_name", mode="before")
    @classmethod
    def _collapse_whitespace(cls, value: object) -> object:
        if isinstance(value, str):
            return _WHITESPACE.sub(" ", value.strip())
        return value

    @field_validator("avatar_url", mode="before")
    @classmethod
    def _blank_avatar_is_null(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _require_a_field(self) -> Self:
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        if "display_name" in self.model_fields_set and self.display_name is None:
            raise ValueError("display_name cannot be null")
        return self
