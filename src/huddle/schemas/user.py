# src/huddle/schemas/user.py
"""User-related Pydantic schemas."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .common import CamelModel, UTCDatetime


class UserPublic(BaseModel):
    """Public profile and presence of a user."""

    id: int
    username: str
    display_name: str
    avatar_url: str | None = None
    status: str
    last_seen: UTCDatetime | None = None

    model_config = ConfigDict(from_attributes=True)


class UserUpdate(CamelModel):
    """Partial profile update; ``offline`` is derived from connections only."""

    display_name: str | None = Field(
        default=None, alias="displayName", min_length=1, max_length=100
    )
    avatar_url: str | None = Field(default=None, alias="avatarUrl", max_length=2048)
    status: Literal["online", "away"] | None = None
