"""Shared Pydantic types for API and WebSocket payloads."""
from __future__ import annotations

from datetime import datetime
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict

from huddle.db.time import as_utc

# SQLite hands back naive datetimes; every timestamp leaves the service as UTC.
UTCDatetime = Annotated[datetime, AfterValidator(as_utc)]


class CamelModel(BaseModel):
    """Base for client payloads that use camelCase keys on the wire."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)
