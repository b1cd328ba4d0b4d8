"""Location schemas."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict


class LocationInput(BaseModel):
    description: str
    country: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class LocationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    description: str
    country: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
