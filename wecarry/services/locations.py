"""
Location validation, great-circle distance and the "is near" predicate.
"""

from __future__ import annotations

import math
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from wecarry.core.errors import ValidationFailed
from wecarry.models.location import Location
from wecarry.schemas.locations import LocationInput

EARTH_RADIUS_KM = 6371.0
DEFAULT_PROXIMITY_DISTANCE_KM = 100.0


def validate_location(location: Location | LocationInput) -> None:
    """Raise ValidationFailed unless the location is well formed."""
    errors: dict[str, str] = {}

    if not (location.description or "").strip():
        errors["description"] = "description must not be blank"

    country = location.country or ""
    if country and (len(country) != 2 or not country.isalpha()):
        errors["country"] = f"country must be an ISO 3166-1 alpha-2 code, got '{country}'"

    lat, lon = location.latitude, location.longitude
    if (lat is None) != (lon is None):
        errors["coordinates"] = "latitude and longitude must both be present or both be absent"
    elif lat is not None:
        if not -90.0 <= lat <= 90.0:
            errors["latitude"] = f"latitude out of range: {lat}"
        if not -180.0 <= lon <= 180.0:
            errors["longitude"] = f"longitude out of range: {lon}"
        if lat == 0.0 and lon == 0.0:
            errors["coordinates"] = "0,0 is not a valid location"

    if errors:
        raise ValidationFailed("invalid location", details=errors)


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Spherical law of cosines distance between two points."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    delta_lambda = math.radians(lon2 - lon1)
    cos_angle = (
        math.sin(phi1) * math.sin(phi2)
        + math.cos(phi1) * math.cos(phi2) * math.cos(delta_lambda)
    )
    # rounding can push identical points just past 1.0
    cos_angle = max(-1.0, min(1.0, cos_angle))
    return EARTH_RADIUS_KM * math.acos(cos_angle)


def location_distance(a: Location, b: Location) -> Optional[float]:
    if a.latitude is None or a.longitude is None or b.latitude is None or b.longitude is None:
        return None
    return distance_km(a.latitude, a.longitude, b.latitude, b.longitude)


def is_near(
    a: Optional[Location],
    b: Optional[Location],
    max_km: float = DEFAULT_PROXIMITY_DISTANCE_KM,
) -> bool:
    """True when both locations are within ``max_km`` of each other.

    Countries must agree unless one of them is unknown. Locations without
    coordinates are never near anything.
    """
    if a is None or b is None:
        return False

    distance = location_distance(a, b)
    if distance is None or distance >= max_km:
        return False

    if not a.country or not b.country:
        return True
    return a.country.upper() == b.country.upper()


def to_location(data: LocationInput) -> Location:
    return Location(
        description=data.description,
        country=(data.country or "").upper(),
        latitude=data.latitude,
        longitude=data.longitude,
    )


async def create_location(session: AsyncSession, data: LocationInput) -> Location:
    location = to_location(data)
    validate_location(location)
    session.add(location)
    await session.flush()
    return location


async def update_location(session: AsyncSession, location: Location, data: LocationInput) -> Location:
    location.description = data.description
    location.country = (data.country or "").upper()
    location.latitude = data.latitude
    location.longitude = data.longitude
    validate_location(location)
    session.add(location)
    await session.flush()
    return location


async def get_location(session: AsyncSession, location_id: Optional[int]) -> Optional[Location]:
    if location_id is None:
        return None
    return await session.get(Location, location_id)
