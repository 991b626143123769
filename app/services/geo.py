"""
Great-circle distance shared by duplicate detection and authority assignment.

All distances in this service are in METERS. Callers that think in
kilometers convert at their own boundary.
"""

import math

from app.core.exceptions import ValidationError

EARTH_RADIUS_METERS = 6371000  # Earth mean radius


def validate_coordinates(latitude: float, longitude: float) -> None:
    """Raise ValidationError unless the pair is a finite, in-range lat/lon."""
    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError):
        raise ValidationError(f"Coordinates must be numbers, got ({latitude!r}, {longitude!r})")

    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise ValidationError(f"Coordinates must be finite, got ({lat}, {lon})")
    if not -90 <= lat <= 90:
        raise ValidationError(f"Latitude {lat} is outside [-90, 90]")
    if not -180 <= lon <= 180:
        raise ValidationError(f"Longitude {lon} is outside [-180, 180]")


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance between two points in meters using Haversine formula."""
    validate_coordinates(lat1, lon1)
    validate_coordinates(lat2, lon2)

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    # Rounding can push a a hair outside [0, 1] near antipodes
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c
