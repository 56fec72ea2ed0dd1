"""
AviSafe Geo — shared geodetic helpers (bounding boxes, haversine, sun position).
"""

from .geometry import (
    BoundingBox,
    RoutePoint,
    bounding_box,
    haversine_km,
    is_dark,
    max_distance_from_km,
    parse_route,
    route_length_km,
    solar_elevation_deg,
)

__all__ = [
    "BoundingBox",
    "RoutePoint",
    "bounding_box",
    "haversine_km",
    "is_dark",
    "max_distance_from_km",
    "parse_route",
    "route_length_km",
    "solar_elevation_deg",
]
