"""
AviSafe Geo — Geodetic utilities
================================
Bounding boxes around a mission footprint, great-circle distances and a
solar-elevation model used for the night-flight rule.

All coordinates are WGS84 decimal degrees. Buffers are in metres and use the
flat-earth approximation (1° latitude ≈ 111 320 m) that the land-use and
population gatherers also assume when they size their queries.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence


# ── Constants ─────────────────────────────────────────────────────────────────

_R_KM             = 6371.0     # mean Earth radius, km
_METERS_PER_DEG   = 111320.0   # metres per degree of latitude
CIVIL_TWILIGHT_DEG = -6.0      # sun below this elevation ⇒ dark


@dataclass(frozen=True)
class RoutePoint:
    lat: float
    lng: float

    @classmethod
    def from_any(cls, raw) -> Optional["RoutePoint"]:
        """Accept {lat, lng}, {lat, lon}, {latitude, longitude} or a (lat, lng) pair."""
        if raw is None:
            return None
        if isinstance(raw, RoutePoint):
            return raw
        if isinstance(raw, (list, tuple)) and len(raw) >= 2:
            lat, lng = raw[0], raw[1]
        elif isinstance(raw, dict):
            lat = raw.get("lat", raw.get("latitude"))
            lng = raw.get("lng", raw.get("lon", raw.get("longitude")))
        else:
            return None
        try:
            return cls(float(lat), float(lng))
        except (TypeError, ValueError):
            return None

    def to_dict(self) -> dict:
        return {"lat": self.lat, "lng": self.lng}


@dataclass(frozen=True)
class BoundingBox:
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def as_bbox_param(self) -> str:
        """WFS / CRS:84 axis order: minLng,minLat,maxLng,maxLat."""
        return f"{self.min_lng:.6f},{self.min_lat:.6f},{self.max_lng:.6f},{self.max_lat:.6f}"

    def to_dict(self) -> dict:
        return {
            "minLat": self.min_lat,
            "maxLat": self.max_lat,
            "minLng": self.min_lng,
            "maxLng": self.max_lng,
        }


# ── Bounding box ──────────────────────────────────────────────────────────────

def bounding_box(points: Sequence[RoutePoint], buffer_m: float) -> BoundingBox:
    """
    Raw min/max of the points expanded by `buffer_m` on both axes.

    The longitude buffer is scaled by the cosine of the average latitude so the
    box stays roughly square on the ground at high latitudes.
    """
    if not points:
        raise ValueError("bounding_box requires at least one point")

    lats = [p.lat for p in points]
    lngs = [p.lng for p in points]

    avg_lat_rad = math.radians(sum(lats) / len(lats))
    lat_buffer  = buffer_m * (1 / _METERS_PER_DEG)
    lng_buffer  = buffer_m * (1 / (_METERS_PER_DEG * math.cos(avg_lat_rad)))

    return BoundingBox(
        min_lat = min(lats) - lat_buffer,
        max_lat = max(lats) + lat_buffer,
        min_lng = min(lngs) - lng_buffer,
        max_lng = max(lngs) + lng_buffer,
    )


# ── Distances ─────────────────────────────────────────────────────────────────

def haversine_km(a: RoutePoint, b: RoutePoint) -> float:
    """Great-circle distance in km."""
    φ1, φ2 = math.radians(a.lat), math.radians(b.lat)
    Δφ = math.radians(b.lat - a.lat)
    Δλ = math.radians(b.lng - a.lng)
    h  = math.sin(Δφ/2)**2 + math.cos(φ1) * math.cos(φ2) * math.sin(Δλ/2)**2
    return _R_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def route_length_km(points: Iterable[RoutePoint]) -> float:
    pts   = list(points)
    total = 0.0
    for prev, nxt in zip(pts, pts[1:]):
        total += haversine_km(prev, nxt)
    return round(total, 3)


def max_distance_from_km(origin: RoutePoint, points: Iterable[RoutePoint]) -> float:
    """Furthest route point from `origin`, in km."""
    return max((haversine_km(origin, p) for p in points), default=0.0)


# ── Solar position ────────────────────────────────────────────────────────────

def solar_elevation_deg(lat: float, lng: float, when: datetime) -> float:
    """
    Approximate solar elevation angle (degrees) using the NOAA low-precision
    equations. Accurate to well under a degree, which is ample for a
    day/night gate.
    """
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    utc = when.astimezone(timezone.utc)

    day_of_year = utc.timetuple().tm_yday
    hour        = utc.hour + utc.minute / 60 + utc.second / 3600

    γ = 2 * math.pi / 365 * (day_of_year - 1 + (hour - 12) / 24)

    eq_time = 229.18 * (
        0.000075
        + 0.001868 * math.cos(γ)
        - 0.032077 * math.sin(γ)
        - 0.014615 * math.cos(2 * γ)
        - 0.040849 * math.sin(2 * γ)
    )
    decl = (
        0.006918
        - 0.399912 * math.cos(γ)
        + 0.070257 * math.sin(γ)
        - 0.006758 * math.cos(2 * γ)
        + 0.000907 * math.sin(2 * γ)
        - 0.002697 * math.cos(3 * γ)
        + 0.00148  * math.sin(3 * γ)
    )

    true_solar_min = hour * 60 + eq_time + 4 * lng
    hour_angle     = math.radians(true_solar_min / 4 - 180)
    φ              = math.radians(lat)

    cos_zenith = (
        math.sin(φ) * math.sin(decl)
        + math.cos(φ) * math.cos(decl) * math.cos(hour_angle)
    )
    cos_zenith = max(-1.0, min(1.0, cos_zenith))
    return 90.0 - math.degrees(math.acos(cos_zenith))


def is_dark(lat: float, lng: float, when: datetime) -> bool:
    return solar_elevation_deg(lat, lng, when) < CIVIL_TWILIGHT_DEG


def parse_route(raw) -> List[RoutePoint]:
    """
    Normalise a stored route into RoutePoints. The mission table stores either
    a bare list or {"coordinates": [...]}; malformed points are dropped.
    """
    if isinstance(raw, dict):
        raw = raw.get("coordinates") or []
    if not isinstance(raw, list):
        return []
    points = (RoutePoint.from_any(p) for p in raw)
    return [p for p in points if p is not None]
