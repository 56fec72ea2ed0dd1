"""
AviSafe Gatherers — Land use (zoning WFS)
=========================================
Queries a land-use feature service for the mission footprint and reduces the
features to a ground-risk class:

  high      any residential or public-institutional feature
  moderate  commercial, industrial or transport features
  low       otherwise (recreational areas are counted but stay low)

A malformed or empty response falls back to `low` with `unknown=True`. A
failed request (HTTP error, timeout) yields None.
"""

import logging
import os
from collections import Counter
from typing import Any, Dict, Iterable, Optional

import httpx
from dotenv import load_dotenv

from avisafe_geo import bounding_box
from .models import LandUseClassification, MissionContext

load_dotenv()

log = logging.getLogger("gatherers.land_use")

LAND_USE_WFS_URL  = os.getenv("LAND_USE_WFS_URL", "https://wfs.geonorge.no/skwms1/wfs.arealbruk")
LAND_USE_TYPENAME = os.getenv("LAND_USE_TYPENAME", "app:Arealbruk")
LAND_USE_TIMEOUT  = 8.0

POINT_BUFFER_M = 500.0
ROUTE_BUFFER_M = 200.0

# Property keys that may carry the zoning category, most specific first
_CATEGORY_KEYS = ("arealbruk", "arealbrukskategori", "kategori", "category", "landuse", "objtype", "type")

# category → keywords (Norwegian + English) matched against the lower-cased value
_CATEGORY_KEYWORDS = {
    "residential":  ("bolig", "residential", "housing"),
    "public":       ("offentlig", "public", "institusjon", "institution", "skole", "school", "sykehus", "hospital"),
    "commercial":   ("næring", "naering", "kontor", "commercial", "retail", "handel"),
    "industrial":   ("industri", "lager", "industrial", "warehouse"),
    "transport":    ("transport", "samferdsel", "vei", "road", "rail", "jernbane"),
    "recreational": ("fritid", "park", "recreation", "idrett", "grønt"),
}

_HIGH     = ("residential", "public")
_MODERATE = ("commercial", "industrial", "transport")


def footprint_buffer_m(mission: MissionContext) -> float:
    """SORA contingency + ground-risk distance when configured, else a default by footprint kind."""
    buffers = mission.sora_buffers
    if buffers and buffers.total_buffer_m > 0:
        return buffers.total_buffer_m
    return ROUTE_BUFFER_M if len(mission.route) > 1 else POINT_BUFFER_M


def categorize(properties: Dict[str, Any]) -> Optional[str]:
    for key in _CATEGORY_KEYS:
        value = properties.get(key)
        if value is None:
            continue
        text = str(value).lower()
        for category, keywords in _CATEGORY_KEYWORDS.items():
            if any(k in text for k in keywords):
                return category
    return None


def classify_features(features: Iterable[Dict[str, Any]], buffer_m: float) -> LandUseClassification:
    counts: Counter = Counter()
    for feature in features:
        if not isinstance(feature, dict):
            continue
        category = categorize(feature.get("properties") or {})
        if category:
            counts[category] += 1

    if any(counts[c] for c in _HIGH):
        risk = "high"
    elif any(counts[c] for c in _MODERATE):
        risk = "moderate"
    else:
        risk = "low"
    return LandUseClassification(ground_risk=risk, counts=dict(counts), buffer_m=buffer_m)


def _unknown(buffer_m: float) -> LandUseClassification:
    return LandUseClassification(ground_risk="low", buffer_m=buffer_m, unknown=True)


async def fetch_land_use(
    client: httpx.AsyncClient,
    mission: MissionContext,
    url: str = LAND_USE_WFS_URL,
) -> Optional[LandUseClassification]:
    points = mission.footprint()
    if not points:
        return None

    buffer_m = footprint_buffer_m(mission)
    bbox     = bounding_box(points, buffer_m)
    params   = {
        "service":      "WFS",
        "version":      "2.0.0",
        "request":      "GetFeature",
        "typeNames":    LAND_USE_TYPENAME,
        "outputFormat": "application/json",
        "srsName":      "urn:ogc:def:crs:OGC:1.3:CRS84",
        "bbox":         f"{bbox.as_bbox_param()},urn:ogc:def:crs:OGC:1.3:CRS84",
    }

    try:
        resp = await client.get(url, params=params, timeout=LAND_USE_TIMEOUT)
        resp.raise_for_status()
        payload = resp.json()
    except httpx.HTTPStatusError as exc:
        log.warning(f"[land_use] WFS HTTP error: {exc.response.status_code}")
        return None
    except (httpx.HTTPError, ValueError) as exc:
        log.warning(f"[land_use] WFS fetch failed: {exc}")
        return None

    features = payload.get("features") if isinstance(payload, dict) else None
    if not isinstance(features, list) or not features:
        log.info("[land_use] no features in response, ground risk unknown")
        return _unknown(buffer_m)

    result = classify_features(features, buffer_m)
    log.info(f"[land_use] ground risk {result.ground_risk} from {len(features)} feature(s)")
    return result
