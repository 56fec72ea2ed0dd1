"""
AviSafe Gatherers — Population density (gridded population WFS)
================================================================
Counts persons per grid cell inside a 1 km-buffered box around the mission
footprint and converts the densest cell into a SORA ground-risk impact.

Density tiers (persons/km², inclusive-low):
  < 100        none        +0 GRC
  100 – 499    moderate    +0 GRC
  500 – 1499   high        +1 GRC
  ≥ 1500       very_high   +2 GRC

The grid service answers in GeoJSON or GML depending on deployment; both are
scanned for any of the known count attributes. If the primary grid yields no
values, the alternate grid is tried exactly once.
"""

import logging
import os
import xml.etree.ElementTree as ET
from typing import Any, Dict, List, Optional, Tuple

import httpx
from dotenv import load_dotenv

from avisafe_geo import bounding_box
from .models import MissionContext, PopulationDensityClassification

load_dotenv()

log = logging.getLogger("gatherers.population")

POPULATION_GRID_URL      = os.getenv("POPULATION_GRID_URL", "https://wfs.geonorge.no/skwms1/wfs.befolkningpaarutenett")
POPULATION_GRID_ALT_URL  = os.getenv("POPULATION_GRID_ALT_URL", "https://wfs.geonorge.no/skwms1/wfs.befolkningpaarutenett250m")
POPULATION_GRID_TYPENAME = os.getenv("POPULATION_GRID_TYPENAME", "app:Befolkning")
POPULATION_TIMEOUT       = 6.0
POPULATION_BUFFER_M      = 1000.0

PRIMARY_CELL_M = 1000.0
ALT_CELL_M     = 250.0

VALUE_FIELDS = ("popTot", "pop_tot", "population", "befolkning", "antall", "value", "count", "tot_pop")

# (lower bound, impact, GRC increment), highest first
DENSITY_TIERS: List[Tuple[float, str, int]] = [
    (1500.0, "very_high", 2),
    (500.0,  "high",      1),
    (100.0,  "moderate",  0),
    (0.0,    "none",      0),
]


def classify_density(max_density: float) -> Tuple[str, int]:
    for lower, impact, increment in DENSITY_TIERS:
        if max_density >= lower:
            return impact, increment
    return "none", 0


# ── Payload parsing ───────────────────────────────────────────────────────────

def _number(value) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number >= 0 else None


def values_from_geojson(payload: Dict[str, Any]) -> List[float]:
    values = []
    for feature in payload.get("features") or []:
        props = (feature or {}).get("properties") or {}
        for name in VALUE_FIELDS:
            number = _number(props.get(name))
            if number is not None:
                values.append(number)
                break
    return values


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def values_from_gml(text: str) -> List[float]:
    try:
        root = ET.fromstring(text)
    except ET.ParseError:
        return []
    wanted = set(VALUE_FIELDS)
    values = []
    for el in root.iter():
        if _local(el.tag) in wanted:
            number = _number((el.text or "").strip())
            if number is not None:
                values.append(number)
    return values


def extract_values(resp: httpx.Response) -> List[float]:
    """Counts per cell from a GeoJSON or GML body; anything else ⇒ []."""
    body = resp.text.lstrip()
    if body.startswith("{"):
        try:
            payload = resp.json()
        except ValueError:
            return []
        return values_from_geojson(payload) if isinstance(payload, dict) else []
    if body.startswith("<"):
        return values_from_gml(body)
    return []


def summarize(values: List[float], cell_m: float, source: str) -> PopulationDensityClassification:
    cell_km2  = (cell_m / 1000.0) ** 2
    densities = [v / cell_km2 for v in values]
    peak      = max(densities)
    impact, increment = classify_density(peak)
    return PopulationDensityClassification(
        max_density   = peak,
        avg_density   = sum(densities) / len(densities),
        cell_count    = len(densities),
        impact        = impact,
        grc_increment = increment,
        source        = source,
    )


# ── Gatherer ──────────────────────────────────────────────────────────────────

async def _query_grid(client: httpx.AsyncClient, url: str, bbox_param: str) -> List[float]:
    params = {
        "service":      "WFS",
        "version":      "2.0.0",
        "request":      "GetFeature",
        "typeNames":    POPULATION_GRID_TYPENAME,
        "outputFormat": "application/json",
        "srsName":      "urn:ogc:def:crs:OGC:1.3:CRS84",
        "bbox":         f"{bbox_param},urn:ogc:def:crs:OGC:1.3:CRS84",
    }
    try:
        resp = await client.get(url, params=params, timeout=POPULATION_TIMEOUT)
        resp.raise_for_status()
    except httpx.HTTPStatusError as exc:
        log.warning(f"[population] grid HTTP error {exc.response.status_code} from {url}")
        return []
    except httpx.HTTPError as exc:
        log.warning(f"[population] grid fetch failed from {url}: {exc}")
        return []
    return extract_values(resp)


async def fetch_population_density(
    client: httpx.AsyncClient,
    mission: MissionContext,
    url: str = POPULATION_GRID_URL,
    alt_url: str = POPULATION_GRID_ALT_URL,
) -> Optional[PopulationDensityClassification]:
    points = mission.footprint()
    if not points:
        return None

    bbox_param = bounding_box(points, POPULATION_BUFFER_M).as_bbox_param()

    values = await _query_grid(client, url, bbox_param)
    if values:
        result = summarize(values, PRIMARY_CELL_M, "primary")
    else:
        log.info("[population] primary grid returned no values, trying alternate grid")
        values = await _query_grid(client, alt_url, bbox_param)
        if not values:
            log.info("[population] no population data for mission area")
            return None
        result = summarize(values, ALT_CELL_M, "alternate")

    log.info(
        f"[population] max {result.max_density:.0f}/km² over {result.cell_count} cell(s) "
        f"→ {result.impact} (+{result.grc_increment} GRC)"
    )
    return result
