"""
AviSafe Gatherers — Airspace
============================
Server-side spatial check (`check_mission_airspace` RPC) of the mission point
and, when present, the full route against restricted / controlled zones.
"""

import logging
import os
from typing import Any, Dict, List, Optional, Sequence

import httpx
from dotenv import load_dotenv

from avisafe_geo import RoutePoint
from .models import AirspaceWarning

load_dotenv()

log = logging.getLogger("gatherers.airspace")

AIRSPACE_RPC_URL = os.getenv(
    "AIRSPACE_RPC_URL",
    "http://localhost:54321/rest/v1/rpc/check_mission_airspace",
)
_SERVICE_KEY     = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
_RPC_TIMEOUT     = 10.0


def _parse_warning(row: Dict[str, Any]) -> Optional[AirspaceWarning]:
    if not isinstance(row, dict):
        return None
    distance = row.get("distance_meters", row.get("distance"))
    try:
        distance = float(distance) if distance is not None else None
    except (TypeError, ValueError):
        distance = None
    return AirspaceWarning(
        zone_type  = str(row.get("zone_type") or row.get("type") or "unknown"),
        zone_name  = str(row.get("zone_name") or row.get("name") or ""),
        distance_m = distance,
        inside     = bool(row.get("is_inside", row.get("inside", False))),
        severity   = str(row.get("level") or "note"),
        message    = row.get("message"),
    )


def sort_warnings(warnings: List[AirspaceWarning]) -> List[AirspaceWarning]:
    """warning > caution > note, then nearest first."""
    return sorted(
        warnings,
        key=lambda w: (w.severity_rank, w.distance_m if w.distance_m is not None else float("inf")),
    )


async def fetch_airspace_warnings(
    client: httpx.AsyncClient,
    point: Optional[RoutePoint],
    route: Sequence[RoutePoint] = (),
    url: str = AIRSPACE_RPC_URL,
) -> List[AirspaceWarning]:
    if point is None:
        return []

    body = {
        "p_lat":          point.lat,
        "p_lon":          point.lng,
        "p_route_points": [p.to_dict() for p in route] or None,
    }
    headers = {"Content-Type": "application/json"}
    if _SERVICE_KEY:
        headers["apikey"]        = _SERVICE_KEY
        headers["Authorization"] = f"Bearer {_SERVICE_KEY}"

    try:
        resp = await client.post(url, json=body, headers=headers, timeout=_RPC_TIMEOUT)
        resp.raise_for_status()
        rows = resp.json()
    except httpx.HTTPStatusError as exc:
        log.warning(f"[airspace] RPC HTTP error: {exc.response.status_code}")
        return []
    except (httpx.HTTPError, ValueError) as exc:
        log.warning(f"[airspace] RPC failed: {exc}")
        return []

    if not isinstance(rows, list):
        log.warning("[airspace] RPC returned a non-list payload")
        return []

    warnings = sort_warnings([w for w in (_parse_warning(r) for r in rows) if w is not None])
    log.info(f"[airspace] {len(warnings)} zone warning(s)")
    return warnings
