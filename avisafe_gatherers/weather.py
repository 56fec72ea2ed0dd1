"""
AviSafe Gatherers — Weather (MET Norway locationforecast)
=========================================================
One GET against the compact locationforecast endpoint for the mission's
representative point. Current conditions are taken from the first timeseries
entry; the next 24 entries are evaluated hour by hour to find the longest
uninterrupted `ok` flight window.

Degrades gracefully: any non-2xx, timeout or unparseable body returns None.
No retry.
"""

import logging
import os
from typing import Any, Dict, List, Optional, Tuple

import httpx
from dotenv import load_dotenv

from avisafe_geo import RoutePoint
from .models import WeatherSnapshot

load_dotenv()

log = logging.getLogger("gatherers.weather")

MET_WEATHER_URL = os.getenv(
    "MET_WEATHER_URL",
    "https://api.met.no/weatherapi/locationforecast/2.0/compact",
)
MET_USER_AGENT  = os.getenv("MET_USER_AGENT", "Avisafe/1.0 (kontakt@avisafe.no)")
_MET_TIMEOUT    = 10.0
_FORECAST_HOURS = 24


def _truncate(coord: float) -> float:
    return round(coord * 10000) / 10000


def _warning(level: str, kind: str, message: str, value: float, unit: str) -> Dict[str, Any]:
    return {"level": level, "type": kind, "message": message, "value": value, "unit": unit}


# ── Per-timestep evaluation ───────────────────────────────────────────────────

def evaluate_conditions(
    details: Optional[Dict[str, Any]],
    next_1h: Optional[Dict[str, Any]],
) -> Tuple[List[Dict[str, Any]], str]:
    """
    Drone warnings for one forecast timestep → (warnings, recommendation).

    Wind   > 10 warning · > 7 caution · > 5 note  (m/s)
    Gust   > 15 warning · > 10 caution            (m/s)
    Precip > 2 warning  · > 0.5 caution · > 0 note (mm/h)
    Temp   < -10 or > 40 warning · < 0 caution    (°C)
    Fog symbol ⇒ visibility warning
    """
    if not details:
        return [], "unknown"

    next_1h       = next_1h or {}
    wind          = details.get("wind_speed") or 0.0
    gust          = details.get("wind_speed_of_gust") or 0.0
    temperature   = details.get("air_temperature") or 0.0
    precipitation = (next_1h.get("details") or {}).get("precipitation_amount") or 0.0
    symbol        = (next_1h.get("summary") or {}).get("symbol_code") or ""

    warnings: List[Dict[str, Any]] = []

    if wind > 10:
        warnings.append(_warning("warning", "wind", f"Strong wind {wind:.1f} m/s, do not fly", wind, "m/s"))
    elif wind > 7:
        warnings.append(_warning("caution", "wind", f"Wind {wind:.1f} m/s, exercise caution", wind, "m/s"))
    elif wind > 5:
        warnings.append(_warning("note", "wind", f"Moderate wind {wind:.1f} m/s, experienced pilots", wind, "m/s"))

    if gust > 15:
        warnings.append(_warning("warning", "gust", f"Strong gusts {gust:.1f} m/s, do not fly", gust, "m/s"))
    elif gust > 10:
        warnings.append(_warning("caution", "gust", f"Gusts {gust:.1f} m/s", gust, "m/s"))

    if precipitation > 2:
        warnings.append(_warning("warning", "precipitation", f"Heavy precipitation {precipitation:.1f} mm/h", precipitation, "mm/h"))
    elif precipitation > 0.5:
        warnings.append(_warning("caution", "precipitation", f"Precipitation {precipitation:.1f} mm/h", precipitation, "mm/h"))
    elif precipitation > 0:
        warnings.append(_warning("note", "precipitation", f"Light precipitation {precipitation:.1f} mm/h", precipitation, "mm/h"))

    if temperature < -10 or temperature > 40:
        warnings.append(_warning("warning", "temperature", f"Extreme temperature {temperature:.1f}°C, battery impact", temperature, "°C"))
    elif temperature < 0:
        warnings.append(_warning("caution", "temperature", f"Low temperature {temperature:.1f}°C, reduced battery time", temperature, "°C"))

    if "fog" in symbol:
        warnings.append(_warning("warning", "visibility", "Fog, reduced visibility", 0, ""))

    levels = {w["level"] for w in warnings}
    if "warning" in levels:
        recommendation = "warning"
    elif "caution" in levels:
        recommendation = "caution"
    else:
        recommendation = "ok"
    return warnings, recommendation


def hourly_forecast(timeseries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    hours = []
    for entry in timeseries[:_FORECAST_HOURS]:
        data    = entry.get("data") or {}
        details = (data.get("instant") or {}).get("details")
        next_1h = data.get("next_1_hours") or {}
        _, recommendation = evaluate_conditions(details, next_1h)
        details = details or {}
        hours.append({
            "time":           entry.get("time"),
            "temperature":    details.get("air_temperature"),
            "wind_speed":     details.get("wind_speed"),
            "wind_gust":      details.get("wind_speed_of_gust"),
            "precipitation":  (next_1h.get("details") or {}).get("precipitation_amount") or 0,
            "symbol":         (next_1h.get("summary") or {}).get("symbol_code") or "unknown",
            "recommendation": recommendation,
        })
    return hours


def best_flight_window(hours: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Longest contiguous run of `ok` hours; ties keep the earliest run."""
    best_start, best_len = -1, 0
    run_start,  run_len  = -1, 0

    for i, hour in enumerate(hours):
        if hour["recommendation"] != "ok":
            run_start, run_len = -1, 0
            continue
        if run_start == -1:
            run_start = i
        run_len += 1
        if run_len > best_len:
            best_start, best_len = run_start, run_len

    if best_len == 0:
        return None
    return {
        "start_time":     hours[best_start]["time"],
        "end_time":       hours[best_start + best_len - 1]["time"],
        "duration_hours": best_len,
    }


def _visibility_km(details: Dict[str, Any], symbol: str) -> Optional[float]:
    """
    The compact product carries no visibility; fog in the symbol code is the
    only signal. A `visibility` field (metres) is honoured when a provider
    adds one.
    """
    raw = details.get("visibility")
    if raw is not None:
        try:
            return round(float(raw) / 1000, 2)
        except (TypeError, ValueError):
            pass
    if "fog" in symbol:
        return 0.5
    return None


def parse_forecast(payload: Dict[str, Any]) -> Optional[WeatherSnapshot]:
    timeseries = ((payload or {}).get("properties") or {}).get("timeseries") or []
    if not timeseries:
        return None

    first   = timeseries[0]
    data    = first.get("data") or {}
    details = (data.get("instant") or {}).get("details") or {}
    next_1h = data.get("next_1_hours") or {}
    symbol  = (next_1h.get("summary") or {}).get("symbol_code") or "unknown"

    warnings, recommendation = evaluate_conditions(details, next_1h)
    hours = hourly_forecast(timeseries)

    return WeatherSnapshot(
        wind_speed_ms      = details.get("wind_speed"),
        wind_gust_ms       = details.get("wind_speed_of_gust"),
        wind_direction_deg = details.get("wind_from_direction"),
        visibility_km      = _visibility_km(details, symbol),
        temperature_c      = details.get("air_temperature"),
        precipitation_mm   = (next_1h.get("details") or {}).get("precipitation_amount") or 0.0,
        humidity_pct       = details.get("relative_humidity"),
        symbol             = symbol,
        recommendation     = recommendation,
        warnings           = warnings,
        best_flight_window = best_flight_window(hours),
        observed_at        = first.get("time"),
    )


# ── Gatherer ──────────────────────────────────────────────────────────────────

async def fetch_weather(
    client: httpx.AsyncClient,
    point: Optional[RoutePoint],
    skip: bool = False,
    url: str = MET_WEATHER_URL,
) -> Optional[WeatherSnapshot]:
    """Skipped ⇒ neutral placeholder without any network call."""
    if skip:
        log.info("[weather] evaluation skipped by pilot, using placeholder")
        return WeatherSnapshot.skipped_placeholder()
    if point is None:
        log.info("[weather] mission has no coordinate, no forecast fetched")
        return None

    params = {"lat": _truncate(point.lat), "lon": _truncate(point.lng)}
    try:
        resp = await client.get(
            url,
            params=params,
            headers={"User-Agent": MET_USER_AGENT},
            timeout=_MET_TIMEOUT,
        )
        resp.raise_for_status()
        snapshot = parse_forecast(resp.json())
    except httpx.HTTPStatusError as exc:
        log.warning(f"[weather] MET upstream HTTP error: {exc.response.status_code}")
        return None
    except (httpx.HTTPError, ValueError) as exc:
        log.warning(f"[weather] MET fetch failed: {exc}")
        return None

    if snapshot is None:
        log.warning("[weather] MET response had no timeseries")
        return None
    log.info(
        f"[weather] wind {snapshot.wind_speed_ms} m/s, gust {snapshot.wind_gust_ms} m/s, "
        f"recommendation={snapshot.recommendation}"
    )
    return snapshot
