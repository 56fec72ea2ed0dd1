"""
AviSafe Gatherers — external data sources and fleet/personnel context.

Every network gatherer is an async function taking an ``httpx.AsyncClient``
and returning ``None`` (or ``[]``) instead of raising.
"""

from .airspace import fetch_airspace_warnings
from .context_loader import load_fleet, load_mission
from .land_use import fetch_land_use
from .policy import load_safety_policy
from .population import fetch_population_density
from .weather import fetch_weather

__all__ = [
    "fetch_airspace_warnings",
    "fetch_land_use",
    "fetch_population_density",
    "fetch_weather",
    "load_fleet",
    "load_mission",
    "load_safety_policy",
]
