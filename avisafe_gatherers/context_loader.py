"""
AviSafe Gatherers — Fleet & personnel context loader
====================================================
Reads the mission and its assigned pilots, drones and equipment from the
store. Pilot identities are replaced by "Pilot 1", "Pilot 2"… here; names
never leave this module.
"""

import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from avisafe_risk.errors import MissionNotFoundError
from avisafe_store import DatabaseService
from .models import (
    AssignedAsset,
    Competency,
    FleetContext,
    FlightStatistics,
    MissionContext,
    PilotSummary,
    parse_date,
)

log = logging.getLogger("gatherers.context_loader")


def load_mission(store: DatabaseService, mission_id: str) -> MissionContext:
    row = store.get_mission(mission_id)
    if row is None:
        raise MissionNotFoundError(f"Mission {mission_id} not found", {"missionId": mission_id})
    return MissionContext.from_row(row)


def flight_statistics(
    logs: List[Dict[str, Any]],
    today: date,
    drone_ids: Optional[set] = None,
) -> FlightStatistics:
    """Aggregate a pilot's flight logs (any order)."""
    dates = [d for d in (parse_date(l.get("flight_date")) for l in logs) if d is not None]
    since_30 = today - timedelta(days=30)
    since_90 = today - timedelta(days=90)
    drone_ids = drone_ids or set()
    return FlightStatistics(
        total_flights        = len(logs),
        total_minutes        = sum(int(l.get("duration_minutes") or 0) for l in logs),
        flights_last_30_days = sum(1 for d in dates if d >= since_30),
        flights_last_90_days = sum(1 for d in dates if d >= since_90),
        last_flight_date     = max(dates) if dates else None,
        flights_with_drone   = sum(1 for l in logs if l.get("drone_id") in drone_ids),
    )


def load_fleet(
    store: DatabaseService,
    mission_id: str,
    acting_user_id: str,
    today: date,
    drone_id: Optional[str] = None,
) -> FleetContext:
    # ── Assets ──
    drones = store.get_mission_drones(mission_id)
    if drone_id and all(d["id"] != drone_id for d in drones):
        explicit = store.get_drone(drone_id)
        if explicit:
            drones.append(explicit)
    equipment = store.get_mission_equipment(mission_id)

    assets = [AssignedAsset.from_row("drone", d) for d in drones]
    assets += [AssignedAsset.from_row("equipment", e) for e in equipment]
    drone_ids = {drone_id} if drone_id else {d["id"] for d in drones}

    # ── Personnel ──
    people = store.get_mission_personnel(mission_id)
    if not people:
        acting = store.get_profile(acting_user_id)
        people = [{**(acting or {"id": acting_user_id, "flight_hours": 0}), "role": "pilot"}]

    competencies = store.get_competencies(p["id"] for p in people)
    personnel    = []
    for i, person in enumerate(people, start=1):
        logs = store.get_flight_logs(person["id"])
        personnel.append(PilotSummary(
            label        = f"Pilot {i}",
            role         = person.get("role"),
            flight_hours = float(person.get("flight_hours") or 0),
            statistics   = flight_statistics(logs, today, drone_ids),
            competencies = [Competency.from_row(c) for c in competencies.get(person["id"], [])],
        ))

    log.info(
        f"[context_loader] mission {mission_id}: {len(personnel)} pilot(s), "
        f"{len(drones)} drone(s), {len(equipment)} equipment item(s)"
    )
    return FleetContext(personnel=personnel, assets=assets)
