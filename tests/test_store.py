from datetime import date

import pytest

from avisafe_gatherers.context_loader import flight_statistics, load_fleet, load_mission
from avisafe_gatherers.models import AssetStatus
from avisafe_gatherers.policy import load_safety_policy
from avisafe_risk.errors import MissionNotFoundError
from avisafe_store.db import Document, Drone
from tests.conftest import COMPANY_ID, MISSION_ID, TODAY, USER_ID, add_company_config, seed, sora_rows


def test_load_mission_parses_route_and_buffers(store):
    route = {
        "coordinates":  [{"lat": 59.91, "lng": 10.75}, {"lat": 59.92, "lng": 10.76}],
        "soraSettings": {"enabled": True, "contingencyDistance": 50, "groundRiskDistance": 100},
    }
    seed(store, route=route)
    mission = load_mission(store, MISSION_ID)
    assert len(mission.route) == 2
    assert mission.sora_buffers.total_buffer_m == 150
    assert mission.representative_point().lat == 59.91
    assert mission.prior_sora is None


def test_load_mission_not_found(store):
    with pytest.raises(MissionNotFoundError):
        load_mission(store, "missing")


def test_flight_statistics():
    logs = [
        {"flight_date": date(2026, 5, 25), "duration_minutes": 30, "drone_id": "d1"},
        {"flight_date": "2026-04-01", "duration_minutes": 20, "drone_id": "d2"},
        {"flight_date": date(2025, 12, 1), "duration_minutes": 10, "drone_id": "d1"},
    ]
    stats = flight_statistics(logs, TODAY, {"d1"})
    assert stats.total_flights == 3
    assert stats.total_minutes == 60
    assert stats.flights_last_30_days == 1
    assert stats.flights_last_90_days == 2
    assert stats.last_flight_date == date(2026, 5, 25)
    assert stats.days_since_last_flight(TODAY) == 7
    assert stats.flights_with_drone == 2


def test_load_fleet_anonymizes_pilots(seeded_store):
    fleet = load_fleet(seeded_store, MISSION_ID, USER_ID, TODAY)
    assert [p.label for p in fleet.personnel] == ["Pilot 1"]
    pilot = fleet.personnel[0]
    assert pilot.flight_hours == 120.0
    assert pilot.statistics.total_flights == 2
    assert pilot.statistics.flights_with_drone == 1
    assert [c.name for c in pilot.valid_competencies(TODAY)] == ["A2 CofC"]
    assert [a.model for a in fleet.drones] == ["DJI Matrice 30T"]
    assert "Kari Nordmann" not in repr(fleet)


def test_load_fleet_adds_explicit_drone(seeded_store):
    with seeded_store.SessionLocal() as db:
        db.add(Drone(id="drone-2", company_id=COMPANY_ID, model="Mavic 3", status="gul"))
        db.commit()
    fleet = load_fleet(seeded_store, MISSION_ID, USER_ID, TODAY, drone_id="drone-2")
    assert {a.model for a in fleet.drones} == {"DJI Matrice 30T", "Mavic 3"}
    assert [a.status for a in fleet.drones if a.model == "Mavic 3"] == [AssetStatus.YELLOW]
    assert fleet.personnel[0].statistics.flights_with_drone == 0


def test_load_fleet_falls_back_to_acting_user(store):
    seed(store)
    fleet = load_fleet(store, "other-mission", USER_ID, TODAY)
    assert len(fleet.personnel) == 1
    assert fleet.personnel[0].role == "pilot"
    assert fleet.assets == []


def test_safety_policy_defaults_and_company_row(seeded_store):
    assert load_safety_policy(seeded_store, COMPANY_ID).is_default
    assert load_safety_policy(seeded_store, None).is_default

    with seeded_store.SessionLocal() as db:
        db.add(Document(id="doc-1", company_id=COMPANY_ID, title="OM Part A", summary="Ops manual"))
        db.commit()
    add_company_config(
        seeded_store,
        max_wind_speed_ms=8.0,
        max_visibility_km=3.0,
        max_wind_gust_ms=0,
        max_pilot_inactivity_days=60,
        linked_document_ids=["doc-1"],
    )
    policy = load_safety_policy(seeded_store, COMPANY_ID)
    assert not policy.is_default
    assert policy.max_wind_speed_ms == 8.0
    assert policy.min_visibility_km == 3.0
    assert policy.max_wind_gust_ms == 15.0
    assert policy.max_pilot_inactivity_days == 60
    assert policy.linked_documents[0]["title"] == "OM Part A"


def test_mission_sora_last_write_wins(seeded_store):
    record = {"mission_id": MISSION_ID, "assessment_type": "sora_reassessment"}
    seeded_store.save_sora_reassessment(dict(record), MISSION_ID, {"igrc": 4, "sail": "III", "sora_status": "Under arbeid"})
    seeded_store.save_sora_reassessment(dict(record), MISSION_ID, {"igrc": 2, "sail": "II", "sora_status": "Under arbeid"})
    assert sora_rows(seeded_store) == 1
    sora = seeded_store.get_mission_sora(MISSION_ID)
    assert (sora["igrc"], sora["sail"]) == (2, "II")
    assert load_mission(seeded_store, MISSION_ID).prior_sora["sail"] == "II"


def test_save_sora_reassessment_writes_both_rows(seeded_store):
    record = {"mission_id": MISSION_ID, "pilot_id": USER_ID, "assessment_type": "sora_reassessment"}
    assessment_id = seeded_store.save_sora_reassessment(record, MISSION_ID, {"igrc": 3, "sail": "II"})
    rows = seeded_store.list_assessments(MISSION_ID)
    assert [r["id"] for r in rows] == [assessment_id]
    assert seeded_store.get_mission_sora(MISSION_ID)["sail"] == "II"


def test_save_sora_reassessment_rolls_back_audit_row_when_upsert_fails(seeded_store, monkeypatch):
    def broken(mission_id, values):
        raise RuntimeError("mission_sora locked")

    monkeypatch.setattr(seeded_store, "_sora_upsert_stmt", broken)
    record = {"mission_id": MISSION_ID, "pilot_id": USER_ID, "assessment_type": "sora_reassessment"}
    with pytest.raises(RuntimeError):
        seeded_store.save_sora_reassessment(record, MISSION_ID, {"igrc": 3, "sail": "II"})
    assert seeded_store.list_assessments(MISSION_ID) == []
    assert sora_rows(seeded_store) == 0


def test_policy_with_unparseable_value_falls_back_to_defaults(seeded_store, monkeypatch):
    monkeypatch.setattr(seeded_store, "get_company_sora_config", lambda company_id: {
        "company_id":                company_id,
        "max_wind_speed_ms":         8.0,
        "max_pilot_inactivity_days": "often",
    })
    policy = load_safety_policy(seeded_store, COMPANY_ID)
    assert policy.is_default
