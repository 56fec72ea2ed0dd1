"""
Shared fixtures: a seeded SQLite store, a mock upstream (MET, airspace RPC,
land-use and population WFS) behind httpx.MockTransport, and a scripted
delegate standing in for Claude.
"""

import json
import os
import tempfile
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import httpx
import pytest

os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="avisafe-logs-"))

from avisafe_orchestrator.deps import EngineDeps
from avisafe_store import DatabaseService
from avisafe_store.db import (
    CompanySoraConfig,
    Drone,
    FlightLog,
    Mission,
    MissionDrone,
    MissionPersonnel,
    MissionSora,
    PersonnelCompetency,
    Profile,
)

TODAY      = date(2026, 6, 1)
MISSION_ID = "mission-1"
COMPANY_ID = "company-1"
USER_ID    = "user-1"
DRONE_ID   = "drone-1"


# ── Store ─────────────────────────────────────────────────────────────────────

def seed(store: DatabaseService, competency_expires: Optional[date] = date(2027, 1, 1), **mission_overrides):
    mission = {
        "id":              MISSION_ID,
        "company_id":      COMPANY_ID,
        "title":           "Bridge inspection Oslo",
        "location":        "Oslo",
        "scheduled_start": datetime(2026, 6, 15, 10, 0),
        "scheduled_end":   datetime(2026, 6, 15, 11, 0),
        "latitude":        59.91,
        "longitude":       10.75,
        "route":           None,
    }
    mission.update(mission_overrides)
    with store.SessionLocal() as db:
        db.add(Mission(**mission))
        db.add(Profile(id=USER_ID, company_id=COMPANY_ID, full_name="Kari Nordmann", flight_hours=120.0))
        db.add(MissionPersonnel(mission_id=MISSION_ID, profile_id=USER_ID, role="pilot"))
        db.add(PersonnelCompetency(profile_id=USER_ID, name="A2 CofC", type="certificate", expires_on=competency_expires))
        db.add(FlightLog(user_id=USER_ID, drone_id=DRONE_ID, flight_date=date(2026, 5, 20), duration_minutes=35))
        db.add(FlightLog(user_id=USER_ID, drone_id="other", flight_date=date(2026, 2, 1), duration_minutes=20))
        db.add(Drone(id=DRONE_ID, company_id=COMPANY_ID, model="DJI Matrice 30T", serial_number="M30-001", status="green", flight_hours=48.0))
        db.add(MissionDrone(mission_id=MISSION_ID, drone_id=DRONE_ID))
        db.commit()


def add_company_config(store: DatabaseService, **values):
    with store.SessionLocal() as db:
        db.add(CompanySoraConfig(company_id=COMPANY_ID, **values))
        db.commit()


def sora_rows(store: DatabaseService, mission_id: str = MISSION_ID) -> int:
    with store.SessionLocal() as db:
        return db.query(MissionSora).filter(MissionSora.mission_id == mission_id).count()


@pytest.fixture
def store(tmp_path):
    return DatabaseService(f"sqlite:///{tmp_path}/avisafe.db")


@pytest.fixture
def seeded_store(store):
    seed(store)
    return store


# ── Upstream ──────────────────────────────────────────────────────────────────

def met_payload(wind: float = 4.0, gust: float = 6.0, temperature: float = 15.0, hours: int = 3) -> Dict[str, Any]:
    entry = lambda i: {
        "time": f"2026-06-15T{10 + i:02d}:00:00Z",
        "data": {
            "instant": {"details": {
                "wind_speed":          wind,
                "wind_speed_of_gust":  gust,
                "air_temperature":     temperature,
                "relative_humidity":   60.0,
                "wind_from_direction": 210.0,
            }},
            "next_1_hours": {
                "summary": {"symbol_code": "clearsky_day"},
                "details": {"precipitation_amount": 0.0},
            },
        },
    }
    return {"properties": {"timeseries": [entry(i) for i in range(hours)]}}


class FakeUpstream:
    """Routes requests by host/path; `fail` names sources that time out."""

    def __init__(self):
        self.wind        = 4.0
        self.gust        = 6.0
        self.population  = [50.0]
        self.alt_population: List[float] = []
        self.land_use    = [{"properties": {"arealbruk": "Friområde park"}}]
        self.airspace: List[Dict[str, Any]] = []
        self.fail        = set()
        self.requests: List[httpx.Request] = []

    def sources(self) -> List[str]:
        return [self._source(r) for r in self.requests]

    @staticmethod
    def _source(request: httpx.Request) -> str:
        host, path = request.url.host, request.url.path
        if host == "api.met.no":
            return "weather"
        if path.endswith("check_mission_airspace"):
            return "airspace"
        if path.endswith("wfs.arealbruk"):
            return "land_use"
        if path.endswith("befolkningpaarutenett250m"):
            return "population_alt"
        if path.endswith("befolkningpaarutenett"):
            return "population"
        return "unknown"

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        source = self._source(request)
        if source in self.fail or (source == "population_alt" and "population" in self.fail):
            raise httpx.ReadTimeout("timed out", request=request)
        if source == "weather":
            return httpx.Response(200, json=met_payload(self.wind, self.gust))
        if source == "airspace":
            return httpx.Response(200, json=self.airspace)
        if source == "land_use":
            return httpx.Response(200, json={"type": "FeatureCollection", "features": self.land_use})
        if source == "population":
            return httpx.Response(200, json=_grid(self.population))
        if source == "population_alt":
            return httpx.Response(200, json=_grid(self.alt_population))
        return httpx.Response(404)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def _grid(values: List[float]) -> Dict[str, Any]:
    return {"type": "FeatureCollection", "features": [{"properties": {"popTot": v}} for v in values]}


@pytest.fixture
def upstream():
    return FakeUpstream()


# ── Delegate ──────────────────────────────────────────────────────────────────

def delegate_answer(score: int = 8, recommendation: str = "go", hard_stop: bool = False) -> str:
    categories = {
        name: {"score": score, "go_decision": "GO", "factors": ["nominal"], "concerns": []}
        for name in ("weather", "airspace", "pilot_experience", "mission_complexity", "equipment")
    }
    return json.dumps({
        "overall_score":       score,
        "recommendation":      recommendation,
        "hard_stop_triggered": hard_stop,
        "summary":             "Routine inspection flight.",
        "categories":          categories,
        "recommendations":     [{"priority": "low", "action": "Brief the observer", "reason": "Standard"}],
        "go_conditions":       ["Pre-flight check completed"],
    })


def sora_answer(igrc: int = 3, fgrc: int = 2, sail: str = "II") -> str:
    return json.dumps({
        "environment":           "Sparsely populated",
        "conops_summary":        "VLOS bridge inspection below 60 m",
        "igrc":                  igrc,
        "ground_mitigations":    "M1 strategic: cordon under the bridge",
        "fgrc":                  fgrc,
        "arc_initial":           "ARC-b",
        "airspace_mitigations":  "NOTAM filed",
        "arc_residual":          "ARC-b",
        "sail":                  sail,
        "residual_risk_level":   "Lav",
        "residual_risk_comment": "Mitigations adequate",
        "operational_limits":    "Max 60 m AGL, wind below 8 m/s",
        "overall_score":         8,
        "recommendation":        "go",
        "summary":               "Acceptable with mitigations.",
    })


class FakeDelegate:
    def __init__(self, text: str = ""):
        self.text  = text or delegate_answer()
        self.error: Optional[Exception] = None
        self.calls: List[Dict[str, str]] = []

    async def __call__(self, system: str, prompt: str, timeout=None) -> str:
        self.calls.append({"system": system, "prompt": prompt})
        if self.error is not None:
            raise self.error
        return self.text


@pytest.fixture
def delegate():
    return FakeDelegate()


@pytest.fixture
def deps(seeded_store, upstream, delegate):
    return EngineDeps(
        store     = seeded_store,
        complete  = delegate,
        transport = upstream.transport(),
        today     = lambda: TODAY,
    )


@pytest.fixture
def client(deps):
    from fastapi.testclient import TestClient
    from avisafe_orchestrator.main import app, get_deps

    app.dependency_overrides[get_deps] = lambda: deps
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def nominal_inputs(**overrides) -> Dict[str, Any]:
    inputs = {
        "flightHeight":           60,
        "operationType":          "inspection",
        "isVlos":                 True,
        "observerCount":          1,
        "backupBatteryAvailable": True,
        "preflightCheckDone":     True,
    }
    inputs.update(overrides)
    return inputs
