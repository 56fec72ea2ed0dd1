"""
End-to-end runs through the FastAPI app: both LangGraph workflows against a
seeded SQLite store, mocked upstream sources and a scripted delegate.
"""

from datetime import date

import pytest
from sqlalchemy import text

from avisafe_risk.errors import QuotaExhaustedError, RateLimitedError
from tests.conftest import (
    MISSION_ID,
    USER_ID,
    add_company_config,
    delegate_answer,
    nominal_inputs,
    seed,
    sora_answer,
    sora_rows,
)

URL     = "/api/v1/risk-assessment"
HEADERS = {"X-User-Id": USER_ID}


def _assess(client, **inputs):
    return client.post(URL, json={"missionId": MISSION_ID, "pilotInputs": nominal_inputs(**inputs)}, headers=HEADERS)


# ── Phase A ───────────────────────────────────────────────────────────────────

def test_nominal_assessment_is_go_and_persisted(client, seeded_store, upstream):
    resp = _assess(client)
    assert resp.status_code == 200
    body = resp.json()
    assessment = body["assessment"]

    assert body["success"] is True
    assert body["saved"] is True
    assert body["status"] == "persisted"
    assert assessment["recommendation"] == "go"
    assert assessment["hard_stop_triggered"] is False
    assert set(assessment["categories"]) == {
        "weather", "airspace", "pilot_experience", "mission_complexity", "equipment",
    }
    assert assessment["ai_disclaimer"]
    assert assessment["context"]["weather"]["current"]["windSpeed"] == 4.0
    assert sorted(set(upstream.sources())) == ["airspace", "land_use", "population", "weather"]

    rows = seeded_store.list_assessments(MISSION_ID)
    assert len(rows) == 1
    assert rows[0]["assessment_type"] == "initial"
    assert rows[0]["pilot_id"] == USER_ID
    assert rows[0]["weather_score"] == 8


def test_pilot_names_never_reach_the_delegate(client, delegate):
    _assess(client)
    prompt = delegate.calls[0]["prompt"]
    assert "Pilot 1" in prompt
    assert "Kari Nordmann" not in prompt


def test_strong_wind_is_a_hard_stop(client, upstream, delegate):
    upstream.wind = 12.0
    upstream.gust = 14.0
    delegate.text = delegate_answer(score=9, recommendation="go")

    assessment = _assess(client).json()["assessment"]
    assert assessment["hard_stop_triggered"] is True
    assert "wind" in assessment["hard_stop_reason"].lower()
    assert assessment["recommendation"] == "no-go"


def test_very_high_population_lowers_mission_complexity(client, upstream):
    upstream.population = [1800.0, 400.0]

    assessment = _assess(client).json()["assessment"]
    population = assessment["context"]["population"]
    assert population["grcImpact"] == "very_high"
    assert population["grcIncrement"] == 2
    assert assessment["categories"]["mission_complexity"]["score"] == 5
    assert assessment["categories"]["mission_complexity"]["go_decision"] == "BETINGET"


def test_skipped_weather_makes_no_request_and_scores_seven(client, upstream):
    assessment = _assess(client, skipWeatherEvaluation=True).json()["assessment"]
    assert "weather" not in upstream.sources()
    assert assessment["categories"]["weather"]["score"] == 7
    assert assessment["categories"]["weather"]["go_decision"] == "BETINGET"
    assert assessment["hard_stop_triggered"] is False


def test_expired_competency_is_a_hard_stop(store, upstream, delegate):
    from fastapi.testclient import TestClient
    from avisafe_orchestrator.deps import EngineDeps
    from avisafe_orchestrator.main import app, get_deps

    seed(store, competency_expires=date(2026, 1, 1))
    deps = EngineDeps(store=store, complete=delegate, transport=upstream.transport(), today=lambda: date(2026, 6, 1))
    app.dependency_overrides[get_deps] = lambda: deps
    try:
        with TestClient(app) as client:
            assessment = _assess(client).json()["assessment"]
    finally:
        app.dependency_overrides.clear()

    assert assessment["hard_stop_triggered"] is True
    assert "competency" in assessment["hard_stop_reason"].lower()
    assert assessment["recommendation"] == "no-go"


def test_bvlos_is_a_hard_stop_by_default(client):
    assessment = _assess(client, isVlos=False).json()["assessment"]
    assert assessment["hard_stop_triggered"] is True
    assert "BVLOS" in assessment["hard_stop_reason"]


def test_company_policy_allows_bvlos(client, seeded_store):
    add_company_config(seeded_store, allow_bvlos=True, policy_notes="BVLOS approved under OAT")
    assessment = _assess(client, isVlos=False).json()["assessment"]
    assert assessment["hard_stop_triggered"] is False
    assert assessment["context"]["policy"]["allowBvlos"] is True


def test_company_wind_limit_reaches_prompt_and_rules(client, seeded_store, upstream, delegate):
    add_company_config(seeded_store, max_wind_speed_ms=3.0)
    assessment = _assess(client).json()["assessment"]
    assert "Max mean wind        : 3 m/s" in delegate.calls[0]["system"]
    assert assessment["hard_stop_triggered"] is True
    assert "3 m/s" in assessment["hard_stop_reason"]


def test_one_failed_source_leaves_only_that_field_absent(client, upstream):
    upstream.fail = {"weather"}
    resp = _assess(client)
    assert resp.status_code == 200
    context = resp.json()["assessment"]["context"]
    assert context["weather"] is None
    assert context["landUse"] is not None
    assert context["population"] is not None


def test_all_sources_failing_still_assesses(client, upstream):
    upstream.fail = {"weather", "airspace", "land_use", "population"}
    body = _assess(client).json()
    context = body["assessment"]["context"]
    assert context["weather"] is None
    assert context["airspace"] == []
    assert context["landUse"] is None
    assert context["population"] is None
    assert body["saved"] is True


def test_non_json_delegate_answer_is_502_and_nothing_saved(client, seeded_store, delegate):
    delegate.text = "Sorry, I am unable to provide an assessment right now."
    resp = _assess(client)
    assert resp.status_code == 502
    assert resp.json()["error"]["code"] == "invalid_response"
    assert seeded_store.list_assessments(MISSION_ID) == []


@pytest.mark.parametrize("error, status, code", [
    (RateLimitedError(), 429, "rate_limited"),
    (QuotaExhaustedError(), 402, "quota_exhausted"),
])
def test_delegate_errors_map_to_status(client, seeded_store, delegate, error, status, code):
    delegate.error = error
    resp = _assess(client)
    assert resp.status_code == status
    assert resp.json()["error"]["code"] == code
    assert seeded_store.list_assessments(MISSION_ID) == []


def test_save_failure_still_returns_result(client, seeded_store, monkeypatch):
    def broken(record):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(seeded_store, "insert_assessment", broken)
    resp = _assess(client)
    assert resp.status_code == 200
    body = resp.json()
    assert body["saved"] is False
    assert body["status"] == "save_failed"
    assert body["assessment"]["recommendation"] == "go"


def test_missing_user_is_401(client):
    resp = client.post(URL, json={"missionId": MISSION_ID})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthorized"


def test_missing_mission_id_is_400(client):
    resp = client.post(URL, json={"pilotInputs": {}}, headers=HEADERS)
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "invalid_request"


def test_malformed_body_is_400(client):
    resp = client.post(URL, json={"missionId": MISSION_ID, "pilotInputs": "fast"}, headers=HEADERS)
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "invalid_request"


def test_unknown_mission_is_404(client, upstream, delegate):
    resp = client.post(URL, json={"missionId": "nope"}, headers=HEADERS)
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "mission_not_found"
    assert upstream.requests == []
    assert delegate.calls == []


def test_assessment_history_newest_first(client):
    _assess(client)
    _assess(client, isVlos=False)
    body = client.get(f"/api/v1/missions/{MISSION_ID}/assessments").json()
    assert body["count"] == 2
    assert body["assessments"][0]["hard_stop_triggered"] is True


def test_health_and_diagram(client):
    assert client.get("/").json()["status"] == "operational"
    assert "PHASE B" in client.get("/api/v1/risk-assessment/graph").json()["diagram"]


# ── Phase B ───────────────────────────────────────────────────────────────────

def _reassess(client, previous, comments=None):
    return client.post(
        URL,
        json={
            "missionId":        MISSION_ID,
            "soraReassessment": True,
            "previousAnalysis": previous,
            "pilotComments":    comments or {"weather": "Fly before noon", "airspace": None},
        },
        headers=HEADERS,
    )


def test_sora_reassessment_upserts_one_record(client, seeded_store, delegate):
    previous = _assess(client).json()["assessment"]

    delegate.text = sora_answer(igrc=4, fgrc=3, sail="III")
    first = _reassess(client, previous)
    assert first.status_code == 200
    assert first.json()["sora"]["sail"] == "III"
    assert first.json()["saved"] is True

    delegate.text = sora_answer(igrc=3, fgrc=2, sail="II")
    second = _reassess(client, previous).json()

    assert sora_rows(seeded_store) == 1
    record = seeded_store.get_mission_sora(MISSION_ID)
    assert record["igrc"] == 3
    assert record["sail"] == "II"
    assert record["sora_status"] == "Under arbeid"
    assert record["prepared_by"] == USER_ID

    rows = seeded_store.list_assessments(MISSION_ID)
    assert [r["assessment_type"] for r in rows].count("sora_reassessment") == 2
    assert second["assessment_id"] in {r["id"] for r in rows}


def test_sora_mitigations_reach_delegate(client, delegate):
    previous = _assess(client).json()["assessment"]
    delegate.text = sora_answer()
    _reassess(client, previous, {"equipment": "Spare drone on site"})
    prompt = delegate.calls[-1]["prompt"]
    assert "Spare drone on site" in prompt


def test_sora_keeps_initial_hard_stop(client, delegate):
    previous = _assess(client, isVlos=False).json()["assessment"]
    assert previous["hard_stop_triggered"] is True
    delegate.text = sora_answer()
    sora = _reassess(client, previous).json()["sora"]
    assert sora["recommendation"] == "no-go"


def test_sora_requires_previous_analysis(client):
    resp = client.post(URL, json={"missionId": MISSION_ID, "soraReassessment": True}, headers=HEADERS)
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "invalid_request"


def test_prior_sora_is_included_in_next_assessment(client, delegate):
    previous = _assess(client).json()["assessment"]
    delegate.text = sora_answer(igrc=4, fgrc=3, sail="III")
    _reassess(client, previous)

    delegate.text = delegate_answer()
    body = _assess(client).json()
    assert body["saved"] is True
    assert body["assessment"]["context"]["mission"]["priorSora"]["sail"] == "III"


def test_sora_save_failure_leaves_no_audit_row(client, seeded_store, delegate, monkeypatch):
    previous = _assess(client).json()["assessment"]

    def broken(mission_id, values):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(seeded_store, "_sora_upsert_stmt", broken)
    delegate.text = sora_answer()
    body = _reassess(client, previous).json()

    assert body["saved"] is False
    assert body["status"] == "save_failed"
    assert body["assessment_id"] is None
    assert [r["assessment_type"] for r in seeded_store.list_assessments(MISSION_ID)] == ["initial"]
    assert sora_rows(seeded_store) == 0


def test_sora_with_unreadable_company_config_uses_defaults(client, seeded_store, delegate):
    previous = _assess(client).json()["assessment"]
    add_company_config(seeded_store, max_pilot_inactivity_days=60)
    with seeded_store.SessionLocal() as db:
        db.execute(text("UPDATE company_sora_config SET max_pilot_inactivity_days = 'often'"))
        db.commit()

    delegate.text = sora_answer()
    resp = _reassess(client, previous)
    assert resp.status_code == 200
    assert resp.json()["saved"] is True
