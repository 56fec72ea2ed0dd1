import random
from datetime import date, datetime

import pytest

from avisafe_gatherers.models import (
    AssetStatus,
    AssignedAsset,
    Competency,
    FleetContext,
    FlightStatistics,
    MissionContext,
    PilotInput,
    PilotSummary,
    PopulationDensityClassification,
    WeatherSnapshot,
)
from avisafe_risk.hard_stops import evaluate_hard_stops
from avisafe_risk.models import CATEGORIES, AssessmentContext, DelegateJudgment, RiskCategoryScore
from avisafe_risk.policy import SafetyPolicy
from avisafe_risk.reconcile import reconcile

TODAY = date(2026, 6, 1)


def _pilot(expires=date(2027, 1, 1), last_flight=date(2026, 5, 20)) -> PilotSummary:
    return PilotSummary(
        label        = "Pilot 1",
        role         = "pilot",
        flight_hours = 120.0,
        statistics   = FlightStatistics(total_flights=10, last_flight_date=last_flight),
        competencies = [Competency("A2 CofC", "certificate", expires)],
    )


def _context(policy=None, weather=None, pilot_input=None, fleet=None, population=None, **mission) -> AssessmentContext:
    fields = {
        "id": "m-1", "title": "Inspection", "latitude": 59.91, "longitude": 10.75,
        "scheduled_start": datetime(2026, 6, 15, 10, 0), "scheduled_end": datetime(2026, 6, 15, 11, 0),
    }
    fields.update(mission)
    return AssessmentContext(
        mission     = MissionContext(**fields),
        pilot_input = pilot_input or PilotInput(flight_height_m=60, is_vlos=True, observer_count=1),
        policy      = policy or SafetyPolicy(),
        fleet       = fleet or FleetContext(personnel=[_pilot()]),
        weather     = weather if weather is not None else WeatherSnapshot(wind_speed_ms=4, wind_gust_ms=6, temperature_c=15),
        population  = population,
    )


def test_nominal_context_has_no_hard_stop():
    verdict = evaluate_hard_stops(_context(), today=TODAY)
    assert not verdict.triggered
    assert verdict.reason is None


@pytest.mark.parametrize("weather, fragment", [
    (WeatherSnapshot(wind_speed_ms=12, wind_gust_ms=14, temperature_c=10), "Wind 12.0 m/s"),
    (WeatherSnapshot(wind_speed_ms=6, wind_gust_ms=17, temperature_c=10), "gusts"),
    (WeatherSnapshot(wind_speed_ms=2, visibility_km=0.5, temperature_c=10), "Visibility"),
    (WeatherSnapshot(wind_speed_ms=2, precipitation_mm=3.5, temperature_c=10), "precipitation"),
    (WeatherSnapshot(wind_speed_ms=2, temperature_c=-15), "Temperature"),
])
def test_weather_limits(weather, fragment):
    verdict = evaluate_hard_stops(_context(weather=weather), today=TODAY)
    assert verdict.triggered
    assert fragment in verdict.reason


def test_skipped_or_absent_weather_never_stops():
    assert not evaluate_hard_stops(_context(weather=WeatherSnapshot.skipped_placeholder()), today=TODAY).triggered
    ctx = _context()
    absent = AssessmentContext(mission=ctx.mission, pilot_input=ctx.pilot_input, policy=ctx.policy, fleet=ctx.fleet)
    assert not evaluate_hard_stops(absent, today=TODAY).triggered


def test_company_limits_override_defaults():
    weather = WeatherSnapshot(wind_speed_ms=9, wind_gust_ms=10, temperature_c=10)
    assert not evaluate_hard_stops(_context(weather=weather), today=TODAY).triggered
    strict = SafetyPolicy(max_wind_speed_ms=8.0)
    assert evaluate_hard_stops(_context(policy=strict, weather=weather), today=TODAY).triggered


def test_red_asset_stops_yellow_does_not():
    def fleet(status):
        asset = AssignedAsset("drone", "Matrice 30T", "S1", status)
        return FleetContext(personnel=[_pilot()], assets=[asset])

    assert not evaluate_hard_stops(_context(fleet=fleet(AssetStatus.YELLOW)), today=TODAY).triggered
    verdict = evaluate_hard_stops(_context(fleet=fleet(AssetStatus.RED)), today=TODAY)
    assert "red status" in verdict.reason


def test_expired_competency_stops():
    fleet   = FleetContext(personnel=[_pilot(expires=date(2026, 1, 1))])
    verdict = evaluate_hard_stops(_context(fleet=fleet), today=TODAY)
    assert "competency" in verdict.reason


def test_competency_expiring_today_is_expired():
    fleet = FleetContext(personnel=[_pilot(expires=TODAY)])
    assert evaluate_hard_stops(_context(fleet=fleet), today=TODAY).triggered


def test_inactivity_window():
    policy = SafetyPolicy(max_pilot_inactivity_days=30)
    recent = FleetContext(personnel=[_pilot(last_flight=date(2026, 5, 10))])
    stale  = FleetContext(personnel=[_pilot(last_flight=date(2026, 3, 1))])
    assert not evaluate_hard_stops(_context(policy=policy, fleet=recent), today=TODAY).triggered
    assert "inactive" in evaluate_hard_stops(_context(policy=policy, fleet=stale), today=TODAY).reason


def test_bvlos_depends_on_policy():
    bvlos = PilotInput(flight_height_m=60, is_vlos=False, observer_count=1)
    assert "BVLOS" in evaluate_hard_stops(_context(pilot_input=bvlos), today=TODAY).reason
    allowed = SafetyPolicy(allow_bvlos=True)
    assert not evaluate_hard_stops(_context(policy=allowed, pilot_input=bvlos), today=TODAY).triggered


def test_night_flight():
    night = {"scheduled_start": datetime(2026, 12, 21, 1, 0), "scheduled_end": datetime(2026, 12, 21, 2, 0)}
    assert "Night" in evaluate_hard_stops(_context(**night), today=TODAY).reason
    allowed = SafetyPolicy(allow_night_flight=True)
    assert not evaluate_hard_stops(_context(policy=allowed, **night), today=TODAY).triggered


def test_population_ceiling():
    dense  = PopulationDensityClassification(2000, 900, 4, "very_high", 2)
    policy = SafetyPolicy(max_population_density_per_km2=1000)
    assert "Population" in evaluate_hard_stops(_context(policy=policy, population=dense), today=TODAY).reason
    assert not evaluate_hard_stops(_context(population=dense), today=TODAY).triggered


def test_mandatory_equipment_and_altitude():
    policy = SafetyPolicy(require_backup_battery=True, require_observer=True)
    bare   = PilotInput(flight_height_m=150, is_vlos=True, observer_count=0)
    verdict = evaluate_hard_stops(_context(policy=policy, pilot_input=bare), today=TODAY)
    assert verdict.reason == "Company policy requires a backup battery"
    assert any("altitude" in r for r in verdict.reasons)


def test_first_triggered_rule_is_reported_and_all_are_listed():
    weather = WeatherSnapshot(wind_speed_ms=14, temperature_c=10)
    bvlos   = PilotInput(flight_height_m=60, is_vlos=False)
    verdict = evaluate_hard_stops(_context(weather=weather, pilot_input=bvlos), today=TODAY)
    assert verdict.reason.startswith("Wind")
    assert len(verdict.reasons) == 2


def test_hard_stop_dominates_any_delegate_judgment():
    rng = random.Random(7)
    ctx = _context(weather=WeatherSnapshot(wind_speed_ms=13, temperature_c=10))
    verdict = evaluate_hard_stops(ctx, today=TODAY)
    assert verdict.triggered

    for _ in range(50):
        categories = {
            name: RiskCategoryScore(name, rng.randint(1, 10), "GO") for name in CATEGORIES
        }
        judgment = DelegateJudgment(
            overall_score  = float(rng.randint(1, 10)),
            recommendation = rng.choice(["go", "caution", "no-go"]),
            summary        = "",
            categories     = categories,
        )
        result = reconcile(judgment, verdict, ctx, {})
        assert result.recommendation == "no-go"
        assert result.hard_stop_triggered
        assert "Wind" in result.hard_stop_reason
