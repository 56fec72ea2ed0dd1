"""
AviSafe Risk — Hard-stop evaluator
==================================
Deterministic veto rules, evaluated before and independently of the AI
delegate. Every rule is evaluated; the reported `reason` is the first
triggered rule in the order below, `reasons` lists all of them.

  1. weather limits (wind, gust, visibility, heavy precipitation)
  2. temperature window
  3. drone / equipment at red status
  4. no valid pilot competency
  5. pilot inactivity beyond the policy window
  6. BVLOS forbidden
  7. night flight forbidden
  8. population density above ceiling
  9. mandatory backup battery / observer missing
 10. altitude above max AGL
"""

from datetime import date
from typing import Callable, List, Optional

from avisafe_gatherers.models import AssetStatus
from avisafe_geo import is_dark
from .models import AssessmentContext, HardStopVerdict
from .policy import SafetyPolicy

Rule = Callable[[AssessmentContext, SafetyPolicy, date], Optional[str]]


def _usable_weather(ctx: AssessmentContext):
    w = ctx.weather
    return None if w is None or w.skipped else w


def _weather_limits(ctx: AssessmentContext, policy: SafetyPolicy, today: date) -> Optional[str]:
    w = _usable_weather(ctx)
    if w is None:
        return None
    if w.wind_speed_ms is not None and w.wind_speed_ms > policy.max_wind_speed_ms:
        return f"Wind {w.wind_speed_ms:.1f} m/s exceeds max {policy.max_wind_speed_ms:g} m/s"
    if w.wind_gust_ms is not None and w.wind_gust_ms > policy.max_wind_gust_ms:
        return f"Wind gusts {w.wind_gust_ms:.1f} m/s exceed max {policy.max_wind_gust_ms:g} m/s"
    if w.visibility_km is not None and w.visibility_km < policy.min_visibility_km:
        return f"Visibility {w.visibility_km:g} km below minimum {policy.min_visibility_km:g} km"
    if w.precipitation_mm > policy.heavy_precipitation_mm:
        return f"Heavy precipitation {w.precipitation_mm:.1f} mm/h"
    return None


def _temperature(ctx: AssessmentContext, policy: SafetyPolicy, today: date) -> Optional[str]:
    w = _usable_weather(ctx)
    if w is None or w.temperature_c is None:
        return None
    if not policy.min_temp_c <= w.temperature_c <= policy.max_temp_c:
        return (
            f"Temperature {w.temperature_c:.1f}°C outside allowed range "
            f"{policy.min_temp_c:g}°C to {policy.max_temp_c:g}°C"
        )
    return None


def _asset_status(ctx: AssessmentContext, policy: SafetyPolicy, today: date) -> Optional[str]:
    red = [a for a in ctx.fleet.assets if a.status is AssetStatus.RED]
    if red:
        names = ", ".join(a.model for a in red)
        return f"Assigned {red[0].kind} at red status: {names}"
    return None


def _competency(ctx: AssessmentContext, policy: SafetyPolicy, today: date) -> Optional[str]:
    valid = sum(len(p.valid_competencies(today)) for p in ctx.fleet.personnel)
    if valid == 0:
        return "No valid pilot competency among assigned personnel"
    return None


def _recency(ctx: AssessmentContext, policy: SafetyPolicy, today: date) -> Optional[str]:
    limit = policy.max_pilot_inactivity_days
    if limit is None or not ctx.fleet.personnel:
        return None
    for pilot in ctx.fleet.personnel:
        days = pilot.statistics.days_since_last_flight(today)
        if days is not None and days <= limit:
            return None
    return f"Every assigned pilot has been inactive for more than {limit} days"


def _bvlos(ctx: AssessmentContext, policy: SafetyPolicy, today: date) -> Optional[str]:
    if not ctx.pilot_input.is_vlos and not policy.allow_bvlos:
        return "BVLOS operation is not permitted by company policy"
    return None


def _night(ctx: AssessmentContext, policy: SafetyPolicy, today: date) -> Optional[str]:
    if policy.allow_night_flight:
        return None
    point = ctx.mission.representative_point()
    if point is None:
        return None
    for when in (ctx.mission.scheduled_start, ctx.mission.scheduled_end):
        if when is not None and is_dark(point.lat, point.lng, when):
            return "Night flight is not permitted by company policy"
    return None


def _population(ctx: AssessmentContext, policy: SafetyPolicy, today: date) -> Optional[str]:
    ceiling = policy.max_population_density_per_km2
    if ceiling is None or ctx.population is None:
        return None
    if ctx.population.max_density > ceiling:
        return (
            f"Population density {ctx.population.max_density:.0f}/km² exceeds "
            f"company ceiling {ceiling:g}/km²"
        )
    return None


def _mandatory_equipment(ctx: AssessmentContext, policy: SafetyPolicy, today: date) -> Optional[str]:
    if policy.require_backup_battery and not ctx.pilot_input.backup_battery_available:
        return "Company policy requires a backup battery"
    if policy.require_observer and ctx.pilot_input.observer_count == 0:
        return "Company policy requires a dedicated observer"
    return None


def _altitude(ctx: AssessmentContext, policy: SafetyPolicy, today: date) -> Optional[str]:
    height = ctx.pilot_input.flight_height_m
    if height > policy.max_flight_altitude_m:
        return f"Flight altitude {height:g} m exceeds max {policy.max_flight_altitude_m:g} m AGL"
    return None


RULES: List[Rule] = [
    _weather_limits,
    _temperature,
    _asset_status,
    _competency,
    _recency,
    _bvlos,
    _night,
    _population,
    _mandatory_equipment,
    _altitude,
]


def evaluate_hard_stops(
    ctx: AssessmentContext,
    policy: Optional[SafetyPolicy] = None,
    today: Optional[date] = None,
) -> HardStopVerdict:
    """Pure: same context, policy and day ⇒ same verdict."""
    policy  = policy or ctx.policy
    today   = today or date.today()
    reasons = [r for r in (rule(ctx, policy, today) for rule in RULES) if r]
    if not reasons:
        return HardStopVerdict(triggered=False)
    return HardStopVerdict(triggered=True, reason=reasons[0], reasons=reasons)
