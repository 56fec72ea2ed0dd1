"""
AviSafe Gatherers — Context data types
======================================
Typed containers for everything the risk engine reads about a mission.

A gatherer that could not produce data returns ``None`` (or an empty list for
airspace); the types below never carry half-parsed provider payloads. All
field-name fallbacks happen in the gatherer that owns the source.
"""

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from avisafe_geo import RoutePoint, parse_route


def _parse_dt(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def parse_date(value) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    parsed = _parse_dt(value)
    return parsed.date() if parsed else None


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _as_bool(value, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "ja")
    return bool(value)


def _as_float(value, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


# ══════════════════════════════════════════════════════════════════════════════
# Mission & pilot input
# ══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SoraBufferConfig:
    """Per-mission SORA geometry: flight geography buffers in metres."""
    flight_altitude_m:     Optional[float] = None
    contingency_distance_m: float = 0.0
    ground_risk_distance_m: float = 0.0

    @property
    def total_buffer_m(self) -> float:
        return self.contingency_distance_m + self.ground_risk_distance_m

    @classmethod
    def from_row(cls, raw: Optional[Dict[str, Any]]) -> Optional["SoraBufferConfig"]:
        if not raw or not _as_bool(raw.get("enabled", True), True):
            return None
        return cls(
            flight_altitude_m      = raw.get("flightAltitude", raw.get("flight_altitude")),
            contingency_distance_m = _as_float(raw.get("contingencyDistance", raw.get("contingency_distance"))),
            ground_risk_distance_m = _as_float(raw.get("groundRiskDistance", raw.get("ground_risk_distance"))),
        )


@dataclass(frozen=True)
class MissionContext:
    id:              str
    title:           str
    location:        Optional[str]            = None
    description:     Optional[str]            = None
    scheduled_start: Optional[datetime]       = None
    scheduled_end:   Optional[datetime]       = None
    risk_tier:       Optional[str]            = None
    route:           List[RoutePoint]         = field(default_factory=list)
    latitude:        Optional[float]          = None
    longitude:       Optional[float]          = None
    prior_sora:      Optional[Dict[str, Any]] = None
    customer_ref:    Optional[str]            = None
    company_id:      Optional[str]            = None
    sora_buffers:    Optional[SoraBufferConfig] = None

    def representative_point(self) -> Optional[RoutePoint]:
        """Explicit mission coordinate, else the first route point."""
        if self.latitude is not None and self.longitude is not None:
            return RoutePoint(self.latitude, self.longitude)
        if self.route:
            return self.route[0]
        return None

    def footprint(self) -> List[RoutePoint]:
        if self.route:
            return list(self.route)
        point = self.representative_point()
        return [point] if point else []

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "MissionContext":
        route_raw = row.get("route")
        buffers   = None
        if isinstance(route_raw, dict):
            buffers = SoraBufferConfig.from_row(route_raw.get("soraSettings"))
        return cls(
            id              = str(row["id"]),
            title           = row.get("title") or "",
            location        = row.get("location"),
            description     = row.get("description"),
            scheduled_start = _parse_dt(row.get("scheduled_start")),
            scheduled_end   = _parse_dt(row.get("scheduled_end")),
            risk_tier       = row.get("risk_tier"),
            route           = parse_route(route_raw),
            latitude        = row.get("latitude"),
            longitude       = row.get("longitude"),
            prior_sora      = row.get("prior_sora"),
            customer_ref    = row.get("customer_ref"),
            company_id      = row.get("company_id"),
            sora_buffers    = buffers,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id":             self.id,
            "title":          self.title,
            "location":       self.location,
            "description":    self.description,
            "scheduledStart": _iso(self.scheduled_start),
            "scheduledEnd":   _iso(self.scheduled_end),
            "riskTier":       self.risk_tier,
            "route":          [p.to_dict() for p in self.route],
            "latitude":       self.latitude,
            "longitude":      self.longitude,
            "priorSora":      self.prior_sora,
            "customerRef":    self.customer_ref,
            "soraBuffers":    asdict(self.sora_buffers) if self.sora_buffers else None,
        }


@dataclass(frozen=True)
class PilotInput:
    """Operator-declared parameters for one assessment request."""
    flight_height_m:          float = 0.0
    operation_type:           str   = ""
    is_vlos:                  bool  = True
    observer_count:           int   = 0
    atc_required:             bool  = False
    proximity_to_people:      str   = ""
    critical_infrastructure:  bool  = False
    backup_landing_available: bool  = False
    backup_battery_available: bool  = False
    skip_weather_evaluation:  bool  = False
    preflight_check_done:     bool  = False
    rth_programmed:           bool  = False

    @classmethod
    def from_request(cls, raw: Optional[Dict[str, Any]]) -> "PilotInput":
        raw = raw or {}
        try:
            observers = int(raw.get("observerCount") or 0)
        except (TypeError, ValueError):
            observers = 0
        return cls(
            flight_height_m          = _as_float(raw.get("flightHeight")),
            operation_type           = str(raw.get("operationType") or ""),
            is_vlos                  = _as_bool(raw.get("isVlos"), True),
            observer_count           = max(0, observers),
            atc_required             = _as_bool(raw.get("atcRequired")),
            proximity_to_people      = str(raw.get("proximityToPeople") or ""),
            critical_infrastructure  = _as_bool(raw.get("criticalInfrastructure")),
            backup_landing_available = _as_bool(raw.get("backupLandingAvailable")),
            backup_battery_available = _as_bool(raw.get("backupBatteryAvailable")),
            skip_weather_evaluation  = _as_bool(raw.get("skipWeatherEvaluation")),
            preflight_check_done     = _as_bool(raw.get("preflightCheckDone")),
            rth_programmed           = _as_bool(raw.get("rthProgrammed")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "flightHeight":           self.flight_height_m,
            "operationType":          self.operation_type,
            "isVlos":                 self.is_vlos,
            "observerCount":          self.observer_count,
            "atcRequired":            self.atc_required,
            "proximityToPeople":      self.proximity_to_people,
            "criticalInfrastructure": self.critical_infrastructure,
            "backupLandingAvailable": self.backup_landing_available,
            "backupBatteryAvailable": self.backup_battery_available,
            "skipWeatherEvaluation":  self.skip_weather_evaluation,
            "preflightCheckDone":     self.preflight_check_done,
            "rthProgrammed":          self.rth_programmed,
        }


# ══════════════════════════════════════════════════════════════════════════════
# Fleet & personnel
# ══════════════════════════════════════════════════════════════════════════════

class AssetStatus(str, Enum):
    GREEN  = "green"
    YELLOW = "yellow"
    RED    = "red"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "AssetStatus":
        """Accept English or Norwegian tier labels; unknown ⇒ GREEN."""
        value = (raw or "").strip().lower()
        if value in ("red", "rød", "rod"):
            return cls.RED
        if value in ("yellow", "gul"):
            return cls.YELLOW
        return cls.GREEN


@dataclass(frozen=True)
class Competency:
    name:       str
    type:       Optional[str]  = None
    expires_on: Optional[date] = None

    def is_valid(self, today: date) -> bool:
        return self.expires_on is None or self.expires_on > today

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Competency":
        return cls(
            name       = row.get("name") or "",
            type       = row.get("type"),
            expires_on = parse_date(row.get("expires_on")),
        )


@dataclass(frozen=True)
class FlightStatistics:
    total_flights:        int            = 0
    total_minutes:        int            = 0
    flights_last_30_days: int            = 0
    flights_last_90_days: int            = 0
    last_flight_date:     Optional[date] = None
    flights_with_drone:   int            = 0

    def days_since_last_flight(self, today: date) -> Optional[int]:
        if self.last_flight_date is None:
            return None
        return (today - self.last_flight_date).days

    def to_dict(self, today: date) -> Dict[str, Any]:
        return {
            "totalFlights":       self.total_flights,
            "totalMinutes":       self.total_minutes,
            "flightsLast30Days":  self.flights_last_30_days,
            "flightsLast90Days":  self.flights_last_90_days,
            "lastFlightDate":     _iso(self.last_flight_date),
            "daysSinceLastFlight": self.days_since_last_flight(today),
            "flightsWithDrone":   self.flights_with_drone,
        }


@dataclass(frozen=True)
class PilotSummary:
    """One assigned pilot. `label` is an anonymous handle, never a name."""
    label:        str
    role:         Optional[str]
    flight_hours: float
    statistics:   FlightStatistics
    competencies: List[Competency] = field(default_factory=list)

    def valid_competencies(self, today: date) -> List[Competency]:
        return [c for c in self.competencies if c.is_valid(today)]

    def expired_competencies(self, today: date) -> List[Competency]:
        return [c for c in self.competencies if not c.is_valid(today)]

    def to_dict(self, today: date) -> Dict[str, Any]:
        return {
            "pilot":             self.label,
            "role":              self.role,
            "totalFlightHours":  self.flight_hours,
            **self.statistics.to_dict(today),
            "validCompetencies": [
                {"name": c.name, "type": c.type, "expires": _iso(c.expires_on)}
                for c in self.valid_competencies(today)
            ],
            "expiredCompetencies": [
                {"name": c.name, "type": c.type, "expired": _iso(c.expires_on)}
                for c in self.expired_competencies(today)
            ],
        }


@dataclass(frozen=True)
class AssignedAsset:
    kind:             str                 # "drone" | "equipment"
    model:            str
    serial:           Optional[str]
    status:           AssetStatus
    flight_hours:     Optional[float]    = None
    last_maintenance: Optional[date]     = None
    next_maintenance: Optional[date]     = None
    available:        bool               = True

    @classmethod
    def from_row(cls, kind: str, row: Dict[str, Any]) -> "AssignedAsset":
        return cls(
            kind             = kind,
            model            = row.get("model") or row.get("name") or "",
            serial           = row.get("serial_number"),
            status           = AssetStatus.parse(row.get("status")),
            flight_hours     = row.get("flight_hours"),
            last_maintenance = parse_date(row.get("last_maintenance")),
            next_maintenance = parse_date(row.get("next_maintenance")),
            available        = _as_bool(row.get("available"), True),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind":            self.kind,
            "model":           self.model,
            "serial":          self.serial,
            "status":          self.status.value,
            "flightHours":     self.flight_hours,
            "lastMaintenance": _iso(self.last_maintenance),
            "nextMaintenance": _iso(self.next_maintenance),
            "available":       self.available,
        }


@dataclass(frozen=True)
class FleetContext:
    personnel: List[PilotSummary]  = field(default_factory=list)
    assets:    List[AssignedAsset] = field(default_factory=list)

    @property
    def drones(self) -> List[AssignedAsset]:
        return [a for a in self.assets if a.kind == "drone"]

    @property
    def equipment(self) -> List[AssignedAsset]:
        return [a for a in self.assets if a.kind == "equipment"]


# ══════════════════════════════════════════════════════════════════════════════
# External-source snapshots
# ══════════════════════════════════════════════════════════════════════════════

SKIPPED_WEATHER_SCORE = 7


@dataclass(frozen=True)
class WeatherSnapshot:
    wind_speed_ms:      Optional[float] = None
    wind_gust_ms:       Optional[float] = None
    wind_direction_deg: Optional[float] = None
    visibility_km:      Optional[float] = None
    temperature_c:      Optional[float] = None
    precipitation_mm:   float           = 0.0
    humidity_pct:       Optional[float] = None
    symbol:             str             = "unknown"
    recommendation:     str             = "unknown"   # ok | caution | warning | unknown | skipped
    warnings:           List[Dict[str, Any]]     = field(default_factory=list)
    best_flight_window: Optional[Dict[str, Any]] = None
    observed_at:        Optional[str]   = None
    skipped:            bool            = False

    @classmethod
    def skipped_placeholder(cls) -> "WeatherSnapshot":
        return cls(recommendation="skipped", skipped=True)

    @property
    def placeholder_score(self) -> Optional[int]:
        return SKIPPED_WEATHER_SCORE if self.skipped else None

    def to_dict(self) -> Dict[str, Any]:
        if self.skipped:
            return {"skipped": True, "placeholderScore": SKIPPED_WEATHER_SCORE}
        return {
            "current": {
                "windSpeed":     self.wind_speed_ms,
                "windGust":      self.wind_gust_ms,
                "windDirection": self.wind_direction_deg,
                "visibilityKm":  self.visibility_km,
                "temperature":   self.temperature_c,
                "precipitation": self.precipitation_mm,
                "humidity":      self.humidity_pct,
                "symbol":        self.symbol,
            },
            "warnings":         self.warnings,
            "recommendation":   self.recommendation,
            "bestFlightWindow": self.best_flight_window,
            "observedAt":       self.observed_at,
        }


_SEVERITY_RANK = {"warning": 0, "caution": 1, "note": 2}


@dataclass(frozen=True)
class AirspaceWarning:
    zone_type:   str
    zone_name:   str
    distance_m:  Optional[float]
    inside:      bool
    severity:    str
    message:     Optional[str] = None

    @property
    def severity_rank(self) -> int:
        return _SEVERITY_RANK.get(self.severity, len(_SEVERITY_RANK))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type":     self.zone_type,
            "name":     self.zone_name,
            "distance": self.distance_m,
            "inside":   self.inside,
            "level":    self.severity,
            "message":  self.message,
        }


@dataclass(frozen=True)
class LandUseClassification:
    ground_risk: str                          # low | moderate | high
    counts:      Dict[str, int] = field(default_factory=dict)
    buffer_m:    float          = 0.0
    unknown:     bool           = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "groundRisk": self.ground_risk,
            "counts":     dict(self.counts),
            "bufferM":    self.buffer_m,
            "unknown":    self.unknown,
        }


@dataclass(frozen=True)
class PopulationDensityClassification:
    max_density: float
    avg_density: float
    cell_count:  int
    impact:      str           # none | moderate | high | very_high
    grc_increment: int
    source:      str = "primary"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "maxDensity":   round(self.max_density, 1),
            "avgDensity":   round(self.avg_density, 1),
            "cellCount":    self.cell_count,
            "grcImpact":    self.impact,
            "grcIncrement": self.grc_increment,
            "source":       self.source,
        }
