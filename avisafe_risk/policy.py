"""
AviSafe Risk — Company safety policy
====================================
The single source of every numeric limit the engine applies. The same
SafetyPolicy instance feeds the hard-stop evaluator and the scoring prompt,
so the deterministic rules and the AI delegate reason about identical values.

Defaults are the conservative built-ins used when a company has not
configured its own limits.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class SafetyPolicy:
    # ── Weather ──
    max_wind_speed_ms:      float = 10.0
    max_wind_gust_ms:       float = 15.0
    min_visibility_km:      float = 1.0
    heavy_precipitation_mm: float = 2.0
    min_temp_c:             float = -10.0
    max_temp_c:             float = 40.0
    # ── Operation ──
    max_flight_altitude_m:  float = 120.0
    allow_bvlos:            bool  = False
    allow_night_flight:     bool  = False
    require_backup_battery: bool  = False
    require_observer:       bool  = False
    # ── Optional ceilings (None ⇒ not enforced) ──
    max_pilot_inactivity_days:      Optional[int]   = None
    max_population_density_per_km2: Optional[float] = None
    # ── Free text ──
    operative_restrictions: str = ""
    policy_notes:           str = ""
    linked_documents:       List[Dict[str, Any]] = field(default_factory=list)
    is_default:             bool = True

    @classmethod
    def from_row(
        cls,
        row: Optional[Dict[str, Any]],
        documents: Optional[List[Dict[str, Any]]] = None,
    ) -> "SafetyPolicy":
        """
        Build a policy from a `company_sora_config` row. Missing or zero limits
        fall back to the defaults; nullable ceilings stay None.
        """
        if not row:
            return cls()
        base = cls()

        def _positive(key: str, default: float) -> float:
            try:
                value = float(row.get(key) or 0)
            except (TypeError, ValueError):
                return default
            return value if value > 0 else default

        def _optional(key: str, default: float) -> float:
            value = row.get(key)
            return float(value) if value is not None else default

        inactivity = row.get("max_pilot_inactivity_days")
        density    = row.get("max_population_density_per_km2")

        return cls(
            max_wind_speed_ms      = _positive("max_wind_speed_ms", base.max_wind_speed_ms),
            max_wind_gust_ms       = _positive("max_wind_gust_ms", base.max_wind_gust_ms),
            # stored under its historical column name
            min_visibility_km      = _positive("max_visibility_km", base.min_visibility_km),
            max_flight_altitude_m  = _positive("max_flight_altitude_m", base.max_flight_altitude_m),
            min_temp_c             = _optional("min_temp_c", base.min_temp_c),
            max_temp_c             = _optional("max_temp_c", base.max_temp_c),
            allow_bvlos            = bool(row.get("allow_bvlos")),
            allow_night_flight     = bool(row.get("allow_night_flight")),
            require_backup_battery = bool(row.get("require_backup_battery")),
            require_observer       = bool(row.get("require_observer")),
            max_pilot_inactivity_days      = int(inactivity) if inactivity is not None else None,
            max_population_density_per_km2 = float(density) if density is not None else None,
            operative_restrictions = row.get("operative_restrictions") or "",
            policy_notes           = row.get("policy_notes") or "",
            linked_documents       = list(documents or []),
            is_default             = False,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "maxWindSpeedMs":             self.max_wind_speed_ms,
            "maxWindGustMs":              self.max_wind_gust_ms,
            "minVisibilityKm":            self.min_visibility_km,
            "heavyPrecipitationMm":       self.heavy_precipitation_mm,
            "minTempC":                   self.min_temp_c,
            "maxTempC":                   self.max_temp_c,
            "maxFlightAltitudeM":         self.max_flight_altitude_m,
            "allowBvlos":                 self.allow_bvlos,
            "allowNightFlight":           self.allow_night_flight,
            "requireBackupBattery":       self.require_backup_battery,
            "requireObserver":            self.require_observer,
            "maxPilotInactivityDays":     self.max_pilot_inactivity_days,
            "maxPopulationDensityPerKm2": self.max_population_density_per_km2,
            "operativeRestrictions":      self.operative_restrictions,
            "policyNotes":                self.policy_notes,
            "linkedDocuments":            self.linked_documents,
            "isDefault":                  self.is_default,
        }
