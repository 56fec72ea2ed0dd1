"""
AviSafe Risk — Assessment data types
====================================
The merged context the rules and the delegate read, and the shapes the engine
produces (category scores, hard-stop verdict, assessment result, SORA output).
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

from avisafe_gatherers.models import (
    AirspaceWarning,
    FleetContext,
    LandUseClassification,
    MissionContext,
    PilotInput,
    PopulationDensityClassification,
    WeatherSnapshot,
)
from avisafe_geo import max_distance_from_km, route_length_km
from .policy import SafetyPolicy

CATEGORIES = ("weather", "airspace", "pilot_experience", "mission_complexity", "equipment")

GO          = "GO"
CONDITIONAL = "BETINGET"
NO_GO_TAG   = "IKKE GO"
GO_DECISIONS = (GO, CONDITIONAL, NO_GO_TAG)

RECOMMENDATIONS = ("go", "caution", "no-go")

AI_DISCLAIMER = (
    "This assessment is generated with AI support and is advisory only. "
    "The remote pilot in command remains responsible for the final go/no-go "
    "decision and for compliance with applicable regulations."
)


# ══════════════════════════════════════════════════════════════════════════════
# Merged context
# ══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AssessmentContext:
    """Everything gathered for one run. Absent sources are None / []."""
    mission:     MissionContext
    pilot_input: PilotInput
    policy:      SafetyPolicy
    fleet:       FleetContext                              = field(default_factory=FleetContext)
    weather:     Optional[WeatherSnapshot]                 = None
    airspace:    List[AirspaceWarning]                     = field(default_factory=list)
    land_use:    Optional[LandUseClassification]           = None
    population:  Optional[PopulationDensityClassification] = None

    def to_prompt_dict(self, today: date) -> Dict[str, Any]:
        """Serialized for the delegate. Pilots appear only by anonymous label."""
        mission = self.mission.to_dict()
        if self.mission.route:
            mission["routeLengthKm"]    = route_length_km(self.mission.route)
            mission["maxReachFromStartKm"] = round(
                max_distance_from_km(self.mission.route[0], self.mission.route), 3
            )
        return {
            "mission":     mission,
            "pilotInputs": self.pilot_input.to_dict(),
            "weather":     self.weather.to_dict() if self.weather else None,
            "airspace":    {"warnings": [w.to_dict() for w in self.airspace]},
            "landUse":     self.land_use.to_dict() if self.land_use else None,
            "population":  self.population.to_dict() if self.population else None,
            "personnel":   [p.to_dict(today) for p in self.fleet.personnel],
            "drones":      [a.to_dict() for a in self.fleet.drones],
            "equipment":   [a.to_dict() for a in self.fleet.equipment],
            "companyPolicy": self.policy.to_dict(),
        }


# ══════════════════════════════════════════════════════════════════════════════
# Outputs
# ══════════════════════════════════════════════════════════════════════════════

def decision_for_score(score: int) -> str:
    if score >= 7:
        return GO
    if score >= 4:
        return CONDITIONAL
    return NO_GO_TAG


@dataclass
class RiskCategoryScore:
    category:    str
    score:       int
    go_decision: str
    factors:     List[str] = field(default_factory=list)
    concerns:    List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score":       self.score,
            "go_decision": self.go_decision,
            "factors":     list(self.factors),
            "concerns":    list(self.concerns),
        }


@dataclass(frozen=True)
class HardStopVerdict:
    triggered: bool
    reason:    Optional[str] = None
    reasons:   List[str]     = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"triggered": self.triggered, "reason": self.reason, "reasons": list(self.reasons)}


@dataclass
class DelegateJudgment:
    """Validated, normalized delegate answer. Never authoritative on hard stops."""
    overall_score:   Optional[float]
    recommendation:  str
    summary:         str
    categories:      Dict[str, RiskCategoryScore]
    recommendations: List[Dict[str, str]]    = field(default_factory=list)
    prerequisites:   List[str]               = field(default_factory=list)
    hard_stop_echo:  bool                    = False


@dataclass
class AssessmentResult:
    mission_id:          str
    overall_score:       float
    recommendation:      str
    hard_stop_triggered: bool
    hard_stop_reason:    Optional[str]
    hard_stop_reasons:   List[str]
    categories:          Dict[str, RiskCategoryScore]
    recommendations:     List[Dict[str, str]]
    prerequisites:       List[str]
    summary:             str
    context_snapshot:    Dict[str, Any]
    disclaimer:          str = AI_DISCLAIMER
    saved:               bool = False
    assessment_id:       Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id":                  self.assessment_id,
            "mission_id":          self.mission_id,
            "overall_score":       self.overall_score,
            "recommendation":      self.recommendation,
            "hard_stop_triggered": self.hard_stop_triggered,
            "hard_stop_reason":    self.hard_stop_reason,
            "hard_stop_reasons":   list(self.hard_stop_reasons),
            "categories":          {k: v.to_dict() for k, v in self.categories.items()},
            "recommendations":     list(self.recommendations),
            "prerequisites":       list(self.prerequisites),
            "go_conditions":       list(self.prerequisites),
            "summary":             self.summary,
            "ai_disclaimer":       self.disclaimer,
            "context":             self.context_snapshot,
            "saved":               self.saved,
        }


ARC_CLASSES  = ("A", "B", "C", "D")
SAIL_LEVELS  = ("I", "II", "III", "IV", "V", "VI")


@dataclass
class SoraOutput:
    environment:           str
    conops_summary:        str
    igrc:                  int
    ground_mitigations:    str
    fgrc:                  int
    arc_initial:           str
    airspace_mitigations:  str
    arc_residual:          str
    sail:                  str
    residual_risk_level:   str
    residual_risk_comment: str
    operational_limits:    str
    overall_score:         Optional[float] = None
    recommendation:        Optional[str]   = None
    summary:               str             = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "environment":           self.environment,
            "conops_summary":        self.conops_summary,
            "igrc":                  self.igrc,
            "ground_mitigations":    self.ground_mitigations,
            "fgrc":                  self.fgrc,
            "arc_initial":           self.arc_initial,
            "airspace_mitigations":  self.airspace_mitigations,
            "arc_residual":          self.arc_residual,
            "sail":                  self.sail,
            "residual_risk_level":   self.residual_risk_level,
            "residual_risk_comment": self.residual_risk_comment,
            "operational_limits":    self.operational_limits,
            "overall_score":         self.overall_score,
            "recommendation":        self.recommendation,
            "summary":               self.summary,
        }

    def to_record(self) -> Dict[str, Any]:
        """Columns of the mission_sora row."""
        record = self.to_dict()
        for key in ("overall_score", "recommendation", "summary"):
            record.pop(key)
        return record
