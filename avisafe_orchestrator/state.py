"""
AviSafe Orchestrator — LangGraph State Definitions
"""

from datetime import date
from typing import Any, Dict, List, Optional, TypedDict

from avisafe_gatherers.models import MissionContext, PilotInput
from avisafe_risk.errors import RiskEngineError
from avisafe_risk.models import (
    AssessmentContext,
    AssessmentResult,
    DelegateJudgment,
    HardStopVerdict,
    SoraOutput,
)


class AssessmentState(TypedDict, total=False):
    """Phase A: initial go/no-go assessment."""

    # Input
    mission_id:       Optional[str]
    drone_id:         Optional[str]
    acting_user_id:   Optional[str]
    pilot_inputs_raw: Dict[str, Any]

    # Resolved
    today:            date
    mission:          MissionContext
    pilot_input:      PilotInput
    context:          AssessmentContext

    # Rule / delegate outputs
    verdict:          HardStopVerdict
    judgment:         DelegateJudgment
    result:           AssessmentResult

    # Execution control
    messages:         List[Any]
    status:           str                    # init / gathering / evaluating / scoring / persisted / save_failed / error
    error:            Optional[RiskEngineError]


class SoraState(TypedDict, total=False):
    """Phase B: SORA re-assessment from pilot mitigations."""

    # Input
    mission_id:        Optional[str]
    acting_user_id:    Optional[str]
    previous_analysis: Optional[Dict[str, Any]]
    pilot_comments:    Dict[str, str]

    # Resolved
    mission:           MissionContext

    # Outputs
    sora:              SoraOutput
    assessment_id:     Optional[str]
    saved:             bool

    # Execution control
    messages:          List[Any]
    status:            str                   # init / received_mitigations / scoring / persisted / save_failed / error
    error:             Optional[RiskEngineError]
