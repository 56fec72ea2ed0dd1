"""
AviSafe — SORA Risk Engine
FastAPI entry point — port 3010

Endpoints
─────────
GET  /                                       Health + pipeline description
POST /api/v1/risk-assessment                 Phase A assessment or Phase B SORA re-assessment
GET  /api/v1/risk-assessment/graph           LangGraph workflow diagram
GET  /api/v1/missions/{mission_id}/assessments   Assessment history for a mission

The acting user id arrives in the X-User-Id header, set by the upstream
authentication gateway.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from avisafe_risk.errors import InvalidRequestError, RiskEngineError
from .deps import EngineDeps, default_deps
from .graph import build_assessment_graph, build_sora_reassessment_graph, run_graph
from .state import AssessmentState, SoraState

load_dotenv()

# ── Logging ───────────────────────────────────────────────────────────────────
LOG_DIR = Path(os.getenv("LOG_DIR", "logs"))
LOG_DIR.mkdir(parents=True, exist_ok=True)

logging.basicConfig(
    level=logging.INFO,
    handlers=[
        logging.FileHandler(LOG_DIR / "risk_engine.log"),
        logging.StreamHandler(),
    ],
    format='{"time":"%(asctime)s","level":"%(levelname)s","msg":"%(message)s"}',
)
log = logging.getLogger("orchestrator")

# ── FastAPI app ───────────────────────────────────────────────────────────────
app = FastAPI(
    title="AviSafe — SORA Risk Engine",
    description=(
        "LangGraph workflow gathering weather, airspace, land use, population and "
        "fleet context, applying deterministic hard stops and AI scoring into an "
        "auditable go/no-go assessment and SORA classification."
    ),
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Compile both graphs once at startup
assessment_graph = build_assessment_graph()
sora_graph       = build_sora_reassessment_graph()
log.info("Risk engine graphs compiled and ready.")

_deps: Optional[EngineDeps] = None


def get_deps() -> EngineDeps:
    """Lazily built from the environment; overridden in tests."""
    global _deps
    if _deps is None:
        _deps = default_deps()
    return _deps


# ── Error mapping ─────────────────────────────────────────────────────────────

@app.exception_handler(RiskEngineError)
async def risk_engine_error_handler(request: Request, exc: RiskEngineError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    err = InvalidRequestError("Malformed request body", {"errors": exc.errors()})
    return JSONResponse(status_code=err.status_code, content=jsonable(err.to_dict()))


def jsonable(payload: Dict[str, Any]) -> Dict[str, Any]:
    return jsonable_encoder(payload)


# ── Pydantic models ───────────────────────────────────────────────────────────

class RiskAssessmentIn(BaseModel):
    missionId:        Optional[str]            = None
    droneId:          Optional[str]            = None
    pilotInputs:      Dict[str, Any]           = {}
    soraReassessment: bool                     = False
    previousAnalysis: Optional[Dict[str, Any]] = None
    pilotComments:    Dict[str, Optional[str]] = {}


# ── Helpers: initial graph states ─────────────────────────────────────────────

def _assessment_state(request: RiskAssessmentIn, user_id: Optional[str]) -> AssessmentState:
    return {
        "mission_id":       request.missionId,
        "drone_id":         request.droneId,
        "acting_user_id":   user_id,
        "pilot_inputs_raw": request.pilotInputs,
        "messages":         [],
        "status":           "init",
        "error":            None,
    }


def _sora_state(request: RiskAssessmentIn, user_id: Optional[str]) -> SoraState:
    return {
        "mission_id":        request.missionId,
        "acting_user_id":    user_id,
        "previous_analysis": request.previousAnalysis,
        "pilot_comments":    {k: v for k, v in request.pilotComments.items() if v},
        "messages":          [],
        "status":            "init",
        "error":             None,
    }


# ── Endpoints ─────────────────────────────────────────────────────────────────

@app.get("/")
def health():
    return {
        "service":   "AviSafe SORA Risk Engine",
        "version":   "1.0.0",
        "status":    "operational",
        "framework": "LangGraph",
        "pipeline":  "validate → gather_context → hard_stops → ai_scoring → reconcile → persist",
        "sora":      "receive_mitigations → sora_scoring → persist_sora",
    }


@app.post("/api/v1/risk-assessment")
async def risk_assessment(
    request: RiskAssessmentIn,
    x_user_id: Optional[str] = Header(None),
    deps: EngineDeps = Depends(get_deps),
):
    """
    Phase A (default): full go/no-go assessment for a mission.
    Phase B (`soraReassessment: true`): SORA classification from the previous
    analysis and the pilot's per-category mitigations.

    Returns a complete result or a typed error body, never both.
    """
    if request.soraReassessment:
        log.info(f"SORA re-assessment request: mission={request.missionId}")
        final = await run_graph(sora_graph, _sora_state(request, x_user_id), deps)
        return {
            "success":       True,
            "sora":          final["sora"].to_dict(),
            "assessment_id": final.get("assessment_id"),
            "saved":         final.get("saved", False),
            "status":        final["status"],
        }

    log.info(f"Risk assessment request: mission={request.missionId}, drone={request.droneId}")
    final  = await run_graph(assessment_graph, _assessment_state(request, x_user_id), deps)
    result = final["result"]
    log.info(
        f"Risk assessment complete: mission={result.mission_id}, "
        f"recommendation={result.recommendation}, saved={result.saved}"
    )
    return {
        "success":    True,
        "assessment": result.to_dict(),
        "saved":      result.saved,
        "status":     final["status"],
    }


@app.get("/api/v1/missions/{mission_id}/assessments")
async def mission_assessments(
    mission_id: str,
    limit: int = Query(20, ge=1, le=100),
    deps: EngineDeps = Depends(get_deps),
):
    """Assessment history for a mission, newest first."""
    rows = deps.store.list_assessments(mission_id, limit=limit)
    return jsonable({"mission_id": mission_id, "count": len(rows), "assessments": rows})


@app.get("/api/v1/risk-assessment/graph")
def get_workflow_diagram():
    """ASCII representation of both LangGraph workflows."""
    diagram = """
    AviSafe — SORA Risk Engine (LangGraph)
    ══════════════════════════════════════════════════════════════

    PHASE A — initial assessment
    [START]
       │
       ▼
    ┌──────────────────────────────────────┐
    │  validate                            │  missionId / user / mission row
    └────────────────┬─────────────────────┘
                     │ error ────────────────────────────────► [END]
                     ▼
    ┌──────────────────────────────────────┐
    │  gather_context   (concurrent)       │  fleet + personnel loader
    │  • weather (MET locationforecast)    │  company SORA policy
    │  • airspace (spatial RPC)            │
    │  • land use (zoning WFS)             │  each with its own timeout,
    │  • population (grid WFS, +fallback)  │  failure ⇒ absent data
    └────────────────┬─────────────────────┘
                     ▼
    ┌──────────────────────────────────────┐
    │  evaluate_hard_stops                 │  10 deterministic veto rules
    └────────────────┬─────────────────────┘
                     ▼
    ┌──────────────────────────────────────┐
    │  ai_scoring                          │  Claude, 5 categories 1–10
    └────────────────┬─────────────────────┘
                     │ rate_limited / quota_exhausted /
                     │ upstream_unavailable / invalid_response ──► [END]
                     ▼
    ┌──────────────────────────────────────┐
    │  reconcile                           │  hard stop ⇒ no-go, overlays
    └────────────────┬─────────────────────┘
                     ▼
    ┌──────────────────────────────────────┐
    │  persist_assessment                  │  append row, saved flag
    └────────────────┬─────────────────────┘
                     ▼
                   [END]

    PHASE B — SORA re-assessment
    receive_mitigations → sora_scoring → persist_sora (upsert mission_sora)
    """
    return {"diagram": diagram}


# ── Entry point ───────────────────────────────────────────────────────────────

if __name__ == "__main__":
    port = int(os.getenv("PORT", 3010))
    uvicorn.run("avisafe_orchestrator.main:app", host="0.0.0.0", port=port, reload=False)
