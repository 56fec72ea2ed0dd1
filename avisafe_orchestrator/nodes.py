"""
AviSafe Orchestrator — LangGraph Node Functions

Phase A — initial assessment:
  validate_request
           │ error ─────────────────────────────────────► END
           ▼
  gather_context          ← loader + policy + 4 gatherers concurrently
           ▼
  evaluate_hard_stops     ← deterministic veto, before the delegate
           ▼
  ai_scoring              ← Claude judgment, strict parsing
           │ error ─────────────────────────────────────► END  (nothing persisted)
           ▼
  reconcile               ← hard stop wins, deterministic overlays
           ▼
  persist_assessment      ← append-only row; failure ⇒ saved=False
           ▼
          END

Phase B — SORA re-assessment:
  receive_mitigations → sora_scoring → persist_sora → END
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Dict, Optional, TypeVar

from langchain_core.messages import AIMessage, HumanMessage
from langchain_core.runnables import RunnableConfig

from avisafe_gatherers import (
    fetch_airspace_warnings,
    fetch_land_use,
    fetch_population_density,
    fetch_weather,
    load_fleet,
    load_mission,
    load_safety_policy,
)
from avisafe_gatherers.models import FleetContext, PilotInput
from avisafe_risk.errors import (
    InvalidRequestError,
    RiskEngineError,
    UnauthorizedError,
)
from avisafe_risk.hard_stops import evaluate_hard_stops
from avisafe_risk.models import AssessmentContext
from avisafe_risk.policy import SafetyPolicy
from avisafe_risk.reconcile import reconcile
from avisafe_risk.scoring import build_assessment_prompt, parse_assessment
from avisafe_risk.sora import build_sora_prompt, parse_sora
from .deps import EngineDeps
from .state import AssessmentState, SoraState

log = logging.getLogger("orchestrator.nodes")

T = TypeVar("T")

SORA_STATUS_IN_PROGRESS = "Under arbeid"


def _deps(config: Optional[RunnableConfig]) -> EngineDeps:
    deps = ((config or {}).get("configurable") or {}).get("deps")
    if deps is None:
        raise RuntimeError("EngineDeps missing from graph config")
    return deps


def _append(state, msg):
    return list(state.get("messages") or []) + [msg]


def _fail(state, exc: RiskEngineError, node: str) -> Dict[str, Any]:
    log.warning(f"[{node}] {exc.code}: {exc.message}")
    msg = AIMessage(content=f"[{node}] ❌ {exc.code}: {exc.message}")
    return {**state, "status": "error", "error": exc, "messages": _append(state, msg)}


async def _guarded(name: str, aw: Awaitable[T], timeout: float, fallback: T) -> T:
    """A single source never fails the run: timeout or error ⇒ fallback."""
    try:
        return await asyncio.wait_for(aw, timeout=timeout)
    except asyncio.TimeoutError:
        log.warning(f"[gather_context] {name} timed out after {timeout:g}s")
    except Exception as exc:
        log.warning(f"[gather_context] {name} failed: {exc}")
    return fallback


async def _persist(fn, *args):
    """Run a store write in a worker thread; a cancelled caller does not interrupt it."""
    return await asyncio.shield(asyncio.to_thread(fn, *args))


# ──────────────────────────────────────────────────────────────────────────────
# PHASE A — NODE 1: validate_request
# ──────────────────────────────────────────────────────────────────────────────

async def validate_request_node(state: AssessmentState, config: RunnableConfig) -> AssessmentState:
    """Reject bad input before any work; resolve the mission row (404 if missing)."""
    deps = _deps(config)

    if not state.get("acting_user_id"):
        return _fail(state, UnauthorizedError(), "validate")
    mission_id = state.get("mission_id")
    if not mission_id:
        return _fail(state, InvalidRequestError("missionId is required"), "validate")

    try:
        mission = await asyncio.to_thread(load_mission, deps.store, mission_id)
    except RiskEngineError as exc:
        return _fail(state, exc, "validate")

    pilot_input = PilotInput.from_request(state.get("pilot_inputs_raw"))
    msg = HumanMessage(
        content=(
            f"[validate] ✅ mission '{mission.title}' ({mission.id}), "
            f"{'VLOS' if pilot_input.is_vlos else 'BVLOS'}, {pilot_input.flight_height_m:g} m AGL"
        )
    )
    return {
        **state,
        "today":       deps.today(),
        "mission":     mission,
        "pilot_input": pilot_input,
        "status":      "gathering",
        "error":       None,
        "messages":    _append(state, msg),
    }


# ──────────────────────────────────────────────────────────────────────────────
# PHASE A — NODE 2: gather_context
# ──────────────────────────────────────────────────────────────────────────────

async def gather_context_node(state: AssessmentState, config: RunnableConfig) -> AssessmentState:
    """
    Fleet/personnel loader, company policy and the four network gatherers run
    concurrently, each under its own timeout. Any failure becomes None / [].
    """
    deps        = _deps(config)
    mission     = state["mission"]
    pilot_input = state["pilot_input"]
    today       = state["today"]
    budget      = deps.timeouts
    point       = mission.representative_point()

    async with deps.http_client() as client:
        fleet, policy, weather, airspace, land_use, population = await asyncio.gather(
            _guarded(
                "fleet",
                asyncio.to_thread(
                    load_fleet, deps.store, mission.id, state["acting_user_id"], today, state.get("drone_id")
                ),
                budget["fleet"], FleetContext(),
            ),
            _guarded(
                "policy",
                asyncio.to_thread(load_safety_policy, deps.store, mission.company_id),
                budget["policy"], SafetyPolicy(),
            ),
            _guarded(
                "weather",
                fetch_weather(client, point, skip=pilot_input.skip_weather_evaluation),
                budget["weather"], None,
            ),
            _guarded("airspace", fetch_airspace_warnings(client, point, mission.route), budget["airspace"], []),
            _guarded("land_use", fetch_land_use(client, mission), budget["land_use"], None),
            _guarded("population", fetch_population_density(client, mission), budget["population"], None),
        )

    context = AssessmentContext(
        mission     = mission,
        pilot_input = pilot_input,
        policy      = policy,
        fleet       = fleet,
        weather     = weather,
        airspace    = airspace,
        land_use    = land_use,
        population  = population,
    )

    absent = [
        name for name, value in (
            ("weather", weather), ("land_use", land_use), ("population", population),
        ) if value is None
    ]
    msg = AIMessage(
        content=(
            f"[gather_context] ✅ {len(fleet.personnel)} pilot(s), {len(fleet.assets)} asset(s), "
            f"{len(airspace)} airspace warning(s)"
            + (f"; absent: {', '.join(absent)}" if absent else "")
        )
    )
    return {**state, "context": context, "status": "evaluating", "messages": _append(state, msg)}


# ──────────────────────────────────────────────────────────────────────────────
# PHASE A — NODE 3: evaluate_hard_stops
# ──────────────────────────────────────────────────────────────────────────────

async def evaluate_hard_stops_node(state: AssessmentState, config: RunnableConfig) -> AssessmentState:
    context = state["context"]
    verdict = evaluate_hard_stops(context, context.policy, state["today"])
    if verdict.triggered:
        log.info(f"[hard_stops] triggered: {verdict.reason} ({len(verdict.reasons)} rule(s))")
        msg = AIMessage(content=f"[hard_stops] ⛔ {verdict.reason}")
    else:
        msg = AIMessage(content="[hard_stops] ✅ no hard stop")
    return {**state, "verdict": verdict, "status": "scoring", "messages": _append(state, msg)}


# ──────────────────────────────────────────────────────────────────────────────
# PHASE A — NODE 4: ai_scoring
# ──────────────────────────────────────────────────────────────────────────────

async def ai_scoring_node(state: AssessmentState, config: RunnableConfig) -> AssessmentState:
    """Delegate failure is fatal to the request: the run ends without persisting."""
    deps    = _deps(config)
    context = state["context"]
    system, prompt = build_assessment_prompt(context, context.policy, state["verdict"], state["today"])

    log.info(f"[ai_scoring] calling delegate ({len(prompt)} chars of context)")
    try:
        text     = await deps.complete(system, prompt)
        judgment = parse_assessment(text)
    except RiskEngineError as exc:
        return _fail(state, exc, "ai_scoring")

    msg = AIMessage(
        content=(
            f"[ai_scoring] ✅ delegate: {judgment.recommendation} "
            f"(overall {judgment.overall_score})"
        )
    )
    return {**state, "judgment": judgment, "messages": _append(state, msg)}


# ──────────────────────────────────────────────────────────────────────────────
# PHASE A — NODE 5: reconcile
# ──────────────────────────────────────────────────────────────────────────────

def _snapshot(state: AssessmentState) -> Dict[str, Any]:
    context = state["context"]
    return {
        "mission":     context.mission.to_dict(),
        "pilotInputs": context.pilot_input.to_dict(),
        "weather":     context.weather.to_dict() if context.weather else None,
        "airspace":    [w.to_dict() for w in context.airspace],
        "landUse":     context.land_use.to_dict() if context.land_use else None,
        "population":  context.population.to_dict() if context.population else None,
        "policy":      context.policy.to_dict(),
    }


async def reconcile_node(state: AssessmentState, config: RunnableConfig) -> AssessmentState:
    result = reconcile(state["judgment"], state["verdict"], state["context"], _snapshot(state))
    msg = AIMessage(
        content=(
            f"[reconcile] ✅ final: {result.recommendation} (overall {result.overall_score}"
            f"{', HARD STOP' if result.hard_stop_triggered else ''})"
        )
    )
    return {**state, "result": result, "messages": _append(state, msg)}


# ──────────────────────────────────────────────────────────────────────────────
# PHASE A — NODE 6: persist_assessment
# ──────────────────────────────────────────────────────────────────────────────

def assessment_record(state: AssessmentState) -> Dict[str, Any]:
    result  = state["result"]
    context = state["context"]
    scores  = {k: v.score for k, v in result.categories.items()}
    return {
        "mission_id":               result.mission_id,
        "pilot_id":                 state["acting_user_id"],
        "company_id":               context.mission.company_id,
        "assessment_type":          "initial",
        "weather_score":            scores.get("weather"),
        "airspace_score":           scores.get("airspace"),
        "pilot_experience_score":   scores.get("pilot_experience"),
        "mission_complexity_score": scores.get("mission_complexity"),
        "equipment_score":          scores.get("equipment"),
        "overall_score":            result.overall_score,
        "recommendation":           result.recommendation,
        "hard_stop_triggered":      result.hard_stop_triggered,
        "hard_stop_reason":         result.hard_stop_reason,
        "ai_analysis":              result.to_dict(),
        "pilot_inputs":             context.pilot_input.to_dict(),
        "weather_data":             context.weather.to_dict() if context.weather else None,
        "airspace_warnings":        [w.to_dict() for w in context.airspace],
    }


async def persist_assessment_node(state: AssessmentState, config: RunnableConfig) -> AssessmentState:
    """A save failure never discards the computed result."""
    deps   = _deps(config)
    result = state["result"]
    try:
        result.assessment_id = await _persist(deps.store.insert_assessment, assessment_record(state))
        result.saved         = True
        status = "persisted"
        msg    = AIMessage(content=f"[persist] ✅ assessment {result.assessment_id} saved")
    except Exception as exc:
        log.error(f"[persist] assessment save failed for mission {result.mission_id}: {exc}")
        result.saved = False
        status = "save_failed"
        msg    = AIMessage(content=f"[persist] ⚠️ assessment not saved: {exc}")
    return {**state, "result": result, "status": status, "messages": _append(state, msg)}


# ──────────────────────────────────────────────────────────────────────────────
# PHASE B — NODE 1: receive_mitigations
# ──────────────────────────────────────────────────────────────────────────────

async def receive_mitigations_node(state: SoraState, config: RunnableConfig) -> SoraState:
    deps = _deps(config)

    if not state.get("acting_user_id"):
        return _fail(state, UnauthorizedError(), "receive_mitigations")
    mission_id = state.get("mission_id")
    if not mission_id:
        return _fail(state, InvalidRequestError("missionId is required"), "receive_mitigations")
    previous = state.get("previous_analysis")
    if not isinstance(previous, dict) or not previous:
        return _fail(
            state, InvalidRequestError("previousAnalysis is required for SORA re-assessment"),
            "receive_mitigations",
        )

    try:
        mission = await asyncio.to_thread(load_mission, deps.store, mission_id)
    except RiskEngineError as exc:
        return _fail(state, exc, "receive_mitigations")

    comments = {str(k): str(v) for k, v in (state.get("pilot_comments") or {}).items() if v}
    msg = HumanMessage(
        content=f"[receive_mitigations] ✅ {len(comments)} category comment(s) for mission {mission.id}"
    )
    return {
        **state,
        "mission":        mission,
        "pilot_comments": comments,
        "status":         "received_mitigations",
        "error":          None,
        "messages":       _append(state, msg),
    }


# ──────────────────────────────────────────────────────────────────────────────
# PHASE B — NODE 2: sora_scoring
# ──────────────────────────────────────────────────────────────────────────────

async def sora_scoring_node(state: SoraState, config: RunnableConfig) -> SoraState:
    deps     = _deps(config)
    mission  = state["mission"]
    previous = state["previous_analysis"]
    policy   = await asyncio.to_thread(load_safety_policy, deps.store, mission.company_id)

    system, prompt = build_sora_prompt(mission, previous, state["pilot_comments"], policy)
    log.info("[sora_scoring] calling delegate for SORA classification")
    try:
        sora = parse_sora(await deps.complete(system, prompt))
    except RiskEngineError as exc:
        return _fail(state, exc, "sora_scoring")

    if previous.get("hard_stop_triggered") and sora.recommendation != "no-go":
        log.info("[sora_scoring] initial hard stop keeps the SORA recommendation at no-go")
        sora.recommendation = "no-go"

    msg = AIMessage(
        content=f"[sora_scoring] ✅ iGRC {sora.igrc} → fGRC {sora.fgrc}, ARC {sora.arc_initial} → {sora.arc_residual}, SAIL {sora.sail}"
    )
    return {**state, "sora": sora, "status": "scoring", "messages": _append(state, msg)}


# ──────────────────────────────────────────────────────────────────────────────
# PHASE B — NODE 3: persist_sora
# ──────────────────────────────────────────────────────────────────────────────

def _save_sora(store, state: SoraState) -> str:
    mission  = state["mission"]
    previous = state["previous_analysis"]
    sora     = state["sora"]
    scores   = {k: (v or {}).get("score") for k, v in (previous.get("categories") or {}).items()}

    record = {
        "mission_id":               mission.id,
        "pilot_id":                 state["acting_user_id"],
        "company_id":               mission.company_id,
        "assessment_type":          "sora_reassessment",
        "weather_score":            scores.get("weather"),
        "airspace_score":           scores.get("airspace"),
        "pilot_experience_score":   scores.get("pilot_experience"),
        "mission_complexity_score": scores.get("mission_complexity"),
        "equipment_score":          scores.get("equipment"),
        "overall_score":            sora.overall_score,
        "recommendation":           sora.recommendation,
        "hard_stop_triggered":      bool(previous.get("hard_stop_triggered")),
        "hard_stop_reason":         previous.get("hard_stop_reason"),
        "ai_analysis":              previous,
        "pilot_comments":           state["pilot_comments"],
        "sora_output":              sora.to_dict(),
    }
    values = {
        **sora.to_record(),
        "company_id":  mission.company_id,
        "sora_status": SORA_STATUS_IN_PROGRESS,
        "prepared_by": state["acting_user_id"],
        "prepared_at": datetime.now(timezone.utc),
    }
    return store.save_sora_reassessment(record, mission.id, values)


async def persist_sora_node(state: SoraState, config: RunnableConfig) -> SoraState:
    deps = _deps(config)
    try:
        assessment_id = await _persist(_save_sora, deps.store, state)
        saved, status = True, "persisted"
        msg = AIMessage(content=f"[persist_sora] ✅ SORA saved (assessment {assessment_id})")
    except Exception as exc:
        log.error(f"[persist_sora] SORA save failed for mission {state['mission'].id}: {exc}")
        assessment_id, saved, status = None, False, "save_failed"
        msg = AIMessage(content=f"[persist_sora] ⚠️ SORA not saved: {exc}")
    return {
        **state,
        "assessment_id": assessment_id,
        "saved":         saved,
        "status":        status,
        "messages":      _append(state, msg),
    }
