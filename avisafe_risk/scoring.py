"""
AviSafe Risk — AI scoring delegate
==================================
Prompt construction for the initial assessment and strict parsing of the
delegate's answer.

The delegate is an untrusted boundary: its text is stripped of code fences,
parsed as JSON, schema-checked and every score normalized to an integer in
[1, 10] before anything downstream sees it. Its hard-stop opinion is recorded
but never authoritative.
"""

import json
import logging
import math
import re
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from .errors import InvalidResponseError
from .models import (
    CATEGORIES,
    GO_DECISIONS,
    RECOMMENDATIONS,
    AssessmentContext,
    DelegateJudgment,
    HardStopVerdict,
    RiskCategoryScore,
    decision_for_score,
)
from .policy import SafetyPolicy

log = logging.getLogger("risk.scoring")

_FENCE_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_PRIORITIES = ("high", "medium", "low")


# ══════════════════════════════════════════════════════════════════════════════
# Prompt
# ══════════════════════════════════════════════════════════════════════════════

def threshold_block(policy: SafetyPolicy) -> str:
    inactivity = (
        f"{policy.max_pilot_inactivity_days} days" if policy.max_pilot_inactivity_days is not None
        else "not enforced"
    )
    density = (
        f"{policy.max_population_density_per_km2:g} persons/km²"
        if policy.max_population_density_per_km2 is not None else "not enforced"
    )
    return (
        "COMPANY LIMITS (absolute, hard stops):\n"
        f"• Max mean wind        : {policy.max_wind_speed_ms:g} m/s\n"
        f"• Max wind gust        : {policy.max_wind_gust_ms:g} m/s\n"
        f"• Min visibility       : {policy.min_visibility_km:g} km\n"
        f"• Heavy precipitation  : > {policy.heavy_precipitation_mm:g} mm/h\n"
        f"• Temperature window   : {policy.min_temp_c:g}°C to {policy.max_temp_c:g}°C\n"
        f"• Max altitude         : {policy.max_flight_altitude_m:g} m AGL\n"
        f"• BVLOS allowed        : {'yes' if policy.allow_bvlos else 'no'}\n"
        f"• Night flight allowed : {'yes' if policy.allow_night_flight else 'no'}\n"
        f"• Backup battery req.  : {'yes' if policy.require_backup_battery else 'no'}\n"
        f"• Observer required    : {'yes' if policy.require_observer else 'no'}\n"
        f"• Max pilot inactivity : {inactivity}\n"
        f"• Max population       : {density}\n"
    )


def build_system_prompt(policy: SafetyPolicy) -> str:
    restrictions = policy.operative_restrictions.strip()
    notes        = policy.policy_notes.strip()
    extra = ""
    if restrictions:
        extra += f"\nOPERATIVE RESTRICTIONS:\n{restrictions}\n"
    if notes:
        extra += f"\nPOLICY NOTES:\n{notes}\n"
    for doc in policy.linked_documents:
        extra += f"\nPOLICY DOCUMENT: {doc.get('title')}:\n{doc.get('summary') or ''}\n"

    return (
        "You are an expert in drone operations and SORA risk assessment. Analyse the "
        "mission data and return a structured risk assessment.\n\n"
        "Score five categories from 1 (high risk) to 10 (low risk), integers only:\n"
        "  weather, airspace, pilot_experience, mission_complexity, equipment\n\n"
        + threshold_block(policy) + extra +
        "\nRULES:\n"
        "1. Any breached company limit is a HARD STOP: recommendation must be 'no-go'. "
        "Good scores in other categories never compensate.\n"
        "2. Equipment at yellow status lowers the equipment score but is not a hard stop; "
        "red status is a hard stop.\n"
        "3. Pilot experience considers valid competencies, recency and hours. Expired "
        "competencies do not count.\n"
        "4. Score mission_complexity WITHOUT population density; the population "
        "adjustment is applied separately.\n"
        "5. If weather is marked skipped, do not speculate about weather.\n"
        "6. Each category carries go_decision: 'GO', 'BETINGET' (conditional) or 'IKKE GO'.\n\n"
        "Return ONLY valid JSON, no markdown."
    )


_OUTPUT_SCHEMA = """{
  "overall_score": <number 1-10>,
  "recommendation": "<go|caution|no-go>",
  "hard_stop_triggered": <true|false>,
  "summary": "<short summary>",
  "categories": {
    "<weather|airspace|pilot_experience|mission_complexity|equipment>": {
      "score": <integer 1-10>,
      "go_decision": "<GO|BETINGET|IKKE GO>",
      "factors": ["<positive factors>"],
      "concerns": ["<concerns>"]
    }
  },
  "recommendations": [
    {"priority": "<high|medium|low>", "action": "<concrete action>", "reason": "<why>"}
  ],
  "go_conditions": ["<conditions that must hold for a safe flight>"]
}"""


def build_assessment_prompt(
    ctx: AssessmentContext,
    policy: SafetyPolicy,
    verdict: HardStopVerdict,
    today: date,
) -> Tuple[str, str]:
    """→ (system, user). The user block carries the serialized context only."""
    context = ctx.to_prompt_dict(today)
    context["deterministicHardStop"] = verdict.to_dict()
    user = (
        "Analyse this drone mission risk assessment:\n\n"
        f"{json.dumps(context, indent=2, ensure_ascii=False, default=str)}\n\n"
        f"Return a JSON response with this structure:\n{_OUTPUT_SCHEMA}"
    )
    return build_system_prompt(policy), user


# ══════════════════════════════════════════════════════════════════════════════
# Parsing
# ══════════════════════════════════════════════════════════════════════════════

def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text or "").replace("```", "").strip()


def parse_delegate_json(text: str) -> Dict[str, Any]:
    """Fence-stripped JSON object or InvalidResponseError."""
    cleaned = strip_code_fences(text)
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end <= start:
        log.error(f"[scoring] delegate answer has no JSON object: {cleaned[:200]!r}")
        raise InvalidResponseError("AI response is not JSON", {"excerpt": cleaned[:200]})
    try:
        data = json.loads(cleaned[start:end + 1])
    except json.JSONDecodeError as exc:
        log.error(f"[scoring] delegate JSON invalid: {exc}")
        raise InvalidResponseError("AI response is not valid JSON", {"error": str(exc)})
    if not isinstance(data, dict):
        raise InvalidResponseError("AI response JSON is not an object")
    return data


def _as_number(value) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def normalize_score(value) -> int:
    """
    Integer score in [1, 10]. Fractions in (0, 1) are read as tenths
    (0.7 ⇒ 7); halves round up.
    """
    number = _as_number(value)
    if number is None:
        raise InvalidResponseError("Non-numeric score", {"value": repr(value)})
    if 0 < number < 1:
        number *= 10
    return max(1, min(10, int(math.floor(number + 0.5))))


def normalize_overall(value) -> Optional[float]:
    number = _as_number(value)
    if number is None:
        return None
    if 0 < number < 1:
        number *= 10
    return round(max(1.0, min(10.0, number)), 1)


def recommendation_for_score(score: float) -> str:
    if score >= 7:
        return "go"
    if score >= 4:
        return "caution"
    return "no-go"


def _str_list(value) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v not in (None, "")]


def _parse_category(name: str, raw: Any) -> RiskCategoryScore:
    if not isinstance(raw, dict):
        raise InvalidResponseError(f"Category '{name}' missing from AI response")
    if _as_number(raw.get("score")) is None:
        raise InvalidResponseError(f"Category '{name}' has a non-numeric score", {"score": repr(raw.get("score"))})
    score    = normalize_score(raw.get("score"))
    decision = str(raw.get("go_decision") or "").strip().upper()
    if decision not in GO_DECISIONS:
        decision = decision_for_score(score)
    return RiskCategoryScore(
        category    = name,
        score       = score,
        go_decision = decision,
        factors     = _str_list(raw.get("factors", raw.get("positive_factors"))),
        concerns    = _str_list(raw.get("concerns")),
    )


def _parse_recommendations(raw) -> List[Dict[str, str]]:
    out = []
    for item in raw if isinstance(raw, list) else []:
        if not isinstance(item, dict) or not item.get("action"):
            continue
        priority = str(item.get("priority") or "medium").lower()
        out.append({
            "priority": priority if priority in _PRIORITIES else "medium",
            "action":   str(item["action"]),
            "reason":   str(item.get("reason") or ""),
        })
    return sorted(out, key=lambda r: _PRIORITIES.index(r["priority"]))


def parse_assessment(text: str) -> DelegateJudgment:
    data       = parse_delegate_json(text)
    categories = data.get("categories")
    if not isinstance(categories, dict):
        raise InvalidResponseError("AI response has no categories object")

    scores  = {name: _parse_category(name, categories.get(name)) for name in CATEGORIES}
    overall = normalize_overall(data.get("overall_score"))

    recommendation = str(data.get("recommendation") or "").strip().lower()
    if recommendation not in RECOMMENDATIONS:
        basis = overall if overall is not None else sum(s.score for s in scores.values()) / len(scores)
        recommendation = recommendation_for_score(basis)

    return DelegateJudgment(
        overall_score   = overall,
        recommendation  = recommendation,
        summary         = str(data.get("summary") or ""),
        categories      = scores,
        recommendations = _parse_recommendations(data.get("recommendations")),
        prerequisites   = _str_list(data.get("go_conditions", data.get("prerequisites"))),
        hard_stop_echo  = bool(data.get("hard_stop_triggered")),
    )
