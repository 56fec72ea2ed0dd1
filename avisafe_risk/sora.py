"""
AviSafe Risk — SORA re-assessment delegate
==========================================
Second, differently-prompted delegate call. Takes the initial analysis plus
the pilot's per-category mitigations and asks for a formal SORA
classification: intrinsic/final GRC (1–7), initial/residual ARC (A–D) and
SAIL (I–VI).
"""

import json
import re
from typing import Any, Dict, Optional, Tuple

from avisafe_gatherers.models import MissionContext
from .errors import InvalidResponseError
from .models import ARC_CLASSES, RECOMMENDATIONS, SAIL_LEVELS, SoraOutput
from .policy import SafetyPolicy
from .scoring import threshold_block, normalize_overall, parse_delegate_json, recommendation_for_score

_ARC_RE  = re.compile(r"^(?:ARC)?[\s\-_]*([A-D])$", re.IGNORECASE)
_SAIL_RE = re.compile(r"^(?:SAIL)?[\s\-_]*([IVX]+|[1-6])$", re.IGNORECASE)

_RISK_LEVELS = {
    "low": "low", "lav": "low",
    "moderate": "moderate", "moderat": "moderate", "medium": "moderate", "middels": "moderate",
    "high": "high", "høy": "high", "hoy": "high",
}


# ── Prompt ────────────────────────────────────────────────────────────────────

_SORA_SCHEMA = """{
  "environment": "<operational environment, e.g. sparsely populated / populated / controlled ground area>",
  "conops_summary": "<short concept of operations>",
  "igrc": <integer 1-7>,
  "ground_mitigations": "<M1/M2/M3 mitigations applied>",
  "fgrc": <integer 1-7>,
  "arc_initial": "<A|B|C|D>",
  "airspace_mitigations": "<strategic/tactical mitigations>",
  "arc_residual": "<A|B|C|D>",
  "sail": "<I|II|III|IV|V|VI>",
  "residual_risk_level": "<low|moderate|high>",
  "residual_risk_comment": "<why>",
  "operational_limits": "<limits that apply to this operation>",
  "overall_score": <number 1-10>,
  "recommendation": "<go|caution|no-go>",
  "summary": "<short summary>"
}"""


def build_sora_prompt(
    mission: MissionContext,
    previous_analysis: Dict[str, Any],
    pilot_comments: Dict[str, str],
    policy: SafetyPolicy,
) -> Tuple[str, str]:
    system = (
        "You are a SORA (Specific Operations Risk Assessment) specialist. Using the "
        "initial AI risk analysis and the remote pilot's mitigations, classify the "
        "operation formally.\n\n"
        "Determine the intrinsic Ground Risk Class (iGRC 1-7) from the operational "
        "environment and population data, apply the declared ground mitigations to "
        "obtain the final GRC (fGRC, never above iGRC), determine the initial Air Risk "
        "Class (ARC A-D), apply airspace mitigations to obtain the residual ARC, and "
        "derive the SAIL (I-VI) from fGRC and residual ARC.\n\n"
        + threshold_block(policy) +
        "\nA hard stop in the initial analysis cannot be mitigated away: recommendation "
        "stays 'no-go'.\n\n"
        "Return ONLY valid JSON, no markdown."
    )
    payload = {
        "mission":          mission.to_dict(),
        "previousAnalysis": previous_analysis,
        "pilotMitigations": pilot_comments,
    }
    user = (
        "Re-assess this mission as a SORA classification:\n\n"
        f"{json.dumps(payload, indent=2, ensure_ascii=False, default=str)}\n\n"
        f"Return a JSON response with this structure:\n{_SORA_SCHEMA}"
    )
    return system, user


# ── Parsing ───────────────────────────────────────────────────────────────────

def _grc(data: Dict[str, Any], key: str) -> int:
    value = data.get(key)
    try:
        number = int(round(float(value)))
    except (TypeError, ValueError):
        raise InvalidResponseError(f"SORA field '{key}' is not a number", {key: repr(value)})
    return max(1, min(7, number))


def _arc(data: Dict[str, Any], key: str) -> str:
    match = _ARC_RE.match(str(data.get(key) or "").strip())
    if not match:
        raise InvalidResponseError(f"SORA field '{key}' is not an ARC class", {key: data.get(key)})
    return match.group(1).upper()


def _sail(value: Any) -> str:
    match = _SAIL_RE.match(str(value or "").strip())
    if match:
        token = match.group(1).upper()
        if token.isdigit():
            return SAIL_LEVELS[int(token) - 1]
        if token in SAIL_LEVELS:
            return token
    raise InvalidResponseError("SORA field 'sail' is not a SAIL level", {"sail": value})


def _text(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    return "" if value is None else str(value)


def parse_sora(text: str) -> SoraOutput:
    data = parse_delegate_json(text)

    igrc = _grc(data, "igrc")
    fgrc = min(_grc(data, "fgrc"), igrc)
    arc_initial  = _arc(data, "arc_initial")
    arc_residual = _arc(data, "arc_residual")
    if ARC_CLASSES.index(arc_residual) > ARC_CLASSES.index(arc_initial):
        arc_residual = arc_initial

    overall = normalize_overall(data.get("overall_score"))
    recommendation: Optional[str] = str(data.get("recommendation") or "").strip().lower()
    if recommendation not in RECOMMENDATIONS:
        recommendation = recommendation_for_score(overall) if overall is not None else None

    level = _RISK_LEVELS.get(_text(data, "residual_risk_level").strip().lower(), "")

    return SoraOutput(
        environment           = _text(data, "environment"),
        conops_summary        = _text(data, "conops_summary"),
        igrc                  = igrc,
        ground_mitigations    = _text(data, "ground_mitigations"),
        fgrc                  = fgrc,
        arc_initial           = arc_initial,
        airspace_mitigations  = _text(data, "airspace_mitigations"),
        arc_residual          = arc_residual,
        sail                  = _sail(data.get("sail")),
        residual_risk_level   = level or _text(data, "residual_risk_level"),
        residual_risk_comment = _text(data, "residual_risk_comment"),
        operational_limits    = _text(data, "operational_limits"),
        overall_score         = overall,
        recommendation        = recommendation,
        summary               = _text(data, "summary"),
    )
