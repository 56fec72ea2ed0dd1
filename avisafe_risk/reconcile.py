"""
AviSafe Risk — Reconciliation
=============================
Merges the deterministic verdict and overlays into the delegate's judgment.
A triggered hard stop always yields `no-go`, whatever the delegate scored.
"""

import logging
from dataclasses import replace
from typing import Any, Dict

from .models import (
    CONDITIONAL,
    GO_DECISIONS,
    AssessmentContext,
    AssessmentResult,
    DelegateJudgment,
    HardStopVerdict,
    RiskCategoryScore,
    decision_for_score,
)

log = logging.getLogger("risk.reconcile")

# population impact → mission_complexity reduction (score floored at 1)
POPULATION_PENALTY = {"none": 0, "moderate": 1, "high": 2, "very_high": 3}


def _worse(a: str, b: str) -> str:
    return a if GO_DECISIONS.index(a) >= GO_DECISIONS.index(b) else b


def apply_overlays(
    categories: Dict[str, RiskCategoryScore],
    ctx: AssessmentContext,
) -> Dict[str, RiskCategoryScore]:
    out = {k: replace(v, factors=list(v.factors), concerns=list(v.concerns)) for k, v in categories.items()}

    if ctx.weather is not None and ctx.weather.skipped:
        out["weather"] = RiskCategoryScore(
            category    = "weather",
            score       = ctx.weather.placeholder_score,
            go_decision = CONDITIONAL,
            concerns    = ["Weather evaluation skipped by pilot; verify conditions on site"],
        )

    if ctx.population is not None:
        penalty = POPULATION_PENALTY.get(ctx.population.impact, 0)
        cat     = out.get("mission_complexity")
        if penalty and cat is not None:
            cat.score       = max(1, cat.score - penalty)
            cat.go_decision = _worse(cat.go_decision, decision_for_score(cat.score))
            cat.concerns.append(
                f"Population density up to {ctx.population.max_density:.0f}/km² "
                f"({ctx.population.impact}, +{ctx.population.grc_increment} GRC)"
            )
    return out


def reconcile(
    judgment: DelegateJudgment,
    verdict: HardStopVerdict,
    ctx: AssessmentContext,
    snapshot: Dict[str, Any],
) -> AssessmentResult:
    categories = apply_overlays(judgment.categories, ctx)

    overall = judgment.overall_score
    if overall is None:
        overall = round(sum(c.score for c in categories.values()) / len(categories), 1)

    recommendation = judgment.recommendation
    if verdict.triggered:
        if recommendation != "no-go":
            log.info(f"[reconcile] hard stop overrides delegate '{recommendation}': {verdict.reason}")
        recommendation = "no-go"
    elif judgment.hard_stop_echo:
        log.info("[reconcile] delegate reported a hard stop the rules did not confirm")

    return AssessmentResult(
        mission_id          = ctx.mission.id,
        overall_score       = overall,
        recommendation      = recommendation,
        hard_stop_triggered = verdict.triggered,
        hard_stop_reason    = verdict.reason,
        hard_stop_reasons   = list(verdict.reasons),
        categories          = categories,
        recommendations     = list(judgment.recommendations),
        prerequisites       = list(judgment.prerequisites),
        summary             = judgment.summary,
        context_snapshot    = snapshot,
    )
