"""
AviSafe Orchestrator — LangGraph StateGraph Definitions
build_assessment_graph() compiles Phase A, build_sora_reassessment_graph()
compiles Phase B. run_graph() invokes either and raises the typed error a
failed run ended with.
"""

from typing import Any, Dict

from langgraph.graph import StateGraph, END

from .deps import EngineDeps
from .state import AssessmentState, SoraState
from .nodes import (
    validate_request_node,
    gather_context_node,
    evaluate_hard_stops_node,
    ai_scoring_node,
    reconcile_node,
    persist_assessment_node,
    receive_mitigations_node,
    sora_scoring_node,
    persist_sora_node,
)


def _ok_or_end(state: Dict[str, Any]) -> str:
    """Abort on a typed error recorded by the previous node."""
    return "error" if state.get("status") == "error" else "ok"


def build_assessment_graph():
    """
    Compile and return the Phase A assessment graph.

    Flow:
      validate → gather_context → evaluate_hard_stops → ai_scoring
        → reconcile → persist_assessment → END
    """
    graph = StateGraph(AssessmentState)

    # Register nodes
    graph.add_node("validate",            validate_request_node)
    graph.add_node("gather_context",      gather_context_node)
    graph.add_node("evaluate_hard_stops", evaluate_hard_stops_node)
    graph.add_node("ai_scoring",          ai_scoring_node)
    graph.add_node("reconcile",           reconcile_node)
    graph.add_node("persist_assessment",  persist_assessment_node)

    # Entry point
    graph.set_entry_point("validate")

    # Conditional: reject bad input before any work
    graph.add_conditional_edges(
        "validate",
        _ok_or_end,
        {"error": END, "ok": "gather_context"},
    )

    graph.add_edge("gather_context",      "evaluate_hard_stops")
    graph.add_edge("evaluate_hard_stops", "ai_scoring")

    # Conditional: delegate failure ends the run, nothing persisted
    graph.add_conditional_edges(
        "ai_scoring",
        _ok_or_end,
        {"error": END, "ok": "reconcile"},
    )

    graph.add_edge("reconcile",          "persist_assessment")
    graph.add_edge("persist_assessment", END)

    return graph.compile()


def build_sora_reassessment_graph():
    """
    Compile and return the Phase B SORA re-assessment graph.

    Flow:
      receive_mitigations → sora_scoring → persist_sora → END
    """
    graph = StateGraph(SoraState)

    graph.add_node("receive_mitigations", receive_mitigations_node)
    graph.add_node("sora_scoring",        sora_scoring_node)
    graph.add_node("persist_sora",        persist_sora_node)

    graph.set_entry_point("receive_mitigations")

    graph.add_conditional_edges(
        "receive_mitigations",
        _ok_or_end,
        {"error": END, "ok": "sora_scoring"},
    )
    graph.add_conditional_edges(
        "sora_scoring",
        _ok_or_end,
        {"error": END, "ok": "persist_sora"},
    )
    graph.add_edge("persist_sora", END)

    return graph.compile()


async def run_graph(graph, state: Dict[str, Any], deps: EngineDeps) -> Dict[str, Any]:
    final = await graph.ainvoke(state, config={"configurable": {"deps": deps}})
    if final.get("status") == "error" and final.get("error") is not None:
        raise final["error"]
    return final
