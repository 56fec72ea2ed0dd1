"""
AviSafe Orchestrator — LangGraph workflows and FastAPI entry point.
"""
