"""
AviSafe Orchestrator — Runtime dependencies

Passed to every node through ``config["configurable"]["deps"]`` so tests can
swap the store, the HTTP transport and the delegate without patching modules.
"""

import os
from dataclasses import dataclass, field
from datetime import date
from typing import Awaitable, Callable, Dict, Optional

import httpx
from dotenv import load_dotenv

from avisafe_risk import deploy_ai
from avisafe_store import DatabaseService

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./avisafe.db")

# Outer per-source budgets (seconds); a timeout counts as absent data
DEFAULT_TIMEOUTS: Dict[str, float] = {
    "weather":    12.0,
    "airspace":   12.0,
    "land_use":    8.0,
    "population": 13.0,   # primary + one alternate at 6 s each
    "policy":     10.0,
    "fleet":      10.0,
}


@dataclass
class EngineDeps:
    store:       DatabaseService
    complete:    Callable[[str, str], Awaitable[str]] = deploy_ai.complete
    transport:   Optional[httpx.AsyncBaseTransport]   = None
    today:       Callable[[], date]                   = date.today
    timeouts:    Dict[str, float]                     = field(default_factory=lambda: dict(DEFAULT_TIMEOUTS))

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, follow_redirects=True)


def default_deps() -> EngineDeps:
    return EngineDeps(store=DatabaseService(DATABASE_URL))
