"""
AviSafe Risk — safety policy, hard-stop rules and the AI scoring delegate.
"""

from .errors import (
    InvalidRequestError,
    InvalidResponseError,
    MissionNotFoundError,
    QuotaExhaustedError,
    RateLimitedError,
    RiskEngineError,
    UnauthorizedError,
    UpstreamUnavailableError,
)
from .policy import SafetyPolicy
