"""
AviSafe Risk — Error taxonomy
=============================
Typed failures the engine surfaces to its caller. Upstream data-source
failures never appear here: gatherers recover locally. Each error renders to
the `{"error": {"code", "message", "details"}}` body the API returns.
"""

from typing import Any, Dict, Optional


class RiskEngineError(Exception):
    """Base class for every caller-visible engine failure."""

    status_code     = 500
    code            = "internal_error"
    default_message = "An unexpected error occurred."

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message, "details": self.details}}


# ── Input errors (4xx, no partial work) ───────────────────────────────────────

class InvalidRequestError(RiskEngineError):
    status_code     = 400
    code            = "invalid_request"
    default_message = "Invalid request."


class UnauthorizedError(RiskEngineError):
    status_code     = 401
    code            = "unauthorized"
    default_message = "Missing authenticated user."


class MissionNotFoundError(RiskEngineError):
    status_code     = 404
    code            = "mission_not_found"
    default_message = "Mission not found."


# ── AI delegate errors ────────────────────────────────────────────────────────

class RateLimitedError(RiskEngineError):
    """Back off and retry later."""
    status_code     = 429
    code            = "rate_limited"
    default_message = "AI service rate limit exceeded, please try again later."


class QuotaExhaustedError(RiskEngineError):
    """Billing / capacity must be resolved; retrying will not help."""
    status_code     = 402
    code            = "quota_exhausted"
    default_message = "AI service credits exhausted."


class UpstreamUnavailableError(RiskEngineError):
    status_code     = 503
    code            = "upstream_unavailable"
    default_message = "AI service unavailable."


class InvalidResponseError(RiskEngineError):
    """The delegate answered, but not with a usable judgment."""
    status_code     = 502
    code            = "invalid_response"
    default_message = "AI service returned an invalid response."
