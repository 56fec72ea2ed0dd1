"""
AviSafe Risk — Anthropic Claude LLM Client

Shared async client for the scoring delegate. One request per call, no
automatic retry (the SDK's own retries are disabled): a retried scoring call
could duplicate persisted rows, and the upstream service is rate-limited.

Errors are translated into the engine taxonomy so the API layer can tell
"back off" (rate_limited), "fix billing" (quota_exhausted) and "try again"
(upstream_unavailable) apart.
"""

import asyncio
import logging
import os
from typing import Optional

import anthropic
from dotenv import load_dotenv

from .errors import (
    InvalidResponseError,
    QuotaExhaustedError,
    RateLimitedError,
    UpstreamUnavailableError,
)

load_dotenv()

log = logging.getLogger("risk.deploy_ai")

# Model to use — overridable via env var
_MODEL      = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-5")
_MAX_TOKENS = int(os.getenv("ANTHROPIC_MAX_TOKENS", "4096"))
AI_TIMEOUT  = float(os.getenv("AI_TIMEOUT_SECONDS", "90"))

# Lazy-initialised async Anthropic client
_async_client = None

_BILLING_MARKERS = ("credit balance", "billing", "quota")


def _get_async_client():
    """Return a cached async Anthropic client, or None if no key is configured."""
    global _async_client
    if _async_client is not None:
        return _async_client
    api_key = os.getenv("ANTHROPIC_API_KEY")
    if not api_key:
        return None
    _async_client = anthropic.AsyncAnthropic(api_key=api_key, max_retries=0, timeout=AI_TIMEOUT)
    return _async_client


def _map_status_error(exc: anthropic.APIStatusError) -> Exception:
    text = str(exc).lower()
    if exc.status_code == 429:
        return RateLimitedError(details={"upstreamStatus": 429})
    if exc.status_code == 402 or any(m in text for m in _BILLING_MARKERS):
        return QuotaExhaustedError(details={"upstreamStatus": exc.status_code})
    return UpstreamUnavailableError(
        f"AI service error [{exc.status_code}]",
        {"upstreamStatus": exc.status_code},
    )


async def complete(system: str, prompt: str, timeout: Optional[float] = None) -> str:
    """
    Send one system + user message pair and return the text answer.

    Raises RateLimitedError, QuotaExhaustedError, UpstreamUnavailableError or
    InvalidResponseError (empty or malformed answer).
    """
    client = _get_async_client()
    if client is None:
        raise UpstreamUnavailableError("AI service not configured (ANTHROPIC_API_KEY missing)")

    try:
        resp = await asyncio.wait_for(
            client.messages.create(
                model=_MODEL,
                max_tokens=_MAX_TOKENS,
                system=system,
                messages=[{"role": "user", "content": prompt}],
            ),
            timeout=timeout or AI_TIMEOUT,
        )
    except asyncio.TimeoutError:
        log.error("[deploy_ai] delegate call timed out")
        raise UpstreamUnavailableError("AI service timed out")
    except anthropic.APIStatusError as exc:
        log.error(f"[deploy_ai] delegate HTTP error {exc.status_code}: {exc}")
        raise _map_status_error(exc)
    except anthropic.APIConnectionError as exc:
        log.error(f"[deploy_ai] delegate unreachable: {exc}")
        raise UpstreamUnavailableError("AI service unreachable")
    except anthropic.APIResponseValidationError as exc:
        log.error(f"[deploy_ai] delegate response failed validation: {exc}")
        raise InvalidResponseError("AI service returned a malformed response")
    except anthropic.APIError as exc:
        log.error(f"[deploy_ai] delegate error: {exc}")
        raise UpstreamUnavailableError("AI service error")

    text = "".join(
        block.text for block in (resp.content or []) if getattr(block, "type", "") == "text"
    ).strip()
    if not text:
        raise InvalidResponseError("AI service returned no content")
    log.info(f"[deploy_ai] delegate answered ({len(text)} chars, stop={resp.stop_reason})")
    return text
