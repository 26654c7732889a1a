# FILE: appforge/engines/errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import anthropic
import openai

# Only normalizes provider errors into stable kinds; calls live in engines/__init__.py.


@dataclass
class EngineError(Exception):
    code: str                 # "AUTH", "RATE_LIMIT", "TIMEOUT", "SERVER", "BAD_REQUEST", "POLICY", "UNKNOWN"
    message: str              # short user-facing text
    retryable: bool
    status_code: int          # HTTP status the API layer answers with
    raw: Optional[str] = None # raw provider error, for logs only

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    def to_http_detail(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }


def auth_error(message: str) -> EngineError:
    return EngineError(code="AUTH", message=message, retryable=False, status_code=503)


def _safe_str(x: Any) -> str:
    try:
        return str(x)
    except Exception:
        return "<unprintable>"


def _looks_like_policy(msg: str) -> bool:
    m = msg.lower()
    return (
            "policy" in m
            or "safety" in m
            or "violat" in m
            or "content" in m and "not allowed" in m
            or "moderation" in m
    )


def _looks_like_rate_limit(msg: str) -> bool:
    m = msg.lower()
    return "rate limit" in m or "too many requests" in m or "429" in m or "overloaded" in m


def _looks_like_timeout(msg: str) -> bool:
    m = msg.lower()
    return "timeout" in m or "timed out" in m


def _looks_like_auth(msg: str) -> bool:
    m = msg.lower()
    return "invalid api key" in m or "api key" in m and "invalid" in m or "unauthorized" in m or "401" in m or "403" in m


def _looks_like_bad_request(msg: str) -> bool:
    m = msg.lower()
    return "400" in m or "bad request" in m or "invalid request" in m


_AUTH_ERRORS = (
    anthropic.AuthenticationError,
    anthropic.PermissionDeniedError,
    openai.AuthenticationError,
    openai.PermissionDeniedError,
)
_RATE_LIMIT_ERRORS = (anthropic.RateLimitError, openai.RateLimitError)
_TIMEOUT_ERRORS = (anthropic.APITimeoutError, openai.APITimeoutError)
_CONNECTION_ERRORS = (anthropic.APIConnectionError, openai.APIConnectionError)
_SERVER_ERRORS = (anthropic.InternalServerError, openai.InternalServerError)
_BAD_REQUEST_ERRORS = (
    anthropic.BadRequestError,
    anthropic.UnprocessableEntityError,
    openai.BadRequestError,
    openai.UnprocessableEntityError,
)


def _by_kind(code: str, raw: str) -> EngineError:
    if code == "AUTH":
        return EngineError(
            code="AUTH",
            message="AI authentication failed (API key/permission).",
            retryable=False,
            status_code=503,
            raw=raw,
        )
    if code == "RATE_LIMIT":
        return EngineError(
            code="RATE_LIMIT",
            message="AI is rate-limited or quota exceeded. Try again in a moment.",
            retryable=True,
            status_code=429,
            raw=raw,
        )
    if code == "TIMEOUT":
        return EngineError(
            code="TIMEOUT",
            message="AI request timed out. Try again.",
            retryable=True,
            status_code=504,
            raw=raw,
        )
    if code == "SERVER":
        return EngineError(
            code="SERVER",
            message="AI service is temporarily unavailable. Try again later.",
            retryable=True,
            status_code=503,
            raw=raw,
        )
    if code == "BAD_REQUEST":
        return EngineError(
            code="BAD_REQUEST",
            message="AI request was rejected due to invalid input/parameters.",
            retryable=False,
            status_code=400,
            raw=raw,
        )
    if code == "POLICY":
        return EngineError(
            code="POLICY",
            message="AI refused this request due to safety/policy constraints. Please rephrase.",
            retryable=False,
            status_code=400,
            raw=raw,
        )
    return EngineError(
        code="UNKNOWN",
        message="AI request failed unexpectedly.",
        retryable=True,
        status_code=502,
        raw=raw,
    )


def normalize_engine_exception(err: Exception) -> EngineError:
    """
    Map whatever SDK/HTTP exception to a stable error kind.
    SDK exception classes win; message heuristics cover everything else.
    """
    if isinstance(err, EngineError):
        return err

    raw = _safe_str(err)[:4000]

    if isinstance(err, _AUTH_ERRORS):
        return _by_kind("AUTH", raw)
    if isinstance(err, _RATE_LIMIT_ERRORS):
        return _by_kind("RATE_LIMIT", raw)
    # timeout errors subclass the connection errors, check them first
    if isinstance(err, _TIMEOUT_ERRORS):
        return _by_kind("TIMEOUT", raw)
    if isinstance(err, _SERVER_ERRORS + _CONNECTION_ERRORS):
        return _by_kind("SERVER", raw)
    if isinstance(err, _BAD_REQUEST_ERRORS):
        return _by_kind("POLICY" if _looks_like_policy(raw) else "BAD_REQUEST", raw)

    if _looks_like_policy(raw):
        return _by_kind("POLICY", raw)
    if _looks_like_auth(raw):
        return _by_kind("AUTH", raw)
    if _looks_like_rate_limit(raw):
        return _by_kind("RATE_LIMIT", raw)
    if _looks_like_timeout(raw):
        return _by_kind("TIMEOUT", raw)
    if any(x in raw.lower() for x in ["500", "502", "503", "504", "server error", "bad gateway", "service unavailable"]):
        return _by_kind("SERVER", raw)
    if _looks_like_bad_request(raw):
        return _by_kind("BAD_REQUEST", raw)
    return _by_kind("UNKNOWN", raw)
