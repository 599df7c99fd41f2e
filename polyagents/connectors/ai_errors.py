"""AI collaborator failure taxonomy.

Vendor calls raise one of the ``AIError`` subclasses below; anything else
that escapes (raw httpx / openai / timeout errors) is mapped by
``classify_ai_failure`` so the decision engine only ever branches on an
``AIFailureKind``.
"""

from __future__ import annotations

import asyncio
import json
from enum import Enum

import httpx
import openai


class AIFailureKind(str, Enum):
    CONFIGURATION = "configuration"
    NETWORK = "network"
    REFUSAL = "refusal"
    ACCESS_DENIED = "access_denied"
    PARSE = "parse"
    UNKNOWN = "unknown"


class AIError(Exception):
    kind: AIFailureKind = AIFailureKind.UNKNOWN


class AIConfigurationError(AIError):
    """Credentials for the agent's vendor are absent."""
    kind = AIFailureKind.CONFIGURATION


class AINetworkError(AIError):
    """Transport failure, timeout, or non-2xx response."""
    kind = AIFailureKind.NETWORK

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AIRefusalError(AIError):
    kind = AIFailureKind.REFUSAL


class AIAccessDeniedError(AIError):
    """Account not eligible for the vendor plan. Expected; handled quietly."""
    kind = AIFailureKind.ACCESS_DENIED


class AIParseError(AIError):
    kind = AIFailureKind.PARSE


REFUSAL_INDICATORS: tuple[str, ...] = (
    "do not feel comfortable",
    "cannot",
    "unable to",
    "not comfortable",
    "refuse",
    "decline",
    "outside of my",
    "apologize",
)


def detect_refusal(text: str) -> bool:
    """Keyword heuristic: does this response read like a refusal?"""
    lowered = text.lower()
    return any(indicator in lowered for indicator in REFUSAL_INDICATORS)


def classify_ai_failure(exc: BaseException) -> AIFailureKind:
    """Map any exception raised by an AI call onto an ``AIFailureKind``."""
    if isinstance(exc, AIError):
        return exc.kind
    if isinstance(exc, openai.PermissionDeniedError):
        return AIFailureKind.ACCESS_DENIED
    if isinstance(exc, openai.AuthenticationError):
        return AIFailureKind.CONFIGURATION
    if isinstance(exc, (asyncio.TimeoutError, httpx.HTTPError, openai.APIError, ConnectionError)):
        return AIFailureKind.NETWORK
    if isinstance(exc, (json.JSONDecodeError, KeyError, ValueError, TypeError)):
        return AIFailureKind.PARSE
    if "access denied" in str(exc).lower():
        return AIFailureKind.ACCESS_DENIED
    return AIFailureKind.UNKNOWN
