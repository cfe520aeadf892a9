"""Shared provider-side error helpers."""

from __future__ import annotations

import asyncio
import re

import httpx

from chatgate.errors import APIError, RateLimitError, _walk_exception_chain

_VISION_UNSUPPORTED_RE = re.compile(
    r"image|input_image|vision|unsupported|not supported|unrecognized", re.I
)


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        for attr in ("status_code", "status", "code"):
            value = getattr(e, attr, None)
            if isinstance(value, int) and 100 <= value <= 599:
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


def is_vision_unsupported(exc: BaseException) -> bool:
    """Whether *exc* reads like an image/vision capability rejection."""
    return any(
        _VISION_UNSUPPORTED_RE.search(str(e)) for e in _walk_exception_chain(exc)
    )


def _auth_hint(provider: str, status_code: int | None) -> str | None:
    if status_code not in {401, 403}:
        return None
    env_var = {
        "openai": "OPENAI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
        "gemini": "GOOGLE_CLOUD_PROJECT and application default credentials",
    }.get(provider, "the provider API key")
    return f"Check credentials/permissions (try setting {env_var})."


def wrap_provider_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str,
    message: str | None = None,
) -> APIError:
    """Map provider SDK exceptions into APIError."""
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    # Already wrapped; fill in missing context only.
    if isinstance(exc, APIError):
        if exc.provider is None:
            exc.provider = provider
        if exc.phase is None:
            exc.phase = phase
        return exc

    status_code = extract_status_code(exc)
    if status_code is None:
        for e in _walk_exception_chain(exc):
            if isinstance(e, httpx.TimeoutException):
                status_code = 504
                break

    err_cls: type[APIError] = RateLimitError if status_code == 429 else APIError
    msg = message or f"{provider} {phase} failed"
    status_note = f" (status={status_code})" if isinstance(status_code, int) else ""
    cause = str(exc)
    return err_cls(
        f"{msg}{status_note}: {cause}" if cause else f"{msg}{status_note}",
        hint=_auth_hint(provider, status_code),
        status_code=status_code,
        provider=provider,
        phase=phase,
    )
