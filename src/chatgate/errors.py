"""Exception hierarchy for chatgate."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class GatewayError(Exception):
    """Base exception for all chatgate errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(GatewayError):
    """Configuration validation or resolution failed."""


class InvalidRequestError(GatewayError):
    """The chat request is malformed or cannot be served as asked."""


class UnsupportedModelError(InvalidRequestError):
    """No adapter family is registered for the model identifier."""

    def __init__(self, model_id: str, *, hint: str | None = None) -> None:
        super().__init__(f"Model {model_id} not supported yet.", hint=hint)
        self.model_id = model_id


class UsageLimitExceededError(GatewayError):
    """The model's monthly budget is exhausted."""

    def __init__(self, model_id: str, limit_usd: float) -> None:
        super().__init__(
            f"Monthly usage limit of {limit_usd:g} for {model_id} has been reached."
        )
        self.model_id = model_id
        self.limit_usd = limit_usd


class AttachmentResolutionError(GatewayError):
    """An attachment URI could not be resolved to usable bytes."""


class InternalError(GatewayError):
    """A chatgate internal error (bug) or invariant violation."""


class APIError(GatewayError):
    """Upstream provider call failed."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        status_code: int | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.status_code = status_code
        self.provider = provider
        self.phase = phase


class RateLimitError(APIError):
    """Rate limit exceeded (HTTP 429)."""


def status_code_for(err: BaseException) -> int:
    """HTTP status for an error raised before the response stream starts."""
    if isinstance(err, InvalidRequestError):
        return 400
    if isinstance(err, UsageLimitExceededError):
        return 429
    return 500


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)


# --- Client-facing messages for in-band stream errors ---

_MESSAGE_TABLE: tuple[tuple[frozenset[int], re.Pattern[str], str], ...] = (
    (
        frozenset({429}),
        re.compile(
            r"usage.?limit|rate.?limit|quota.?exceed|resource.?exhaust|too many requests",
            re.I,
        ),
        "The AI provider's rate limit has been reached. Please wait a while and "
        "try again. Contact an administrator if this keeps happening.",
    ),
    (
        frozenset(),
        re.compile(r"insufficient.?quota|billing|payment", re.I),
        "There is a problem with the AI provider's billing settings. "
        "Please contact an administrator.",
    ),
    (
        frozenset({401, 403}),
        re.compile(r"auth|permission|forbidden|api.?key", re.I),
        "Authentication with the AI provider failed. Please contact an administrator.",
    ),
    (
        frozenset(),
        re.compile(r"content.?policy|safety|blocked|harmful|moderation", re.I),
        "The request was rejected by the content policy. "
        "Please change your input and try again.",
    ),
    (
        frozenset(),
        re.compile(r"model.*not found|model.*not available|does not exist", re.I),
        "The selected model is currently unavailable. Please contact an administrator.",
    ),
    (
        frozenset(),
        re.compile(r"too long|too large|max.*token|context.?length|payload", re.I),
        "The input is too long. Reduce the size of your message or files and try again.",
    ),
    (
        frozenset({500, 502, 503}),
        re.compile(r"server.?error|service.?unavailable|internal.?error", re.I),
        "The AI service is temporarily unavailable. Please try again later.",
    ),
    (
        frozenset({504}),
        re.compile(r"timeout|deadline", re.I),
        "The request timed out. Shorten your input or try again later.",
    ),
)

_FALLBACK_MESSAGE = (
    "An error occurred. Please try again later. "
    "Contact an administrator if this keeps happening."
)


def format_api_error(exc: BaseException) -> str:
    """Map an upstream failure to a short message suitable for end users."""
    raw = str(exc)
    status = getattr(exc, "status_code", None)
    if not isinstance(status, int):
        status = None
    for statuses, pattern, message in _MESSAGE_TABLE:
        if (status is not None and status in statuses) or pattern.search(raw):
            return message
    return _FALLBACK_MESSAGE
