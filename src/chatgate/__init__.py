"""chatgate: one streaming chat endpoint in front of several LLM backends.

Public API:
    - Router: Validate, budget-check, dispatch and meter a ChatRequest
    - ChatRequest: Inbound request schema
    - Config / ConfigService: Process configuration and the model catalog
    - UsageLedger / LimitGuard: Monthly usage accounting
"""

from __future__ import annotations

import logging

from chatgate.config import Config, ConfigService, ModelCatalog, Pricing
from chatgate.errors import (
    APIError,
    AttachmentResolutionError,
    ConfigurationError,
    GatewayError,
    InternalError,
    InvalidRequestError,
    RateLimitError,
    UnsupportedModelError,
    UsageLimitExceededError,
)
from chatgate.events import ErrorEvent, FinishEvent, TextDelta, UsageReport
from chatgate.guard import LimitGuard, LimitStatus
from chatgate.ledger import UsageLedger, UsageRecord
from chatgate.request import ChatRequest, Message
from chatgate.router import Router, StreamedResponse

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("chatgate")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("chatgate").addHandler(logging.NullHandler())

__all__ = [
    "APIError",
    "AttachmentResolutionError",
    "ChatRequest",
    "Config",
    "ConfigService",
    "ConfigurationError",
    "ErrorEvent",
    "FinishEvent",
    "GatewayError",
    "InternalError",
    "InvalidRequestError",
    "LimitGuard",
    "LimitStatus",
    "Message",
    "ModelCatalog",
    "Pricing",
    "RateLimitError",
    "Router",
    "StreamedResponse",
    "TextDelta",
    "UnsupportedModelError",
    "UsageLedger",
    "UsageLimitExceededError",
    "UsageRecord",
    "UsageReport",
]
