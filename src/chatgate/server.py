"""HTTP surface (FastAPI)."""

from __future__ import annotations

from contextlib import asynccontextmanager
import json
import logging
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from chatgate.config import Config
from chatgate.errors import GatewayError, status_code_for
from chatgate.request import ChatRequest, RecordUsageRequest
from chatgate.router import Router

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

STREAM_MEDIA_TYPE = "text/plain; charset=utf-8"
USAGE_WARNING_HEADER = "X-Usage-Warning"


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _validation_message(e: ValidationError) -> str:
    first = e.errors()[0]
    location = ".".join(str(p) for p in first.get("loc", ()))
    return f"Invalid request: {location}: {first.get('msg', 'invalid value')}"


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


def create_app(config: Config | None = None, *, router: Router | None = None) -> FastAPI:
    """Build the gateway application.

    Args:
        config: Process configuration; resolved from the environment when
            omitted. Ignored when *router* is given.
        router: Prebuilt router (tests inject one with fake adapters).
    """
    if router is None:
        router = Router.from_config(config or Config())
    gateway = router

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        await gateway.aclose()

    app = FastAPI(title="chatgate", lifespan=lifespan)
    app.state.router = gateway

    @app.post("/chat")
    async def chat(request: Request) -> Any:
        body = await _json_body(request)
        if not isinstance(body, dict):
            return _error("Request body must be a JSON object", 400)
        try:
            chat_request = ChatRequest.model_validate(body)
        except ValidationError as e:
            return _error(_validation_message(e), 400)

        try:
            response = await gateway.handle(chat_request)
        except GatewayError as e:
            status = status_code_for(e)
            log = logger.warning if status < 500 else logger.error
            log("Rejected chat request for %s: %s", chat_request.model_id, e)
            return _error(str(e), status)
        except Exception:
            logger.exception("Unexpected failure before streaming")
            return _error("Internal server error", 500)

        headers = {"Cache-Control": "no-cache"}
        if response.warning_percent is not None:
            headers[USAGE_WARNING_HEADER] = str(response.warning_percent)
        return StreamingResponse(
            response.body, media_type=STREAM_MEDIA_TYPE, headers=headers
        )

    @app.get("/usage")
    async def usage(modelId: str | None = None) -> Any:  # noqa: N803
        if not modelId:
            return _error("modelId is required", 400)
        record = await gateway.ledger.read_current(modelId)
        return {
            "total_cost": record.total_cost,
            "limit": gateway.config.monthly_limit_for(modelId),
        }

    @app.get("/models")
    async def models() -> Any:
        return gateway.config.catalog.model_dump(by_alias=True, mode="json")

    @app.post("/record-usage")
    async def record_usage(request: Request) -> Any:
        body = await _json_body(request)
        try:
            payload = RecordUsageRequest.model_validate(body)
        except ValidationError:
            return _error("modelId and token counts are required", 400)

        pricing = gateway.config.pricing_for(payload.model_id)
        if pricing is None:
            return _error(f"No pricing info for model {payload.model_id}.", 400)
        try:
            cost = await gateway.ledger.update(
                payload.model_id,
                payload.prompt_tokens,
                payload.completion_tokens,
                pricing,
            )
        except Exception as e:
            logger.exception("Failed to record usage for %s", payload.model_id)
            return _error(f"Failed to record usage: {e}", 500)
        return {"success": True, "cost": cost}

    return app
