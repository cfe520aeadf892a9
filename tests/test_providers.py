"""Provider adapter contract tests with fake SDK clients."""

from __future__ import annotations

import asyncio
import base64
from types import SimpleNamespace
from typing import Any

import httpx
import pytest

from chatgate.errors import _FALLBACK_MESSAGE, APIError, RateLimitError
from chatgate.events import ErrorEvent, FinishEvent, TextDelta, UsageReport
from chatgate.providers import (
    AnthropicAdapter,
    ChatAdapter,
    Gemini3Adapter,
    GeminiAdapter,
    MockAdapter,
    OpenAIChatAdapter,
    OpenAIResponsesAdapter,
    Sonnet45Adapter,
)
from chatgate.providers._errors import (
    extract_status_code,
    is_vision_unsupported,
    wrap_provider_error,
)
from chatgate.providers.anthropic import SONNET45_UPSTREAM_MODEL, to_anthropic_messages
from chatgate.providers.models import (
    GenerationConfig,
    InlineData,
    NormalizedMessage,
    TextPart,
)
from chatgate.providers.openai import to_chat_messages
from chatgate.providers.openai_responses import responses_options, to_responses_input
from tests.conftest import FakeStream, ScriptedAdapter, collect

pytestmark = pytest.mark.contract

PNG_B64 = base64.b64encode(b"\x89PNG\r\n\x1a\n" + b"\x00" * 8).decode()
PDF_B64 = base64.b64encode(b"%PDF-1.7\n").decode()

IMAGE = InlineData("image", PNG_B64, "image/png")
PDF = InlineData("pdf", PDF_B64, "application/pdf")


class AsyncCall:
    """Async callable recording kwargs; each call returns the next scripted stream.

    A scripted exception is raised from the call itself.
    """

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    async def __call__(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return FakeStream(response)


def _text(role: str, text: str) -> NormalizedMessage:
    return NormalizedMessage(role=role, parts=(TextPart(text),))  # type: ignore[arg-type]


def _with_image(text: str = "what is this?") -> NormalizedMessage:
    return NormalizedMessage(role="user", parts=(TextPart(text), IMAGE))


def _openai_client(create: AsyncCall) -> Any:
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


def _responses_client(create: AsyncCall) -> Any:
    return SimpleNamespace(responses=SimpleNamespace(create=create))


def _chat_chunk(text: str | None) -> Any:
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=text))])


def _response_delta(text: str) -> Any:
    return SimpleNamespace(type="response.output_text.delta", delta=text)


def _response_completed(input_tokens: int, output_tokens: int) -> Any:
    usage = SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens)
    return SimpleNamespace(type="response.completed", response=SimpleNamespace(usage=usage))


# =============================================================================
# Protocol conformance
# =============================================================================


@pytest.mark.parametrize(
    "adapter",
    [
        OpenAIChatAdapter("k", client=object()),
        OpenAIResponsesAdapter("k", client=object()),
        AnthropicAdapter("k", client=object()),
        Sonnet45Adapter("k", client=object()),
        GeminiAdapter("p", "us-central1", client=object()),
        Gemini3Adapter("p", client=object()),
        MockAdapter(),
    ],
)
def test_adapters_satisfy_protocol(adapter: Any) -> None:
    assert isinstance(adapter, ChatAdapter)


# =============================================================================
# OpenAI Chat Completions
# =============================================================================


def test_chat_payload_places_system_first_and_inlines_attachments() -> None:
    payload = to_chat_messages(
        [
            _text("user", "hi"),
            _text("assistant", "hello"),
            NormalizedMessage(role="user", parts=(TextPart("look"), IMAGE, PDF)),
        ],
        "be brief",
    )

    assert payload[0] == {"role": "system", "content": "be brief"}
    assert payload[1] == {"role": "user", "content": "hi"}
    assert payload[2] == {"role": "assistant", "content": "hello"}
    content = payload[3]["content"]
    assert content[0] == {"type": "text", "text": "look"}
    assert content[1]["image_url"]["url"] == IMAGE.data_url
    assert content[2]["type"] == "file"
    assert content[2]["file"]["file_data"] == PDF.data_url


@pytest.mark.asyncio
async def test_chat_stream_counts_usage_locally() -> None:
    create = AsyncCall([_chat_chunk("Hel"), _chat_chunk(None), _chat_chunk("lo")])
    adapter = OpenAIChatAdapter("k", client=_openai_client(create), token_counter=len)

    events = await collect(
        adapter.stream(
            "gpt-4.1",
            [_text("user", "hi"), _text("assistant", "yo"), _text("user", "again")],
            None,
            GenerationConfig(temperature=0.2, max_tokens=100),
        )
    )

    assert events == [
        TextDelta("Hel"),
        TextDelta("lo"),
        UsageReport(len("hi\nyo\nagain"), len("Hello")),
        FinishEvent("stop"),
    ]
    (kwargs,) = create.calls
    assert kwargs["model"] == "gpt-4.1"
    assert kwargs["stream"] is True
    assert kwargs["temperature"] == 0.2
    assert kwargs["max_completion_tokens"] == 100


@pytest.mark.asyncio
async def test_chat_stream_omits_unset_knobs() -> None:
    create = AsyncCall([])
    adapter = OpenAIChatAdapter("k", client=_openai_client(create), token_counter=len)
    await collect(adapter.stream("o3", [_text("user", "x")], None, GenerationConfig()))
    (kwargs,) = create.calls
    assert "temperature" not in kwargs
    assert "max_completion_tokens" not in kwargs


# =============================================================================
# OpenAI Responses
# =============================================================================


def test_responses_input_shapes() -> None:
    items = to_responses_input(
        [
            NormalizedMessage(role="user", parts=(TextPart("look"), IMAGE, PDF)),
            _text("assistant", "a cat"),
        ]
    )
    assert [c["type"] for c in items[0]["content"]] == [
        "input_text",
        "input_image",
        "input_file",
    ]
    assert items[0]["content"][1]["detail"] == "auto"
    assert items[1] == {
        "role": "assistant",
        "content": [{"type": "output_text", "text": "a cat"}],
    }


def test_responses_options_defaults() -> None:
    assert responses_options(GenerationConfig()) == {
        "reasoning": {"effort": "low"},
        "text": {"verbosity": "low"},
    }


def test_responses_options_none_effort_and_grounding() -> None:
    options = responses_options(
        GenerationConfig(reasoning_effort="none", verbosity="high", web_grounding=True)
    )
    assert "reasoning" not in options
    assert options["text"] == {"verbosity": "high"}
    assert options["tools"] == [{"type": "web_search"}]


@pytest.mark.asyncio
async def test_responses_stream_reports_upstream_usage() -> None:
    create = AsyncCall(
        [_response_delta("Hi"), _response_delta(" there"), _response_completed(11, 4)]
    )
    adapter = OpenAIResponsesAdapter("k", client=_responses_client(create))

    events = await collect(
        adapter.stream(
            "gpt-5",
            [_text("user", "hello")],
            "sys",
            GenerationConfig(max_tokens=500, reasoning_effort="high"),
        )
    )

    assert events == [
        TextDelta("Hi"),
        TextDelta(" there"),
        UsageReport(11, 4),
        FinishEvent("stop"),
    ]
    (kwargs,) = create.calls
    assert kwargs["instructions"] == "sys"
    assert kwargs["max_output_tokens"] == 500
    assert kwargs["reasoning"] == {"effort": "high"}


@pytest.mark.asyncio
async def test_responses_error_event_ends_stream_with_error() -> None:
    create = AsyncCall(
        [
            _response_delta("partial"),
            SimpleNamespace(type="error", message="Rate limit exceeded", error=None),
        ]
    )
    adapter = OpenAIResponsesAdapter("k", client=_responses_client(create))

    events = await collect(
        adapter.stream("gpt-5", [_text("user", "x")], None, GenerationConfig())
    )

    assert events[0] == TextDelta("partial")
    assert isinstance(events[-1], ErrorEvent)
    assert "rate limit" in events[-1].message
    assert not any(isinstance(e, FinishEvent) for e in events)


@pytest.mark.asyncio
async def test_vision_rejection_retries_once_with_fallback_model() -> None:
    create = AsyncCall(
        Exception("Invalid content: image input is not supported for this model"),
        [_response_delta("a cat"), _response_completed(5, 2)],
    )
    adapter = OpenAIResponsesAdapter("k", client=_responses_client(create))

    events = await collect(
        adapter.stream(
            "gpt-5-nano",
            [_with_image()],
            "sys",
            GenerationConfig(reasoning_effort="high", max_tokens=100),
        )
    )

    assert events == [TextDelta("a cat"), UsageReport(5, 2), FinishEvent("stop")]
    first, retry = create.calls
    assert first["model"] == "gpt-5-nano"
    assert retry["model"] == "gpt-4o"
    for knob in ("reasoning", "text", "instructions", "max_output_tokens"):
        assert knob not in retry


@pytest.mark.asyncio
async def test_no_fallback_without_images() -> None:
    create = AsyncCall(Exception("image input is not supported"))
    adapter = OpenAIResponsesAdapter("k", client=_responses_client(create))

    events = await collect(
        adapter.stream("gpt-5", [_text("user", "x")], None, GenerationConfig())
    )

    assert len(create.calls) == 1
    assert len(events) == 1
    assert isinstance(events[0], ErrorEvent)


# =============================================================================
# BaseAdapter fallback driver
# =============================================================================


@pytest.mark.asyncio
async def test_no_fallback_after_text_was_emitted() -> None:
    adapter = ScriptedAdapter(
        {"primary": [TextDelta("par"), Exception("image not supported")]},
        fallback_model="backup",
    )

    events = await collect(
        adapter.stream("primary", [_with_image()], None, GenerationConfig())
    )

    assert events[0] == TextDelta("par")
    assert isinstance(events[1], ErrorEvent)
    assert adapter.models_called == ["primary"]


@pytest.mark.asyncio
async def test_fallback_is_attempted_only_once() -> None:
    adapter = ScriptedAdapter(
        {
            "primary": [Exception("image not supported")],
            "backup": [Exception("image not supported")],
        },
        fallback_model="backup",
    )

    events = await collect(
        adapter.stream("primary", [_with_image()], None, GenerationConfig())
    )

    assert adapter.models_called == ["primary", "backup"]
    assert adapter.fallback_flags == [False, True]
    assert len(events) == 1
    assert isinstance(events[0], ErrorEvent)


@pytest.mark.asyncio
async def test_unrelated_failure_becomes_generic_error_event() -> None:
    adapter = ScriptedAdapter({"m": [Exception("boom")]}, fallback_model="backup")
    events = await collect(adapter.stream("m", [_with_image()], None, GenerationConfig()))
    assert events == [ErrorEvent(_FALLBACK_MESSAGE)]
    assert adapter.models_called == ["m"]


@pytest.mark.asyncio
async def test_upstream_rate_limit_maps_to_friendly_message() -> None:
    error = Exception("slow down")
    error.status_code = 429  # type: ignore[attr-defined]
    adapter = ScriptedAdapter({"m": [error]})
    (event,) = await collect(adapter.stream("m", [_text("user", "x")], None, GenerationConfig()))
    assert isinstance(event, ErrorEvent)
    assert "rate limit" in event.message


@pytest.mark.asyncio
async def test_aclose_closes_async_client() -> None:
    closed: list[bool] = []

    async def close() -> None:
        closed.append(True)

    adapter = OpenAIChatAdapter("k", client=SimpleNamespace(close=close))
    await adapter.aclose()
    await adapter.aclose()
    assert closed == [True]


# =============================================================================
# Anthropic
# =============================================================================


def _anthropic_client(create: AsyncCall) -> Any:
    return SimpleNamespace(messages=SimpleNamespace(create=create))


def _anthropic_events(*texts: str, input_tokens: int = 12, output_tokens: int = 7) -> list[Any]:
    events: list[Any] = [
        SimpleNamespace(
            type="message_start",
            message=SimpleNamespace(usage=SimpleNamespace(input_tokens=input_tokens)),
        )
    ]
    events.extend(
        SimpleNamespace(
            type="content_block_delta", delta=SimpleNamespace(type="text_delta", text=t)
        )
        for t in texts
    )
    events.append(
        SimpleNamespace(
            type="message_delta", usage=SimpleNamespace(output_tokens=output_tokens)
        )
    )
    events.append(SimpleNamespace(type="message_stop"))
    return events


def test_anthropic_payload_uses_base64_blocks() -> None:
    (message,) = to_anthropic_messages(
        [NormalizedMessage(role="user", parts=(TextPart("read"), IMAGE, PDF))]
    )
    image, document = message["content"][1:]
    assert image["source"] == {"type": "base64", "media_type": "image/png", "data": PNG_B64}
    assert document["type"] == "document"
    assert document["source"]["media_type"] == "application/pdf"


def test_anthropic_media_type_prefers_signature_over_metadata() -> None:
    mislabelled = InlineData("image", PNG_B64, "image/jpeg")
    (message,) = to_anthropic_messages(
        [NormalizedMessage(role="user", parts=(mislabelled,))]
    )
    assert message["content"][0]["source"]["media_type"] == "image/png"


def test_anthropic_payload_skips_empty_messages() -> None:
    payload = to_anthropic_messages(
        [
            _text("user", "first"),
            NormalizedMessage(role="assistant", parts=(TextPart(""),)),
            NormalizedMessage(role="assistant", parts=()),
            NormalizedMessage(role="user", parts=(TextPart("  "), IMAGE)),
            _text("user", "last"),
        ]
    )
    assert [m["role"] for m in payload] == ["user", "user", "user"]
    assert payload[0] == {"role": "user", "content": "first"}
    assert [block["type"] for block in payload[1]["content"]] == ["image"]
    assert all(m["content"] for m in payload)


@pytest.mark.asyncio
async def test_anthropic_stream_defaults_and_usage() -> None:
    create = AsyncCall(_anthropic_events("Hel", "lo"))
    adapter = AnthropicAdapter("k", client=_anthropic_client(create))

    events = await collect(
        adapter.stream("claude-sonnet4", [_text("user", "hi")], None, GenerationConfig())
    )

    assert events == [
        TextDelta("Hel"),
        TextDelta("lo"),
        UsageReport(12, 7),
        FinishEvent("stop"),
    ]
    (kwargs,) = create.calls
    assert kwargs["model"] == "claude-sonnet-4-20250514"
    assert kwargs["max_tokens"] == 8192
    assert kwargs["temperature"] == 0.6
    assert kwargs["system"] == "You are a helpful assistant."
    assert kwargs["stream"] is True


@pytest.mark.asyncio
async def test_sonnet45_uses_dated_upstream_model() -> None:
    create = AsyncCall(_anthropic_events("ok"))
    adapter = Sonnet45Adapter("k", client=_anthropic_client(create))

    await collect(
        adapter.stream(
            "claude-sonnet-4-5",
            [_text("user", "hi")],
            "custom",
            GenerationConfig(temperature=1.0),
        )
    )

    (kwargs,) = create.calls
    assert kwargs["model"] == SONNET45_UPSTREAM_MODEL
    assert kwargs["max_tokens"] == 64000
    assert kwargs["temperature"] == 1.0
    assert kwargs["system"] == "custom"


# =============================================================================
# Gemini
# =============================================================================


def _gemini_client(stream: AsyncCall) -> Any:
    return SimpleNamespace(
        aio=SimpleNamespace(models=SimpleNamespace(generate_content_stream=stream))
    )


def _gemini_chunk(*parts: Any, usage: Any = None) -> Any:
    return SimpleNamespace(
        usage_metadata=usage,
        candidates=[SimpleNamespace(content=SimpleNamespace(parts=list(parts)))],
    )


def _part(text: str, *, thought: bool = False) -> Any:
    return SimpleNamespace(text=text, thought=thought)


@pytest.mark.asyncio
async def test_gemini_stream_contents_config_and_usage() -> None:
    usage = SimpleNamespace(prompt_token_count=10, candidates_token_count=4)
    stream = AsyncCall([_gemini_chunk(_part("Hi")), _gemini_chunk(_part("!"), usage=usage)])
    adapter = GeminiAdapter("proj", "us-central1", client=_gemini_client(stream))

    events = await collect(
        adapter.stream(
            "gemini-2.5-pro",
            [_text("user", "hi"), _text("assistant", "hey"), _with_image("and this?")],
            "sys",
            GenerationConfig(google_grounding=True),
        )
    )

    assert events == [TextDelta("Hi"), TextDelta("!"), UsageReport(10, 4), FinishEvent("stop")]
    (kwargs,) = stream.calls
    assert kwargs["model"] == "gemini-2.5-pro"
    contents = kwargs["contents"]
    assert [c.role for c in contents] == ["user", "model", "user"]
    assert contents[2].parts[1].inline_data.mime_type == "image/png"
    config = kwargs["config"]
    assert config.temperature == 0.6
    assert config.max_output_tokens == 65536
    assert config.system_instruction == "sys"
    assert config.tools[0].google_search_retrieval is not None


@pytest.mark.asyncio
async def test_gemini3_thinking_level_tools_and_thought_filtering() -> None:
    usage = SimpleNamespace(
        prompt_token_count=10, candidates_token_count=4, thoughts_token_count=6
    )
    stream = AsyncCall(
        [_gemini_chunk(_part("thinking...", thought=True), _part("Answer"), usage=usage)]
    )
    adapter = Gemini3Adapter("proj", client=_gemini_client(stream))

    events = await collect(
        adapter.stream(
            "gemini-3-pro-preview",
            [_text("user", "q")],
            None,
            GenerationConfig(google_grounding=True, thinking_level="low"),
        )
    )

    assert events == [TextDelta("Answer"), UsageReport(10, 10), FinishEvent("stop")]
    config = stream.calls[0]["config"]
    assert config.temperature == 1.0
    assert config.thinking_config.thinking_level == "LOW"
    assert config.tools[0].google_search is not None
    assert adapter.location == "global"


@pytest.mark.asyncio
async def test_gemini_without_usage_metadata_reports_none() -> None:
    stream = AsyncCall([_gemini_chunk(_part("x"))])
    adapter = GeminiAdapter("proj", "us-central1", client=_gemini_client(stream))
    events = await collect(
        adapter.stream("gemini-2.5-flash", [_text("user", "q")], None, GenerationConfig())
    )
    assert events == [TextDelta("x"), FinishEvent("stop")]


# =============================================================================
# Mock adapter
# =============================================================================


@pytest.mark.asyncio
async def test_mock_adapter_echoes_last_user_message() -> None:
    events = await collect(
        MockAdapter().stream(
            "anything", [_text("user", "hello big world")], None, GenerationConfig()
        )
    )
    text = "".join(e.text for e in events if isinstance(e, TextDelta))
    assert text == "echo: hello big world"
    assert events[-2] == UsageReport(3, 4)
    assert events[-1] == FinishEvent("stop")


# =============================================================================
# Error helpers
# =============================================================================


def test_extract_status_code_walks_response_and_chain() -> None:
    inner = Exception("inner")
    inner.response = SimpleNamespace(status_code=503)  # type: ignore[attr-defined]
    try:
        raise RuntimeError("outer") from inner
    except RuntimeError as outer:
        assert extract_status_code(outer) == 503


def test_wrap_provider_error_maps_rate_limits() -> None:
    exc = Exception("too many")
    exc.status_code = 429  # type: ignore[attr-defined]
    wrapped = wrap_provider_error(exc, provider="openai", phase="stream")
    assert isinstance(wrapped, RateLimitError)
    assert wrapped.status_code == 429
    assert wrapped.provider == "openai"


def test_wrap_provider_error_maps_timeouts_to_504() -> None:
    wrapped = wrap_provider_error(
        httpx.ReadTimeout("read timed out"), provider="gemini", phase="stream"
    )
    assert wrapped.status_code == 504


def test_wrap_provider_error_adds_auth_hint() -> None:
    exc = Exception("unauthorized")
    exc.status_code = 401  # type: ignore[attr-defined]
    wrapped = wrap_provider_error(exc, provider="anthropic", phase="stream")
    assert wrapped.hint is not None
    assert "ANTHROPIC_API_KEY" in wrapped.hint


def test_wrap_provider_error_keeps_existing_api_error() -> None:
    original = APIError("already wrapped", status_code=500)
    assert wrap_provider_error(original, provider="openai", phase="stream") is original
    assert original.provider == "openai"


def test_wrap_provider_error_reraises_cancellation() -> None:
    with pytest.raises(asyncio.CancelledError):
        wrap_provider_error(asyncio.CancelledError(), provider="openai", phase="stream")


def test_vision_detection() -> None:
    assert is_vision_unsupported(Exception("Invalid image_url: unsupported"))
    assert not is_vision_unsupported(Exception("context length exceeded"))
