"""Provider adapter implementations."""

from .anthropic import AnthropicAdapter, Sonnet45Adapter
from .base import BaseAdapter, ChatAdapter
from .gemini import GeminiAdapter
from .gemini3 import Gemini3Adapter
from .mock import MockAdapter
from .openai import OpenAIChatAdapter
from .openai_responses import OpenAIResponsesAdapter

__all__ = [
    "AnthropicAdapter",
    "BaseAdapter",
    "ChatAdapter",
    "Gemini3Adapter",
    "GeminiAdapter",
    "MockAdapter",
    "OpenAIChatAdapter",
    "OpenAIResponsesAdapter",
    "Sonnet45Adapter",
]
