"""LLM providers backing the content generation service."""
from .base import LLMProvider, LLMResponse
from .gemini import GeminiProvider

__all__ = ["LLMProvider", "LLMResponse", "GeminiProvider"]
