"""Google Gemini LLM provider."""
import os
from typing import Optional

import google.generativeai as genai
from google.generativeai.types import GenerationConfig

from .base import LLMProvider, LLMResponse

# Aliases for convenience
MODEL_ALIASES = {
    "flash": "gemini-2.5-flash",
    "flash-lite": "gemini-2.5-flash-lite",
    "pro": "gemini-2.5-pro",
}


class GeminiProvider(LLMProvider):
    """Google Gemini provider using the Google AI Studio API."""

    provider_name = "google"

    def __init__(
        self,
        api_key: Optional[str] = None,
        default_model: str = "gemini-2.5-flash",
    ):
        """
        Initialize Gemini provider.

        Args:
            api_key: Google AI API key. If not provided, uses GOOGLE_API_KEY env var.
            default_model: Default model to use for requests.
        """
        self.api_key = api_key or os.environ.get("GOOGLE_API_KEY")
        if not self.api_key:
            raise ValueError(
                "Google API key required. Set GOOGLE_API_KEY env var or pass api_key."
            )

        genai.configure(api_key=self.api_key)
        self.default_model = self._resolve_model(default_model)

    def _resolve_model(self, model: str) -> str:
        """Resolve model alias to full model ID."""
        return MODEL_ALIASES.get(model, model)

    async def generate(
        self,
        prompt: str,
        *,
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        system_prompt: Optional[str] = None,
        **kwargs,
    ) -> LLMResponse:
        """Generate a response from Gemini."""
        model_id = self._resolve_model(model or self.default_model)
        client = genai.GenerativeModel(model_id, system_instruction=system_prompt)

        config = GenerationConfig(
            temperature=temperature,
            max_output_tokens=max_tokens,
        )

        response = await client.generate_content_async(prompt, generation_config=config)

        usage = {}
        if getattr(response, "usage_metadata", None):
            usage = {
                "input_tokens": response.usage_metadata.prompt_token_count,
                "output_tokens": response.usage_metadata.candidates_token_count,
            }

        return LLMResponse(
            content=response.text,
            model=model_id,
            provider=self.provider_name,
            usage=usage,
            finish_reason=response.candidates[0].finish_reason.name if response.candidates else "unknown",
            raw_response=response,
        )
