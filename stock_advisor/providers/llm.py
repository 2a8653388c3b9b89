"""Gemini generative endpoint (Google GenAI SDK)."""

from stock_advisor.core.logger import logger
from stock_advisor.providers.base import GenerativeEndpoint

_DEFAULT_MODEL = "gemini-2.5-flash"


class GeminiEndpoint(GenerativeEndpoint):
    """Google Gemini API endpoint; the SDK client is created on first use."""

    name = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str = _DEFAULT_MODEL,
        temperature: float = 0.3,
        max_output_tokens: int = 2048,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self._client = None

    async def generate(self, prompt: str) -> str:
        from google.genai import types

        config = types.GenerateContentConfig(
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
            response_mime_type="application/json",
        )
        response = await self._get_client().aio.models.generate_content(
            model=self.model,
            contents=prompt,
            config=config,
        )

        content = response.text or ""
        usage = response.usage_metadata
        logger.info(
            f"GeminiEndpoint: {self.model} replied with {len(content)} chars "
            f"(tokens in={usage.prompt_token_count if usage else 0}, "
            f"out={usage.candidates_token_count if usage else 0})"
        )
        if not content:
            raise RuntimeError("No response text from generative model")
        return content

    def _get_client(self):
        if self._client is None:
            from google import genai
            self._client = genai.Client(api_key=self.api_key)
        return self._client
