from __future__ import annotations

import logging
import re

from google import genai
from google.genai import types

from listing_analysis.config import AnalysisConfig
from listing_analysis.errors import ConfigurationError
from listing_analysis.prompt import build_response_schema

logger = logging.getLogger(__name__)

_RATE_LIMIT_PATTERN = re.compile(r"\b429\b|\bRESOURCE_EXHAUSTED\b|\bquota\b", re.IGNORECASE)


def is_rate_limit_error(exc: BaseException) -> bool:
    """True when an upstream model failure is the provider's HTTP 429."""
    if getattr(exc, "code", None) == 429:
        return True
    if getattr(exc, "status", None) == "RESOURCE_EXHAUSTED":
        return True
    return _RATE_LIMIT_PATTERN.search(str(exc)) is not None


class GeminiListingModel:
    """One Gemini ``generate_content`` call per analysis attempt.

    Self-formatted JSON mode enables URL-context and Google Search tools.
    Structured-output mode enforces a response schema with URL context only.
    """

    def __init__(self, api_key: str, config: AnalysisConfig, *, client: genai.Client | None = None) -> None:
        if client is None and not api_key:
            raise ConfigurationError("GEMINI_API_KEY is not set; the analysis service cannot start")
        self.config = config
        self.client = client or genai.Client(api_key=api_key)
        self._generate_config = self._build_generate_config()

    def _build_generate_config(self) -> types.GenerateContentConfig:
        tools = [types.Tool(url_context=types.UrlContext())]
        if self.config.structured_output:
            return types.GenerateContentConfig(
                tools=tools,
                temperature=self.config.temperature,
                response_mime_type="application/json",
                response_schema=build_response_schema(),
            )
        tools.append(types.Tool(google_search=types.GoogleSearch()))
        return types.GenerateContentConfig(tools=tools, temperature=self.config.temperature)

    async def generate(self, prompt: str) -> str | None:
        logger.debug("Calling %s (structured_output=%s)", self.config.model_id, self.config.structured_output)
        response = await self.client.aio.models.generate_content(
            model=self.config.model_id,
            contents=prompt,
            config=self._generate_config,
        )
        return response.text
