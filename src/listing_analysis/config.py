from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class AnalysisConfig:
    model_id: str = "gemini-3-flash-preview"
    max_attempts: int = 2  # first call + one retry on rate limit
    retry_delay_seconds: float = 2.0
    vin_length: int = 17
    # Enforced response schema drops the web-search tool; the provider does not
    # allow both on one request.
    structured_output: bool = False
    temperature: float | None = None
