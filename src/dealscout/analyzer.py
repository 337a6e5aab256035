from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Protocol

from dealscout.gemini import is_rate_limit_error
from dealscout.logging_config import log_with_data
from listing_analysis.config import AnalysisConfig
from listing_analysis.data_models import ListingAnalysis, VehicleRecord
from listing_analysis.errors import AnalysisError, ModelCallError, RateLimitError
from listing_analysis.parsing import parse_listing_analysis
from listing_analysis.prompt import build_analysis_prompt

logger = logging.getLogger(__name__)


class ListingModel(Protocol):
    async def generate(self, prompt: str) -> str | None: ...


class VehicleLookup(Protocol):
    async def lookup(self, vin: str, make: str, model: str, year: int) -> VehicleRecord: ...


class ListingAnalyzer:
    """Turn a listing URL into a ``ListingAnalysis``.

    The model call is retried once, after a fixed delay, when the provider
    answers with a rate limit. Any other failure is final. Vehicle-record
    enrichment runs only for a VIN of exactly ``config.vin_length`` characters
    and never fails the analysis.
    """

    def __init__(
        self,
        model: ListingModel,
        lookup: VehicleLookup | None,
        config: AnalysisConfig | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.model = model
        self.lookup = lookup
        self.config = config or AnalysisConfig()
        self._sleep = sleep

    async def _call_model(self, prompt: str) -> str | None:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self.model.generate(prompt)
            except Exception as exc:
                if not is_rate_limit_error(exc):
                    logger.error("Model call failed on attempt %d: %r", attempt, exc)
                    raise ModelCallError(f"model call failed: {exc}") from exc
                if attempt >= self.config.max_attempts:
                    logger.error("Model still rate limited after %d attempts: %s", attempt, exc)
                    raise RateLimitError(f"rate limited after {attempt} attempts: {exc}") from exc
                logger.warning(
                    "Model rate limited on attempt %d, retrying in %.1fs",
                    attempt,
                    self.config.retry_delay_seconds,
                )
                await self._sleep(self.config.retry_delay_seconds)

    async def _enrich(self, analysis: ListingAnalysis) -> ListingAnalysis:
        if self.lookup is None or not analysis.has_lookup_vin(self.config.vin_length):
            return analysis
        try:
            record = await self.lookup.lookup(
                analysis.vin, analysis.make, analysis.model, analysis.year,
            )
        except Exception as exc:
            logger.warning("Vehicle-record enrichment failed for %s: %r", analysis.vin, exc)
            return analysis
        return analysis.with_vehicle_record(record)

    async def analyze(self, url: str) -> ListingAnalysis:
        t0 = time.monotonic()
        prompt = build_analysis_prompt(url, with_search=not self.config.structured_output)
        text = await self._call_model(prompt)

        try:
            analysis = parse_listing_analysis(text)
        except AnalysisError as exc:
            logger.error("Could not parse model response for %s: %s", url, exc)
            raise

        analysis = await self._enrich(analysis)
        log_with_data(
            logger,
            logging.INFO,
            "Analyzed listing",
            url=url,
            deal_rating=analysis.deal_rating,
            vin=analysis.vin,
            duration_ms=round((time.monotonic() - t0) * 1000, 1),
        )
        return analysis
