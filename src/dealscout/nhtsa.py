"""Public NHTSA vehicle-record lookups used to enrich an analysis.

Both APIs are free and unauthenticated. Recalls are looked up by
make/model/year, so they cover the model line in general rather than the
exact trim behind a VIN; that is the granularity the API offers.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from dealscout.storage import RedisCache
from listing_analysis.data_models import RecallRecord, VehicleRecord
from listing_analysis.errors import EnrichmentError

logger = logging.getLogger(__name__)


# vPIC column -> VinData field
_FACTORY_FIELDS = {
    "Manufacturer": "manufacturer",
    "PlantCountry": "plant_country",
    "BodyClass": "body_class",
    "EngineHP": "engine_hp",
    "FuelTypePrimary": "fuel_type",
}


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() in {"null", "not applicable"}:
        return None
    return text


class VehicleRecordLookup:
    def __init__(
        self,
        *,
        vpic_base_url: str = "https://vpic.nhtsa.dot.gov/api/vehicles",
        api_base_url: str = "https://api.nhtsa.gov",
        timeout_seconds: float = 8.0,
        cache: RedisCache | None = None,
        cache_ttl_seconds: int = 86_400,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.vpic_base_url = vpic_base_url.rstrip("/")
        self.api_base_url = api_base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.cache = cache
        self.cache_ttl_seconds = cache_ttl_seconds
        self._http_client = http_client

    async def _get_json(self, url: str, params: dict[str, str]) -> Any:
        if self._http_client is not None:
            resp = await self._http_client.get(url, params=params, timeout=self.timeout_seconds)
            resp.raise_for_status()
            return resp.json()
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            resp = await client.get(url, params=params)
            resp.raise_for_status()
        return resp.json()

    async def _cached(self, key: str) -> Any | None:
        if self.cache is None:
            return None
        return await self.cache.get_json(key)

    async def _remember(self, key: str, value: Any) -> None:
        if self.cache is not None:
            await self.cache.set_json(key, value, ttl_seconds=self.cache_ttl_seconds)

    async def decode_vin(self, vin: str) -> dict[str, str]:
        """Factory specification fields for ``vin``, keyed by VinData field name."""
        cache_key = f"vin_decode:{vin}"
        cached = await self._cached(cache_key)
        if cached is not None:
            return cached

        payload = await self._get_json(
            f"{self.vpic_base_url}/DecodeVinValues/{vin}", params={"format": "json"},
        )
        rows = payload.get("Results") or []
        if not rows:
            raise EnrichmentError(f"VIN decode returned no results for {vin}")
        row = rows[0]
        spec: dict[str, str] = {}
        for column, field in _FACTORY_FIELDS.items():
            value = _clean(row.get(column))
            if value is not None:
                spec[field] = value
        await self._remember(cache_key, spec)
        return spec

    async def get_recalls(self, make: str, model: str, year: int) -> list[RecallRecord]:
        cache_key = f"recalls:{make.lower()}:{model.lower()}:{year}"
        cached = await self._cached(cache_key)
        if cached is None:
            payload = await self._get_json(
                f"{self.api_base_url}/recalls/recallsByVehicle",
                params={"make": make, "model": model, "modelYear": str(year)},
            )
            cached = [r for r in (payload.get("results") or []) if isinstance(r, dict)]
            await self._remember(cache_key, cached)
        return [RecallRecord.model_validate(r) for r in cached]

    async def lookup(self, vin: str, make: str, model: str, year: int) -> VehicleRecord:
        """Run both lookups concurrently and keep whichever succeeded.

        Raises ``EnrichmentError`` only when neither produced anything.
        """
        spec_result, recalls_result = await asyncio.gather(
            self.decode_vin(vin),
            self.get_recalls(make, model, year),
            return_exceptions=True,
        )

        factory_spec: dict[str, str] | None = None
        if isinstance(spec_result, BaseException):
            logger.warning("VIN decode failed for %s: %r", vin, spec_result)
        else:
            factory_spec = spec_result

        recalls: list[RecallRecord] | None = None
        if isinstance(recalls_result, BaseException):
            logger.warning("Recall lookup failed for %s %s %s: %r", year, make, model, recalls_result)
        else:
            recalls = recalls_result

        if factory_spec is None and recalls is None:
            raise EnrichmentError(f"all vehicle-record lookups failed for {vin}")
        return VehicleRecord(factory_spec=factory_spec, recalls=recalls)
