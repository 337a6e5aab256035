import httpx
import pytest

from dealscout.nhtsa import VehicleRecordLookup
from dealscout.storage import RedisCache
from listing_analysis.errors import EnrichmentError

VIN = "1HGCM82633A004352"

DECODE_PAYLOAD = {
    "Count": 1,
    "Results": [
        {
            "VIN": VIN,
            "Manufacturer": "AMERICAN HONDA MOTOR CO., INC.",
            "PlantCountry": "UNITED STATES (USA)",
            "BodyClass": "Sedan/Saloon",
            "EngineHP": "",
            "FuelTypePrimary": "Gasoline",
        }
    ],
}

RECALLS_PAYLOAD = {
    "Count": 2,
    "Message": "Results returned successfully",
    "results": [
        {
            "Manufacturer": "Honda (American Honda Motor Co.)",
            "NHTSACampaignNumber": "03V556000",
            "Component": "AIR BAGS:FRONTAL",
            "Summary": "The driver's air bag inflator may rupture.",
            "ReportReceivedDate": "26/11/2003",
        },
        {
            "Manufacturer": "Honda (American Honda Motor Co.)",
            "NHTSACampaignNumber": "04V176000",
            "Component": "POWER TRAIN:AUTOMATIC TRANSMISSION",
            "Summary": "Second gear may fail.",
        },
    ],
}


class Router:
    """httpx.MockTransport handler with per-endpoint behaviour."""

    def __init__(self, decode=DECODE_PAYLOAD, recalls=RECALLS_PAYLOAD):
        self.decode = decode
        self.recalls = recalls
        self.requests = []

    def _respond(self, request, outcome):
        if isinstance(outcome, int):
            return httpx.Response(outcome, json={"message": "error"})
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(200, json=outcome)

    def __call__(self, request):
        self.requests.append(request)
        if "/DecodeVinValues/" in request.url.path:
            return self._respond(request, self.decode)
        if request.url.path.endswith("/recalls/recallsByVehicle"):
            return self._respond(request, self.recalls)
        return httpx.Response(404)


def _lookup(router, cache=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(router))
    return VehicleRecordLookup(
        vpic_base_url="https://vpic.test/api/vehicles",
        api_base_url="https://api.test",
        cache=cache,
        http_client=client,
    )


# ── Single Lookups ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_decode_vin_maps_factory_fields():
    router = Router()
    spec = await _lookup(router).decode_vin(VIN)

    assert spec == {
        "manufacturer": "AMERICAN HONDA MOTOR CO., INC.",
        "plant_country": "UNITED STATES (USA)",
        "body_class": "Sedan/Saloon",
        "fuel_type": "Gasoline",
    }
    request = router.requests[0]
    assert request.url.path == f"/api/vehicles/DecodeVinValues/{VIN}"
    assert request.url.params["format"] == "json"


@pytest.mark.asyncio
async def test_decode_without_results_fails():
    with pytest.raises(EnrichmentError):
        await _lookup(Router(decode={"Count": 0, "Results": []})).decode_vin(VIN)


@pytest.mark.asyncio
async def test_recalls_keyed_by_make_model_year():
    router = Router()
    recalls = await _lookup(router).get_recalls("Honda", "Accord", 2003)

    assert [r.campaign_number for r in recalls] == ["03V556000", "04V176000"]
    assert recalls[0].summary == "The driver's air bag inflator may rupture."
    params = router.requests[0].url.params
    assert params["make"] == "Honda"
    assert params["model"] == "Accord"
    assert params["modelYear"] == "2003"
    assert "vin" not in params


# ── Combined Lookup ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_lookup_returns_both_parts():
    router = Router()
    record = await _lookup(router).lookup(VIN, "Honda", "Accord", 2003)

    assert record.factory_spec["manufacturer"] == "AMERICAN HONDA MOTOR CO., INC."
    assert len(record.recalls) == 2
    assert len(router.requests) == 2


@pytest.mark.asyncio
async def test_recalls_survive_decode_failure():
    router = Router(decode=500)
    record = await _lookup(router).lookup(VIN, "Honda", "Accord", 2003)

    assert record.factory_spec is None
    assert len(record.recalls) == 2
    assert len(router.requests) == 2


@pytest.mark.asyncio
async def test_factory_spec_survives_recall_network_error():
    router = Router(recalls=httpx.ConnectError("connection refused"))
    record = await _lookup(router).lookup(VIN, "Honda", "Accord", 2003)

    assert record.factory_spec["fuel_type"] == "Gasoline"
    assert record.recalls is None


@pytest.mark.asyncio
async def test_lookup_fails_when_both_parts_fail():
    router = Router(decode=503, recalls=httpx.ReadTimeout("timed out"))
    with pytest.raises(EnrichmentError):
        await _lookup(router).lookup(VIN, "Honda", "Accord", 2003)
    assert len(router.requests) == 2


@pytest.mark.asyncio
async def test_lookup_results_are_cached():
    router = Router()
    cache = RedisCache(redis_url="redis://localhost:65535/0")
    lookup = _lookup(router, cache=cache)

    first = await lookup.lookup(VIN, "Honda", "Accord", 2003)
    second = await lookup.lookup(VIN, "Honda", "Accord", 2003)

    assert len(router.requests) == 2
    assert second == first
