import json

import pytest

from listing_analysis.data_models import ListingAnalysis, RecallRecord, VehicleRecord
from listing_analysis.errors import (
    GENERIC_FAILURE_MESSAGE,
    EmptyResponseError,
    MalformedResponseError,
)
from listing_analysis.parsing import parse_listing_analysis, strip_code_fences
from listing_analysis.prompt import build_analysis_prompt, build_response_schema


# ── Fence Stripping / Parsing ───────────────────────────────────────


@pytest.mark.parametrize(
    "wrap",
    [
        "```json\n{}\n```",
        "```\n{}\n```",
        "  ```JSON\n{}\n```  \n",
        "```json {}```",
    ],
)
def test_fenced_and_plain_json_parse_identically(listing_payload, wrap):
    text = json.dumps(listing_payload())
    plain = parse_listing_analysis(text)
    fenced = parse_listing_analysis(wrap.replace("{}", text))
    assert fenced == plain


def test_toyota_fenced_scenario(listing_payload):
    body = json.dumps(listing_payload(make="Toyota"))
    assert parse_listing_analysis(f"```json\n{body}\n```") == parse_listing_analysis(body)
    assert parse_listing_analysis(body).make == "Toyota"


def test_strip_code_fences_leaves_plain_text_alone():
    assert strip_code_fences('{"a": 1}') == '{"a": 1}'
    assert strip_code_fences('  {"a": 1}\n') == '{"a": 1}'


@pytest.mark.parametrize("text", [None, "", "   \n"])
def test_empty_response(text):
    with pytest.raises(EmptyResponseError) as exc_info:
        parse_listing_analysis(text)
    assert exc_info.value.user_message == GENERIC_FAILURE_MESSAGE


def test_invalid_json_is_malformed():
    with pytest.raises(MalformedResponseError) as exc_info:
        parse_listing_analysis("```json\n{\"make\": \"Toyota\",\n```")
    assert exc_info.value.user_message == GENERIC_FAILURE_MESSAGE
    assert "not valid JSON" in str(exc_info.value)


def test_non_object_json_is_malformed():
    with pytest.raises(MalformedResponseError):
        parse_listing_analysis("[1, 2, 3]")


@pytest.mark.parametrize("key", ["make", "year", "dealRating", "redFlags", "marketComparison"])
def test_missing_required_key_is_malformed(listing_payload, key):
    payload = listing_payload()
    del payload[key]
    with pytest.raises(MalformedResponseError):
        parse_listing_analysis(json.dumps(payload))


def test_unknown_deal_rating_is_malformed(listing_payload):
    with pytest.raises(MalformedResponseError):
        parse_listing_analysis(json.dumps(listing_payload(dealRating="Amazing")))


def test_deal_rating_case_is_normalized(listing_payload):
    analysis = parse_listing_analysis(json.dumps(listing_payload(dealRating=" suspicious ")))
    assert analysis.deal_rating == "Suspicious"


def test_json_types_are_coerced(listing_payload):
    analysis = parse_listing_analysis(json.dumps(listing_payload(year="2019", price="18500.5")))
    assert analysis.year == 2019
    assert analysis.price == 18500.5


def test_deal_score_is_not_clamped(listing_payload):
    analysis = parse_listing_analysis(json.dumps(listing_payload(dealScore=130)))
    assert analysis.deal_score == 130


def test_optional_fields_default(listing_payload):
    payload = listing_payload()
    del payload["negotiationPitch"]
    del payload["location"]
    analysis = parse_listing_analysis(json.dumps(payload))
    assert analysis.negotiation_pitch == ""
    assert analysis.location == ""
    assert analysis.vin is None
    assert analysis.vin_data is None


def test_list_order_is_preserved(listing_payload):
    pros = ["z last alphabetically", "a first alphabetically", "m middle"]
    analysis = parse_listing_analysis(json.dumps(listing_payload(pros=pros)))
    assert analysis.pros == pros


def test_blank_vin_becomes_none(listing_payload):
    analysis = parse_listing_analysis(json.dumps(listing_payload(vin="  ")))
    assert analysis.vin is None
    assert not analysis.has_lookup_vin()


# ── Enrichment Merge ────────────────────────────────────────────────


def _recall(campaign: str) -> RecallRecord:
    return RecallRecord.model_validate({
        "NHTSACampaignNumber": campaign,
        "Component": "AIR BAGS",
        "Summary": f"Recall {campaign}",
        "Remedy": "Dealers will replace the inflator.",
        "ModelYear": "2019",
    })


def test_merge_keeps_model_fields_alongside_lookup(listing_payload):
    analysis = ListingAnalysis.model_validate(listing_payload(
        vin="1HGCM82633A004352",
        vinData={"accidentHistory": "One minor accident in 2021", "titleStatus": "Clean"},
    ))
    record = VehicleRecord(
        factory_spec={"manufacturer": "Honda", "body_class": "Sedan/Saloon", "engine_hp": "158"},
        recalls=[_recall("19V001000"), _recall("20V002000")],
    )

    merged = analysis.with_vehicle_record(record)

    assert merged.vin_data.manufacturer == "Honda"
    assert len(merged.vin_data.recalls) == 2
    assert merged.vin_data.accident_history == "One minor accident in 2021"
    assert merged.vin_data.title_status == "Clean"
    wire = merged.to_wire()
    assert wire["vinData"]["engineHP"] == "158"
    assert wire["vinData"]["recalls"][0]["NHTSACampaignNumber"] == "19V001000"
    assert wire["vinData"]["recalls"][0]["ModelYear"] == "2019"


def test_merge_creates_vin_data_when_absent(listing_payload):
    analysis = ListingAnalysis.model_validate(listing_payload(vin="1HGCM82633A004352"))
    merged = analysis.with_vehicle_record(VehicleRecord(factory_spec={"fuel_type": "Gasoline"}))
    assert merged.vin_data is not None
    assert merged.vin_data.fuel_type == "Gasoline"
    assert merged.vin_data.recalls is None


def test_merge_with_only_recalls_keeps_model_fields(listing_payload):
    analysis = ListingAnalysis.model_validate(listing_payload(
        vinData={"accidentHistory": "None reported", "titleStatus": "Clean"},
    ))
    merged = analysis.with_vehicle_record(VehicleRecord(recalls=[]))
    assert merged.vin_data.recalls == []
    assert merged.vin_data.manufacturer is None
    assert merged.vin_data.title_status == "Clean"


def test_merge_returns_copy(listing_payload):
    analysis = ListingAnalysis.model_validate(listing_payload(vinData={"titleStatus": "Salvage"}))
    merged = analysis.with_vehicle_record(VehicleRecord(factory_spec={"manufacturer": "Honda"}))
    assert analysis.vin_data.manufacturer is None
    assert merged.vin_data.manufacturer == "Honda"
    assert merged.summary == analysis.summary


def test_to_wire_is_camel_case(listing_payload):
    wire = ListingAnalysis.model_validate(listing_payload()).to_wire()
    assert wire["dealRating"] == "Good"
    assert wire["marketComparison"]["similarCarsCount"] == 37
    assert "vin" not in wire
    assert "deal_rating" not in wire


# ── Prompt ──────────────────────────────────────────────────────────


def test_prompt_includes_url_and_key_set():
    prompt = build_analysis_prompt("https://example.com/listing/42")
    assert "https://example.com/listing/42" in prompt
    assert "negotiationPitch" in prompt
    assert "web search" in prompt
    assert "Return ONLY a JSON object" in prompt


def test_prompt_without_search():
    prompt = build_analysis_prompt("https://example.com/listing/42", with_search=False)
    assert "web search" not in prompt
    assert "17-character" in prompt


def test_response_schema_requires_core_keys():
    schema = build_response_schema()
    assert schema["type"] == "OBJECT"
    for key in ("make", "dealRating", "marketComparison", "negotiationPitch"):
        assert key in schema["required"]
    assert schema["properties"]["dealRating"]["enum"] == ["Great", "Good", "Fair", "Poor", "Suspicious"]
