from __future__ import annotations

from typing import Any

from listing_analysis.data_models import DEAL_RATINGS


RESPONSE_KEYS_DOC = """{
  "make": string,
  "model": string,
  "year": integer,
  "price": number,
  "mileage": number,
  "location": string,
  "condition": string,
  "vin": string (omit if not found),
  "dealRating": "Great" | "Good" | "Fair" | "Poor" | "Suspicious",
  "dealScore": integer from 0 to 100,
  "summary": string,
  "redFlags": [string],
  "pros": [string],
  "cons": [string],
  "marketComparison": {
    "averagePrice": number,
    "lowPrice": number,
    "highPrice": number,
    "similarCarsCount": integer
  },
  "negotiationPitch": string (markdown),
  "vinData": {
    "accidentHistory": string,
    "titleStatus": string
  }
}"""


def build_analysis_prompt(url: str, *, with_search: bool = True) -> str:
    lines = [
        f"Analyze this car listing URL: {url}.",
        "Extract the key details of the vehicle and provide a comprehensive deal analysis.",
        "If you cannot find specific data, estimate based on the make, model and year.",
        "Look for a 17-character Vehicle Identification Number (VIN) anywhere on the listing.",
    ]
    if with_search:
        lines.append(
            "If a VIN is found, use web search to check public auction records, accident "
            "reports and title history for that VIN, and summarise what you find in "
            "vinData.accidentHistory and vinData.titleStatus."
        )
    lines += [
        "Identify any red flags in the description (e.g. title issues, mechanical warnings, "
        "suspicious wording).",
        "Compare the price to typical market values for this specific year, make and model.",
        "Write a negotiation pitch of several paragraphs in markdown that the buyer can use "
        "with the seller. It must explicitly use the cons, red flags and market comparison "
        "you found as leverage.",
    ]
    if with_search:
        lines += [
            "Return ONLY a JSON object, with no commentary, using exactly these keys:",
            RESPONSE_KEYS_DOC,
        ]
    return "\n".join(lines)


def _obj(properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {"type": "OBJECT", "properties": properties, "required": required}


def build_response_schema() -> dict[str, Any]:
    """Response schema for the enforced structured-output mode."""
    string = {"type": "STRING"}
    number = {"type": "NUMBER"}
    integer = {"type": "INTEGER"}
    strings = {"type": "ARRAY", "items": string}
    return _obj(
        {
            "make": string,
            "model": string,
            "year": integer,
            "price": number,
            "mileage": number,
            "location": string,
            "condition": string,
            "vin": string,
            "dealRating": {
                "type": "STRING",
                "enum": list(DEAL_RATINGS),
                "description": "One of: " + ", ".join(DEAL_RATINGS),
            },
            "dealScore": {"type": "INTEGER", "description": "Score from 0 to 100"},
            "summary": string,
            "redFlags": strings,
            "pros": strings,
            "cons": strings,
            "marketComparison": _obj(
                {
                    "averagePrice": number,
                    "lowPrice": number,
                    "highPrice": number,
                    "similarCarsCount": integer,
                },
                ["averagePrice", "lowPrice", "highPrice", "similarCarsCount"],
            ),
            "negotiationPitch": string,
        },
        [
            "make",
            "model",
            "year",
            "price",
            "mileage",
            "dealRating",
            "dealScore",
            "summary",
            "redFlags",
            "pros",
            "cons",
            "marketComparison",
            "negotiationPitch",
        ],
    )
