from __future__ import annotations

import json
import re

from pydantic import ValidationError

from listing_analysis.data_models import ListingAnalysis
from listing_analysis.errors import EmptyResponseError, MalformedResponseError


_OPENING_FENCE = re.compile(r"^\s*```[\w-]*[ \t]*\n?")
_CLOSING_FENCE = re.compile(r"\n?[ \t]*```\s*$")


def strip_code_fences(text: str) -> str:
    """Remove an optional markdown code fence wrapped around the whole text."""
    stripped = _OPENING_FENCE.sub("", text, count=1)
    stripped = _CLOSING_FENCE.sub("", stripped, count=1)
    return stripped.strip()


def parse_listing_analysis(text: str | None) -> ListingAnalysis:
    if text is None or not text.strip():
        raise EmptyResponseError("model response contained no text")

    body = strip_code_fences(text)
    try:
        payload = json.loads(body)
    except json.JSONDecodeError as exc:
        raise MalformedResponseError(f"response is not valid JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise MalformedResponseError(f"expected a JSON object, got {type(payload).__name__}")

    try:
        return ListingAnalysis.model_validate(payload)
    except ValidationError as exc:
        raise MalformedResponseError(
            f"response does not match the analysis shape ({exc.error_count()} errors): {exc}"
        ) from exc
