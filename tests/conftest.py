import copy

import pytest


_LISTING = {
    "make": "Toyota",
    "model": "Camry",
    "year": 2019,
    "price": 18500,
    "mileage": 64000,
    "location": "Sacramento, CA",
    "condition": "Used - good",
    "dealRating": "Good",
    "dealScore": 74,
    "summary": "Fairly priced Camry with average mileage.",
    "redFlags": ["Seller mentions 'minor' transmission slip"],
    "pros": ["One owner", "Service records available"],
    "cons": ["Tires near end of life", "Small dent on rear bumper"],
    "marketComparison": {
        "averagePrice": 19200,
        "lowPrice": 16900,
        "highPrice": 21800,
        "similarCarsCount": 37,
    },
    "negotiationPitch": "Thanks for your time.\n\nThe tires need replacing soon...",
}


@pytest.fixture
def listing_payload():
    def _make(**overrides):
        payload = copy.deepcopy(_LISTING)
        payload.update(overrides)
        return payload

    return _make
