from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


DealRating = Literal["Great", "Good", "Fair", "Poor", "Suspicious"]
DEAL_RATINGS: tuple[str, ...] = ("Great", "Good", "Fair", "Poor", "Suspicious")


class _WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class MarketComparison(_WireModel):
    average_price: float
    low_price: float
    high_price: float
    similar_cars_count: int


class RecallRecord(BaseModel):
    """One NHTSA recall row. Unknown NHTSA keys are kept verbatim."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    campaign_number: str | None = Field(default=None, alias="NHTSACampaignNumber")
    component: str | None = Field(default=None, alias="Component")
    summary: str | None = Field(default=None, alias="Summary")
    consequence: str | None = Field(default=None, alias="Consequence")
    remedy: str | None = Field(default=None, alias="Remedy")
    report_received_date: str | None = Field(default=None, alias="ReportReceivedDate")


class VinData(_WireModel):
    model_config = ConfigDict(extra="allow")

    # reported by the model from its own web search
    accident_history: str | None = None
    title_status: str | None = None
    # filled in from the VIN decode / recall lookups
    manufacturer: str | None = None
    plant_country: str | None = None
    body_class: str | None = None
    engine_hp: str | None = Field(default=None, alias="engineHP")
    fuel_type: str | None = None
    recalls: list[RecallRecord] | None = None


@dataclass(frozen=True)
class VehicleRecord:
    """Result of the public vehicle-record lookups.

    ``None`` means that half of the lookup failed; an empty list of recalls is
    a successful answer.
    """

    factory_spec: dict[str, str] | None = None
    recalls: list[RecallRecord] | None = None


class ListingAnalysis(_WireModel):
    make: str
    model: str
    year: int
    price: float
    mileage: float
    location: str = ""
    condition: str = ""
    vin: str | None = None
    deal_rating: DealRating
    deal_score: int
    summary: str
    red_flags: list[str]
    pros: list[str]
    cons: list[str]
    market_comparison: MarketComparison
    negotiation_pitch: str = ""
    vin_data: VinData | None = None

    @field_validator("deal_rating", mode="before")
    @classmethod
    def _normalize_rating(cls, value: Any) -> Any:
        if isinstance(value, str):
            wanted = value.strip().lower()
            for rating in DEAL_RATINGS:
                if rating.lower() == wanted:
                    return rating
        return value

    @field_validator("vin", mode="before")
    @classmethod
    def _blank_vin(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("location", "condition", "negotiation_pitch", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    def has_lookup_vin(self, length: int = 17) -> bool:
        return self.vin is not None and len(self.vin) == length

    def with_vehicle_record(self, record: VehicleRecord) -> ListingAnalysis:
        """Return a copy with lookup data merged into ``vin_data``.

        Model-reported fields already present in ``vin_data`` are kept; only
        the lookup-owned fields are written, and only when the lookup produced
        a value for them.
        """
        base = self.vin_data if self.vin_data is not None else VinData()
        updates: dict[str, Any] = {}
        if record.factory_spec:
            updates.update({k: v for k, v in record.factory_spec.items() if v})
        if record.recalls is not None:
            updates["recalls"] = list(record.recalls)
        return self.model_copy(update={"vin_data": base.model_copy(update=updates)})
