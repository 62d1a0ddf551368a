"""
CRM record models.

Each record kind has a fixed property schema. Properties HubSpot returns that
the schema does not know about are kept in ``extras`` instead of being dropped
or silently accepted as attributes.
"""

import math
from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

RecordKind = Literal["contact", "company", "deal"]
RECORD_KINDS: tuple[str, ...] = ("contact", "company", "deal")

PLURAL_KINDS: dict[str, str] = {"contact": "contacts", "company": "companies", "deal": "deals"}
SINGULAR_KINDS: dict[str, str] = {plural: kind for kind, plural in PLURAL_KINDS.items()}


def _stringify(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a HubSpot timestamp (ISO-8601 or epoch milliseconds)."""
    if not value:
        return None
    text = value.strip()
    if text.isdigit():
        return datetime.fromtimestamp(int(text) / 1000, tz=UTC)
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def parse_number(value: str | None) -> float | None:
    """Parse a numeric property, returning None for blanks and non-finite values."""
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class RecordProperties(BaseModel):
    """Properties shared by every record kind."""

    model_config = ConfigDict(extra="forbid")

    createdate: str | None = None
    hs_lastmodifieddate: str | None = None
    hs_object_id: str | None = None

    # Written back by scoring
    ideal_client_score: str | None = None
    ideal_client_summary: str | None = None
    ideal_client_last_scored: str | None = None

    # Manually assigned training labels
    training_score: str | None = None
    training_classification: str | None = None

    extras: dict[str, str | None] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _collect_extras(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        known = set(cls.model_fields) - {"extras"}
        extras = dict(data.get("extras") or {})
        values: dict[str, Any] = {}
        for key, value in data.items():
            if key == "extras":
                continue
            if key in known:
                values[key] = _stringify(value)
            else:
                extras[key] = _stringify(value)
        values["extras"] = extras
        return values

    @classmethod
    def known_names(cls) -> list[str]:
        return [name for name in cls.model_fields if name != "extras"]

    def fit_score(self) -> float | None:
        """LLM-assigned score, falling back to a manually assigned training score."""
        score = parse_number(self.ideal_client_score)
        return score if score is not None else parse_number(self.training_score)

    def last_modified(self) -> str | None:
        return self.hs_lastmodifieddate or getattr(self, "lastmodifieddate", None)


class ContactProperties(RecordProperties):
    firstname: str | None = None
    lastname: str | None = None
    email: str | None = None
    phone: str | None = None
    mobilephone: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    jobtitle: str | None = None
    industry: str | None = None
    company: str | None = None
    lifecyclestage: str | None = None
    hs_lead_status: str | None = None
    associatedcompanyid: str | None = None
    lastmodifieddate: str | None = None


class CompanyProperties(RecordProperties):
    name: str | None = None
    domain: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    industry: str | None = None
    type: str | None = None
    numberofemployees: str | None = None
    annualrevenue: str | None = None
    lifecyclestage: str | None = None
    description: str | None = None

    def employee_count(self) -> int | None:
        count = parse_number(self.numberofemployees)
        return int(count) if count is not None else None


class DealProperties(RecordProperties):
    dealname: str | None = None
    amount: str | None = None
    closedate: str | None = None
    dealstage: str | None = None
    pipeline: str | None = None
    dealtype: str | None = None
    hs_priority: str | None = None
    hs_deal_stage_probability: str | None = None
    hs_pipeline_stage: str | None = None
    hs_time_in_pipeline: str | None = None
    hs_time_in_dealstage: str | None = None
    hs_deal_stage_changes: str | None = None
    hs_date_entered_closedwon: str | None = None
    hs_date_entered_closedlost: str | None = None


class CrmRecordBase(BaseModel):
    id: str
    associations: dict[str, list[str]] = Field(default_factory=dict)
    created_at: str | None = None
    updated_at: str | None = None

    def associated_ids(self, kind: str) -> list[str]:
        return self.associations.get(kind, [])

    def last_modified(self) -> str | None:
        return self.properties.last_modified() or self.updated_at


class ContactRecord(CrmRecordBase):
    kind: Literal["contact"] = "contact"
    properties: ContactProperties = Field(default_factory=ContactProperties)


class CompanyRecord(CrmRecordBase):
    kind: Literal["company"] = "company"
    properties: CompanyProperties = Field(default_factory=CompanyProperties)


class DealRecord(CrmRecordBase):
    kind: Literal["deal"] = "deal"
    properties: DealProperties = Field(default_factory=DealProperties)

    def deal_value(self) -> float:
        return parse_number(self.properties.amount) or 0.0

    def conversion_days(self) -> int:
        """Whole days from creation to close, rounded up; 0 while the deal is open."""
        created = parse_timestamp(self.properties.createdate)
        closed = parse_timestamp(self.properties.closedate)
        if not created or not closed:
            return 0
        return math.ceil((closed - created).total_seconds() / 86400)

    def days_in_pipeline(self) -> int:
        value = parse_number(self.properties.hs_time_in_pipeline)
        return int(value) if value is not None else 0

    def linkage_metadata(self, classification: str) -> dict[str, str | int | float]:
        """Deal fields copied onto every vector produced from this deal."""
        return {
            "deal_id": self.id,
            "deal_value": self.deal_value(),
            "conversion_days": self.conversion_days(),
            "pipeline": self.properties.pipeline or "unknown",
            "dealstage": self.properties.dealstage or "unknown",
            "days_in_pipeline": self.days_in_pipeline(),
            "classification": classification,
        }


CrmRecord = Annotated[ContactRecord | CompanyRecord | DealRecord, Field(discriminator="kind")]

_record_adapter = TypeAdapter(CrmRecord)

PROPERTY_MODELS: dict[str, type[RecordProperties]] = {
    "contact": ContactProperties,
    "company": CompanyProperties,
    "deal": DealProperties,
}


def properties_for(kind: str) -> list[str]:
    """Property names requested from HubSpot for a record kind."""
    return PROPERTY_MODELS[kind].known_names()


def _parse_associations(raw: dict | None) -> dict[str, list[str]]:
    """
    Flatten HubSpot's association payload.

    ``{"companies": {"results": [{"id": "1", "type": "deal_to_company"}]}}``
    becomes ``{"company": ["1"]}``. The same id can appear once per
    association type, so ids are de-duplicated in order.
    """
    associations: dict[str, list[str]] = {}
    for key, value in (raw or {}).items():
        kind = SINGULAR_KINDS.get(key, key)
        results = value.get("results", []) if isinstance(value, dict) else value or []
        ids: list[str] = []
        for item in results:
            item_id = item.get("id") or item.get("toObjectId") if isinstance(item, dict) else item
            if item_id is not None and str(item_id) not in ids:
                ids.append(str(item_id))
        associations[kind] = ids
    return associations


def parse_record(kind: str, payload: dict[str, Any]) -> ContactRecord | CompanyRecord | DealRecord:
    """Validate a raw HubSpot object into the record model for ``kind``."""
    return _record_adapter.validate_python(
        {
            "kind": kind,
            "id": str(payload["id"]),
            "properties": payload.get("properties") or {},
            "associations": _parse_associations(payload.get("associations")),
            "created_at": payload.get("createdAt"),
            "updated_at": payload.get("updatedAt"),
        }
    )
