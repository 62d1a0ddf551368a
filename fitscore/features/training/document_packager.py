"""
Turn CRM records into embeddable, PII-free documents.

A document has three parts:
- structured content: title, description, classification label, property
  sections and relationships
- content: the structured form flattened into labeled text for embedding
- metadata: scalar fields only, safe to store next to the vector

Names, emails, phone numbers, addresses and free-text record names never reach
either the content or the metadata.
"""

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from fitscore.config import settings
from fitscore.infrastructure.observability.logging import component_logger
from fitscore.models.domain.documents import Document, Metadata, RelatedSummary, StructuredContent
from fitscore.models.domain.records import (
    CompanyRecord,
    ContactRecord,
    CrmRecord,
    DealRecord,
    parse_number,
    properties_for,
)
from fitscore.services.crm.hubspot_client import HubSpotClient
from fitscore.services.crm.resilient_caller import ResilientCaller

SOURCE_SYSTEM = "hubspot"
MAX_RELATED_PER_KIND = 5

# One-hop neighbours packaged alongside each kind
RELATED_KINDS: dict[str, tuple[str, ...]] = {
    "contact": ("company", "deal"),
    "company": ("contact", "deal"),
    "deal": ("company", "contact"),
}

_PII_HINTS = (
    "name",
    "email",
    "phone",
    "address",
    "street",
    "city",
    "zip",
    "postal",
    "fax",
    "domain",
    "website",
    "linkedin",
    "twitter",
    "facebook",
    "ip_",
    "description",
    "notes",
    "summary",
)


def classification_label(score: float | None) -> str:
    if score is None:
        return "Unknown"
    if score > 80:
        return "Ideal"
    if score < 50:
        return "Less Ideal"
    return "Neutral"


def size_bucket(employees: int | None) -> str | None:
    if employees is None:
        return None
    if employees < 10:
        return "Micro"
    if employees < 50:
        return "Small"
    if employees < 250:
        return "Medium"
    return "Large"


def looks_like_pii(property_name: str) -> bool:
    lowered = property_name.lower()
    return any(hint in lowered for hint in _PII_HINTS)


def _humanize(value: str | None) -> str | None:
    if not value:
        return None
    return value.replace("_", " ").strip().title()


def _label(property_name: str) -> str:
    return property_name.removeprefix("hs_").replace("_", " ").title()


def _bag(**values: str | int | float | None) -> dict[str, str]:
    """Drop empty values and stringify the rest."""
    return {label.replace("_", " "): str(value) for label, value in values.items() if value not in (None, "")}


def describe(record: CrmRecord) -> tuple[str, str]:
    """PII-free (title, description) built from role, industry and stage."""
    props = record.properties

    if isinstance(record, ContactRecord):
        role = props.jobtitle or "Contact"
        industry = _humanize(props.industry)
        stage = _humanize(props.lifecyclestage)
        title = f"{role} in {industry}" if industry else role
        parts = [f"{role}"]
        if industry:
            parts.append(f"working in the {industry} industry")
        if stage:
            parts.append(f"at lifecycle stage {stage}")
        return title, " ".join(parts) + "."

    if isinstance(record, CompanyRecord):
        industry = _humanize(props.industry)
        bucket = size_bucket(props.employee_count())
        stage = _humanize(props.lifecyclestage)
        title = " ".join(p for p in (bucket, industry, "Company") if p)
        parts = [title]
        if props.employee_count() is not None:
            parts.append(f"with {props.employee_count()} employees")
        if stage:
            parts.append(f"at lifecycle stage {stage}")
        return title, " ".join(parts) + "."

    stage = _humanize(props.dealstage) or "Unknown Stage"
    pipeline = _humanize(props.pipeline)
    title = f"{stage} Deal"
    parts = [f"Deal at stage {stage}"]
    if pipeline:
        parts.append(f"in the {pipeline} pipeline")
    amount = parse_number(props.amount)
    if amount is not None:
        parts.append(f"worth {amount:,.2f}")
    return title, " ".join(parts) + "."


def _sections(record: CrmRecord) -> dict[str, dict[str, str]]:
    props = record.properties
    sections: dict[str, dict[str, str]] = {}

    if isinstance(record, ContactRecord):
        sections["Professional"] = _bag(Job_Title=props.jobtitle, Industry=_humanize(props.industry))
        sections["Engagement"] = _bag(
            Lifecycle_Stage=_humanize(props.lifecyclestage),
            Lead_Status=_humanize(props.hs_lead_status),
        )
        sections["Location"] = _bag(Country=props.country)
    elif isinstance(record, CompanyRecord):
        sections["Firmographics"] = _bag(
            Industry=_humanize(props.industry),
            Size=size_bucket(props.employee_count()),
            Employees=props.employee_count(),
            Annual_Revenue=props.annualrevenue,
            Type=_humanize(props.type),
            Country=props.country,
        )
        sections["Engagement"] = _bag(Lifecycle_Stage=_humanize(props.lifecyclestage))
    elif isinstance(record, DealRecord):
        sections["Deal"] = _bag(
            Stage=props.dealstage,
            Pipeline=props.pipeline,
            Amount=props.amount,
            Probability=props.hs_deal_stage_probability,
            Deal_Type=_humanize(props.dealtype),
            Priority=_humanize(props.hs_priority),
        )
        sections["Timeline"] = _bag(
            Created=props.createdate,
            Closed=props.closedate,
            Days_To_Close=record.conversion_days() or None,
            Days_In_Pipeline=record.days_in_pipeline() or None,
        )

    sections["Scoring"] = _bag(
        Fit_Score=props.ideal_client_score,
        Training_Score=props.training_score,
        Training_Classification=props.training_classification,
    )
    sections["Custom"] = {
        _label(name): value
        for name, value in sorted(props.extras.items())
        if value not in (None, "") and not looks_like_pii(name)
    }
    return {category: bag for category, bag in sections.items() if bag}


def render_content(structured: StructuredContent) -> str:
    """Flatten structured content into labeled sections, one per property category."""
    score = f"{structured.score:g}" if structured.score is not None else "N/A"
    lines = [
        f"# {structured.title}",
        f"Type: {structured.kind.title()}",
        f"Classification: {structured.classification}",
        f"Score: {score}",
        structured.description,
    ]
    for category, bag in structured.sections.items():
        lines.append("")
        lines.append(f"## {category}")
        lines.extend(f"{label}: {value}" for label, value in bag.items())

    if structured.relationships:
        lines.append("")
        lines.append("## Relationships")
        lines.extend(f"- {rel.kind.title()}: {rel.title}" for rel in structured.relationships)

    return "\n".join(lines)


def vector_id_for(kind: str, record_id: str) -> str:
    return f"{kind}-{record_id}"


class DocumentPackager:
    def __init__(
        self,
        client: HubSpotClient | None = None,
        caller: ResilientCaller | None = None,
        *,
        related_delay: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        self._client = client
        self._caller = caller
        self._related_delay = (
            settings.CRM_ASSOCIATION_DELAY_SECONDS if related_delay is None else related_delay
        )
        self._sleep = sleep
        self._log = component_logger(__name__, logger, component="document_packager")

    def package(
        self,
        record: CrmRecord,
        tenant_id: str,
        *,
        related: list[CrmRecord] | None = None,
        extra_metadata: Metadata | None = None,
    ) -> Document:
        title, description = describe(record)
        score = record.properties.fit_score()
        structured = StructuredContent(
            title=title,
            description=description,
            kind=record.kind,
            classification=classification_label(score),
            score=score,
            sections=_sections(record),
            relationships=[
                RelatedSummary(kind=rel.kind, record_id=rel.id, title=describe(rel)[0])
                for rel in related or []
            ],
        )

        metadata: Metadata = {
            "id": vector_id_for(record.kind, record.id),
            "record_id": record.id,
            "tenant_id": tenant_id,
            "record_type": record.kind,
            "source": SOURCE_SYSTEM,
        }
        last_modified = record.last_modified()
        if last_modified:
            metadata["last_modified"] = last_modified
        for key, value in (extra_metadata or {}).items():
            # The index only takes scalars
            if isinstance(value, (str, int, float, bool)):
                metadata[key] = value

        return Document(
            content=render_content(structured), metadata=metadata, structured_content=structured
        )

    async def fetch_related(self, record: CrmRecord) -> list[CrmRecord]:
        """
        Fetch one-hop related records. Missing or failing related records are
        skipped; the result is whatever could be fetched.
        """
        if self._client is None or self._caller is None:
            return []

        associations = dict(record.associations)
        targets = RELATED_KINDS[record.kind]
        if not all(kind in associations for kind in targets):
            try:
                fetched = await self._caller.call(
                    self._client.get_associations, record.id, record.kind, list(targets)
                )
                associations.update(fetched)
            except Exception as e:
                self._log.warning(
                    "Association lookup failed", record_id=record.id, kind=record.kind, error=str(e)
                )
                return []

        related: list[CrmRecord] = []
        first = True
        for kind in targets:
            for related_id in associations.get(kind, [])[:MAX_RELATED_PER_KIND]:
                if not first:
                    await self._sleep(self._related_delay)
                first = False
                try:
                    related.append(
                        await self._caller.call(
                            self._client.get_record, kind, related_id, properties_for(kind)
                        )
                    )
                except Exception as e:
                    self._log.warning(
                        "Skipping related record",
                        record_id=record.id,
                        related_kind=kind,
                        related_id=related_id,
                        error=str(e),
                    )
        return related

    async def package_with_relationships(
        self, record: CrmRecord, tenant_id: str, *, extra_metadata: Metadata | None = None
    ) -> tuple[Document, list[CrmRecord]]:
        related = await self.fetch_related(record)
        return self.package(record, tenant_id, related=related, extra_metadata=extra_metadata), related
