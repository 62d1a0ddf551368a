"""
Scoring prompt assembly.

The prompt enumerates the record's properties, its related records and the
neighbor evidence, then asks for a strict JSON verdict.
"""

from fitscore.models.domain.documents import Document
from fitscore.models.domain.scoring import Neighbor

NO_REFERENCE_DATA = "No reference data available"

DEFAULT_INSTRUCTIONS = """You are an expert at analyzing business records and determining how well they match an ideal client profile.
Score the record from 0 to 100, where 100 is a perfect match for the ideal client profile.
Weigh industry, company size, role and seniority, deal size and stage, engagement,
and how the record compares with the reference records below."""

RESPONSE_FORMAT = """Respond with a JSON object only, using exactly these fields:
{"score": <number 0-100>, "positives": [<string>, ...], "negatives": [<string>, ...], "summary": <string>}"""


def _properties_block(document: Document) -> list[str]:
    structured = document.structured_content
    lines = [f"{structured.title}: {structured.description}"]
    for category, bag in structured.sections.items():
        if category == "Scoring":
            continue
        lines.append(f"{category}:")
        lines.extend(f"  - {label}: {value}" for label, value in bag.items())
    return lines


def _neighbor_line(index: int, neighbor: Neighbor) -> str:
    parts = [
        f"{index}. {neighbor.kind.title()} {neighbor.record_id}",
        f"similarity {neighbor.similarity * 100:.0f}%",
        f"previous score {neighbor.reference_score:.0f} ({neighbor.score_source})",
    ]
    if neighbor.classification:
        parts.append(f"classification {neighbor.classification}")
    if neighbor.deal_value:
        parts.append(f"deal value {neighbor.deal_value:,.0f}")
    return ", ".join(parts)


def build_prompt(
    document: Document,
    related: list[Document],
    neighbors: list[Neighbor],
    *,
    instructions: str | None = None,
) -> str:
    kind = document.structured_content.kind
    lines = [instructions or DEFAULT_INSTRUCTIONS, "", f"## {kind.title()} to score"]
    lines.extend(_properties_block(document))

    if related:
        lines.append("")
        lines.append("## Related records")
        for item in related:
            lines.append(f"### {item.structured_content.kind.title()}")
            lines.extend(_properties_block(item))

    lines.append("")
    lines.append("## Reference records")
    if neighbors:
        lines.extend(_neighbor_line(i, n) for i, n in enumerate(neighbors, start=1))
    else:
        lines.append(f"{NO_REFERENCE_DATA}. Score from the record's own properties only.")

    lines.append("")
    lines.append(RESPONSE_FORMAT)
    return "\n".join(lines)


def format_summary(positives: list[str], negatives: list[str], summary: str) -> str:
    """Summary text written back to the CRM record."""
    sections = []
    if positives:
        sections.append("Positives:\n" + "\n".join(f"- {p}" for p in positives))
    if negatives:
        sections.append("Negatives:\n" + "\n".join(f"- {n}" for n in negatives))
    sections.append(f"Summary: {summary}".rstrip())
    return "\n\n".join(sections)
