from dataclasses import dataclass, field

MetadataValue = str | int | float | bool
Metadata = dict[str, MetadataValue]


@dataclass(slots=True)
class RelatedSummary:
    kind: str
    record_id: str
    title: str


@dataclass(slots=True)
class StructuredContent:
    """Intermediate form used to build the embedding text. Never stored in the index."""

    title: str
    description: str
    kind: str
    classification: str
    score: float | None
    sections: dict[str, dict[str, str]] = field(default_factory=dict)
    relationships: list[RelatedSummary] = field(default_factory=list)


@dataclass(slots=True)
class Document:
    content: str
    metadata: Metadata
    structured_content: StructuredContent

    @property
    def vector_id(self) -> str:
        return str(self.metadata["id"])


@dataclass(slots=True)
class EmbeddedDocument:
    document: Document
    embedding: list[float]

    @property
    def vector_id(self) -> str:
        return self.document.vector_id

    @property
    def metadata(self) -> Metadata:
        return self.document.metadata


@dataclass(slots=True)
class Vector:
    id: str
    values: list[float]
    metadata: Metadata = field(default_factory=dict)

    def to_payload(self) -> dict:
        return {"id": self.id, "values": self.values, "metadata": self.metadata}


@dataclass(slots=True)
class VectorMatch:
    id: str
    score: float
    metadata: Metadata = field(default_factory=dict)
