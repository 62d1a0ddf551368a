"""
Search filters for pulling classified deals out of HubSpot.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from fitscore.config import settings
from fitscore.models.domain.records import properties_for
from fitscore.models.domain.scoring import normalize_classification

STAGE_BY_CLASSIFICATION = {"ideal": "closedwon", "nonideal": "closedlost"}


@dataclass(slots=True)
class SearchFilter:
    """Time window plus lifecycle stage for one record kind."""

    kind: str
    stage: str | None = None
    window_days: int | None = None
    properties: list[str] = field(default_factory=list)
    sort_property: str = "createdate"
    now: datetime | None = None

    @property
    def stage_property(self) -> str:
        return "dealstage" if self.kind == "deal" else "lifecyclestage"

    def window_start(self) -> datetime | None:
        if not self.window_days:
            return None
        return (self.now or datetime.now(UTC)) - timedelta(days=self.window_days)

    def to_request(self, limit: int, after: str | None = None) -> dict:
        filters = []
        if self.stage:
            filters.append({"propertyName": self.stage_property, "operator": "EQ", "value": self.stage})

        start = self.window_start()
        if start is not None:
            filters.append(
                {
                    "propertyName": "createdate",
                    "operator": "GTE",
                    "value": str(int(start.timestamp() * 1000)),
                }
            )

        request = {
            "filterGroups": [{"filters": filters}] if filters else [],
            "sorts": [{"propertyName": self.sort_property, "direction": "DESCENDING"}],
            "properties": self.properties or properties_for(self.kind),
            "limit": limit,
        }
        if after:
            request["after"] = after
        return request


def training_filter(
    classification: str, window_days: int | None = None, now: datetime | None = None
) -> SearchFilter:
    """Closed-won deals for ``ideal``, closed-lost deals for ``nonideal``."""
    stage = STAGE_BY_CLASSIFICATION[normalize_classification(classification)]
    return SearchFilter(
        kind="deal",
        stage=stage,
        window_days=settings.TRAINING_WINDOW_DAYS if window_days is None else window_days,
        now=now,
    )
