"""
Base resource interface.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Annotated, Any, ClassVar

from pydantic import BaseModel, BeforeValidator, ConfigDict

from energy_api.datasource.models import AggregatedResponse, ResponseMetadata
from energy_api.services.client import UpstreamQuery

COMBINED_REGION = "Danmark"
SUB_REGIONS = ("DK1", "DK2")
REGIONS = SUB_REGIONS + (COMBINED_REGION,)
REGION_ALIASES = {"combined": COMBINED_REGION}

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
# Leaves room for the day offsets the resolvers apply.
MIN_YEAR = 1970
MAX_YEAR = 9998


def normalize_region(value: Any) -> str:
    """Case-insensitive region lookup; 'combined' means both price areas."""
    if value is None:
        return COMBINED_REGION
    text = str(value).strip()
    if not text:
        return COMBINED_REGION
    for region in REGIONS:
        if text.lower() == region.lower():
            return region
    alias = REGION_ALIASES.get(text.lower())
    if alias:
        return alias
    raise ValueError("Region must be DK1, DK2, or Danmark")


def parse_day(value: Any) -> date | None:
    """Accept YYYY-MM-DD calendar dates only."""
    if value is None or isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    if not _DATE_RE.match(text):
        raise ValueError("Date must be in YYYY-MM-DD format")
    try:
        day = date.fromisoformat(text)
    except ValueError:
        raise ValueError("Invalid calendar date") from None
    if not MIN_YEAR <= day.year <= MAX_YEAR:
        raise ValueError(f"Date must be between {MIN_YEAR} and {MAX_YEAR}")
    return day


def blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


Region = Annotated[str, BeforeValidator(normalize_region)]
Day = Annotated[date | None, BeforeValidator(parse_day)]


class QueryParams(BaseModel):
    """Validated query parameters common to all resources."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    region: Region = COMBINED_REGION


@dataclass(frozen=True)
class ResolvedQuery:
    """
    A query with every relative parameter pinned down.

    Two logically identical requests resolve to equal ResolvedQuery values,
    which is what makes cache keys and coalescing work.
    """

    resource: str
    region: str
    start: str
    end: str
    aggregation: str
    options: dict[str, str] = field(default_factory=dict)

    def option(self, name: str, default: str | None = None) -> str | None:
        return self.options.get(name, default)


class BaseResource(ABC):
    """
    Abstract base class for all data resources.

    A resource knows how to validate and resolve its query parameters, which
    upstream dataset to ask, and how to turn raw upstream records into an
    AggregatedResponse. normalize() must be pure and deterministic.
    """

    name: ClassVar[str]
    dataset: ClassVar[str]
    label: ClassVar[str]
    params_model: ClassVar[type[QueryParams]] = QueryParams

    ttl: ClassVar[int]
    fallback_ttl: ClassVar[int]
    # TTL for responses without records, if different from ttl
    empty_ttl: ClassVar[int | None] = None

    def parse(self, raw: dict[str, str]) -> QueryParams:
        """Validate raw query parameters (raises pydantic.ValidationError)."""
        return self.params_model.model_validate(raw)

    @abstractmethod
    def resolve(self, params: QueryParams, now: datetime) -> ResolvedQuery:
        """Pin relative dates and defaults down against now (aware UTC)."""
        ...

    @abstractmethod
    def upstream_query(self, resolved: ResolvedQuery) -> UpstreamQuery:
        """Build the upstream request for a resolved query."""
        ...

    @abstractmethod
    def normalize(
        self, records: list[dict[str, Any]], resolved: ResolvedQuery
    ) -> AggregatedResponse[Any]:
        """Aggregate raw upstream records into the response shape."""
        ...

    def cache_key(self, resolved: ResolvedQuery) -> str:
        key = (
            f"{self.name}:{resolved.region}:{resolved.start}:"
            f"{resolved.end}:{resolved.aggregation}"
        )
        for option_name in sorted(resolved.options):
            key += f":{option_name}={resolved.options[option_name]}"
        return key

    def fallback_key(self, resolved: ResolvedQuery) -> str:
        return f"{self.name}:{resolved.region}:latest"

    def ttl_for(self, record_count: int) -> int:
        if not record_count and self.empty_ttl is not None:
            return self.empty_ttl
        return self.ttl

    def region_filter(self, resolved: ResolvedQuery) -> dict[str, list[str]] | None:
        """Upstream filter for a single price area; the combined view is unfiltered."""
        if resolved.region in SUB_REGIONS:
            return {"PriceArea": [resolved.region]}
        return None

    def metadata(
        self,
        resolved: ResolvedQuery,
        data_points: int,
        aggregation: str | None = None,
        **extra: Any,
    ) -> ResponseMetadata:
        return ResponseMetadata(
            resource=self.name,
            region=resolved.region,
            start_date=resolved.start,
            end_date=resolved.end,
            aggregation=aggregation or resolved.aggregation,
            data_points=data_points,
            **extra,
        )

    def degraded_extras(self, resolved: ResolvedQuery) -> dict[str, Any]:
        """Resource-specific metadata fields for the degraded payload."""
        return {}

    def degraded(self, resolved: ResolvedQuery) -> AggregatedResponse[Any]:
        """Structurally valid empty response for when no data can be produced."""
        return AggregatedResponse[Any](
            records=[],
            metadata=self.metadata(
                resolved,
                data_points=0,
                status="degraded",
                message=f"{self.label} temporarily unavailable",
                **self.degraded_extras(resolved),
            ),
            statistics=self.empty_statistics(),
        )

    def empty_statistics(self) -> dict[str, Any] | None:
        return None
