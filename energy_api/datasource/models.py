"""
Response types shared by every resource.
"""

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

RecordT = TypeVar("RecordT")


class ResponseMetadata(BaseModel):
    """
    Describes the query that produced a response.

    Lets consumers tell "no data for this range" (status ok, dataPoints 0)
    apart from "upstream unavailable" (status degraded). Resources add their
    own fields (view, type, averageEmission, ...) as extras.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)

    resource: str
    region: str
    start_date: str = Field(alias="startDate")
    end_date: str = Field(alias="endDate")
    aggregation: str
    data_points: int = Field(alias="dataPoints")
    status: str = "ok"
    message: str | None = None


class AggregatedResponse(BaseModel, Generic[RecordT]):
    """Normalized, immutable response; what gets cached and served."""

    model_config = ConfigDict(frozen=True)

    records: list[RecordT] = Field(default_factory=list)
    metadata: ResponseMetadata
    statistics: dict[str, Any] | None = None

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe dict in the public wire shape."""
        payload = self.model_dump(mode="json", by_alias=True)
        if payload.get("statistics") is None:
            payload.pop("statistics", None)
        if payload["metadata"].get("message") is None:
            payload["metadata"].pop("message", None)
        return payload
