"""
Wind and solar production forecasts.

Dataset: Forecasts_Hour
API Documentation: https://www.energidataservice.dk/tso-electricity/Forecasts_Hour
"""

from datetime import datetime, time, timedelta, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from energy_api.datasource.aggregation import format_query_time, parse_timestamp
from energy_api.datasource.base import BaseResource, Day, QueryParams, ResolvedQuery
from energy_api.datasource.models import AggregatedResponse
from energy_api.services.client import UpstreamQuery

SOURCE = "EnergiDataService Forecasts_Hour"
MAX_HOURS = 168


class ForecastParams(QueryParams):
    date: Day = None
    type: Literal["wind", "solar", "all"] = "all"
    hours: int = Field(default=24, ge=1, le=MAX_HOURS)


class ForecastRecord(BaseModel):
    """Upstream forecast row; unknown columns pass through untouched."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="allow")

    hour_utc: str = Field(alias="HourUTC")
    hour_dk: str | None = Field(default=None, alias="HourDK")
    price_area: str | None = Field(default=None, alias="PriceArea")
    forecast_type: str | None = Field(default=None, alias="ForecastType")


def matches_type(forecast_type: str | None, wanted: str) -> bool:
    """'wind' covers both offshore and onshore wind."""
    if wanted == "all":
        return True
    if not forecast_type:
        return False
    return wanted in forecast_type.lower()


class ForecastResource(BaseResource):
    name = "forecast"
    dataset = "Forecasts_Hour"
    label = "Forecast data"
    params_model = ForecastParams

    ttl = 1800
    fallback_ttl = 3600

    def resolve(self, params: ForecastParams, now: datetime) -> ResolvedQuery:
        day = params.date or now.astimezone(timezone.utc).date()
        start = datetime.combine(day, time.min)
        end = start + timedelta(hours=params.hours)
        return ResolvedQuery(
            resource=self.name,
            region=params.region,
            start=format_query_time(start),
            end=format_query_time(end),
            aggregation="hourly",
            options={"type": params.type, "hours": str(params.hours)},
        )

    def upstream_query(self, resolved: ResolvedQuery) -> UpstreamQuery:
        return UpstreamQuery(
            dataset=self.dataset,
            start=resolved.start,
            end=resolved.end,
            filter=self.region_filter(resolved),
            sort="HourUTC asc",
        )

    def normalize(
        self, records: list[dict[str, Any]], resolved: ResolvedQuery
    ) -> AggregatedResponse[Any]:
        wanted = resolved.option("type", "all")
        rows = []
        for record in records:
            if not record.get("HourUTC"):
                continue
            if not matches_type(record.get("ForecastType"), wanted):
                continue
            rows.append(
                (
                    parse_timestamp(record["HourUTC"]),
                    record.get("PriceArea") or "",
                    record.get("ForecastType") or "",
                    ForecastRecord.model_validate(record),
                )
            )
        rows.sort(key=lambda row: row[:3])
        processed = [row[3] for row in rows]

        return AggregatedResponse[Any](
            records=processed,
            metadata=self.metadata(
                resolved,
                data_points=len(processed),
                **self.degraded_extras(resolved),
            ),
        )

    def degraded_extras(self, resolved: ResolvedQuery) -> dict[str, Any]:
        return {
            "type": resolved.option("type", "all"),
            "hours": int(resolved.option("hours", "24")),
            "source": SOURCE,
        }
