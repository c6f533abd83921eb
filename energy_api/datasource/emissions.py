"""
CO2 emission intensity of electricity consumption (g/kWh).

Dataset: CO2Emis (5-minute resolution, per price area)
API Documentation: https://www.energidataservice.dk/tso-electricity/CO2Emis
"""

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from energy_api.datasource.aggregation import (
    format_utc,
    group_values,
    mean,
    merge_by_timestamp,
    next_day_start,
    parse_timestamp,
    to_danish_time,
    to_number,
    truncate_to_hour,
    day_start,
)
from energy_api.datasource.base import (
    COMBINED_REGION,
    BaseResource,
    Day,
    QueryParams,
    ResolvedQuery,
)
from energy_api.datasource.models import AggregatedResponse
from energy_api.services.client import UpstreamQuery


class EmissionsParams(QueryParams):
    date: Day = None
    aggregation: Literal["5min", "hourly"] = "hourly"


class HourlyEmission(BaseModel):
    """Hourly average of the 5-minute samples in one price area (or both)."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    hour_utc: str = Field(alias="HourUTC")
    hour_dk: str = Field(alias="HourDK")
    price_area: str | None = Field(alias="PriceArea")
    co2_emission: float | None = Field(alias="CO2Emission")
    emission_level: str = Field(alias="EmissionLevel")


class FiveMinuteEmission(BaseModel):
    """Upstream 5-minute sample, passed through with its emission level."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="allow")

    minutes5_utc: str = Field(alias="Minutes5UTC")
    minutes5_dk: str | None = Field(default=None, alias="Minutes5DK")
    price_area: str | None = Field(default=None, alias="PriceArea")
    co2_emission: float | None = Field(default=None, alias="CO2Emission")
    emission_level: str = Field(alias="EmissionLevel")


def emission_level(value: float | None) -> str:
    """Bucket an emission intensity into a severity level."""
    if value is None:
        return "unknown"
    if value < 100:
        return "very-low"
    if value < 200:
        return "low"
    if value < 300:
        return "moderate"
    if value < 400:
        return "high"
    return "very-high"


def aggregate_hourly(records: list[dict[str, Any]], region: str) -> list[HourlyEmission]:
    """
    Aggregate 5-minute samples to hourly averages.

    Samples are grouped per (hour, price area) and averaged ignoring nulls.
    For the combined region the per-area hourly averages are then merged
    hour by hour, so each area weighs the same regardless of sample count.
    The level is always derived from the averaged value.
    """
    samples: list[tuple[tuple[datetime, str | None], float | None]] = []
    for record in records:
        raw_ts = record.get("Minutes5UTC") or record.get("HourUTC")
        if not raw_ts:
            continue
        hour = truncate_to_hour(parse_timestamp(raw_ts))
        samples.append(((hour, record.get("PriceArea")), to_number(record.get("CO2Emission"))))

    per_area: dict[str | None, dict[datetime, float | None]] = {}
    for (hour, area), values in group_values(samples).items():
        per_area.setdefault(area, {})[hour] = mean(values)

    if region == COMBINED_REGION:
        merged = merge_by_timestamp(per_area)
        return [_hourly_record(hour, COMBINED_REGION, value) for hour, value in merged.items()]

    rows = [
        (hour, area, value)
        for area, series in per_area.items()
        for hour, value in series.items()
    ]
    rows.sort(key=lambda row: (row[0], row[1] or ""))
    return [_hourly_record(hour, area, value) for hour, area, value in rows]


def _hourly_record(hour: datetime, area: str | None, value: float | None) -> HourlyEmission:
    return HourlyEmission(
        hour_utc=format_utc(hour),
        hour_dk=to_danish_time(hour),
        price_area=area,
        co2_emission=value,
        emission_level=emission_level(value),
    )


def five_minute_records(records: list[dict[str, Any]]) -> list[FiveMinuteEmission]:
    """Keep raw samples, add the level, and order them by time and area."""
    rows = []
    for record in records:
        raw_ts = record.get("Minutes5UTC")
        if not raw_ts:
            continue
        value = to_number(record.get("CO2Emission"))
        rows.append(
            (
                parse_timestamp(raw_ts),
                record.get("PriceArea") or "",
                FiveMinuteEmission.model_validate(
                    {**record, "CO2Emission": value, "EmissionLevel": emission_level(value)}
                ),
            )
        )
    rows.sort(key=lambda row: (row[0], row[1]))
    return [row[2] for row in rows]


class EmissionsResource(BaseResource):
    name = "emissions"
    dataset = "CO2Emis"
    label = "CO2 emissions data"
    params_model = EmissionsParams

    ttl = 300
    fallback_ttl = 3600

    def resolve(self, params: EmissionsParams, now: datetime) -> ResolvedQuery:
        day = params.date or now.astimezone(timezone.utc).date()
        return ResolvedQuery(
            resource=self.name,
            region=params.region,
            start=day_start(day),
            end=next_day_start(day),
            aggregation=params.aggregation,
        )

    def upstream_query(self, resolved: ResolvedQuery) -> UpstreamQuery:
        return UpstreamQuery(
            dataset=self.dataset,
            start=resolved.start,
            end=resolved.end,
            filter=self.region_filter(resolved),
            sort="Minutes5UTC ASC",
        )

    def normalize(
        self, records: list[dict[str, Any]], resolved: ResolvedQuery
    ) -> AggregatedResponse[Any]:
        processed: list[Any]
        if resolved.aggregation == "hourly":
            processed = aggregate_hourly(records, resolved.region)
        else:
            processed = five_minute_records(records)

        values = [r.co2_emission for r in processed if r.co2_emission is not None]
        return AggregatedResponse[Any](
            records=processed,
            metadata=self.metadata(
                resolved,
                data_points=len(processed),
                date=resolved.start[:10],
                averageEmission=mean(values),
                minEmission=min(values) if values else None,
                maxEmission=max(values) if values else None,
            ),
        )

    def degraded_extras(self, resolved: ResolvedQuery) -> dict[str, Any]:
        return {
            "date": resolved.start[:10],
            "averageEmission": None,
            "minEmission": None,
            "maxEmission": None,
        }
