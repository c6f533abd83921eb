"""
Declared grid mix: hourly composition of consumed electricity by source and origin.

Dataset: DeclarationGridmix (published with 5-7 days delay)
API Documentation: https://www.energidataservice.dk/tso-electricity/DeclarationGridmix
"""

from datetime import date, datetime, timedelta, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from energy_api.datasource.aggregation import (
    day_end,
    day_start,
    parse_local_timestamp,
    percentage,
    safe_ratio,
    to_number,
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

DATA_DELAY_DAYS = 7
DAILY_THRESHOLD_HOURS = 168

RENEWABLE_TYPES = ("Wind", "Solar", "Hydro", "BioGas", "Straw", "Wood", "WasteIncineration")
FOSSIL_TYPES = ("FossilGas", "Coal", "Oil")


class GridmixParams(QueryParams):
    view: Literal["7d", "30d"] = "7d"
    date: Day = None
    start: Day = None
    end: Day = None

    @model_validator(mode="after")
    def check_range(self) -> "GridmixParams":
        if self.start and self.end and self.start > self.end:
            raise ValueError("start must not be after end")
        return self


class MixEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    shareMWh: float
    co2Emission: float
    percentage: float
    origin: str | None
    isImport: bool
    baseType: str


class GridmixRecord(BaseModel):
    """One hour (or one day, for the daily rollup) of the declared mix."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    hour_dk: str = Field(alias="HourDK")
    hour_utc: str | None = Field(default=None, alias="HourUTC")
    price_area: str | None = Field(alias="PriceArea")
    hours: int = 1
    totalShare: float
    totalCO2: float
    averageCO2: float
    mixByType: dict[str, MixEntry]
    renewableShare: float
    fossilShare: float
    importShare: float
    renewablePercentage: float
    fossilPercentage: float
    importPercentage: float


def category(report_group: str) -> str | None:
    if any(t in report_group for t in RENEWABLE_TYPES):
        return "renewable"
    if any(t in report_group for t in FOSSIL_TYPES):
        return "fossil"
    return None


def latest_versions(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Keep one record per (HourDK, ReportGrp, PriceArea, ConnectedArea).

    A Final record replaces any earlier version; otherwise the first one seen
    is kept.
    """
    chosen: dict[tuple[Any, ...], dict[str, Any]] = {}
    for record in records:
        key = (
            record.get("HourDK"),
            record.get("ReportGrp"),
            record.get("PriceArea"),
            record.get("ConnectedArea"),
        )
        if key not in chosen or record.get("Version") == "Final":
            chosen[key] = record
    return list(chosen.values())


def aggregate_hourly(records: list[dict[str, Any]], region: str) -> list[GridmixRecord]:
    hours: dict[str, dict[str, Any]] = {}
    for record in latest_versions(records):
        hour_dk = record.get("HourDK")
        report_group = record.get("ReportGrp")
        if not hour_dk or not report_group:
            continue
        hour = hours.setdefault(
            hour_dk,
            {
                "HourUTC": record.get("HourUTC"),
                "PriceArea": COMBINED_REGION if region == COMBINED_REGION else record.get("PriceArea"),
                "total": 0.0,
                "co2": 0.0,
                "renewable": 0.0,
                "fossil": 0.0,
                "import": 0.0,
                "mix": {},
            },
        )
        share = to_number(record.get("ShareMWh")) or 0.0
        co2 = to_number(record.get("CO2Emission")) or 0.0
        origin = record.get("ConnectedArea")
        is_import = origin != record.get("PriceArea")
        type_key = f"{report_group}_{origin}" if is_import else report_group

        mix = hour["mix"].setdefault(
            type_key,
            {"shareMWh": 0.0, "co2Emission": 0.0, "origin": origin, "isImport": is_import, "baseType": report_group},
        )
        mix["shareMWh"] += share
        mix["co2Emission"] += co2
        hour["total"] += share
        hour["co2"] += co2
        if is_import:
            hour["import"] += share
        kind = category(report_group)
        if kind:
            hour[kind] += share

    results = []
    for hour_dk in sorted(hours, key=parse_local_timestamp):
        hour = hours[hour_dk]
        total = hour["total"]
        results.append(
            GridmixRecord(
                hour_dk=hour_dk,
                hour_utc=hour["HourUTC"],
                price_area=hour["PriceArea"],
                totalShare=total,
                totalCO2=hour["co2"],
                averageCO2=safe_ratio(hour["co2"], total),
                mixByType={
                    name: MixEntry(percentage=percentage(mix["shareMWh"], total), **mix)
                    for name, mix in sorted(hour["mix"].items())
                },
                renewableShare=hour["renewable"],
                fossilShare=hour["fossil"],
                importShare=hour["import"],
                renewablePercentage=percentage(hour["renewable"], total),
                fossilPercentage=percentage(hour["fossil"], total),
                importPercentage=percentage(hour["import"], total),
            )
        )
    return results


def aggregate_daily(hourly: list[GridmixRecord], region: str) -> list[GridmixRecord]:
    """Average hourly mixes per calendar day (Danish time)."""
    days: dict[str, list[GridmixRecord]] = {}
    for hour in hourly:
        days.setdefault(hour.hour_dk[:10], []).append(hour)

    results = []
    for day, hours in days.items():
        count = len(hours)
        total_share = sum(h.totalShare for h in hours)
        total_co2 = sum(h.totalCO2 for h in hours)
        avg_share = total_share / count

        mix: dict[str, dict[str, Any]] = {}
        for hour in hours:
            for name, entry in hour.mixByType.items():
                bucket = mix.setdefault(
                    name,
                    {"shareMWh": 0.0, "co2Emission": 0.0, "origin": entry.origin,
                     "isImport": entry.isImport, "baseType": entry.baseType},
                )
                bucket["shareMWh"] += entry.shareMWh
                bucket["co2Emission"] += entry.co2Emission

        renewable = sum(h.renewableShare for h in hours) / count
        fossil = sum(h.fossilShare for h in hours) / count
        imported = sum(h.importShare for h in hours) / count
        results.append(
            GridmixRecord(
                hour_dk=f"{day}T12:00:00",
                price_area=region,
                hours=count,
                totalShare=avg_share,
                totalCO2=total_co2 / count,
                averageCO2=safe_ratio(total_co2, total_share),
                mixByType={
                    name: MixEntry(
                        shareMWh=bucket["shareMWh"] / count,
                        co2Emission=bucket["co2Emission"] / count,
                        percentage=percentage(bucket["shareMWh"] / count, avg_share),
                        origin=bucket["origin"],
                        isImport=bucket["isImport"],
                        baseType=bucket["baseType"],
                    )
                    for name, bucket in sorted(mix.items())
                },
                renewableShare=renewable,
                fossilShare=fossil,
                importShare=imported,
                renewablePercentage=percentage(renewable, avg_share),
                fossilPercentage=percentage(fossil, avg_share),
                importPercentage=percentage(imported, avg_share),
            )
        )
    return results


class GridmixResource(BaseResource):
    name = "gridmix"
    dataset = "DeclarationGridmix"
    label = "Gridmix data"
    params_model = GridmixParams

    ttl = 3600
    fallback_ttl = 7200

    def resolve(self, params: GridmixParams, now: datetime) -> ResolvedQuery:
        base: date = params.date or now.astimezone(timezone.utc).date()
        end_day = base - timedelta(days=DATA_DELAY_DAYS)
        span = 29 if params.view == "30d" else 6
        start_day = end_day - timedelta(days=span)
        if params.start:
            start_day = params.start
        if params.end:
            end_day = params.end
        return ResolvedQuery(
            resource=self.name,
            region=params.region,
            start=day_start(start_day),
            end=day_end(end_day),
            aggregation="auto" if params.view == "30d" else "hourly",
            options={"view": params.view},
        )

    def upstream_query(self, resolved: ResolvedQuery) -> UpstreamQuery:
        return UpstreamQuery(
            dataset=self.dataset,
            start=resolved.start,
            end=resolved.end,
            filter=self.region_filter(resolved),
            sort="HourDK ASC",
        )

    def normalize(
        self, records: list[dict[str, Any]], resolved: ResolvedQuery
    ) -> AggregatedResponse[Any]:
        view = resolved.option("view", "7d")
        hourly = aggregate_hourly(records, resolved.region)
        aggregation = "hourly"
        processed = hourly
        if view == "30d" and len(hourly) > DAILY_THRESHOLD_HOURS:
            processed = aggregate_daily(hourly, resolved.region)
            aggregation = "daily"

        return AggregatedResponse[Any](
            records=processed,
            metadata=self.metadata(
                resolved,
                data_points=len(processed),
                aggregation=aggregation,
                view=view,
                firstHour=hourly[0].hour_dk if hourly else None,
                lastHour=hourly[-1].hour_dk if hourly else None,
            ),
        )

    def degraded_extras(self, resolved: ResolvedQuery) -> dict[str, Any]:
        return {"view": resolved.option("view", "7d")}
