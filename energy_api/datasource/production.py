"""
Declared electricity production by fuel type, with CO2 intensity.

Dataset: DeclarationProduction (published with 10+ days delay)
API Documentation: https://www.energidataservice.dk/tso-electricity/DeclarationProduction
"""

from datetime import datetime, timedelta, timezone
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

DATA_DELAY_DAYS = 10
DAILY_THRESHOLD_HOURS = 240
VIEW_SPAN_DAYS = {"24h": 0, "7d": 6, "30d": 29}

ALLOCATION_METHODS = {"125%", "125pct", "All", "Actual"}
RENEWABLE_TYPES = {"WindOffshore", "WindOnshore", "Solar", "Hydro", "BioGas", "Straw", "Wood"}
FOSSIL_TYPES = {"FossilGas", "Coal", "Fossil Oil"}


class ProductionParams(QueryParams):
    view: Literal["24h", "7d", "30d"] = "24h"
    start: Day = None
    end: Day = None

    @model_validator(mode="after")
    def check_range(self) -> "ProductionParams":
        if self.start and self.end and self.start > self.end:
            raise ValueError("start must not be after end")
        return self


class TypeProduction(BaseModel):
    model_config = ConfigDict(frozen=True)

    production: float
    co2PerKWh: float | None
    share: float


class ProductionRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    hour_dk: str = Field(alias="HourDK")
    hour_utc: str | None = Field(default=None, alias="HourUTC")
    price_area: str | None = Field(alias="PriceArea")
    hours: int = 1
    totalProduction: float
    averageCO2: float | None
    productionByType: dict[str, TypeProduction]
    renewableProduction: float
    fossilProduction: float
    renewableShare: float
    fossilShare: float


class _Weighted:
    """Production total plus a production-weighted CO2 average."""

    __slots__ = ("production", "weighted_co2", "co2_weight")

    def __init__(self):
        self.production = 0.0
        self.weighted_co2 = 0.0
        self.co2_weight = 0.0

    def add(self, production: float, co2: float | None) -> None:
        self.production += production
        if co2 is not None:
            self.weighted_co2 += production * co2
            self.co2_weight += production

    def merge(self, other: "_Weighted") -> None:
        self.production += other.production
        self.weighted_co2 += other.weighted_co2
        self.co2_weight += other.co2_weight

    @property
    def co2(self) -> float | None:
        if not self.co2_weight:
            return None
        return self.weighted_co2 / self.co2_weight


def accepted(record: dict[str, Any]) -> bool:
    method = record.get("FuelAllocationMethod")
    return not method or method in ALLOCATION_METHODS


def _build_record(
    hour_dk: str,
    hour_utc: str | None,
    area: str | None,
    hours: int,
    total: _Weighted,
    by_type: dict[str, _Weighted],
) -> ProductionRecord:
    # per-hour averages for the daily rollup
    production = total.production / hours
    renewable = sum(w.production for t, w in by_type.items() if t in RENEWABLE_TYPES) / hours
    fossil = sum(w.production for t, w in by_type.items() if t in FOSSIL_TYPES) / hours
    return ProductionRecord(
        hour_dk=hour_dk,
        hour_utc=hour_utc,
        price_area=area,
        hours=hours,
        totalProduction=production,
        averageCO2=total.co2,
        productionByType={
            name: TypeProduction(
                production=weighted.production / hours,
                co2PerKWh=weighted.co2,
                share=percentage(weighted.production / hours, production),
            )
            for name, weighted in sorted(by_type.items())
        },
        renewableProduction=renewable,
        fossilProduction=fossil,
        renewableShare=percentage(renewable, production),
        fossilShare=percentage(fossil, production),
    )


def _group_hours(records: list[dict[str, Any]], region: str) -> dict[str, dict[str, Any]]:
    hours: dict[str, dict[str, Any]] = {}
    for record in records:
        if not accepted(record):
            continue
        hour_dk = record.get("HourDK")
        production_type = record.get("ProductionType")
        if not hour_dk or not production_type:
            continue
        hour = hours.setdefault(
            hour_dk,
            {
                "HourUTC": record.get("HourUTC"),
                "PriceArea": COMBINED_REGION if region == COMBINED_REGION else record.get("PriceArea"),
                "total": _Weighted(),
                "types": {},
            },
        )
        production = to_number(record.get("Production_MWh")) or 0.0
        co2 = to_number(record.get("CO2PerkWh"))
        hour["total"].add(production, co2)
        hour["types"].setdefault(production_type, _Weighted()).add(production, co2)
    return hours


def aggregate_hourly(records: list[dict[str, Any]], region: str) -> list[ProductionRecord]:
    hours = _group_hours(records, region)
    return [
        _build_record(hour_dk, hours[hour_dk]["HourUTC"], hours[hour_dk]["PriceArea"], 1,
                      hours[hour_dk]["total"], hours[hour_dk]["types"])
        for hour_dk in sorted(hours, key=parse_local_timestamp)
    ]


def aggregate_daily(records: list[dict[str, Any]], region: str) -> list[ProductionRecord]:
    """Average hourly production per calendar day (Danish time)."""
    hours = _group_hours(records, region)
    days: dict[str, dict[str, Any]] = {}
    for hour_dk in sorted(hours, key=parse_local_timestamp):
        hour = hours[hour_dk]
        day = days.setdefault(hour_dk[:10], {"count": 0, "total": _Weighted(), "types": {}})
        day["count"] += 1
        day["total"].merge(hour["total"])
        for name, weighted in hour["types"].items():
            day["types"].setdefault(name, _Weighted()).merge(weighted)

    return [
        _build_record(f"{day}T12:00:00", None, region, data["count"], data["total"], data["types"])
        for day, data in days.items()
    ]


class ProductionResource(BaseResource):
    name = "production"
    dataset = "DeclarationProduction"
    label = "Production data"
    params_model = ProductionParams

    ttl = 3600
    fallback_ttl = 7200

    def resolve(self, params: ProductionParams, now: datetime) -> ResolvedQuery:
        end_day = now.astimezone(timezone.utc).date() - timedelta(days=DATA_DELAY_DAYS)
        start_day = end_day - timedelta(days=VIEW_SPAN_DAYS[params.view])
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
        view = resolved.option("view", "24h")
        hourly = aggregate_hourly(records, resolved.region)
        aggregation = "hourly"
        processed = hourly
        if view == "30d" and len(hourly) > DAILY_THRESHOLD_HOURS:
            processed = aggregate_daily(records, resolved.region)
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
        return {"view": resolved.option("view", "24h")}
