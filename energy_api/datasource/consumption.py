"""
Private and industry electricity consumption per municipality.

Dataset: PrivIndustryConsumptionHour (published with roughly 3-4 weeks delay)
API Documentation: https://www.energidataservice.dk/tso-electricity/PrivIndustryConsumptionHour
"""

import calendar
from datetime import datetime, timedelta, timezone
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator

from energy_api.datasource.aggregation import (
    format_query_time,
    format_utc,
    parse_timestamp,
    percentage,
    safe_ratio,
    to_number,
    truncate_to_hour,
)
from energy_api.datasource.base import (
    BaseResource,
    QueryParams,
    ResolvedQuery,
    blank_to_none,
)
from energy_api.datasource.models import AggregatedResponse
from energy_api.datasource.municipalities import municipality_name
from energy_api.services.client import UpstreamQuery

DATA_DELAY_DAYS = 30
RECORD_LIMIT = 10000
TOP_CONSUMERS = 5

# ConsumerType_DE35 code for industry; everything else counts as private
INDUSTRY_CODE = "431"


class ConsumptionParams(QueryParams):
    consumer_type: Literal["private", "industry", "all"] = Field(default="all", alias="consumerType")
    aggregation: Literal["hourly", "daily", "monthly", "latest"] = "hourly"
    view: Literal["24h", "7d", "30d", "month"] = "24h"
    municipality: Annotated[str | None, BeforeValidator(blank_to_none)] = None

    @field_validator("municipality")
    @classmethod
    def check_municipality(cls, value: str | None) -> str | None:
        if value is not None and not (len(value) == 3 and value.isdigit()):
            raise ValueError("Municipality must be a 3-digit code")
        return value


class HourlyConsumption(BaseModel):
    model_config = ConfigDict(frozen=True)

    hour: str
    privateConsumption: float
    industryConsumption: float
    totalConsumption: float


class MunicipalityConsumption(BaseModel):
    """Totals and averages for one municipality over the queried range."""

    model_config = ConfigDict(frozen=True)

    municipalityCode: str
    municipalityName: str
    priceArea: str | None
    totalPrivateConsumption: float
    totalIndustryConsumption: float
    totalConsumption: float
    hourlyData: list[HourlyConsumption]
    dataPoints: int
    avgPrivateConsumption: float
    avgIndustryConsumption: float
    avgTotalConsumption: float
    privateShare: float
    industryShare: float


SORT_FIELDS = {
    "private": "totalPrivateConsumption",
    "industry": "totalIndustryConsumption",
    "all": "totalConsumption",
}


def subtract_month(ts: datetime) -> datetime:
    year, month = (ts.year, ts.month - 1) if ts.month > 1 else (ts.year - 1, 12)
    day = min(ts.day, calendar.monthrange(year, month)[1])
    return ts.replace(year=year, month=month, day=day)


def view_start(end: datetime, view: str) -> datetime:
    if view == "7d":
        return end - timedelta(days=7)
    if view == "30d":
        return end - timedelta(days=30)
    if view == "month":
        return subtract_month(end)
    return end - timedelta(hours=24)


def is_industry(record: dict[str, Any]) -> bool:
    consumer_type = str(record.get("ConsumerType_DE35") or record.get("HousingCategory") or "")
    return INDUSTRY_CODE in consumer_type or consumer_type == "Erhverv"


def aggregate_municipalities(
    records: list[dict[str, Any]], aggregation: str, consumer_type: str
) -> list[MunicipalityConsumption]:
    """Sum consumption per municipality and order by the selected consumer type."""
    buckets: dict[str, dict[str, Any]] = {}
    for record in records:
        code = record.get("MunicipalityNo")
        if code is None:
            continue
        code = str(code)
        bucket = buckets.setdefault(
            code,
            {
                "priceArea": record.get("PriceArea"),
                "private": 0.0,
                "industry": 0.0,
                "hourly": [],
                "count": 0,
            },
        )
        value = to_number(record.get("ConsumptionMWh"))
        if value is None:
            value = to_number(record.get("ConsumptionkWh")) or 0.0
        industry = value if is_industry(record) else 0.0
        private = 0.0 if is_industry(record) else value

        bucket["private"] += private
        bucket["industry"] += industry
        bucket["count"] += 1
        if aggregation == "hourly" and record.get("HourUTC"):
            bucket["hourly"].append(
                (parse_timestamp(record["HourUTC"]), private, industry, value)
            )

    results = []
    for code, bucket in buckets.items():
        total = bucket["private"] + bucket["industry"]
        count = bucket["count"]
        hourly = sorted(bucket["hourly"], key=lambda row: row[0])
        results.append(
            MunicipalityConsumption(
                municipalityCode=code,
                municipalityName=municipality_name(code),
                priceArea=bucket["priceArea"],
                totalPrivateConsumption=bucket["private"],
                totalIndustryConsumption=bucket["industry"],
                totalConsumption=total,
                hourlyData=[
                    HourlyConsumption(
                        hour=format_utc(ts),
                        privateConsumption=private,
                        industryConsumption=industry,
                        totalConsumption=value,
                    )
                    for ts, private, industry, value in hourly
                ],
                dataPoints=count,
                avgPrivateConsumption=safe_ratio(bucket["private"], count),
                avgIndustryConsumption=safe_ratio(bucket["industry"], count),
                avgTotalConsumption=safe_ratio(total, count),
                privateShare=percentage(bucket["private"], total),
                industryShare=percentage(bucket["industry"], total),
            )
        )

    sort_field = SORT_FIELDS[consumer_type]
    results.sort(key=lambda m: (-getattr(m, sort_field), m.municipalityCode))
    return results


def consumption_statistics(municipalities: list[MunicipalityConsumption]) -> dict[str, Any]:
    total = sum(m.totalConsumption for m in municipalities)
    private = sum(m.totalPrivateConsumption for m in municipalities)
    industry = sum(m.totalIndustryConsumption for m in municipalities)
    return {
        "totalMunicipalities": len(municipalities),
        "totalConsumption": total,
        "totalPrivateConsumption": private,
        "totalIndustryConsumption": industry,
        "averageConsumption": safe_ratio(total, len(municipalities)),
        "privateShareTotal": percentage(private, total),
        "industryShareTotal": percentage(industry, total),
        "topConsumers": [
            {"municipalityName": m.municipalityName, "consumption": m.totalConsumption}
            for m in municipalities[:TOP_CONSUMERS]
        ],
    }


class ConsumptionResource(BaseResource):
    name = "consumption"
    dataset = "PrivIndustryConsumptionHour"
    label = "Consumption data"
    params_model = ConsumptionParams

    ttl = 3600
    fallback_ttl = 7200
    empty_ttl = 900

    def resolve(self, params: ConsumptionParams, now: datetime) -> ResolvedQuery:
        aggregation = "hourly" if params.aggregation == "latest" else params.aggregation
        end = truncate_to_hour(now.astimezone(timezone.utc) - timedelta(days=DATA_DELAY_DAYS))
        start = view_start(end, params.view)
        return ResolvedQuery(
            resource=self.name,
            region=params.region,
            start=format_query_time(start),
            end=format_query_time(end),
            aggregation=aggregation,
            options={
                "consumerType": params.consumer_type,
                "view": params.view,
                "municipality": params.municipality or "all",
            },
        )

    def upstream_query(self, resolved: ResolvedQuery) -> UpstreamQuery:
        filters: dict[str, list[str]] = dict(self.region_filter(resolved) or {})
        municipality = resolved.option("municipality", "all")
        if municipality != "all":
            filters["MunicipalityNo"] = [municipality]
        return UpstreamQuery(
            dataset=self.dataset,
            start=resolved.start,
            end=resolved.end,
            filter=filters or None,
            sort="HourUTC ASC",
            limit=RECORD_LIMIT,
        )

    def normalize(
        self, records: list[dict[str, Any]], resolved: ResolvedQuery
    ) -> AggregatedResponse[Any]:
        municipalities = aggregate_municipalities(
            records, resolved.aggregation, resolved.option("consumerType", "all")
        )
        extras = self.degraded_extras(resolved)
        if not municipalities:
            extras["message"] = "No data available for the selected date range"
        return AggregatedResponse[Any](
            records=municipalities,
            metadata=self.metadata(resolved, data_points=len(municipalities), **extras),
            statistics=consumption_statistics(municipalities),
        )

    def degraded_extras(self, resolved: ResolvedQuery) -> dict[str, Any]:
        municipality = resolved.option("municipality", "all")
        return {
            "consumerType": resolved.option("consumerType", "all"),
            "view": resolved.option("view", "24h"),
            "municipality": None if municipality == "all" else municipality,
        }

    def empty_statistics(self) -> dict[str, Any] | None:
        return consumption_statistics([])
