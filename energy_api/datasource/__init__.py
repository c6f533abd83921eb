"""
Dataset resources served by the gateway.

Each resource validates its own query parameters, resolves them against the
current time, and aggregates raw upstream records into an AggregatedResponse.
"""

from energy_api.datasource.base import (
    COMBINED_REGION,
    REGIONS,
    SUB_REGIONS,
    BaseResource,
    QueryParams,
    ResolvedQuery,
)
from energy_api.datasource.models import AggregatedResponse, ResponseMetadata
from energy_api.datasource.emissions import EmissionsResource
from energy_api.datasource.forecast import ForecastResource
from energy_api.datasource.consumption import ConsumptionResource
from energy_api.datasource.gridmix import GridmixResource
from energy_api.datasource.production import ProductionResource

RESOURCES: dict[str, type[BaseResource]] = {
    resource.name: resource
    for resource in (
        EmissionsResource,
        ForecastResource,
        ConsumptionResource,
        GridmixResource,
        ProductionResource,
    )
}

__all__ = [
    # Base
    "COMBINED_REGION",
    "REGIONS",
    "SUB_REGIONS",
    "BaseResource",
    "QueryParams",
    "ResolvedQuery",
    "AggregatedResponse",
    "ResponseMetadata",
    # Resources
    "EmissionsResource",
    "ForecastResource",
    "ConsumptionResource",
    "GridmixResource",
    "ProductionResource",
    "RESOURCES",
]
