"""
Pure helpers shared by the resource normalizers.

Missing values (None, empty strings, NaN) are excluded from averages, never
treated as zero. A bucket without usable samples averages to None.
"""

import math
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Any, Hashable, Iterable, Mapping
from zoneinfo import ZoneInfo

DK_TIMEZONE = ZoneInfo("Europe/Copenhagen")
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"
QUERY_FORMAT = "%Y-%m-%dT%H:%M"


def to_number(value: Any) -> float | None:
    """Coerce an upstream numeric field, returning None for missing data."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number):
        return None
    return number


def mean(values: Iterable[float | None]) -> float | None:
    """Average of the usable values, or None if there are none."""
    usable = [v for v in values if v is not None]
    if not usable:
        return None
    return sum(usable) / len(usable)


def parse_timestamp(value: str) -> datetime:
    """
    Parse an upstream timestamp into an aware UTC datetime.

    Upstream UTC fields carry no offset ("2024-01-01T00:05:00"); those are
    taken as UTC.
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_local_timestamp(value: str) -> datetime:
    """Parse a naive upstream Danish-time field (HourDK) for ordering."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1]
    return datetime.fromisoformat(text).replace(tzinfo=None)


def truncate_to_hour(ts: datetime) -> datetime:
    return ts.replace(minute=0, second=0, microsecond=0)


def format_utc(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def to_danish_time(ts: datetime) -> str:
    return ts.astimezone(DK_TIMEZONE).strftime(TIMESTAMP_FORMAT)


def format_query_time(ts: datetime) -> str:
    """Format a datetime the way the upstream start/end parameters expect."""
    return ts.strftime(QUERY_FORMAT)


def day_start(day: date) -> str:
    return f"{day.isoformat()}T00:00"


def day_end(day: date) -> str:
    return f"{day.isoformat()}T23:59"


def next_day_start(day: date) -> str:
    return day_start(day + timedelta(days=1))


def group_values(
    items: Iterable[tuple[Hashable, float | None]],
) -> dict[Hashable, list[float | None]]:
    """Collect values per key, preserving first-seen key order."""
    groups: dict[Hashable, list[float | None]] = defaultdict(list)
    for key, value in items:
        groups[key].append(value)
    return dict(groups)


def merge_by_timestamp(
    per_region: Mapping[str, Mapping[datetime, float | None]],
) -> dict[datetime, float | None]:
    """
    Merge already-aggregated sub-region series into a combined series.

    Each sub-region contributes its own average once per timestamp, so
    sub-regions with more samples do not outweigh the others.
    """
    timestamps: set[datetime] = set()
    for series in per_region.values():
        timestamps.update(series.keys())

    merged: dict[datetime, float | None] = {}
    for ts in sorted(timestamps):
        merged[ts] = mean(
            series[ts] for series in per_region.values() if ts in series
        )
    return merged


def safe_ratio(numerator: float, denominator: float) -> float:
    """numerator / denominator, or 0 for an empty denominator."""
    if not denominator:
        return 0.0
    return numerator / denominator


def percentage(part: float, whole: float) -> float:
    return safe_ratio(part, whole) * 100
