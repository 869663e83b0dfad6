"""
Normalization helpers shared by all data sources.

Every source ends up producing the same record shape, a MetricPoint:

    {"timestamp": 1718000000000, "time": "14:05", "pressure": 1.5, ...}

``timestamp`` is an epoch in milliseconds and is the uniqueness key of a
series, ``time`` is the ``HH:MM`` label the charts use on their x-axis and
every other field is a finite float. A UnifiedSeries is a list of such points
sorted ascending by timestamp; rows may carry different subsets of metrics.
"""

import math
from collections.abc import Iterable
from datetime import datetime, tzinfo
from typing import Any, Optional

MetricPoint = dict[str, Any]
UnifiedSeries = list[MetricPoint]

# Keys every MetricPoint carries besides its metrics
RESERVED_KEYS = ("timestamp", "time")

INHG_TO_HPA = 33.8639
MPH_TO_KMH = 1.60934
INCH_TO_MM = 25.4


def format_time(timestamp_ms: int, tz: Optional[tzinfo] = None) -> str:
    """
    Format an epoch-millisecond timestamp as an ``HH:MM`` label.

    Args:
        timestamp_ms: Epoch timestamp in milliseconds
        tz: Timezone for the label (default: host local time)
    """
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=tz).strftime("%H:%M")


def to_finite(value: Any) -> Optional[float]:
    """
    Convert an upstream value to a finite float.

    Numbers and numeric strings are converted. Booleans, anything that does not
    parse, NaN and infinities give None.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def coerce_number(value: Any, default: float = 0.0) -> float:
    """Like to_finite() but falls back to ``default`` instead of None."""
    number = to_finite(value)
    return default if number is None else number


def make_point(timestamp_ms: int, tz: Optional[tzinfo] = None) -> MetricPoint:
    """Create an empty row seeded with its timestamp and time label."""
    timestamp_ms = int(timestamp_ms)
    return {"timestamp": timestamp_ms, "time": format_time(timestamp_ms, tz)}


def unify(
    observations: Iterable[tuple[int, str, Any]],
    tz: Optional[tzinfo] = None,
) -> UnifiedSeries:
    """
    Merge independent observations into one series keyed by timestamp.

    The first observation seen for a timestamp creates its row, later ones add
    their metric to it. Setting the same metric twice on one timestamp keeps
    the last value. Values that are not finite numbers are skipped, so the
    metric stays absent from that row.

    Args:
        observations: ``(timestamp_ms, metric_key, value)`` triples
        tz: Timezone for the time labels

    Returns:
        Rows sorted ascending by timestamp
    """
    rows: dict[int, MetricPoint] = {}
    for timestamp, key, value in observations:
        if key in RESERVED_KEYS:
            raise ValueError(f"Metric key '{key}' is reserved")
        number = to_finite(value)
        if number is None:
            continue
        timestamp = int(timestamp)
        row = rows.get(timestamp)
        if row is None:
            row = rows[timestamp] = make_point(timestamp, tz)
        row[key] = number
    return [rows[timestamp] for timestamp in sorted(rows)]


def explode(series: Iterable[MetricPoint]) -> Iterable[tuple[int, str, Any]]:
    """Turn rows back into ``(timestamp, key, value)`` observations."""
    for row in series:
        for key, value in row.items():
            if key not in RESERVED_KEYS:
                yield row["timestamp"], key, value


def unify_series(*series: Iterable[MetricPoint], tz: Optional[tzinfo] = None) -> UnifiedSeries:
    """Unify already-built series into one. unify_series(s, s) == s."""
    observations = (obs for rows in series for obs in explode(rows))
    return unify(observations, tz)


def metric_keys(series: Iterable[MetricPoint]) -> set[str]:
    """All metric keys present on at least one row."""
    return {key for row in series for key in row if key not in RESERVED_KEYS}


# Unit conversions


def fahrenheit_to_celsius(value: float) -> float:
    return (value - 32) * 5 / 9


def inhg_to_hpa(value: float) -> float:
    return value * INHG_TO_HPA


def mph_to_kmh(value: float) -> float:
    return value * MPH_TO_KMH


def inches_to_mm(value: float) -> float:
    return value * INCH_TO_MM
