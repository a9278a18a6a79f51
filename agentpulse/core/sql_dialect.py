"""
Portable SQL Helpers

Window cutoffs and bucket expressions that behave the same on SQLite
and PostgreSQL. Timestamps are stored as fixed-width strings, so bucketing
is a substring and window filtering is a string comparison.
"""

from __future__ import annotations
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import Float, String, cast, func, literal_column

from agentpulse.core.otlp import format_timestamp

_INTERVAL_RE = re.compile(r"^\s*(\d+)\s+(hour|hours|day|days)\s*$", re.IGNORECASE)
DEFAULT_INTERVAL = timedelta(hours=24)


def parse_interval(interval: str) -> timedelta:
    """Parse '6 hours' / '1 day' style intervals; unknown values mean 24 hours."""
    match = _INTERVAL_RE.match(interval or "")
    if not match:
        return DEFAULT_INTERVAL
    amount, unit = int(match.group(1)), match.group(2).lower()
    if unit.startswith("hour"):
        return timedelta(hours=amount)
    return timedelta(days=amount)


def sql_now(now: Optional[datetime] = None) -> str:
    return format_timestamp(now or datetime.now(timezone.utc))


def compute_cutoff(interval: str, now: Optional[datetime] = None) -> str:
    """Timestamp string `interval` before now, in the stored format."""
    now = now or datetime.now(timezone.utc)
    return format_timestamp(now - parse_interval(interval))


def hour_bucket(column):
    """YYYY-MM-DDTHH:00:00 bucket key for a stored timestamp column."""
    # literals, not bind params, so SELECT and GROUP BY render identically
    hour = func.substr(column, literal_column("1"), literal_column("13"), type_=String)
    return hour.concat(literal_column("':00:00'", String))


def date_bucket(column):
    """YYYY-MM-DD bucket key for a stored timestamp column."""
    return func.substr(column, literal_column("1"), literal_column("10"), type_=String)


def cast_float(column):
    return cast(column, Float)
