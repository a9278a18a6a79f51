"""
Query Helpers

Pure helpers shared by the analytics and time-series engines:
- Range tokens (1h, 6h, 24h, 7d, 30d) -> current/lookback windows
- Trend percentage and sparkline downsampling
- Tenant and message filters as immutable value objects
"""

from __future__ import annotations
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List, Dict, Any, Sequence, Tuple, Union

from sqlalchemy import and_, or_, select
from sqlalchemy.sql.elements import ColumnElement

from agentpulse.core.sql_dialect import compute_cutoff
from agentpulse.database import agent_messages, tenants

Number = Union[int, float]

# Range token -> (window, lookback window)
RANGE_INTERVALS: Dict[str, Tuple[str, str]] = {
    "1h": ("1 hour", "2 hours"),
    "6h": ("6 hours", "12 hours"),
    "24h": ("24 hours", "48 hours"),
    "7d": ("7 days", "14 days"),
    "30d": ("30 days", "60 days"),
}
DEFAULT_RANGE = "24h"

TREND_CLAMP = 999
TREND_EPSILON = 1e-6


# =============================================================================
# RANGES & WINDOWS
# =============================================================================

def normalize_range(range_: Optional[str]) -> str:
    return range_ if range_ in RANGE_INTERVALS else DEFAULT_RANGE


def range_to_interval(range_: Optional[str]) -> str:
    return RANGE_INTERVALS[normalize_range(range_)][0]


def range_to_previous_interval(range_: Optional[str]) -> str:
    return RANGE_INTERVALS[normalize_range(range_)][1]


@dataclass(frozen=True)
class Window:
    """Current window [cutoff, now] and the lookback window [prev_cutoff, cutoff)."""
    cutoff: str
    prev_cutoff: str

    @classmethod
    def for_range(cls, range_: Optional[str], now: Optional[datetime] = None) -> "Window":
        return cls(
            cutoff=compute_cutoff(range_to_interval(range_), now),
            prev_cutoff=compute_cutoff(range_to_previous_interval(range_), now),
        )

    def current(self, column) -> ColumnElement:
        return column >= self.cutoff

    def previous(self, column) -> ColumnElement:
        return and_(column >= self.prev_cutoff, column < self.cutoff)


# =============================================================================
# MATH
# =============================================================================

def round_half_up(value: float, digits: int = 0) -> float:
    """Round with ties toward +infinity (12.5 -> 13, -12.5 -> -12)."""
    scale = 10 ** digits
    return math.floor(value * scale + 0.5) / scale


def compute_trend(current: Number, previous: Number) -> int:
    """Percent change vs. previous, rounded and clamped to [-999, 999]; 0 if previous ~ 0."""
    if abs(previous) < TREND_EPSILON:
        return 0
    pct = int(round_half_up((current - previous) / previous * 100))
    return max(-TREND_CLAMP, min(TREND_CLAMP, pct))


def downsample(series: Sequence[Number], target: int) -> List[Number]:
    """
    Sum a series into `target` contiguous buckets.

    Series no longer than target are returned unchanged. Bucket i covers
    [floor(i * size), floor((i + 1) * size)) with size = len / target.
    """
    if len(series) <= target:
        return list(series)

    size = len(series) / target
    buckets = []
    for i in range(target):
        start = math.floor(i * size)
        end = math.floor((i + 1) * size)
        buckets.append(sum(series[start:end]))
    return buckets


def to_number(value: Any) -> Number:
    """Coerce an aggregate result (None, Decimal, str) to int/float."""
    if value is None:
        return 0
    if isinstance(value, (int, float)):
        return value
    number = float(value)
    return int(number) if number.is_integer() else number


# =============================================================================
# FILTERS
# =============================================================================

@dataclass(frozen=True)
class TenantFilter:
    """
    Rows visible to a caller.

    Matches rows whose tenant is named after the caller, or rows stored
    directly with the caller's user_id (single-user mode).
    """
    user_id: str
    agent_name: Optional[str] = None

    def clause(self, table=agent_messages) -> ColumnElement:
        tenant_ids = select(tenants.c.id).where(tenants.c.name == self.user_id).scalar_subquery()
        conditions = [
            or_(table.c.tenant_id.in_(tenant_ids), table.c.user_id == self.user_id),
        ]
        if self.agent_name:
            conditions.append(table.c.agent_name == self.agent_name)
        return and_(*conditions)


@dataclass(frozen=True)
class MessageFilter:
    """Optional predicates for message search."""
    status: Optional[str] = None
    service_type: Optional[str] = None
    model: Optional[str] = None
    cost_min: Optional[float] = None
    cost_max: Optional[float] = None
    agent_name: Optional[str] = None

    def clauses(self, table=agent_messages) -> List[ColumnElement]:
        clauses: List[ColumnElement] = []
        if self.status:
            clauses.append(table.c.status == self.status)
        if self.service_type:
            clauses.append(table.c.service_type == self.service_type)
        if self.model:
            clauses.append(table.c.model == self.model)
        if self.cost_min is not None:
            clauses.append(table.c.cost_usd >= self.cost_min)
        if self.cost_max is not None:
            clauses.append(table.c.cost_usd <= self.cost_max)
        if self.agent_name:
            clauses.append(table.c.agent_name == self.agent_name)
        return clauses


def parse_cursor(cursor: Optional[str]) -> Optional[Tuple[str, str]]:
    """Split "<timestamp>|<id>" on the first '|'; None if malformed."""
    if not cursor or "|" not in cursor:
        return None
    ts, _, row_id = cursor.partition("|")
    return ts, row_id


def format_cursor(timestamp: str, row_id: str) -> str:
    return f"{timestamp}|{row_id}"
