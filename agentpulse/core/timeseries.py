"""
Time-Series Query Engine

Bucketed series and breakdowns over agent_messages:
- Hourly (YYYY-MM-DDTHH:00:00) and daily (YYYY-MM-DD) tokens, costs, counts
- Per-model token share and cost
- Active skills and recent activity
- Agent roster with a 24-bucket token sparkline
"""

from __future__ import annotations
import logging
from typing import Optional, List, Dict, Any

from sqlalchemy import and_, func, select
from sqlalchemy.engine import Engine

from agentpulse.core.query_helpers import TenantFilter, downsample, range_to_interval, round_half_up, to_number
from agentpulse.core.sql_dialect import cast_float, compute_cutoff, date_bucket, hour_bucket, sql_now
from agentpulse.database import agent_messages, agents, tenants

logger = logging.getLogger("agentpulse.timeseries")

am = agent_messages

SPARKLINE_BUCKETS = 24
SPARKLINE_INTERVAL = "7 days"


class TimeseriesQueryService:
    """Read-only series queries scoped by TenantFilter."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def _window(self, range_: str):
        return and_(am.c.timestamp >= compute_cutoff(range_to_interval(range_)), am.c.timestamp <= sql_now())

    def _bucketed(
        self,
        bucket,
        key: str,
        columns: Dict[str, Any],
        range_: str,
        user_id: str,
        agent_name: Optional[str],
    ) -> List[Dict[str, Any]]:
        bucket = bucket.label(key)
        query = (
            select(bucket, *[expr.label(name) for name, expr in columns.items()])
            .select_from(am)
            .where(self._window(range_), TenantFilter(user_id, agent_name).clause())
            .group_by(bucket)
            .order_by(bucket.asc())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
        return [
            {key: str(row[key]), **{name: to_number(row[name]) for name in columns}}
            for row in rows
        ]

    # -------------------------------------------------------------------------
    # Series
    # -------------------------------------------------------------------------

    @staticmethod
    def _token_columns() -> Dict[str, Any]:
        return {
            "input_tokens": func.coalesce(func.sum(am.c.input_tokens), 0),
            "output_tokens": func.coalesce(func.sum(am.c.output_tokens), 0),
        }

    @staticmethod
    def _cost_columns() -> Dict[str, Any]:
        return {"cost": func.coalesce(func.sum(am.c.cost_usd), 0)}

    @staticmethod
    def _count_columns() -> Dict[str, Any]:
        return {"count": func.count()}

    def get_hourly_tokens(self, range_: str, user_id: str, agent_name: Optional[str] = None):
        return self._bucketed(hour_bucket(am.c.timestamp), "hour", self._token_columns(), range_, user_id, agent_name)

    def get_daily_tokens(self, range_: str, user_id: str, agent_name: Optional[str] = None):
        return self._bucketed(date_bucket(am.c.timestamp), "date", self._token_columns(), range_, user_id, agent_name)

    def get_hourly_costs(self, range_: str, user_id: str, agent_name: Optional[str] = None):
        return self._bucketed(hour_bucket(am.c.timestamp), "hour", self._cost_columns(), range_, user_id, agent_name)

    def get_daily_costs(self, range_: str, user_id: str, agent_name: Optional[str] = None):
        return self._bucketed(date_bucket(am.c.timestamp), "date", self._cost_columns(), range_, user_id, agent_name)

    def get_hourly_messages(self, range_: str, user_id: str, agent_name: Optional[str] = None):
        return self._bucketed(hour_bucket(am.c.timestamp), "hour", self._count_columns(), range_, user_id, agent_name)

    def get_daily_messages(self, range_: str, user_id: str, agent_name: Optional[str] = None):
        return self._bucketed(date_bucket(am.c.timestamp), "date", self._count_columns(), range_, user_id, agent_name)

    # -------------------------------------------------------------------------
    # Breakdowns
    # -------------------------------------------------------------------------

    def get_active_skills(self, range_: str, user_id: str, agent_name: Optional[str] = None) -> List[Dict[str, Any]]:
        run_count = func.count().label("run_count")
        query = (
            select(
                am.c.skill_name.label("name"),
                func.min(am.c.agent_name).label("agent_name"),
                run_count,
                func.max(am.c.timestamp).label("last_active_at"),
            )
            .where(
                self._window(range_),
                am.c.skill_name.is_not(None),
                TenantFilter(user_id, agent_name).clause(),
            )
            .group_by(am.c.skill_name)
            .order_by(run_count.desc())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
        return [
            {
                "name": row["name"],
                "agent_name": row["agent_name"],
                "run_count": to_number(row["run_count"]),
                "last_active_at": str(row["last_active_at"]),
                "status": "active",
            }
            for row in rows
        ]

    def get_recent_activity(
        self,
        range_: str,
        user_id: str,
        limit: int = 5,
        agent_name: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        query = (
            select(
                am.c.id,
                am.c.timestamp,
                am.c.agent_name,
                am.c.model,
                am.c.input_tokens,
                am.c.output_tokens,
                am.c.status,
                (am.c.input_tokens + am.c.output_tokens).label("total_tokens"),
                cast_float(am.c.cost_usd).label("cost"),
            )
            .where(self._window(range_), TenantFilter(user_id, agent_name).clause())
            .order_by(am.c.timestamp.desc())
            .limit(limit)
        )
        with self.engine.connect() as conn:
            return [dict(row) for row in conn.execute(query).mappings().all()]

    def get_cost_by_model(self, range_: str, user_id: str, agent_name: Optional[str] = None) -> List[Dict[str, Any]]:
        tokens = func.sum(am.c.input_tokens + am.c.output_tokens).label("tokens")
        query = (
            select(
                am.c.model.label("model"),
                tokens,
                func.coalesce(func.sum(am.c.cost_usd), 0).label("estimated_cost"),
            )
            .where(
                self._window(range_),
                am.c.model.is_not(None),
                am.c.model != "",
                TenantFilter(user_id, agent_name).clause(),
            )
            .group_by(am.c.model)
            .order_by(tokens.desc())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).mappings().all()

        total = sum(to_number(row["tokens"]) for row in rows)
        return [
            {
                "model": row["model"],
                "tokens": to_number(row["tokens"]),
                "share_pct": 0 if total == 0 else round_half_up(to_number(row["tokens"]) / total * 100, 1),
                "estimated_cost": to_number(row["estimated_cost"]),
            }
            for row in rows
        ]

    # -------------------------------------------------------------------------
    # Agent roster
    # -------------------------------------------------------------------------

    def get_agent_list(self, user_id: str) -> List[Dict[str, Any]]:
        agents_query = (
            select(agents.c.name, agents.c.display_name, agents.c.created_at)
            .select_from(agents.join(tenants, agents.c.tenant_id == tenants.c.id))
            .where(tenants.c.name == user_id, agents.c.is_active.is_(True))
            .order_by(agents.c.created_at.desc())
        )

        scope = TenantFilter(user_id).clause()
        stats_query = (
            select(
                am.c.agent_name,
                func.count().label("message_count"),
                func.max(am.c.timestamp).label("last_active"),
                func.coalesce(func.sum(cast_float(am.c.cost_usd)), 0).label("total_cost"),
                func.coalesce(func.sum(am.c.input_tokens + am.c.output_tokens), 0).label("total_tokens"),
            )
            .where(am.c.agent_name.is_not(None), scope)
            .group_by(am.c.agent_name)
        )

        hour = hour_bucket(am.c.timestamp).label("hour")
        spark_query = (
            select(
                am.c.agent_name,
                hour,
                func.coalesce(func.sum(am.c.input_tokens + am.c.output_tokens), 0).label("tokens"),
            )
            .where(
                am.c.timestamp >= compute_cutoff(SPARKLINE_INTERVAL),
                am.c.agent_name.is_not(None),
                scope,
            )
            .group_by(am.c.agent_name, hour)
            .order_by(am.c.agent_name.asc(), hour.asc())
        )

        with self.engine.connect() as conn:
            agent_rows = conn.execute(agents_query).mappings().all()
            stats = {row["agent_name"]: row for row in conn.execute(stats_query).mappings().all()}
            sparks: Dict[str, List[Any]] = {}
            for row in conn.execute(spark_query).mappings().all():
                sparks.setdefault(row["agent_name"], []).append(to_number(row["tokens"]))

        result = []
        for agent in agent_rows:
            name = agent["name"]
            row = stats.get(name)
            result.append({
                "agent_name": name,
                "display_name": agent["display_name"] or name,
                "message_count": to_number(row["message_count"]) if row else 0,
                "last_active": str(row["last_active"]) if row else str(agent["created_at"] or ""),
                "total_cost": to_number(row["total_cost"]) if row else 0,
                "total_tokens": to_number(row["total_tokens"]) if row else 0,
                "sparkline": downsample(sparks.get(name, []), SPARKLINE_BUCKETS),
            })
        return result
