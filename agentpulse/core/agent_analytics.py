"""
Per-Agent Analytics

Usage and cost for a single agent, scoped by (tenant_id, agent_id) rather
than by caller name. Used by agent-facing endpoints that already hold an
IngestionContext-style scope.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Any

from sqlalchemy import and_, func, select
from sqlalchemy.engine import Engine

from agentpulse.core.query_helpers import Window, compute_trend, normalize_range, to_number
from agentpulse.core.sql_dialect import sql_now
from agentpulse.database import agent_messages

am = agent_messages


@dataclass(frozen=True)
class AgentScope:
    tenant_id: str
    agent_id: str

    def clause(self):
        return and_(am.c.tenant_id == self.tenant_id, am.c.agent_id == self.agent_id)


class AgentAnalyticsService:
    def __init__(self, engine: Engine):
        self.engine = engine

    def get_usage(self, range_: str, scope: AgentScope) -> Dict[str, Any]:
        window = Window.for_range(range_)
        current_query = select(
            func.coalesce(func.sum(am.c.input_tokens), 0).label("input"),
            func.coalesce(func.sum(am.c.output_tokens), 0).label("output"),
            func.coalesce(func.sum(am.c.cache_read_tokens), 0).label("cache_read"),
            func.count().label("messages"),
        ).select_from(am).where(window.current(am.c.timestamp), am.c.timestamp <= sql_now(), scope.clause())
        previous_query = (
            select(func.coalesce(func.sum(am.c.input_tokens + am.c.output_tokens), 0))
            .select_from(am)
            .where(window.previous(am.c.timestamp), scope.clause())
        )

        with self.engine.connect() as conn:
            current = conn.execute(current_query).mappings().first()
            previous_total = to_number(conn.execute(previous_query).scalar())

        input_tokens = to_number(current["input"])
        output_tokens = to_number(current["output"])
        total = input_tokens + output_tokens
        return {
            "range": normalize_range(range_),
            "total_tokens": total,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "cache_read_tokens": to_number(current["cache_read"]),
            "message_count": to_number(current["messages"]),
            "trend_pct": compute_trend(total, previous_total),
        }

    def get_costs(self, range_: str, scope: AgentScope) -> Dict[str, Any]:
        window = Window.for_range(range_)
        in_window = and_(window.current(am.c.timestamp), am.c.timestamp <= sql_now(), scope.clause())
        cost = func.coalesce(func.sum(am.c.cost_usd), 0)

        by_model_cost = cost.label("cost_usd")
        by_model_query = (
            select(
                am.c.model,
                by_model_cost,
                func.coalesce(func.sum(am.c.input_tokens), 0).label("input_tokens"),
                func.coalesce(func.sum(am.c.output_tokens), 0).label("output_tokens"),
            )
            .where(in_window, am.c.model.is_not(None))
            .group_by(am.c.model)
            .order_by(by_model_cost.desc())
        )

        with self.engine.connect() as conn:
            current = to_number(conn.execute(select(cost).select_from(am).where(in_window)).scalar())
            previous = to_number(
                conn.execute(
                    select(cost).select_from(am).where(window.previous(am.c.timestamp), scope.clause())
                ).scalar()
            )
            rows = conn.execute(by_model_query).mappings().all()

        return {
            "range": normalize_range(range_),
            "total_cost_usd": current,
            "trend_pct": compute_trend(current, previous),
            "by_model": [
                {
                    "model": row["model"],
                    "cost_usd": to_number(row["cost_usd"]),
                    "input_tokens": to_number(row["input_tokens"]),
                    "output_tokens": to_number(row["output_tokens"]),
                }
                for row in rows
            ],
        }
