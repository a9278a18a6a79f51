"""
Analytics Aggregation Engine

Windowed summaries over agent_messages plus agent lifecycle operations:
- Token, cost and message-count totals with trend vs. the lookback window
- Error-rate risk score with rating bands
- Keyset-paginated message search
- Agent delete and transactional rename
"""

from __future__ import annotations
import logging
from typing import Optional, Dict, Any

from sqlalchemy import and_, case, delete, func, or_, select, update
from sqlalchemy.engine import Connection, Engine

from agentpulse.core.config import config
from agentpulse.core.models import AgentConflictError, AgentNotFoundError
from agentpulse.core.query_helpers import (
    MessageFilter,
    TenantFilter,
    Window,
    compute_trend,
    format_cursor,
    parse_cursor,
    range_to_interval,
    round_half_up,
    to_number,
)
from agentpulse.core.sql_dialect import cast_float, compute_cutoff
from agentpulse.database import AGENT_NAME_TABLES, agent_messages, agents, notification_logs, notification_rules, tenants

logger = logging.getLogger("agentpulse.analytics")

am = agent_messages


# =============================================================================
# RISK SCORING
# =============================================================================

def rate_error_risk(error_rate_pct: float) -> Dict[str, Any]:
    """Score an error rate (0-100, higher is safer) with a rating band."""
    if error_rate_pct < 1:
        score, rating = 100, "low"
    elif error_rate_pct < 5:
        score, rating = 75, "moderate"
    elif error_rate_pct < 15:
        score, rating = 45, "elevated"
    else:
        score, rating = 15, "high"
    return {"score": score, "rating": rating}


# =============================================================================
# SERVICE
# =============================================================================

class AggregationService:
    """Summary queries and agent mutations scoped to one caller."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def _scalar(self, conn: Connection, expr, *where) -> Any:
        return conn.execute(select(expr).select_from(am).where(*where)).scalar()

    def _windowed_total(self, expr, range_: str, user_id: str, agent_name: Optional[str]) -> Dict[str, Any]:
        window = Window.for_range(range_)
        scope = TenantFilter(user_id, agent_name).clause()
        with self.engine.connect() as conn:
            current = to_number(self._scalar(conn, expr, window.current(am.c.timestamp), scope))
            previous = to_number(self._scalar(conn, expr, window.previous(am.c.timestamp), scope))
        return {"value": current, "trend_pct": compute_trend(current, previous)}

    def has_any_data(self, user_id: str, agent_name: Optional[str] = None) -> bool:
        query = select(am.c.id).where(TenantFilter(user_id, agent_name).clause()).limit(1)
        with self.engine.connect() as conn:
            return conn.execute(query).first() is not None

    def get_token_summary(self, range_: str, user_id: str, agent_name: Optional[str] = None) -> Dict[str, Any]:
        total_expr = func.coalesce(func.sum(am.c.input_tokens + am.c.output_tokens), 0)
        summary = self._windowed_total(total_expr, range_, user_id, agent_name)

        window = Window.for_range(range_)
        query = select(
            func.coalesce(func.sum(am.c.input_tokens), 0).label("inp"),
            func.coalesce(func.sum(am.c.output_tokens), 0).label("out"),
        ).select_from(am).where(window.current(am.c.timestamp), TenantFilter(user_id, agent_name).clause())
        with self.engine.connect() as conn:
            detail = conn.execute(query).mappings().first()

        input_total = to_number(detail["inp"]) if detail else 0
        output_total = to_number(detail["out"]) if detail else 0
        summary["sub_values"] = {"input": input_total, "output": output_total}
        return {
            "tokens_today": summary,
            "input_tokens": input_total,
            "output_tokens": output_total,
        }

    def get_cost_summary(self, range_: str, user_id: str, agent_name: Optional[str] = None) -> Dict[str, Any]:
        return self._windowed_total(func.coalesce(func.sum(am.c.cost_usd), 0), range_, user_id, agent_name)

    def get_message_count(self, range_: str, user_id: str, agent_name: Optional[str] = None) -> Dict[str, Any]:
        return self._windowed_total(func.count(), range_, user_id, agent_name)

    def get_error_risk(self, range_: str, user_id: str, agent_name: Optional[str] = None) -> Dict[str, Any]:
        """Error rate of the window (percent), its trend and a risk rating."""
        window = Window.for_range(range_)
        scope = TenantFilter(user_id, agent_name).clause()
        errors = func.coalesce(func.sum(case((am.c.status == "error", 1), else_=0)), 0)

        def rate(conn: Connection, period) -> float:
            row = conn.execute(
                select(func.count().label("total"), errors.label("errors")).select_from(am).where(period, scope)
            ).first()
            total = to_number(row.total) if row else 0
            return (to_number(row.errors) / total * 100) if total else 0.0

        with self.engine.connect() as conn:
            current = rate(conn, window.current(am.c.timestamp))
            previous = rate(conn, window.previous(am.c.timestamp))

        return {
            "value": round_half_up(current, 2),
            "trend_pct": compute_trend(current, previous),
            **rate_error_risk(current),
        }

    # -------------------------------------------------------------------------
    # Agents
    # -------------------------------------------------------------------------

    def _find_agent(self, conn: Connection, user_id: str, name: str) -> Optional[Any]:
        query = (
            select(agents.c.id, agents.c.name, agents.c.tenant_id)
            .select_from(agents.join(tenants, agents.c.tenant_id == tenants.c.id))
            .where(tenants.c.name == user_id, agents.c.name == name)
        )
        return conn.execute(query).first()

    @staticmethod
    def _tenant_scope(table, tenant_id: str):
        # notification_logs has no tenant column; scope it through its rule
        if table is notification_logs:
            rule_ids = select(notification_rules.c.id).where(notification_rules.c.tenant_id == tenant_id)
            return table.c.rule_id.in_(rule_ids)
        return table.c.tenant_id == tenant_id

    def delete_agent(self, user_id: str, agent_name: str) -> None:
        with self.engine.begin() as conn:
            agent = self._find_agent(conn, user_id, agent_name)
            if agent is None:
                raise AgentNotFoundError(f'Agent "{agent_name}" not found')
            conn.execute(delete(agents).where(agents.c.id == agent.id))
        logger.info(f"Deleted agent '{agent_name}' for {user_id}")

    def rename_agent(self, user_id: str, current_name: str, new_name: str) -> None:
        """Rename an agent and every denormalized agent_name in one transaction."""
        with self.engine.begin() as conn:
            agent = self._find_agent(conn, user_id, current_name)
            if agent is None:
                raise AgentNotFoundError(f'Agent "{current_name}" not found')
            if self._find_agent(conn, user_id, new_name) is not None:
                raise AgentConflictError(f'Agent "{new_name}" already exists')

            conn.execute(update(agents).where(agents.c.id == agent.id).values(name=new_name))
            for table in AGENT_NAME_TABLES:
                conn.execute(
                    update(table)
                    .where(table.c.agent_name == current_name, self._tenant_scope(table, agent.tenant_id))
                    .values(agent_name=new_name)
                )
        logger.info(f"Renamed agent '{current_name}' -> '{new_name}' for {user_id}")

    # -------------------------------------------------------------------------
    # Message search
    # -------------------------------------------------------------------------

    def get_messages(
        self,
        user_id: str,
        range_: Optional[str] = None,
        filters: Optional[MessageFilter] = None,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        One page of agent turns, newest first.

        Ordered by (timestamp DESC, id DESC). next_cursor is "<timestamp>|<id>"
        of the last item when more rows exist, else None. total_count and
        models ignore the cursor.
        """
        limit = max(1, min(int(limit), config.messages_max_limit))
        filters = filters or MessageFilter()

        base = [TenantFilter(user_id).clause(), *filters.clauses()]
        window_clause = None
        if range_:
            window_clause = am.c.timestamp >= compute_cutoff(range_to_interval(range_))
            base.append(window_clause)

        page_where = list(base)
        parsed = parse_cursor(cursor)
        if parsed is not None:
            cursor_ts, cursor_id = parsed
            page_where.append(
                or_(
                    am.c.timestamp < cursor_ts,
                    and_(am.c.timestamp == cursor_ts, am.c.id < cursor_id),
                )
            )

        page_query = (
            select(
                am.c.id,
                am.c.timestamp,
                am.c.agent_name,
                am.c.model,
                am.c.description,
                am.c.service_type,
                am.c.input_tokens,
                am.c.output_tokens,
                am.c.status,
                (am.c.input_tokens + am.c.output_tokens).label("total_tokens"),
                cast_float(am.c.cost_usd).label("cost"),
                am.c.routing_tier,
            )
            .where(*page_where)
            .order_by(am.c.timestamp.desc(), am.c.id.desc())
            .limit(limit + 1)
        )

        models_where = [TenantFilter(user_id).clause(), am.c.model.is_not(None), am.c.model != ""]
        if window_clause is not None:
            models_where.append(window_clause)
        models_query = select(am.c.model).where(*models_where).distinct().order_by(am.c.model.asc())

        with self.engine.connect() as conn:
            total_count = to_number(conn.execute(select(func.count()).select_from(am).where(*base)).scalar())
            rows = [dict(r) for r in conn.execute(page_query).mappings().all()]
            models = [r[0] for r in conn.execute(models_query).all()]

        has_more = len(rows) > limit
        items = rows[:limit]
        next_cursor = None
        if has_more and items:
            last = items[-1]
            next_cursor = format_cursor(str(last["timestamp"]), str(last["id"]))

        return {
            "items": items,
            "next_cursor": next_cursor,
            "total_count": total_count,
            "models": models,
        }
