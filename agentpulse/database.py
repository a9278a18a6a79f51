"""
Relational Store for AgentPulse

This module provides persistent storage for:
- Agent turns, LLM calls and tool executions reconstructed from traces
- Token usage and cost snapshots from metrics
- Agent log records
- Tenants, agents, notification rules and model pricing

SQLite is the default backend; set DATABASE_URL for PostgreSQL.
All timestamps are stored as fixed-width strings (YYYY-MM-DDTHH:MM:SS.mmm).
"""

import logging
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.engine import Engine

from agentpulse.core.config import config

logger = logging.getLogger("agentpulse.database")

TIMESTAMP = String(23)

metadata = MetaData()


# =============================================================================
# TENANTS & AGENTS
# =============================================================================

tenants = Table(
    "tenants",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(255), nullable=False, unique=True),
    Column("organization_name", String(255)),
    Column("email", String(255)),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", TIMESTAMP),
)

agents = Table(
    "agents",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("display_name", String(255)),
    Column("description", Text),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("tenant_id", String(64), nullable=False),
    Column("created_at", TIMESTAMP),
    UniqueConstraint("tenant_id", "name", name="uq_agents_tenant_name"),
)


# =============================================================================
# TRACE-DERIVED RECORDS
# =============================================================================

agent_messages = Table(
    "agent_messages",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("tenant_id", String(64)),
    Column("agent_id", String(64)),
    Column("user_id", String(255)),
    Column("trace_id", String(64)),
    Column("session_key", String(255)),
    Column("session_id", String(255)),
    Column("timestamp", TIMESTAMP, nullable=False),
    Column("duration_ms", Integer),
    Column("input_tokens", Integer, nullable=False, default=0),
    Column("output_tokens", Integer, nullable=False, default=0),
    Column("cache_read_tokens", Integer, nullable=False, default=0),
    Column("cache_creation_tokens", Integer, nullable=False, default=0),
    Column("cost_usd", Float),
    Column("status", String(16), nullable=False, default="ok"),
    Column("error_message", Text),
    Column("description", Text),
    Column("service_type", String(64)),
    Column("agent_name", String(255)),
    Column("model", String(255)),
    Column("routing_tier", String(64)),
    Column("routing_reason", String(255)),
    Column("skill_name", String(255)),
    Index("ix_agent_messages_tenant_ts", "tenant_id", "timestamp"),
    Index("ix_agent_messages_agent_name", "agent_name"),
)

llm_calls = Table(
    "llm_calls",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("tenant_id", String(64)),
    Column("agent_id", String(64)),
    Column("turn_id", String(64)),
    Column("call_index", Integer),
    Column("gen_ai_system", String(64)),
    Column("request_model", String(255)),
    Column("response_model", String(255)),
    Column("input_tokens", Integer, nullable=False, default=0),
    Column("output_tokens", Integer, nullable=False, default=0),
    Column("cache_read_tokens", Integer, nullable=False, default=0),
    Column("cache_creation_tokens", Integer, nullable=False, default=0),
    Column("duration_ms", Integer),
    Column("ttft_ms", Integer),
    Column("temperature", Float),
    Column("max_output_tokens", Integer),
    Column("timestamp", TIMESTAMP, nullable=False),
    Index("ix_llm_calls_turn", "turn_id"),
)

tool_executions = Table(
    "tool_executions",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("tenant_id", String(64)),
    Column("agent_id", String(64)),
    Column("llm_call_id", String(64)),
    Column("tool_name", String(255), nullable=False),
    Column("duration_ms", Integer),
    Column("status", String(16), nullable=False, default="ok"),
    Column("error_message", Text),
    Index("ix_tool_executions_llm_call", "llm_call_id"),
)


# =============================================================================
# METRIC & LOG RECORDS
# =============================================================================

token_usage_snapshots = Table(
    "token_usage_snapshots",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("tenant_id", String(64)),
    Column("agent_id", String(64)),
    Column("agent_name", String(255)),
    Column("snapshot_time", TIMESTAMP, nullable=False),
    Column("input_tokens", Integer, nullable=False, default=0),
    Column("output_tokens", Integer, nullable=False, default=0),
    Column("cache_read_tokens", Integer, nullable=False, default=0),
    Column("cache_creation_tokens", Integer, nullable=False, default=0),
    Column("total_tokens", Integer, nullable=False, default=0),
)

cost_snapshots = Table(
    "cost_snapshots",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("tenant_id", String(64)),
    Column("agent_id", String(64)),
    Column("agent_name", String(255)),
    Column("snapshot_time", TIMESTAMP, nullable=False),
    Column("cost_usd", Float, nullable=False, default=0),
    Column("model", String(255)),
)

agent_logs = Table(
    "agent_logs",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("tenant_id", String(64)),
    Column("agent_id", String(64)),
    Column("agent_name", String(255)),
    Column("timestamp", TIMESTAMP, nullable=False),
    Column("severity", String(16), nullable=False),
    Column("body", Text),
    Column("trace_id", String(64)),
    Column("span_id", String(32)),
    Column("attributes", Text),
)


# =============================================================================
# NOTIFICATIONS & PRICING
# =============================================================================

notification_rules = Table(
    "notification_rules",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("tenant_id", String(64)),
    Column("agent_id", String(64)),
    Column("agent_name", String(255)),
    Column("user_id", String(255)),
    Column("metric_type", String(32), nullable=False),
    Column("threshold", Float, nullable=False),
    Column("period", String(16), nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", TIMESTAMP),
)

notification_logs = Table(
    "notification_logs",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("rule_id", String(64), nullable=False),
    Column("period_start", TIMESTAMP),
    Column("period_end", TIMESTAMP),
    Column("actual_value", Float),
    Column("threshold_value", Float),
    Column("metric_type", String(32)),
    Column("agent_name", String(255)),
    Column("sent_at", TIMESTAMP),
)

model_pricing = Table(
    "model_pricing",
    metadata,
    Column("model_name", String(255), primary_key=True),
    Column("input_price_per_token", Float, nullable=False),
    Column("output_price_per_token", Float, nullable=False),
    Column("provider", String(64)),
    Column("updated_at", TIMESTAMP),
)

unresolved_models = Table(
    "unresolved_models",
    metadata,
    Column("model_name", String(255), primary_key=True),
    Column("occurrence_count", Integer, nullable=False, default=0),
    Column("first_seen", TIMESTAMP),
    Column("last_seen", TIMESTAMP),
    Column("resolved", Boolean, nullable=False, default=False),
)

# Tables carrying a denormalized agent_name column
AGENT_NAME_TABLES = (
    agent_messages,
    agent_logs,
    notification_rules,
    notification_logs,
    token_usage_snapshots,
    cost_snapshots,
)


# =============================================================================
# DATABASE
# =============================================================================

class Database:
    """
    Lazily-created SQLAlchemy engine plus schema bootstrap.

    Usage:
        db = Database("sqlite:///./agentpulse.db")
        db.init_schema()
        with db.engine.begin() as conn:
            ...
    """

    def __init__(self, url: Optional[str] = None, echo: bool = False):
        self.url = url or config.database_url
        self.echo = echo
        self._engine: Optional[Engine] = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            connect_args = {}
            if self.url.startswith("sqlite"):
                connect_args["check_same_thread"] = False
            self._engine = create_engine(self.url, echo=self.echo, connect_args=connect_args)
            logger.info(f"Database engine created ({self._engine.dialect.name})")
        return self._engine

    def init_schema(self) -> None:
        """Create missing tables. No migrations."""
        metadata.create_all(self.engine)
        logger.info(f"Schema ready: {len(metadata.tables)} tables")

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None


# Global database instance
database = Database(config.database_url, echo=config.database_echo)


def get_database() -> Database:
    """Dependency hook for the API layer."""
    return database
