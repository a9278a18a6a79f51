import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import insert

from agentpulse.core.first_seen import InMemoryFirstSeenStore
from agentpulse.core.models import IngestionContext
from agentpulse.core.otlp import format_timestamp
from agentpulse.core.pricing import ModelPricing, ModelPricingCache, UnresolvedModelTracker
from agentpulse.database import Database, agent_messages, agents, tenants

USER_ID = "user-1"
TENANT_ID = "tenant-1"


def ago(**delta) -> str:
    """Stored timestamp string for now minus the given timedelta."""
    return format_timestamp(datetime.now(timezone.utc) - timedelta(**delta))


@pytest.fixture
def db(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'agentpulse.db'}")
    database.init_schema()
    with database.engine.begin() as conn:
        conn.execute(insert(tenants).values(id=TENANT_ID, name=USER_ID, is_active=True))
        conn.execute(insert(tenants).values(id="tenant-2", name="user-2", is_active=True))
    yield database
    database.dispose()


@pytest.fixture
def engine(db):
    return db.engine


@pytest.fixture
def tracker():
    return UnresolvedModelTracker()


@pytest.fixture
def pricing(engine, tracker):
    cache = ModelPricingCache(engine, tracker)
    cache.set_entries([
        ModelPricing("gpt-4o", 0.001, 0.002, provider="openai"),
        ModelPricing("claude-opus-4-6", 0.000015, 0.000075, provider="anthropic"),
    ])
    return cache


@pytest.fixture
def first_seen():
    return InMemoryFirstSeenStore()


@pytest.fixture
def ctx():
    return IngestionContext(
        tenant_id=TENANT_ID,
        agent_id="agent-1",
        agent_name="support-bot",
        user_id=USER_ID,
    )


@pytest.fixture
def add_agent(engine):
    def _add(name, tenant_id=TENANT_ID, display_name=None, created_at=None):
        agent_id = str(uuid.uuid4())
        with engine.begin() as conn:
            conn.execute(
                insert(agents).values(
                    id=agent_id,
                    name=name,
                    display_name=display_name,
                    tenant_id=tenant_id,
                    is_active=True,
                    created_at=created_at or ago(days=1),
                )
            )
        return agent_id
    return _add


@pytest.fixture
def add_message(engine):
    def _add(**values):
        row = {
            "id": str(uuid.uuid4()),
            "tenant_id": TENANT_ID,
            "agent_id": "agent-1",
            "timestamp": ago(minutes=5),
            "input_tokens": 0,
            "output_tokens": 0,
            "status": "ok",
            "agent_name": "support-bot",
            "service_type": "agent",
        }
        row.update(values)
        with engine.begin() as conn:
            conn.execute(insert(agent_messages).values(**row))
        return row["id"]
    return _add
