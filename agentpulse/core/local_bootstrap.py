"""
Single-User Bootstrap

Local mode has no signup flow, so the tenant and default agent the
local identity middleware points at are created on startup.
"""

from __future__ import annotations
import logging

from sqlalchemy import insert, select
from sqlalchemy.engine import Engine

from agentpulse.core.sql_dialect import sql_now
from agentpulse.database import agents, tenants

logger = logging.getLogger("agentpulse.bootstrap")

LOCAL_USER_ID = "local-user-001"
LOCAL_TENANT_ID = "local-tenant"
LOCAL_AGENT_NAME = "local-agent"


def local_agent_id(agent_name: str) -> str:
    return f"local-{agent_name}"


def ensure_local_tenant_and_agent(engine: Engine) -> bool:
    """
    Create the local tenant and its default agent.

    Runs once: if the local tenant already exists nothing is touched, so
    an agent the user deleted or renamed is not recreated. Returns True
    when rows were created.
    """
    now = sql_now()
    with engine.begin() as conn:
        existing = conn.execute(select(tenants.c.id).where(tenants.c.id == LOCAL_TENANT_ID)).first()
        if existing is not None:
            return False

        conn.execute(
            insert(tenants).values(
                id=LOCAL_TENANT_ID,
                name=LOCAL_USER_ID,
                organization_name="Local",
                is_active=True,
                created_at=now,
            )
        )
        conn.execute(
            insert(agents).values(
                id=local_agent_id(LOCAL_AGENT_NAME),
                name=LOCAL_AGENT_NAME,
                description="Default local agent",
                is_active=True,
                tenant_id=LOCAL_TENANT_ID,
                created_at=now,
            )
        )

    logger.info(f"Created tenant/agent for local mode ({LOCAL_TENANT_ID}/{LOCAL_AGENT_NAME})")
    return True
