"""
AgentPulse - Agent/LLM Telemetry Service

Receives OTLP/JSON traces, metrics and logs from instrumented agents and
serves windowed analytics over them.

Features:
- OTLP ingest: /otlp/v1/traces, /otlp/v1/metrics, /otlp/v1/logs
- Span classification into agent turns, LLM calls and tool executions
- Token/cost rollup with model pricing
- Analytics: summaries with trends, time series, message search, agents

Run with:
    uvicorn main:app --reload

Or:
    python main.py
"""

import os
import time
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from agentpulse import __version__
from agentpulse.core.config import config, StorageMode

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.log_level, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("agentpulse")

# Import API routers
from agentpulse.api.otlp import router as otlp_router
from agentpulse.api.analytics import router as analytics_router
from agentpulse.api.agents import router as agents_router
from agentpulse.api.deps import get_current_user_id

from agentpulse.core.local_bootstrap import (
    LOCAL_AGENT_NAME,
    LOCAL_TENANT_ID,
    LOCAL_USER_ID,
    ensure_local_tenant_and_agent,
    local_agent_id,
)
from agentpulse.core.models import AgentPulseError, IngestionContext
from agentpulse.core.pricing import pricing_cache, unresolved_tracker
from agentpulse.database import database


# =============================================================================
# APPLICATION LIFESPAN
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    logger.info("=" * 60)
    logger.info(f"{config.app_name} Starting")
    logger.info(f"   Environment: {config.env.value}")
    logger.info(f"   Mode: {config.mode.value}")
    logger.info("=" * 60)

    database.init_schema()

    if config.mode == StorageMode.LOCAL:
        ensure_local_tenant_and_agent(database.engine)

    pricing_cache.engine = database.engine
    unresolved_tracker.engine = database.engine
    pricing_cache.load()

    yield

    logger.info("Shutting down...")
    unresolved_tracker.flush()
    database.dispose()


# =============================================================================
# CREATE APPLICATION
# =============================================================================

app = FastAPI(
    title=config.app_name,
    description="Telemetry ingestion and analytics for agent/LLM observability.",
    version=__version__,
    lifespan=lifespan,
)


# =============================================================================
# MIDDLEWARE
# =============================================================================

cors_origins = ["*"] if config.debug else config.cors_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests."""
    start_time = time.time()

    response = await call_next(request)

    duration = time.time() - start_time
    logger.info(
        f"{request.method} {request.url.path} "
        f"- {response.status_code} ({duration*1000:.0f}ms)"
    )
    return response


if config.mode == StorageMode.LOCAL:
    @app.middleware("http")
    async def local_identity(request: Request, call_next):
        """Single-user mode: every request acts as the local user."""
        agent_name = request.headers.get("x-agent-name") or LOCAL_AGENT_NAME
        request.state.user_id = LOCAL_USER_ID
        request.state.ingestion_context = IngestionContext(
            tenant_id=LOCAL_TENANT_ID,
            agent_id=local_agent_id(agent_name),
            agent_name=agent_name,
            user_id=LOCAL_USER_ID,
        )
        return await call_next(request)


@app.exception_handler(AgentPulseError)
async def agentpulse_error_handler(request: Request, exc: AgentPulseError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


# =============================================================================
# API ROUTES
# =============================================================================

# OTLP ingest
app.include_router(otlp_router)

# Dashboard analytics
app.include_router(analytics_router)

# Agent roster and lifecycle
app.include_router(agents_router)


# =============================================================================
# CORE ROUTES
# =============================================================================

@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": __version__,
        "environment": config.env.value,
        "mode": config.mode.value,
    }


@app.post("/admin/pricing/reload")
def reload_pricing(user_id: str = Depends(get_current_user_id)):
    """Reload the model pricing cache from the database."""
    count = pricing_cache.reload()
    return {"models": count}


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("main:app", host="0.0.0.0", port=port, reload=config.debug)
