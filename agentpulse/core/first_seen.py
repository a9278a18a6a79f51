"""
First-Telemetry Dedup Stores

Ingest pipelines call mark() after a successful ingest; it returns True the
first time a (tenant, agent) pair is seen so a one-time "first telemetry"
event can be logged. The store is passed into the pipelines, never held as
module state inside them.
"""

from __future__ import annotations
import hashlib
import logging
import threading
from pathlib import Path
from typing import Set

from agentpulse.core.models import IngestionContext

logger = logging.getLogger("agentpulse.first_seen")


def agent_key(ctx: IngestionContext) -> str:
    return f"{ctx.tenant_id}:{ctx.agent_id}"


class FirstSeenStore:
    """Base interface."""

    def mark(self, key: str) -> bool:
        """Record key; True if it had not been seen before."""
        raise NotImplementedError

    def seen(self, key: str) -> bool:
        raise NotImplementedError


class InMemoryFirstSeenStore(FirstSeenStore):
    """Process-local set. Resets on restart."""

    def __init__(self):
        self._keys: Set[str] = set()
        self._lock = threading.Lock()

    def mark(self, key: str) -> bool:
        with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    def seen(self, key: str) -> bool:
        with self._lock:
            return key in self._keys


class MarkerFileFirstSeenStore(FirstSeenStore):
    """One empty marker file per key under a directory. Survives restarts."""

    def __init__(self, directory: str):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:32]
        return self.directory / f"{digest}.seen"

    def mark(self, key: str) -> bool:
        try:
            # "x" mode fails if the marker already exists
            with open(self._path(key), "x"):
                pass
        except FileExistsError:
            return False
        return True

    def seen(self, key: str) -> bool:
        return self._path(key).exists()


def notify_first_telemetry(store: FirstSeenStore, ctx: IngestionContext, signal: str) -> bool:
    """Log the one-time first-telemetry event for ctx's agent."""
    if not store.mark(agent_key(ctx)):
        return False
    logger.info(
        f"First telemetry received from agent '{ctx.agent_name}' "
        f"(tenant={ctx.tenant_id}, signal={signal})"
    )
    return True


def create_first_seen_store(directory: str = "") -> FirstSeenStore:
    if directory:
        return MarkerFileFirstSeenStore(directory)
    return InMemoryFirstSeenStore()
