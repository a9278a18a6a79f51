"""
Model Pricing Cache

Read-mostly cache of per-token model prices loaded from the model_pricing
table. Ingest pipelines only read from it; reload() swaps the contents.

Lookup order for get_by_model():
1. Exact model name
2. Provider prefix stripped ("openai/gpt-4o" -> "gpt-4o")
3. Date suffix stripped ("gpt-4.1-2025-04-14" -> "gpt-4.1")
4. Known aliases ("claude-opus-4" -> "claude-opus-4-6")

Misses are counted by UnresolvedModelTracker so unknown models can be
priced later.
"""

from __future__ import annotations
import logging
import re
import threading
from collections import Counter
from dataclasses import dataclass
from typing import Optional, List, Dict

from sqlalchemy import insert, select, update
from sqlalchemy.engine import Engine

from agentpulse.core.sql_dialect import sql_now
from agentpulse.database import model_pricing, unresolved_models

logger = logging.getLogger("agentpulse.pricing")

_DATE_SUFFIX_RE = re.compile(r"-(\d{4}-\d{2}-\d{2}|\d{8})$")

MODEL_ALIASES: Dict[str, str] = {
    "claude-opus-4": "claude-opus-4-6",
    "deepseek-chat": "deepseek-v3",
}


@dataclass(frozen=True)
class ModelPricing:
    """Per-token prices for one model."""
    model_name: str
    input_price_per_token: float
    output_price_per_token: float
    provider: Optional[str] = None

    def cost(self, input_tokens: int, output_tokens: int) -> float:
        return input_tokens * self.input_price_per_token + output_tokens * self.output_price_per_token


# =============================================================================
# UNRESOLVED MODEL TRACKING
# =============================================================================

class UnresolvedModelTracker:
    """Counts pricing misses in memory and flushes them to unresolved_models."""

    def __init__(self, engine: Optional[Engine] = None):
        self.engine = engine
        self._pending: Counter = Counter()
        self._lock = threading.Lock()

    def track(self, model_name: str) -> None:
        with self._lock:
            self._pending[model_name] += 1

    def pending(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._pending)

    def flush(self) -> int:
        """Write pending counts; returns the number of models written."""
        with self._lock:
            pending = dict(self._pending)
            self._pending.clear()

        if not pending or self.engine is None:
            return 0

        now = sql_now()
        with self.engine.begin() as conn:
            for name, count in pending.items():
                existing = conn.execute(
                    select(unresolved_models.c.occurrence_count).where(unresolved_models.c.model_name == name)
                ).first()
                if existing is None:
                    conn.execute(
                        insert(unresolved_models).values(
                            model_name=name,
                            occurrence_count=count,
                            first_seen=now,
                            last_seen=now,
                            resolved=False,
                        )
                    )
                else:
                    conn.execute(
                        update(unresolved_models)
                        .where(unresolved_models.c.model_name == name)
                        .values(occurrence_count=existing.occurrence_count + count, last_seen=now)
                    )
        logger.info(f"Flushed {len(pending)} unresolved model name(s)")
        return len(pending)


# =============================================================================
# PRICING CACHE
# =============================================================================

class ModelPricingCache:
    """In-memory model -> ModelPricing map backed by the model_pricing table."""

    def __init__(self, engine: Optional[Engine] = None, tracker: Optional[UnresolvedModelTracker] = None):
        self.engine = engine
        self.tracker = tracker
        self._cache: Dict[str, ModelPricing] = {}

    def load(self) -> int:
        """Load all pricing rows, replacing whatever was cached."""
        if self.engine is None:
            return 0
        with self.engine.connect() as conn:
            rows = conn.execute(select(model_pricing)).mappings().all()

        cache = {
            row["model_name"]: ModelPricing(
                model_name=row["model_name"],
                input_price_per_token=float(row["input_price_per_token"]),
                output_price_per_token=float(row["output_price_per_token"]),
                provider=row["provider"],
            )
            for row in rows
        }
        self._cache = cache
        logger.info(f"Loaded pricing for {len(cache)} model(s)")
        return len(cache)

    def reload(self) -> int:
        return self.load()

    def set_entries(self, entries: List[ModelPricing]) -> None:
        """Replace the cache contents directly."""
        self._cache = {p.model_name: p for p in entries}

    def _candidates(self, model_name: str) -> List[str]:
        names = [model_name]
        if "/" in model_name:
            names.append(model_name.rsplit("/", 1)[1])
        for name in list(names):
            stripped = _DATE_SUFFIX_RE.sub("", name)
            if stripped != name:
                names.append(stripped)
        for name in list(names):
            alias = MODEL_ALIASES.get(name)
            if alias:
                names.append(alias)
        return names

    def get_by_model(self, model_name: Optional[str]) -> Optional[ModelPricing]:
        if not model_name:
            return None
        cache = self._cache
        for candidate in self._candidates(model_name):
            pricing = cache.get(candidate)
            if pricing is not None:
                return pricing

        if self.tracker is not None and cache:
            self.tracker.track(model_name)
        return None


# Global instances (engine attached at startup)
unresolved_tracker = UnresolvedModelTracker()
pricing_cache = ModelPricingCache(tracker=unresolved_tracker)


def get_pricing_cache() -> ModelPricingCache:
    """Dependency hook for the API layer."""
    return pricing_cache
