"""
Data Models for AgentPulse

Shared types for the ingest and query sides:
- IngestionContext: caller scope attached to every ingest call
- SpanKind / SpanIdentity: classification and per-batch identity map entries
- MessageAggregate: per-batch rollup accumulator for agent turns
- Exceptions surfaced to the API layer
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
from enum import Enum


# =============================================================================
# ENUMS
# =============================================================================

class SpanKind(str, Enum):
    """Record type a span is persisted as."""
    AGENT_MESSAGE = "agent_message"    # top-level agent turn
    LLM_CALL = "llm_call"              # model invocation
    TOOL_EXECUTION = "tool_execution"  # tool/function call


# =============================================================================
# INGESTION
# =============================================================================

@dataclass(frozen=True)
class IngestionContext:
    """
    Caller scope for one ingest call.

    Set by the authentication layer; every persisted row copies
    tenant_id and agent_id from here.
    """
    tenant_id: str
    agent_id: str
    agent_name: str
    user_id: str


@dataclass(frozen=True)
class SpanIdentity:
    """Generated identity for a span within one batch."""
    generated_id: str
    kind: SpanKind
    span_id: str


@dataclass
class MessageAggregate:
    """Token totals accumulated from LLM calls under one agent turn."""
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0
    model: Optional[str] = None
    routing_tier: Optional[str] = None

    def add(
        self,
        input_tokens: int,
        output_tokens: int,
        cache_read_tokens: int,
        cache_creation_tokens: int,
        model: Optional[str],
        routing_tier: Optional[str],
    ) -> None:
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens
        self.cache_read_tokens += cache_read_tokens
        self.cache_creation_tokens += cache_creation_tokens
        # First seen wins
        if self.model is None and model:
            self.model = model
        if self.routing_tier is None and routing_tier:
            self.routing_tier = routing_tier

    @property
    def is_empty(self) -> bool:
        return self.input_tokens == 0 and self.output_tokens == 0


@dataclass
class IngestResult:
    """Outcome of one ingest call."""
    accepted: int = 0
    skipped: int = 0


# =============================================================================
# EXCEPTIONS
# =============================================================================

class AgentPulseError(Exception):
    """Base error."""
    status_code = 500

    def to_response(self) -> dict:
        return {
            "error": {
                "message": str(self),
                "type": self.__class__.__name__,
            }
        }


class AuthenticationError(AgentPulseError):
    """No ingestion context or caller identity."""
    status_code = 401


class AgentNotFoundError(AgentPulseError):
    """Agent does not exist in the caller's tenant."""
    status_code = 404


class AgentConflictError(AgentPulseError):
    """Agent name already taken in the caller's tenant."""
    status_code = 409
