"""
Span Classification and Correlation

Turns one resourceSpans entry into classified spans plus an identity map:
- Flatten scopeSpans[].spans into a single list
- Classify each span on its merged attributes (span overrides resource)
- Assign a generated id to every span before anything is inserted
- Resolve parents through the identity map by hex span id
"""

from __future__ import annotations
import uuid
from dataclasses import dataclass
from typing import Optional, List, Dict, Any, Tuple

from agentpulse.core.models import SpanIdentity, SpanKind
from agentpulse.core.otlp import AttributeMap, extract_attributes, to_hex_string

SpanMap = Dict[str, SpanIdentity]


@dataclass
class ClassifiedSpan:
    """A raw span with its merged attributes and generated identity."""
    raw: Dict[str, Any]
    attrs: AttributeMap
    identity: SpanIdentity

    @property
    def kind(self) -> SpanKind:
        return self.identity.kind

    @property
    def parent_span_id(self) -> str:
        return to_hex_string(self.raw.get("parentSpanId"))


def _present(attrs: AttributeMap, key: str) -> bool:
    return attrs.get(key) not in (None, "")


def classify_span(attrs: AttributeMap) -> SpanKind:
    """gen_ai.system wins over tool.name; everything else is an agent turn."""
    if _present(attrs, "gen_ai.system"):
        return SpanKind.LLM_CALL
    if _present(attrs, "tool.name"):
        return SpanKind.TOOL_EXECUTION
    return SpanKind.AGENT_MESSAGE


def flatten_spans(resource_spans: Dict[str, Any]) -> List[Dict[str, Any]]:
    spans: List[Dict[str, Any]] = []
    for scope_spans in resource_spans.get("scopeSpans") or []:
        for span in scope_spans.get("spans") or []:
            if isinstance(span, dict):
                spans.append(span)
    return spans


def build_span_map(
    spans: List[Dict[str, Any]],
    resource_attrs: AttributeMap,
) -> Tuple[List[ClassifiedSpan], SpanMap]:
    """
    Classify every span and build the hex span id -> identity map.

    The map is complete before the caller inserts anything, so parent
    lookups do not depend on span order within the batch.
    """
    classified: List[ClassifiedSpan] = []
    span_map: SpanMap = {}

    for span in spans:
        span_id = to_hex_string(span.get("spanId"))
        attrs = {**resource_attrs, **extract_attributes(span.get("attributes"))}
        identity = SpanIdentity(
            generated_id=str(uuid.uuid4()),
            kind=classify_span(attrs),
            span_id=span_id,
        )
        if span_id:
            span_map[span_id] = identity
        classified.append(ClassifiedSpan(raw=span, attrs=attrs, identity=identity))

    return classified, span_map


def resolve_parent(span: ClassifiedSpan, span_map: SpanMap, expected: SpanKind) -> Optional[str]:
    """Generated id of the parent if it is in this batch and of the expected kind."""
    parent_id = span.parent_span_id
    if not parent_id:
        return None
    parent = span_map.get(parent_id)
    if parent is None or parent.kind != expected:
        return None
    return parent.generated_id
