"""
AgentPulse - telemetry ingestion and analytics for agent/LLM observability.
"""

__version__ = "2.0.0"
