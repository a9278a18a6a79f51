"""
AgentPulse - Core Module

Telemetry ingestion and analytics for agent/LLM observability.

Instrumented agents can:
- Export OTLP/JSON traces, metrics and logs
- Have spans classified into agent turns, LLM calls and tool executions
- Get token and cost figures rolled up into each agent turn
- Be queried through windowed summaries, time series and message search
"""
