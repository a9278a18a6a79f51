"""
AgentPulse HTTP API routers.
"""
