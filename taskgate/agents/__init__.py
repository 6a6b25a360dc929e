"""Agent engines."""

from taskgate.agents.engine import AgentEngine, AgentExecuteOptions, AgentResult, ClaudeCodeEngine

__all__ = ["AgentEngine", "AgentExecuteOptions", "AgentResult", "ClaudeCodeEngine"]
