"""Domain agents."""

from scopeai.agents.base import AgentEvent, BaseAgent, TurnResult
from scopeai.agents.registry import AgentRegistry, create_default_agents

__all__ = ["AgentEvent", "BaseAgent", "TurnResult", "AgentRegistry", "create_default_agents"]
