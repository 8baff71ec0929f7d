"""Lookup of domain agents and their wiring onto the message bus."""

from __future__ import annotations

from typing import Iterable

from scopeai.agents.base import BaseAgent
from scopeai.agents.domains import DOMAIN_AGENTS
from scopeai.config import AgentConfig
from scopeai.core.bus import AgentMessageBus
from scopeai.core.llm.client import LLMClient
from scopeai.models import AgentContext, AgentDomain, Intent
from scopeai.tools.registry import ToolRegistry
from scopeai.utils.logging import get_logger

log = get_logger(__name__)


class AgentRegistry:
    def __init__(self, agents: Iterable[BaseAgent] = ()) -> None:
        self._agents: dict[AgentDomain, BaseAgent] = {}
        for agent in agents:
            self.register(agent)

    def register(self, agent: BaseAgent) -> None:
        if agent.domain in self._agents:
            raise ValueError(f"Agent already registered for {agent.domain.value}")
        self._agents[agent.domain] = agent

    def get(self, domain: AgentDomain) -> BaseAgent | None:
        return self._agents.get(domain)

    def domains(self) -> list[AgentDomain]:
        return list(self._agents)

    def all(self) -> list[BaseAgent]:
        return list(self._agents.values())

    async def find_best(self, intent: Intent, context: AgentContext) -> BaseAgent | None:
        best: BaseAgent | None = None
        best_score = 0.0
        for agent in self._agents.values():
            score = await agent.can_handle(intent, context)
            if score > best_score:
                best, best_score = agent, score
        return best

    def attach(self, bus: AgentMessageBus) -> None:
        """Register every agent's message handler on the bus."""
        for domain, agent in self._agents.items():
            bus.register(domain, agent.on_message)
        log.debug("agents_attached", count=len(self._agents))


def create_default_agents(
    llm: LLMClient,
    tools: ToolRegistry,
    config: AgentConfig | None = None,
) -> AgentRegistry:
    return AgentRegistry(cls(llm, tools, config) for cls in DOMAIN_AGENTS)
