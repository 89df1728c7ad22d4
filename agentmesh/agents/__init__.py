"""Agents: contract, registry and the reference echo agent."""

from .contract import BaseAgent, EventCallback, IAgent
from .echo_agent import EchoAgent
from .registry import AgentRegistry, IAgentRegistry

__all__ = [
    "AgentRegistry",
    "BaseAgent",
    "EchoAgent",
    "EventCallback",
    "IAgent",
    "IAgentRegistry",
]
