"""Echo agent: minimal reference agent for exercising the coordination core."""

import asyncio
from typing import Iterable

from ..logging_config import get_logger
from ..models import HandledResult
from ..validation.payloads import (
    ConsensusVotePayload,
    ContextPropagatePayload,
    PhaseExecutePayload,
)
from .contract import BaseAgent

logger = get_logger(__name__)


class EchoAgent(BaseAgent):
    """Acknowledges phase executions, votes on consensus requests and
    remembers the context slices it received.

    Args:
        agent_id: Agent identifier
        capabilities: Capability tags
        approve: Vote cast on consensus requests
        delay: Seconds to wait before answering, for timing-sensitive runs
    """

    def __init__(
        self,
        agent_id: str,
        capabilities: Iterable[str] = ("echo",),
        approve: bool = True,
        delay: float = 0.0,
    ):
        super().__init__(agent_id, capabilities)
        self.approve = approve
        self.delay = delay
        self.received_contexts: list[str] = []
        self.executed_phases: list[str] = []
        self.on("workflow.phase.execute", self._handle_phase)
        self.on("consensus.vote", self._handle_vote)
        self.on("context.propagate", self._handle_context)

    async def _handle_phase(self, payload: PhaseExecutePayload) -> HandledResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.executed_phases.append(payload.phase)
        logger.info("EchoAgent %s executed phase %s", self.agent_id, payload.phase)
        return HandledResult(
            output={
                "phase": payload.phase,
                "echo": dict(payload.parameters or {}),
            }
        )

    async def _handle_vote(self, payload: ConsensusVotePayload) -> HandledResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        return HandledResult(
            approved=self.approve,
            output={"phase": payload.phase},
        )

    async def _handle_context(self, payload: ContextPropagatePayload) -> HandledResult:
        self.received_contexts.append(payload.context_slice.id)
        return HandledResult(output={"context_id": payload.context_slice.id})
