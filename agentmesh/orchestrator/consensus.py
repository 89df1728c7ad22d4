"""Consensus gate: parallel votes resolved on count under a timeout."""

import asyncio
from typing import Any

from ..event_bus import IEventBus
from ..logging_config import get_logger
from ..models import ConsensusRequest, ConsensusResult, HandledResult
from ..tracker import ITracker

logger = get_logger(__name__)

VOTE_EVENT_TYPE = "consensus.vote"


class ConsensusGate:
    """Collects votes from the required agents of a ConsensusRequest.

    Votes are requested in parallel. The gate resolves as soon as the
    quorum is reached or can no longer be reached, or when the timeout
    elapses. Votes arriving after resolution are ignored.
    """

    def __init__(
        self,
        event_bus: IEventBus,
        tracker: ITracker | None = None,
        source_agent: str = "orchestrator",
    ):
        self._event_bus = event_bus
        self._tracker = tracker
        self._source_agent = source_agent

    async def collect(
        self,
        request: ConsensusRequest,
        run_id: str,
        phase: str,
        parameters: dict[str, Any] | None = None,
        correlation_id: str | None = None,
    ) -> ConsensusResult:
        loop = asyncio.get_running_loop()
        started = loop.time()
        deadline = started + request.timeout_ms / 1000
        required = sorted(request.required_agents)
        payload = {
            "runId": run_id,
            "phase": phase,
            "requiredAgents": required,
            "threshold": request.threshold,
            "parameters": dict(parameters or {}),
        }

        tasks = {
            asyncio.create_task(self._vote(agent_id, payload, correlation_id)): agent_id
            for agent_id in required
        }
        pending = set(tasks)
        approvals: set[str] = set()
        rejections: set[str] = set()
        timed_out = False

        try:
            while pending:
                if len(approvals) >= request.threshold:
                    break
                if len(required) - len(rejections) < request.threshold:
                    break
                remaining = deadline - loop.time()
                if remaining <= 0:
                    timed_out = True
                    break
                done, pending = await asyncio.wait(
                    pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                )
                for task in done:
                    agent_id = tasks[task]
                    if task.result():
                        approvals.add(agent_id)
                    else:
                        rejections.add(agent_id)
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        result = ConsensusResult(
            approvals=frozenset(approvals),
            reached=len(approvals) >= request.threshold,
            elapsed_ms=(loop.time() - started) * 1000,
            rejections=frozenset(rejections),
            timed_out=timed_out and len(approvals) < request.threshold,
        )
        logger.info(
            "Consensus for %s/%s: %d/%d approvals (threshold %d)%s",
            run_id,
            phase,
            len(approvals),
            len(required),
            request.threshold,
            " after timeout" if result.timed_out else "",
        )
        return result

    async def _vote(
        self, agent_id: str, payload: dict[str, Any], correlation_id: str | None
    ) -> bool:
        loop = asyncio.get_running_loop()
        started = loop.time()
        publish = await self._event_bus.send(
            VOTE_EVENT_TYPE,
            payload,
            self._source_agent,
            target_agent=agent_id,
            correlation_id=correlation_id,
        )
        handled = publish.results.get(agent_id)
        approved = (
            publish.accepted
            and agent_id in publish.delivered_to
            and isinstance(handled, HandledResult)
            and handled.approved is True
        )
        if self._tracker:
            await self._tracker.track_interaction(
                source=self._source_agent,
                target=agent_id,
                event_type=VOTE_EVENT_TYPE,
                duration_ms=(loop.time() - started) * 1000,
                success=agent_id in publish.delivered_to,
                trace_id=correlation_id,
            )
        return approved
