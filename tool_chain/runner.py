"""Entry-point runner wiring discovery, planning and chain execution together.

  discovery          → Transport.announce + CapabilityRegistry.register
  plan acquisition   → ChainExecutor.submit (inference via the transport)
  chain execution    → ChainExecutor.on_plan_received / on_step_result
  result delivery    → FinalResult handed back to the awaiting requester
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Optional

import pendulum

from .config import Settings
from .executor import ChainExecutor
from .ledger import TaskLedger
from .models import Acknowledgement, FinalResult, Task, TaskStatus, ToolListing
from .registry import CapabilityRegistry
from .transport import Transport

_log = logging.getLogger(__name__)

TASK_EXPIRED = "task expired"


class ToolChainRunner:
    """Discovers tools from services and runs tasks through the chain executor.

    Usage::

        from inference import MockRouterLLM
        from tool_chain import StdioTransport, ToolChainRunner

        transport = StdioTransport(MockRouterLLM(), {"calculator-process": path})
        async with ToolChainRunner(transport) as runner:
            await runner.discover()
            result = await runner.run("complex math")
        print(result.answer)

    Tasks that expire from the ledger before finishing resolve their
    :meth:`run` with a failed result carrying ``"task expired"``.

    Args:
        transport: Route to the inference backend and the tool services.
        settings: Requester identity and ledger retention.  Defaults to
                  :class:`Settings` defaults, not the environment.
    """

    def __init__(self, transport: Transport, settings: Optional[Settings] = None) -> None:
        self.settings = settings or Settings()
        self.registry = CapabilityRegistry()
        self.ledger = TaskLedger()
        self.results: dict[str, FinalResult] = {}
        self._transport = transport
        self._waiters: dict[str, asyncio.Future] = {}
        self._executor = ChainExecutor(
            self.registry, self.ledger, transport, on_complete=self._deliver
        )

    async def discover(self, service_ids: Optional[Iterable[str]] = None) -> dict[str, int]:
        """Register the announced tools of each service.

        Returns the number of tools registered per service; a service that
        cannot be reached or sends a malformed announcement counts 0.
        """
        counts: dict[str, int] = {}
        if service_ids is None:
            service_ids = self._transport.service_ids
        for service_id in service_ids:
            try:
                document = await self._transport.announce(service_id)
            except Exception as exc:  # noqa: BLE001
                _log.warning("Discovery of %s failed: %s", service_id, exc)
                counts[service_id] = 0
                continue
            counts[service_id] = self.registry.register(service_id, document)
        return counts

    def list_tools(self) -> list[ToolListing]:
        return self.registry.list()

    async def submit(self, query: str, requester: Optional[str] = None) -> Acknowledgement:
        """Fire-and-forget submission; the result lands in :attr:`results`."""
        self._purge()
        return await self._executor.submit(query, requester or self.settings.requester)

    async def run(self, query: str, requester: Optional[str] = None) -> FinalResult:
        """Submit *query* and wait for its aggregated result."""
        ack = await self.submit(query, requester)
        # submit() does not yield, so no delivery can precede this waiter.
        future = asyncio.get_running_loop().create_future()
        self._waiters[ack.reference] = future
        try:
            return await future
        finally:
            self._waiters.pop(ack.reference, None)

    async def close(self) -> None:
        """Wait for deliveries still in flight and shut the services down."""
        await self._transport.close()

    async def __aenter__(self) -> "ToolChainRunner":
        await self._transport.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _deliver(self, result: FinalResult) -> None:
        self.results[result.reference] = result
        future = self._waiters.get(result.reference)
        if future is not None and not future.done():
            future.set_result(result)

    def _purge(self) -> None:
        waiting = {ref: self.ledger.get(ref) for ref in self._waiters}
        for reference in self.ledger.purge_expired(self.settings.retention_seconds):
            self.results.pop(reference, None)
            task = waiting.get(reference)
            future = self._waiters.get(reference)
            if task is not None and future is not None and not future.done():
                future.set_result(_expired(task))


def _expired(task: Task) -> FinalResult:
    """Failed result for a task dropped from the ledger before it finished."""
    failed = sum(1 for r in task.results if not r.success)
    return FinalResult(
        reference=task.reference,
        task=task.query,
        ai_analysis=task.plan.analysis if task.plan else "",
        execution_plan=task.plan.execution_plan if task.plan else "",
        tools_used=len(task.results),
        successful_tools=len(task.results) - failed,
        failed_tools=failed,
        tool_results=list(task.results),
        duration=(pendulum.now("UTC") - task.created_at).total_seconds(),
        status=TaskStatus.FAILED,
        error=TASK_EXPIRED,
    )
