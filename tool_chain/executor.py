"""Chain executor: runs a plan's tool invocations one at a time.

Each task moves through ``pending-plan -> executing -> completed`` (or
``partially-failed`` when any step failed, ``failed`` when the plan itself was
unusable).  The executor never blocks on a collaborator: it fires a request
through the transport and resumes when the correlated response arrives.

A step that fails, including one naming a tool that is not registered, is
recorded and the chain moves on to the next step.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Optional, Union

from .ledger import TaskLedger
from .models import (
    Acknowledgement,
    FinalResult,
    ParseError,
    PlanRequest,
    PlanResponse,
    StepInvocation,
    StepResult,
    StepResultMessage,
    Task,
    TaskStatus,
)
from .planner import Planner, parse_plan
from .registry import CapabilityRegistry
from .transport import Transport

_log = logging.getLogger(__name__)

TOOL_NOT_FOUND = "tool not found"

CompletionHandler = Callable[[FinalResult], Union[Awaitable[None], None]]


def interpret_payload(payload: str) -> tuple[bool, Optional[str]]:
    """Decide whether a step response reports success.

    Only a JSON object carrying ``"success": false`` counts as a failure; its
    ``error`` (and any echoed ``received`` values) become the error message.
    """
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, TypeError):
        return True, None
    if not isinstance(data, dict) or data.get("success", True) is not False:
        return True, None
    error = str(data.get("error") or "tool reported failure")
    if "received" in data:
        error = f"{error} (received: {json.dumps(data['received'], sort_keys=True)})"
    return False, error


class ChainExecutor:
    """Drives every task from plan acquisition to its aggregated result."""

    def __init__(
        self,
        registry: CapabilityRegistry,
        ledger: TaskLedger,
        transport: Transport,
        on_complete: Optional[CompletionHandler] = None,
    ) -> None:
        self._registry = registry
        self._ledger = ledger
        self._transport = transport
        self._planner = Planner(registry)
        self._on_complete = on_complete
        transport.connect(self.on_plan_received, self.on_step_result)

    async def submit(self, query: str, requester: str) -> Acknowledgement:
        """Accept a task and request its plan; the result arrives later."""
        reference = self._ledger.create(query, requester)
        prompt = self._planner.build_prompt(query)
        _log.info("Task %s accepted from %s: %s", reference, requester, query)
        self._transport.request_plan(PlanRequest(reference=reference, prompt=prompt))
        return Acknowledgement(reference=reference)

    async def on_plan_received(self, response: PlanResponse) -> None:
        task = self._ledger.get(response.reference)
        if task is None:
            _log.warning("Received plan for unknown task %s", response.reference)
            return
        if task.status is not TaskStatus.PENDING_PLAN:
            _log.warning("Task %s is %s; ignoring plan", task.reference, task.status.value)
            return

        if response.error is not None:
            await self._fail(task, f"inference failed: {response.error}")
            return
        plan = parse_plan(response.raw)
        if isinstance(plan, ParseError):
            await self._fail(task, plan.reason)
            return

        self._ledger.attach_plan(task.reference, plan)
        _log.info("Task %s: plan with %d step(s)", task.reference, len(plan.steps))
        await self._advance(task)

    async def on_step_result(self, message: StepResultMessage) -> None:
        task = self._ledger.get(message.reference)
        if task is None:
            _log.warning("Received step result for unknown task %s", message.reference)
            return
        if task.status is not TaskStatus.EXECUTING:
            _log.warning(
                "Task %s is %s; ignoring result for step %d",
                task.reference, task.status.value, message.step_index,
            )
            return
        if message.step_index != task.next_index:
            _log.warning(
                "Task %s expected step %d, got %d; discarding",
                task.reference, task.next_index, message.step_index,
            )
            return

        step = task.plan.ordered_steps()[message.step_index - 1]
        success, error = interpret_payload(message.payload)
        self._record(
            task,
            StepResult(
                step_index=message.step_index,
                tool_key=step.tool,
                success=success,
                response=message.payload,
                error=error,
            ),
        )
        await self._advance(task)

    async def _advance(self, task: Task) -> None:
        """Dispatch the next step, or finish when every step has a result."""
        steps = task.plan.ordered_steps()
        while task.next_index <= len(steps):
            index = task.next_index
            step = steps[index - 1]
            entry = self._registry.resolve(step.tool)
            if entry is None:
                recorded = self._record(
                    task,
                    StepResult(step_index=index, tool_key=step.tool, success=False, error=TOOL_NOT_FOUND),
                )
                if not recorded:
                    return
                continue
            _log.info(
                "Task %s step %d/%d: %s", task.reference, index, len(steps), step.tool
            )
            self._transport.invoke(
                StepInvocation(
                    service_id=entry.service_id,
                    action=entry.action,
                    parameters=dict(step.parameters),
                    reference=task.reference,
                    step_index=index,
                )
            )
            return
        await self._finish(task)

    def _record(self, task: Task, result: StepResult) -> bool:
        if result.success:
            _log.info("Task %s step %d OK.", task.reference, result.step_index)
        else:
            _log.warning(
                "Task %s step %d FAILED: %s", task.reference, result.step_index, result.error
            )
        return self._ledger.append_result(task.reference, result)

    async def _finish(self, task: Task) -> None:
        failed = sum(1 for r in task.results if not r.success)
        status = TaskStatus.PARTIALLY_FAILED if failed else TaskStatus.COMPLETED
        self._ledger.complete(task.reference, status)
        await self._notify(
            FinalResult(
                reference=task.reference,
                task=task.query,
                ai_analysis=task.plan.analysis,
                execution_plan=task.plan.execution_plan,
                tools_used=len(task.results),
                successful_tools=len(task.results) - failed,
                failed_tools=failed,
                tool_results=list(task.results),
                duration=_elapsed(task),
                status=status,
            )
        )

    async def _fail(self, task: Task, reason: str) -> None:
        _log.error("Task %s failed: %s", task.reference, reason)
        self._ledger.complete(task.reference, TaskStatus.FAILED)
        await self._notify(
            FinalResult(
                reference=task.reference,
                task=task.query,
                ai_analysis="",
                execution_plan="",
                tools_used=0,
                successful_tools=0,
                failed_tools=0,
                tool_results=[],
                duration=_elapsed(task),
                status=TaskStatus.FAILED,
                error=reason,
            )
        )

    async def _notify(self, result: FinalResult) -> None:
        _log.info(
            "Task %s %s: %d/%d tools succeeded",
            result.reference, result.status.value, result.successful_tools, result.tools_used,
        )
        if self._on_complete is None:
            return
        outcome = self._on_complete(result)
        if inspect.isawaitable(outcome):
            await outcome


def _elapsed(task: Task) -> float:
    if task.completed_at is None:
        return 0.0
    return (task.completed_at - task.created_at).total_seconds()
