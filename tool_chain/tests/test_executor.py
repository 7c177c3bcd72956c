"""Tests for ChainExecutor driven message by message."""

from __future__ import annotations

import json

import pytest

from fakes import SERVICE_ID, announcement, handler, plan_json, step
from tool_chain.executor import TOOL_NOT_FOUND, ChainExecutor, interpret_payload
from tool_chain.ledger import TaskLedger
from tool_chain.models import PlanResponse, StepResultMessage, TaskStatus
from tool_chain.registry import CapabilityRegistry

_ADD_OK = json.dumps({"success": True, "result": 40, "message": "25 + 15 = 40"})
_SUB_OK = json.dumps({"success": True, "result": 35, "message": "50 - 15 = 35"})


class Harness:
    def __init__(self, transport, document) -> None:
        self.registry = CapabilityRegistry()
        self.registry.register(SERVICE_ID, document)
        self.ledger = TaskLedger()
        self.transport = transport
        self.results = []
        self.executor = ChainExecutor(
            self.registry, self.ledger, transport, on_complete=self.results.append
        )

    async def submit(self, query: str = "Q") -> str:
        ack = await self.executor.submit(query, "tester")
        return ack.reference

    async def plan(self, reference: str, raw: str) -> None:
        await self.executor.on_plan_received(PlanResponse(reference=reference, raw=raw))

    async def respond(self, reference: str, index: int, payload: str) -> None:
        await self.executor.on_step_result(
            StepResultMessage(reference=reference, step_index=index, payload=payload)
        )


@pytest.fixture
def harness(manual_transport, calculator_announcement):
    return Harness(manual_transport, calculator_announcement)


# ── submission ────────────────────────────────────────────────────────────────


@pytest.mark.anyio
async def test_submit_acknowledges_and_requests_plan(harness):
    ack = await harness.executor.submit("complex math", "tester")

    assert ack.accepted is True
    task = harness.ledger.get(ack.reference)
    assert task.status is TaskStatus.PENDING_PLAN
    assert task.requester == "tester"
    [request] = harness.transport.plan_requests
    assert request.reference == ack.reference
    assert "Task: complex math" in request.prompt
    assert f"{SERVICE_ID}:Add" in request.prompt
    assert harness.results == []


# ── plans ─────────────────────────────────────────────────────────────────────


@pytest.mark.anyio
async def test_empty_plan_completes_without_invocations(harness):
    ref = await harness.submit("hello")
    await harness.plan(ref, plan_json(analysis="Just a greeting.", summary="No tools needed."))

    assert harness.transport.invocations == []
    [result] = harness.results
    assert result.tools_used == 0
    assert result.status is TaskStatus.COMPLETED
    assert result.answer == "Just a greeting."
    assert result.execution_plan == "No tools needed."
    assert harness.ledger.get(ref).status is TaskStatus.COMPLETED


@pytest.mark.anyio
async def test_malformed_plan_fails_task(harness):
    ref = await harness.submit()
    await harness.plan(ref, "I think you should add them")

    assert harness.transport.invocations == []
    [result] = harness.results
    assert result.status is TaskStatus.FAILED
    assert result.completed is False
    assert "not valid JSON" in result.error
    assert harness.ledger.get(ref).status is TaskStatus.FAILED


@pytest.mark.anyio
async def test_plan_without_step_list_fails_task(harness):
    ref = await harness.submit()
    await harness.plan(ref, json.dumps({"analysis": "a", "execution_plan": "b"}))
    assert harness.results[0].status is TaskStatus.FAILED


@pytest.mark.anyio
async def test_inference_error_fails_task(harness):
    ref = await harness.submit()
    await harness.executor.on_plan_received(
        PlanResponse(reference=ref, raw="", error="connection refused")
    )
    assert harness.results[0].error == "inference failed: connection refused"


@pytest.mark.anyio
async def test_second_plan_for_same_task_ignored(harness):
    ref = await harness.submit()
    await harness.plan(ref, plan_json(step("Add", 1, A="1", B="2")))
    await harness.plan(ref, plan_json(step("Clear", 1)))
    assert len(harness.transport.invocations) == 1


@pytest.mark.anyio
async def test_plan_for_unknown_task_ignored(harness):
    await harness.plan("task-0-00000000", plan_json(step("Add", 1)))
    assert harness.transport.invocations == []
    assert harness.results == []


# ── execution ─────────────────────────────────────────────────────────────────


@pytest.mark.anyio
async def test_single_step_chain(harness):
    ref = await harness.submit("calculate")
    await harness.plan(ref, plan_json(step("Add", 1, A="25", B="15")))

    [invocation] = harness.transport.invocations
    assert invocation.service_id == SERVICE_ID
    assert invocation.action == "Add"
    assert invocation.parameters == {"A": "25", "B": "15"}
    assert invocation.reference == ref
    assert invocation.step_index == 1

    await harness.respond(ref, 1, _ADD_OK)
    [result] = harness.results
    assert result.successful_tools == 1
    assert result.failed_tools == 0
    assert result.status is TaskStatus.COMPLETED
    assert result.answer == f"{SERVICE_ID}:Add: 25 + 15 = 40"


@pytest.mark.anyio
async def test_next_step_waits_for_previous_result(harness):
    ref = await harness.submit()
    await harness.plan(ref, plan_json(step("Add", 1), step("Subtract", 2)))

    assert [i.action for i in harness.transport.invocations] == ["Add"]
    await harness.respond(ref, 1, _ADD_OK)
    assert [i.action for i in harness.transport.invocations] == ["Add", "Subtract"]
    assert harness.transport.invocations[1].step_index == 2
    assert harness.results == []
    await harness.respond(ref, 2, _SUB_OK)
    assert harness.results[0].tools_used == 2


@pytest.mark.anyio
async def test_steps_dispatched_by_order_field(harness):
    ref = await harness.submit()
    await harness.plan(
        ref, plan_json(step("Clear", 3), step("Subtract", 2), step("Add", 1), step("History", 2))
    )
    for index in range(1, 5):
        await harness.respond(ref, index, "{}")

    assert [i.action for i in harness.transport.invocations] == [
        "Add",
        "Subtract",
        "History",
        "Clear",
    ]
    assert [i.step_index for i in harness.transport.invocations] == [1, 2, 3, 4]
    assert harness.results[0].tools_used == 4


@pytest.mark.anyio
async def test_failed_step_does_not_abort_chain(harness):
    ref = await harness.submit()
    await harness.plan(ref, plan_json(step("Add", 1, A="x"), step("Subtract", 2)))
    invalid = json.dumps(
        {
            "success": False,
            "error": "Invalid input: A and B must be numbers",
            "received": {"A": "x"},
        }
    )
    await harness.respond(ref, 1, invalid)
    await harness.respond(ref, 2, _SUB_OK)

    [result] = harness.results
    assert result.status is TaskStatus.PARTIALLY_FAILED
    assert result.completed is True
    assert (result.successful_tools, result.failed_tools) == (1, 1)
    first = result.tool_results[0]
    assert first.success is False
    assert first.error == 'Invalid input: A and B must be numbers (received: {"A": "x"})'


@pytest.mark.anyio
async def test_unregistered_tool_recorded_and_chain_continues(manual_transport):
    harness = Harness(manual_transport, announcement(handler("Add")))
    ref = await harness.submit("complex math")
    await harness.plan(ref, plan_json(step("Add", 1, A="20", B="30"), step("Subtract", 2)))
    await harness.respond(ref, 1, _ADD_OK)

    assert [i.action for i in manual_transport.invocations] == ["Add"]
    [result] = harness.results
    assert result.tools_used == 2
    assert (result.successful_tools, result.failed_tools) == (1, 1)
    assert result.tool_results[0].success is True
    assert result.tool_results[1].success is False
    assert result.tool_results[1].error == TOOL_NOT_FOUND
    assert result.tool_results[1].tool_key == f"{SERVICE_ID}:Subtract"


@pytest.mark.anyio
async def test_leading_unregistered_tools_skipped_immediately(harness):
    ref = await harness.submit()
    await harness.plan(ref, plan_json(step("Multiply", 1), step("Divide", 2), step("Add", 3)))

    [invocation] = harness.transport.invocations
    assert invocation.action == "Add"
    assert invocation.step_index == 3
    await harness.respond(ref, 3, _ADD_OK)
    assert harness.results[0].failed_tools == 2


@pytest.mark.anyio
async def test_all_steps_unregistered_completes_at_once(harness):
    ref = await harness.submit()
    await harness.plan(ref, plan_json(step("Multiply", 1), step("Add", 2, service_id="ghost")))

    assert harness.transport.invocations == []
    [result] = harness.results
    assert result.tools_used == 2
    assert result.status is TaskStatus.PARTIALLY_FAILED


# ── correlation ───────────────────────────────────────────────────────────────


@pytest.mark.anyio
async def test_result_for_unknown_task_changes_nothing(harness):
    ref = await harness.submit()
    await harness.plan(ref, plan_json(step("Add", 1)))

    await harness.respond("task-0-00000000", 1, _ADD_OK)

    task = harness.ledger.get(ref)
    assert task.results == []
    assert task.status is TaskStatus.EXECUTING
    assert len(harness.ledger) == 1
    assert harness.results == []


@pytest.mark.anyio
async def test_out_of_sequence_result_discarded(harness):
    ref = await harness.submit()
    await harness.plan(ref, plan_json(step("Add", 1), step("Subtract", 2)))

    await harness.respond(ref, 2, _SUB_OK)
    assert harness.ledger.get(ref).results == []

    await harness.respond(ref, 1, _ADD_OK)
    await harness.respond(ref, 1, _ADD_OK)  # duplicate delivery
    assert len(harness.ledger.get(ref).results) == 1


@pytest.mark.anyio
async def test_result_after_completion_ignored(harness):
    ref = await harness.submit()
    await harness.plan(ref, plan_json(step("Add", 1)))
    await harness.respond(ref, 1, _ADD_OK)
    await harness.respond(ref, 2, _ADD_OK)
    assert len(harness.results) == 1
    assert len(harness.ledger.get(ref).results) == 1


@pytest.mark.anyio
async def test_tasks_are_independent(harness):
    first = await harness.submit("one")
    second = await harness.submit("two")
    await harness.plan(first, plan_json(step("Add", 1)))
    await harness.plan(second, plan_json(step("Subtract", 1), step("Add", 2)))

    await harness.respond(second, 1, _SUB_OK)
    await harness.respond(first, 1, _ADD_OK)

    [done] = harness.results
    assert done.reference == first
    assert len(harness.ledger.get(second).results) == 1
    assert harness.ledger.get(second).status is TaskStatus.EXECUTING


@pytest.mark.anyio
async def test_async_completion_handler_awaited(manual_transport, calculator_announcement):
    delivered = []

    async def on_complete(result):
        delivered.append(result.reference)

    registry = CapabilityRegistry()
    registry.register(SERVICE_ID, calculator_announcement)
    executor = ChainExecutor(registry, TaskLedger(), manual_transport, on_complete=on_complete)
    ack = await executor.submit("hello", "tester")
    await executor.on_plan_received(PlanResponse(reference=ack.reference, raw=plan_json()))
    assert delivered == [ack.reference]


# ── payload interpretation ────────────────────────────────────────────────────


class TestInterpretPayload:
    def test_explicit_success(self):
        assert interpret_payload(_ADD_OK) == (True, None)

    def test_explicit_failure(self):
        assert interpret_payload('{"success": false, "error": "boom"}') == (False, "boom")

    def test_failure_without_error_text(self):
        assert interpret_payload('{"success": false}') == (False, "tool reported failure")

    def test_absent_flag_is_success(self):
        assert interpret_payload('{"history": []}') == (True, None)

    def test_plain_text_is_success(self):
        assert interpret_payload("all good") == (True, None)

    def test_error_word_alone_is_not_failure(self):
        assert interpret_payload('{"message": "error margin is 0.1"}') == (True, None)
