"""Data models for the tool-chain orchestrator."""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from typing import Any, NamedTuple, Optional

import pendulum


class TaskStatus(str, enum.Enum):
    """Lifecycle of a task held in the ledger."""

    PENDING_PLAN = "pending-plan"
    EXECUTING = "executing"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially-failed"
    FAILED = "failed"

    @property
    def finished(self) -> bool:
        return self in (
            TaskStatus.COMPLETED,
            TaskStatus.PARTIALLY_FAILED,
            TaskStatus.FAILED,
        )


def tool_key(service_id: str, action: str) -> str:
    """Compose the ``serviceId:actionName`` registry key."""
    return f"{service_id}:{action}"


# ── capabilities ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ParamSpec:
    """One declared parameter of a remote action."""

    name: str
    type: str = "string"
    required: bool = False
    description: str = ""

    def signature(self) -> str:
        return f"{self.name}: {self.type}{'' if self.required else '?'}"


@dataclass(frozen=True)
class CapabilityEntry:
    """A remote-callable operation announced by a service."""

    service_id: str
    action: str
    description: str
    parameters: tuple[ParamSpec, ...] = ()
    category: str = ""

    @property
    def key(self) -> str:
        return tool_key(self.service_id, self.action)


class ToolListing(NamedTuple):
    tool_key: str
    service_id: str
    action: str
    description: str
    category: str


@dataclass
class ServiceRecord:
    """What the registry remembers about an announcing service."""

    service_id: str
    name: str
    version: str
    description: str
    tool_keys: list[str]
    registered_at: pendulum.DateTime = field(default_factory=lambda: pendulum.now("UTC"))


@dataclass(frozen=True)
class RegistrationFailure:
    """Returned instead of an announcement when the document is unusable."""

    service_id: str
    reason: str


# ── plans ─────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PlanStep:
    """A single tool invocation in an execution plan."""

    tool: str
    parameters: dict[str, str]
    order: int
    description: str = ""


@dataclass(frozen=True)
class Plan:
    """An execution plan returned by the inference collaborator."""

    analysis: str
    steps: tuple[PlanStep, ...]
    execution_plan: str
    raw: str = ""  # Raw inference output, preserved for debugging

    def ordered_steps(self) -> list[PlanStep]:
        """Return steps by ascending ``order``; ties keep their list position."""
        return sorted(self.steps, key=lambda s: s.order)


@dataclass(frozen=True)
class ParseError:
    """Returned instead of a Plan when the plan document is malformed."""

    reason: str
    raw: str = ""


# ── tasks ─────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class StepResult:
    """Outcome of one executed (or skipped) plan step."""

    step_index: int
    tool_key: str
    success: bool
    response: str = ""
    error: Optional[str] = None
    completed_at: pendulum.DateTime = field(default_factory=lambda: pendulum.now("UTC"))

    def summary(self) -> str:
        """One line for display: the tool's ``message`` when it sent one."""
        if not self.success:
            return f"{self.tool_key} (ERROR): {self.error}"
        try:
            data = json.loads(self.response)
        except (json.JSONDecodeError, TypeError):
            data = None
        if isinstance(data, dict) and isinstance(data.get("message"), str):
            return f"{self.tool_key}: {data['message']}"
        return f"{self.tool_key}: {self.response}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "toolIndex": self.step_index,
            "tool": self.tool_key,
            "success": self.success,
            "response": self.response,
            "error": self.error,
            "timestamp": self.completed_at.isoformat(),
        }


@dataclass
class Task:
    """One in-flight orchestration request, owned by the TaskLedger."""

    reference: str
    query: str
    requester: str
    status: TaskStatus = TaskStatus.PENDING_PLAN
    plan: Optional[Plan] = None
    results: list[StepResult] = field(default_factory=list)
    created_at: pendulum.DateTime = field(default_factory=lambda: pendulum.now("UTC"))
    completed_at: Optional[pendulum.DateTime] = None

    @property
    def expected_steps(self) -> int:
        return len(self.plan.steps) if self.plan else 0

    @property
    def next_index(self) -> int:
        """1-based index of the step that has not produced a result yet."""
        return len(self.results) + 1


# ── messages ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PlanRequest:
    reference: str
    prompt: str


@dataclass(frozen=True)
class PlanResponse:
    reference: str
    raw: str
    error: Optional[str] = None  # Set when the inference call itself failed


@dataclass(frozen=True)
class StepInvocation:
    """Emitted to a tool-providing service for one plan step."""

    service_id: str
    action: str
    parameters: dict[str, str]
    reference: str
    step_index: int


@dataclass(frozen=True)
class StepResultMessage:
    """Received from a tool-providing service; echoes the correlation fields."""

    reference: str
    step_index: int
    payload: str


@dataclass(frozen=True)
class Acknowledgement:
    reference: str
    accepted: bool = True


@dataclass
class FinalResult:
    """Aggregated result delivered to the original requester."""

    reference: str
    task: str
    ai_analysis: str
    execution_plan: str
    tools_used: int
    successful_tools: int
    failed_tools: int
    tool_results: list[StepResult]
    duration: float
    status: TaskStatus
    error: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.status is not TaskStatus.FAILED

    @property
    def answer(self) -> str:
        """Response body for the requester.

        A plan without tool calls answers with the analysis text alone.
        """
        if self.error is not None:
            return f"Task failed: {self.error}"
        if not self.tool_results:
            return self.ai_analysis
        return "\n".join(r.summary() for r in self.tool_results)

    def to_dict(self) -> dict[str, Any]:
        data = {
            "reference": self.reference,
            "task": self.task,
            "aiAnalysis": self.ai_analysis,
            "executionPlan": self.execution_plan,
            "toolsUsed": self.tools_used,
            "successfulTools": self.successful_tools,
            "failedTools": self.failed_tools,
            "toolResults": [r.to_dict() for r in self.tool_results],
            "duration": self.duration,
            "status": self.status.value,
            "completed": self.completed,
        }
        if self.error is not None:
            data["error"] = self.error
        return data
