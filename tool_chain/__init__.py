"""Tool-chain orchestration: discovery, planning and sequential tool execution."""

from .executor import ChainExecutor
from .ledger import TaskLedger
from .models import FinalResult, Plan, PlanStep, StepResult, Task, TaskStatus
from .planner import Planner, parse_plan
from .registry import CapabilityRegistry
from .runner import ToolChainRunner
from .transport import LocalTransport, StdioTransport, Transport

__all__ = [
    "CapabilityRegistry",
    "ChainExecutor",
    "FinalResult",
    "LocalTransport",
    "Plan",
    "PlanStep",
    "Planner",
    "StdioTransport",
    "StepResult",
    "Task",
    "TaskLedger",
    "TaskStatus",
    "ToolChainRunner",
    "Transport",
    "parse_plan",
]
