"""Mock inference router returning canned plans for calculator tasks.

Stands in for a real model during demos and tests.  The task is read from the
``Task:`` line of the prompt and matched against a static table: exact key
first, then any key contained in the task, then keyword fallbacks.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from .base import LLMBackend

_log = logging.getLogger(__name__)

_TASK_RE = re.compile(r"Task:\s*([^\n]+)")


def _step(service_id: str, action: str, parameters: dict[str, str], order: int, description: str) -> dict:
    return {
        "tool": f"{service_id}:{action}",
        "parameters": parameters,
        "order": order,
        "description": description,
    }


def _canned_plans(service_id: str) -> dict[str, dict[str, Any]]:
    return {
        "calculate": {
            "analysis": "This task requires mathematical calculation using available calculator tools.",
            "tools_needed": [
                _step(service_id, "Add", {"A": "25", "B": "15"}, 1, "Add 25 and 15 to get the result"),
            ],
            "execution_plan": "Use the Add tool from the calculator process to perform the addition operation.",
        },
        "add numbers": {
            "analysis": "User wants to add two numbers. I'll use the calculator Add tool.",
            "tools_needed": [
                _step(service_id, "Add", {"A": "10", "B": "5"}, 1, "Add 10 and 5"),
            ],
            "execution_plan": "Execute the Add operation with the provided numbers.",
        },
        "complex math": {
            "analysis": "This requires multiple mathematical operations in sequence.",
            "tools_needed": [
                _step(service_id, "Add", {"A": "20", "B": "30"}, 1, "First add 20 and 30"),
                _step(service_id, "Subtract", {"A": "50", "B": "15"}, 2, "Then subtract 15 from the result"),
            ],
            "execution_plan": "Perform addition first, then subtraction to complete the complex calculation.",
        },
        "hello": {
            "analysis": "This is a simple greeting that doesn't require any tools.",
            "tools_needed": [],
            "execution_plan": "No tools needed - this is just a greeting.",
        },
        "show history": {
            "analysis": "User wants to see calculation history.",
            "tools_needed": [
                _step(service_id, "History", {"Limit": "10"}, 1, "Get the last 10 calculation operations"),
            ],
            "execution_plan": "Use the History tool to retrieve recent calculations.",
        },
    }


class MockRouterLLM(LLMBackend):
    """Deterministic router answering with a plan document, no network calls.

    Args:
        service_id: Service the canned plans address their tools to.
    """

    def __init__(self, service_id: str = "calculator-process") -> None:
        self._service_id = service_id
        self._plans = _canned_plans(service_id)

    def generate(self, prompt: str, temperature: float = 0.0) -> str:
        match = _TASK_RE.search(prompt)
        task = match.group(1).strip() if match else "unknown"
        plan = self.find_plan(task)
        _log.info("Mock router planned %d tool(s) for task: %s", len(plan["tools_needed"]), task)
        return json.dumps(plan)

    def find_plan(self, task: str) -> dict[str, Any]:
        lowered = task.lower()
        if lowered in self._plans:
            return self._plans[lowered]
        for key, plan in self._plans.items():
            if key in lowered:
                return plan

        if any(word in lowered for word in ("add", "plus", "+")):
            return self._plans["add numbers"]
        if any(word in lowered for word in ("subtract", "minus", "-")):
            return {
                "analysis": "User wants to perform subtraction.",
                "tools_needed": [
                    _step(self._service_id, "Subtract", {"A": "20", "B": "8"}, 1, "Subtract 8 from 20"),
                ],
                "execution_plan": "Use the Subtract tool to perform the subtraction operation.",
            }
        if any(word in lowered for word in ("history", "previous", "past")):
            return self._plans["show history"]

        return {
            "analysis": f"I cannot determine specific tools needed for this task: {task}",
            "tools_needed": [],
            "execution_plan": "No tools identified for this task.",
        }
