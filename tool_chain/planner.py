"""Plan acquisition: the planning prompt and the plan document parser.

The inference collaborator answers with a JSON document::

    {"analysis": "...",
     "tools_needed": [{"tool": "calc:Add", "parameters": {"A": "1"}, "order": 1,
                       "description": "..."}],
     "execution_plan": "..."}

An empty ``tools_needed`` list is a valid plan that needs no tool execution.
"""

from __future__ import annotations

import json
from typing import Union

from pydantic import ValidationError

from .documents import PlanDocument
from .models import ParseError, Plan, PlanStep
from .registry import CapabilityRegistry

_PLAN_PROMPT = """\
Task: {query}

You are a planning assistant that orchestrates tools discovered from other
services. Decide which of the available tools are needed to complete the task
and in which order to call them.

Available tools (serviceId:action(parameters): description):
{tools}

Respond with a single JSON object and nothing else:

{{"analysis": "<your reasoning about the task>",
  "tools_needed": [
    {{"tool": "<serviceId:action>", "parameters": {{"<name>": "<value>"}},
      "order": 1, "description": "<what this call does>"}}
  ],
  "execution_plan": "<one sentence summary of the execution>"}}

Rules:
- Tool keys must exactly match those listed above.
- Parameter values are strings.
- Use an empty "tools_needed" list if no tool is needed.
"""


def _strip_fence(raw: str) -> str:
    text = raw.strip()
    if text.startswith("```"):
        lines = text.splitlines()
        inner = lines[1:-1] if lines[-1].strip() == "```" else lines[1:]
        text = "\n".join(inner).strip()
    return text


def parse_plan(raw: str) -> Union[Plan, ParseError]:
    """Parse a plan document into a :class:`Plan`.

    Returns a :class:`ParseError` if the document is not JSON, is not an
    object, or has no ``tools_needed`` field.  Steps without an ``order``
    take their 1-based position in the list.
    """
    try:
        data = json.loads(_strip_fence(raw or ""))
    except (json.JSONDecodeError, TypeError) as exc:
        return ParseError(f"plan is not valid JSON: {exc}", raw=raw or "")
    if not isinstance(data, dict):
        return ParseError("plan is not a JSON object", raw=raw)
    if "tools_needed" not in data:
        return ParseError("plan has no tools_needed field", raw=raw)

    try:
        document = PlanDocument.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(p) for p in first["loc"])
        return ParseError(f"invalid plan at {location}: {first['msg']}", raw=raw)

    steps = tuple(
        PlanStep(
            tool=item.tool,
            parameters=dict(item.parameters),
            order=item.order if item.order is not None else position,
            description=item.description,
        )
        for position, item in enumerate(document.tools_needed, start=1)
    )
    return Plan(
        analysis=document.analysis,
        steps=steps,
        execution_plan=document.execution_plan,
        raw=raw,
    )


class Planner:
    """Builds the inference request for a task from the registered tools."""

    def __init__(self, registry: CapabilityRegistry) -> None:
        self._registry = registry

    def build_prompt(self, query: str) -> str:
        tools = self._registry.describe() or "  (no tools registered)"
        # The task line must stay on one line; the router reads it back.
        first_line = " ".join(query.split())
        return _PLAN_PROMPT.format(query=first_line, tools=tools)
