"""Wire documents exchanged with collaborator services.

Documents are decoded and validated once here; the rest of the package works
with the dataclasses in :mod:`tool_chain.models`.
"""

from __future__ import annotations

import json
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SUPPORTED_PROTOCOL_VERSION = "1.0"
CORE_CATEGORY = "core"


class HandlerTag(BaseModel):
    """A parameter declared by a handler (``tags`` in the announcement)."""

    model_config = ConfigDict(extra="ignore")

    name: str
    type: str = "string"
    required: bool = False
    description: str = ""


class HandlerSpec(BaseModel):
    """One handler advertised in a capability announcement."""

    model_config = ConfigDict(extra="ignore")

    action: str
    description: str = ""
    tags: list[HandlerTag] = Field(default_factory=list)
    category: str = ""


class AnnouncementDocument(BaseModel):
    """Capability announcement (ADP ``Info`` response)."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    protocol_version: Optional[str] = Field(default=None, alias="protocolVersion")
    name: str = ""
    version: str = ""
    description: str = ""
    handlers: list[HandlerSpec] = Field(default_factory=list)


class PlanStepDocument(BaseModel):
    """One entry of ``tools_needed`` in a plan document."""

    model_config = ConfigDict(extra="ignore")

    tool: str
    parameters: dict[str, str]
    order: Optional[int] = None
    description: str = ""

    @field_validator("parameters", mode="before")
    @classmethod
    def _stringify_values(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k): v if isinstance(v, str) else _to_text(v) for k, v in value.items()}
        return value


class PlanDocument(BaseModel):
    """Plan returned by the inference collaborator."""

    model_config = ConfigDict(extra="ignore")

    analysis: str = ""
    tools_needed: list[PlanStepDocument]
    execution_plan: str = ""


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
