"""Orchestrator settings read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass

from .ledger import DEFAULT_RETENTION_SECONDS


@dataclass(frozen=True)
class Settings:
    """Settings for :class:`~tool_chain.runner.ToolChainRunner`.

    Environment variables:
        TOOL_CHAIN_REQUESTER          — requester identity (default: local)
        TOOL_CHAIN_RETENTION_SECONDS  — how long tasks stay in the ledger
                                        (default: 300)
    """

    requester: str = "local"
    retention_seconds: float = DEFAULT_RETENTION_SECONDS

    @classmethod
    def from_env(cls) -> "Settings":
        retention = os.environ.get("TOOL_CHAIN_RETENTION_SECONDS")
        try:
            retention_seconds = float(retention) if retention else DEFAULT_RETENTION_SECONDS
        except ValueError as exc:
            raise ValueError(
                f"TOOL_CHAIN_RETENTION_SECONDS must be a number, got {retention!r}"
            ) from exc
        return cls(
            requester=os.environ.get("TOOL_CHAIN_REQUESTER", "local"),
            retention_seconds=retention_seconds,
        )
