"""Message delivery between the orchestrator and its collaborator services.

Plan requests go to the inference backend, step invocations go to MCP
servers.  Both are fire-and-forget: ``request_plan`` and ``invoke`` schedule
the work and return at once; the response is delivered later to the handlers
bound with :meth:`Transport.connect`, carrying the same correlation fields.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Any, Optional

from inference import LLMBackend
from .models import PlanRequest, PlanResponse, StepInvocation, StepResultMessage

_log = logging.getLogger(__name__)

ANNOUNCE_ACTION = "Info"

PlanHandler = Callable[[PlanResponse], Awaitable[None]]
StepResultHandler = Callable[[StepResultMessage], Awaitable[None]]


class Transport(ABC):
    """Routes plan requests and step invocations, delivering responses back."""

    def __init__(self, llm: LLMBackend) -> None:
        self._llm = llm
        self._on_plan: Optional[PlanHandler] = None
        self._on_step_result: Optional[StepResultHandler] = None
        self._pending: set[asyncio.Task] = set()

    def connect(self, on_plan: PlanHandler, on_step_result: StepResultHandler) -> None:
        self._on_plan = on_plan
        self._on_step_result = on_step_result

    @property
    @abstractmethod
    def service_ids(self) -> list[str]:
        """Services this transport can reach."""

    @abstractmethod
    async def call_tool(self, service_id: str, action: str, arguments: dict[str, Any]) -> str:
        """Call *action* on *service_id* and return its text response."""

    async def announce(self, service_id: str) -> str:
        """Fetch the capability announcement of *service_id*."""
        return await self.call_tool(service_id, ANNOUNCE_ACTION, {})

    async def open(self) -> None:
        """Prepare the routes to every service.  Nothing to do by default."""

    async def close(self) -> None:
        """Wait for deliveries still in flight, then release the routes."""
        await self.drain()

    def request_plan(self, request: PlanRequest) -> None:
        self._spawn(self._deliver_plan(request))

    def invoke(self, invocation: StepInvocation) -> None:
        self._spawn(self._deliver_step_result(invocation))

    async def drain(self) -> None:
        """Wait until every scheduled delivery, including follow-ups, is done."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver_plan(self, request: PlanRequest) -> None:
        if self._on_plan is None:
            raise RuntimeError("transport is not connected")
        try:
            # Backends block on network I/O; keep the loop free for other tasks.
            raw = await asyncio.to_thread(self._llm.generate, request.prompt)
            response = PlanResponse(reference=request.reference, raw=raw)
        except Exception as exc:  # noqa: BLE001
            _log.error("Inference failed for %s: %s", request.reference, exc)
            response = PlanResponse(reference=request.reference, raw="", error=str(exc))
        await self._on_plan(response)

    async def _deliver_step_result(self, invocation: StepInvocation) -> None:
        if self._on_step_result is None:
            raise RuntimeError("transport is not connected")
        try:
            payload = await self.call_tool(
                invocation.service_id, invocation.action, invocation.parameters
            )
        except Exception as exc:  # noqa: BLE001
            _log.warning(
                "Call to %s:%s failed: %s", invocation.service_id, invocation.action, exc
            )
            payload = json.dumps({"success": False, "error": str(exc)})
        await self._on_step_result(
            StepResultMessage(
                reference=invocation.reference,
                step_index=invocation.step_index,
                payload=payload,
            )
        )


class LocalTransport(Transport):
    """Calls FastMCP servers living in the same process."""

    def __init__(self, llm: LLMBackend, servers: dict[str, Any]) -> None:
        super().__init__(llm)
        self._servers = dict(servers)

    @property
    def service_ids(self) -> list[str]:
        return list(self._servers)

    async def call_tool(self, service_id: str, action: str, arguments: dict[str, Any]) -> str:
        server = self._servers.get(service_id)
        if server is None:
            raise LookupError(f"Unknown service '{service_id}'")
        result = await server.call_tool(action, arguments)
        # FastMCP returns (content, structured) for tools with an output schema.
        if isinstance(result, tuple):
            result = result[0]
        return _extract_content(result)


class StdioTransport(Transport):
    """Launches each service as a long-lived MCP server over stdio.

    One subprocess and session per service, started on first use and kept
    until :meth:`close`, so server-side state survives between calls.  The
    stdio client runs inside anyio cancel scopes: :meth:`open` and
    :meth:`close` must be awaited from the same task.
    """

    def __init__(self, llm: LLMBackend, server_paths: dict[str, Path]) -> None:
        super().__init__(llm)
        self._server_paths = dict(server_paths)
        self._sessions: dict[str, Any] = {}
        self._stack = AsyncExitStack()
        self._session_lock = asyncio.Lock()

    @property
    def service_ids(self) -> list[str]:
        return list(self._server_paths)

    async def open(self) -> None:
        for service_id in self._server_paths:
            try:
                await self._session(service_id)
            except Exception as exc:  # noqa: BLE001
                _log.warning("Could not start %s: %s", service_id, exc)

    async def close(self) -> None:
        await super().close()
        self._sessions.clear()
        stack, self._stack = self._stack, AsyncExitStack()
        await stack.aclose()

    async def call_tool(self, service_id: str, action: str, arguments: dict[str, Any]) -> str:
        session = await self._session(service_id)
        result = await session.call_tool(action, arguments)
        text = _extract_content(result.content)
        if result.isError:
            return json.dumps({"success": False, "error": text})
        return text

    async def _session(self, service_id: str):
        from mcp import ClientSession, StdioServerParameters
        from mcp.client.stdio import stdio_client

        server_path = self._server_paths.get(service_id)
        if server_path is None:
            raise LookupError(f"Unknown service '{service_id}'")

        async with self._session_lock:
            session = self._sessions.get(service_id)
            if session is None:
                params = StdioServerParameters(command=sys.executable, args=[str(server_path)])
                read, write = await self._stack.enter_async_context(stdio_client(params))
                session = await self._stack.enter_async_context(ClientSession(read, write))
                await session.initialize()
                self._sessions[service_id] = session
                _log.info("Started %s from %s", service_id, server_path)
            return session


def _extract_content(content: list[Any]) -> str:
    """Extract text from MCP tool call result content."""
    return "\n".join(getattr(item, "text", str(item)) for item in content)
