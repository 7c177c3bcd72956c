"""Shared fixtures for tool_chain unit tests."""

import pytest

from fakes import ManualTransport, MockLLM, announcement, handler


@pytest.fixture
def anyio_backend() -> str:
    """The package is built on asyncio; run anyio-marked tests on it only."""
    return "asyncio"


@pytest.fixture
def calculator_announcement() -> dict:
    number = {"type": "number", "required": True}
    return announcement(
        handler("Add", tags=[{"name": "A", **number}, {"name": "B", **number}]),
        handler("Subtract", tags=[{"name": "A", **number}, {"name": "B", **number}]),
        handler("History", category="utility", tags=[{"name": "Limit", "type": "number"}]),
        handler("Clear", category="utility"),
        handler("Info", category="core"),
    )


@pytest.fixture
def mock_llm():
    """Factory fixture: MockLLM(response='')."""

    def _factory(response: str = "") -> MockLLM:
        return MockLLM(response)

    return _factory


@pytest.fixture
def manual_transport() -> ManualTransport:
    return ManualTransport()


@pytest.fixture
def calculator():
    """The calculator MCP server with a fresh history."""
    from main import mcp, state

    state.reset()
    yield mcp
    state.reset()
