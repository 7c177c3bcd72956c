import json
import logging
import math
import os
from collections import deque
from typing import Optional, Union

import pendulum
from mcp.server.fastmcp import FastMCP

# Setup logging (stderr; stdout carries the stdio protocol)
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "WARNING"))
logger = logging.getLogger("calculator-mcp-server")

PROCESS_NAME = "Calculator MCP Server"
PROCESS_VERSION = "1.0.0"
PROTOCOL_VERSION = "1.0"
MAX_HISTORY = 100

mcp = FastMCP("Calculator")

Operand = Optional[Union[str, int, float]]


class CalculatorState:
    """Operation history kept by the server, bounded to MAX_HISTORY records."""

    def __init__(self) -> None:
        self.operations: deque = deque(maxlen=MAX_HISTORY)
        self.total_operations = 0

    def record(self, operation: str, a, b, result) -> dict:
        self.total_operations += 1
        entry = {
            "id": self.total_operations,
            "operation": operation,
            "operand1": a,
            "operand2": b,
            "result": result,
            "timestamp": pendulum.now("UTC").to_iso8601_string(),
        }
        self.operations.append(entry)
        return entry

    def reset(self) -> None:
        self.operations.clear()
        self.total_operations = 0


state = CalculatorState()


# --- Helper Functions ---


def to_number(value: Operand) -> Optional[Union[int, float]]:
    """Parse an operand; None when it is missing or not a finite number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = value
    else:
        text = value.strip()
        try:
            number = int(text)
        except ValueError:
            try:
                number = float(text)
            except ValueError:
                return None
    if isinstance(number, float):
        if not math.isfinite(number):
            return None
        if number.is_integer():
            return int(number)
    return number


def binary_operation(operation: str, symbol: str, a_raw: Operand, b_raw: Operand) -> str:
    a, b = to_number(a_raw), to_number(b_raw)
    if a is None or b is None:
        return json.dumps(
            {
                "success": False,
                "error": "Invalid input: A and B must be numbers",
                "received": {"A": a_raw, "B": b_raw},
            }
        )

    result = a + b if symbol == "+" else a - b
    if isinstance(result, float) and result.is_integer():
        result = int(result)
    entry = state.record(operation, a, b, result)
    logger.info(f"{operation}: {a} {symbol} {b} = {result}")
    return json.dumps(
        {
            "success": True,
            "operation": operation,
            "operand1": a,
            "operand2": b,
            "result": result,
            "operationId": entry["id"],
            "message": f"{a} {symbol} {b} = {result}",
        }
    )


def handler(action: str, description: str, tags: list, category: str) -> dict:
    return {
        "action": action,
        "pattern": ["Action"],
        "description": description,
        "tags": tags,
        "category": category,
        "version": "1.0",
    }


def number_tag(name: str, description: str, required: bool = True) -> dict:
    return {"name": name, "type": "number", "required": required, "description": description}


# --- Calculator Tools ---


@mcp.tool(name="Add")
def add(A: Operand = None, B: Operand = None) -> str:  # noqa: N803
    """Add two numbers together."""
    return binary_operation("addition", "+", A, B)


@mcp.tool(name="Subtract")
def subtract(A: Operand = None, B: Operand = None) -> str:  # noqa: N803
    """Subtract the second number from the first number."""
    return binary_operation("subtraction", "-", A, B)


# --- History Tools ---


@mcp.tool(name="History")
def history(Limit: Operand = None) -> str:  # noqa: N803
    """Returns the most recent calculations (default: last 10)."""
    limit = to_number(Limit)
    limit = int(limit) if limit is not None and limit > 0 else 10
    recent = list(state.operations)[-limit:]
    return json.dumps(
        {
            "success": True,
            "history": recent,
            "totalOperations": state.total_operations,
            "showing": len(recent),
        }
    )


@mcp.tool(name="Clear")
def clear() -> str:
    """Clears the calculation history."""
    cleared = len(state.operations)
    state.operations.clear()
    logger.info(f"Calculator history cleared: {cleared} operations removed")
    return json.dumps(
        {
            "success": True,
            "message": "Calculation history cleared",
            "clearedOperations": cleared,
        }
    )


# --- Discovery ---


@mcp.tool(name="Info")
def info() -> str:
    """Returns the process information and the handlers it exposes as tools."""
    handlers = [
        handler(
            "Add",
            "Add two numbers together",
            [number_tag("A", "First number to add"), number_tag("B", "Second number to add")],
            "calculator",
        ),
        handler(
            "Subtract",
            "Subtract second number from first number",
            [number_tag("A", "Number to subtract from"), number_tag("B", "Number to subtract")],
            "calculator",
        ),
        handler(
            "History",
            "Get calculation history",
            [number_tag("Limit", "Maximum number of operations to return (default: 10)", required=False)],
            "utility",
        ),
        handler("Clear", "Clear calculation history", [], "utility"),
        handler("Info", "Get process information and available tools/handlers", [], "core"),
    ]
    return json.dumps(
        {
            "protocolVersion": PROTOCOL_VERSION,
            "name": PROCESS_NAME,
            "version": PROCESS_VERSION,
            "description": "Calculator process providing addition and subtraction as MCP tools",
            "handlers": handlers,
            "capabilities": {
                "adpCompliant": True,
                "supportsCalculations": True,
                "supportsHistory": True,
            },
            "statistics": {
                "totalOperations": state.total_operations,
                "operationsInHistory": len(state.operations),
                "availableHandlers": len(handlers),
            },
        }
    )


def main():
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
