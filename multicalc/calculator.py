"""Evaluation of single two-operand tasks handed out to agents."""

from __future__ import annotations

import math
import operator
from dataclasses import dataclass


class CalculatorError(Exception):
    """Base class for errors raised while computing a task."""

    default_message = "calculation failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class DivisionByZeroError(CalculatorError):
    """The task divides by zero."""

    default_message = "Division by zero"


class InvalidArgumentError(CalculatorError):
    """An argument is not a number, or the operation is unknown."""

    default_message = "Invalid arguments"


class NoTaskError(CalculatorError):
    """There is no task to compute."""

    default_message = "Not expressions"


class ServerUnavailableError(CalculatorError):
    """The orchestrator is down or does not answer."""

    default_message = "Orchestrator doesn't work"


_OPERATIONS = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": operator.truediv,
}


def _parse_float(text: str) -> float:
    """Parse a number strictly: no surrounding blanks, no digit separators."""
    if not text or text != text.strip() or "_" in text:
        raise ValueError(f"invalid number: {text!r}")
    lowered = text.lower()
    if lowered.lstrip("+-").startswith("0x"):
        if "p" not in lowered:
            raise ValueError(f"invalid number: {text!r}")
        value = float.fromhex(text)
    else:
        value = float(text)
    if math.isinf(value) and "inf" not in lowered:
        raise ValueError(f"number out of range: {text!r}")
    return value


@dataclass
class Task:
    """A single operation on two textual arguments."""

    id: str = ""
    arg1: str = ""
    arg2: str = ""
    operation: str = ""
    operation_time: int = 0
    result: float = 0.0
    error: str = ""

    def parse_args(self) -> tuple[float, float]:
        """Return both arguments as floats."""
        try:
            return _parse_float(self.arg1), _parse_float(self.arg2)
        except (ValueError, OverflowError) as exc:
            raise InvalidArgumentError() from exc

    def calc(self) -> float:
        """Compute the task, store the result and return it.

        On failure the error text is stored in ``error`` and the error raised.
        """
        try:
            first, second = self.parse_args()
            func = _OPERATIONS.get(self.operation)
            if func is None:
                raise InvalidArgumentError()
            if self.operation == "/" and second == 0:
                raise DivisionByZeroError()
        except CalculatorError as exc:
            self.error = str(exc)
            raise
        self.result = func(first, second)
        return self.result