"""Parsing of arithmetic expressions and their split into two-operand subtasks."""

from __future__ import annotations

import itertools
import os
import re
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Sequence


class ExpressionError(Exception):
    """Base class for expression errors."""

    default_message = "expression error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class InvalidExpressionError(ExpressionError):
    default_message = "invalid expression"


class KeyNotFoundError(ExpressionError):
    default_message = "key not found"


class ResultNotReadyError(ExpressionError):
    default_message = "result not ready"


class NoExpressionError(ExpressionError):
    default_message = "no expressions"


class Status(str, Enum):
    TODO = "Todo"
    PENDING = "Pending"
    FAILED = "Failed"
    COMPLETED = "Completed"
    TIMEOUT = "Timeout"

    def __str__(self) -> str:
        return self.value


_DEFAULT_TIME_MS = 100
_INT_RE = re.compile(r"[+-]?[0-9]+")


@dataclass(frozen=True)
class Timings:
    """Milliseconds an agent spends on each operation."""

    addition: int = _DEFAULT_TIME_MS
    subtraction: int = _DEFAULT_TIME_MS
    multiplication: int = _DEFAULT_TIME_MS
    division: int = _DEFAULT_TIME_MS

    @property
    def longest(self) -> int:
        return max(self.addition, self.division, self.multiplication, self.subtraction)

    def _time_for(self, operation: str) -> int:
        return {
            "+": self.addition,
            "-": self.subtraction,
            "*": self.multiplication,
            "/": self.division,
        }[operation]


def _atoi(value: str | None, default: int) -> int:
    if value is not None and _INT_RE.fullmatch(value):
        return int(value)
    return default


def load_timings(env: Mapping[str, str] | None = None) -> Timings:
    """Read operation times from the environment, 100 ms where unset or invalid."""
    env = os.environ if env is None else env
    return Timings(
        addition=_atoi(env.get("TIME_ADDITION_MS"), _DEFAULT_TIME_MS),
        subtraction=_atoi(env.get("TIME_SUBTRACTION_MS"), _DEFAULT_TIME_MS),
        multiplication=_atoi(env.get("TIME_MULTIPLICATIONS_MS"), _DEFAULT_TIME_MS),
        division=_atoi(env.get("TIME_DIVISIONS_MS"), _DEFAULT_TIME_MS),
    )


def _ascii_digit(char: str) -> bool:
    return "0" <= char <= "9"


def check_expression(exp: str) -> bool:
    """First-pass validity check of an expression string."""
    if not exp:
        return False
    first, last = exp[0], exp[-1]
    if not (_ascii_digit(last) or last == ")"):
        return False
    if not (_ascii_digit(first) or first in "-("):
        return False
    if any(pair in exp for pair in ("**", "--", "++", "//")):
        return False
    balance = 0
    for index, char in enumerate(exp):
        if char == ".":
            if index == 0 or not _ascii_digit(exp[index - 1]):
                return False
        elif not (char.isdecimal() or char in "()+-*/"):
            return False
        if char == "(":
            balance += 1
        elif char == ")":
            balance -= 1
        if balance < 0:
            return False
    return balance == 0


def find_pair_bracket(tokens: Sequence[str], start: int) -> int | None:
    """Index of the bracket closing the one at ``start``, or None."""
    balance = 0
    for index in range(start, len(tokens)):
        token = tokens[index]
        if token == "(":
            balance += 1
        elif token == ")":
            balance -= 1
        if balance == 0:
            return index
    return None


_task_ids = itertools.count(1)
_task_ids_lock = threading.Lock()


def next_task_id() -> str:
    """Return a new process-unique subtask id."""
    with _task_ids_lock:
        return f"se{next(_task_ids)}"


@dataclass
class SubTask:
    """One operation of an expression; arguments may name other subtasks."""

    id: str
    arg1: str
    arg2: str
    operation: str
    operation_time: int = 0
    parent_id: str = ""
    processed: bool = False


_POLL_INTERVAL = 0.005
_MULTIPLICATIVE = frozenset({"*", "/"})
_ADDITIVE = frozenset({"+", "-"})


@dataclass(eq=False)
class Expression:
    """A user's expression together with its subtasks and their results."""

    id: str = ""
    exp: str = ""
    status: Status = Status.TODO
    result: float = 0.0
    user_id: int = 0
    subtasks: list[SubTask] = field(default_factory=list)
    results: dict[str, float] = field(default_factory=dict)
    timeout: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def tokenize(self) -> list[str]:
        """Split the expression into numbers, operators and brackets.

        A leading minus, or one right after "(", becomes the tokens "-1", "*".
        """
        if not check_expression(self.exp):
            raise InvalidExpressionError()
        exp = self.exp = self.exp.strip()
        tokens: list[str] = []
        number = ""
        for index, char in enumerate(exp):
            if char.isdecimal():
                number += char
            elif char == "-" and (index == 0 or exp[index - 1] == "("):
                tokens += ["-1", "*"]
            elif char == "." and index != 0 and number and "." not in number:
                number += char
            elif char in "+-*/":
                if not number:
                    if index == 0 or exp[index - 1] != ")":
                        raise InvalidExpressionError()
                    tokens.append(char)
                    continue
                tokens += [number, char]
                number = ""
            elif char in "()":
                if number:
                    tokens.append(number)
                    number = ""
                tokens.append(char)
            else:
                raise InvalidExpressionError()
        if exp[-1] != ")" and not number:
            raise InvalidExpressionError()
        if number:
            tokens.append(number)
        return tokens

    def set_subtask_result(self, task_id: str, result: float) -> None:
        """Record the result of one of this expression's subtasks."""
        if not any(task.id == task_id for task in self.subtasks):
            raise KeyNotFoundError()
        self.results[task_id] = result

    def resolve_subtask(self, task_id: str) -> SubTask:
        """Return a copy of a subtask with subtask references replaced by results."""
        for task in self.subtasks:
            if task.id == task_id:
                return SubTask(
                    id=task.id,
                    arg1=self._resolve_arg(task.arg1),
                    arg2=self._resolve_arg(task.arg2),
                    operation=task.operation,
                    operation_time=task.operation_time,
                    processed=task.processed,
                )
        raise KeyNotFoundError()

    def _resolve_arg(self, arg: str) -> str:
        if "se" not in arg:
            return arg
        try:
            return f"{self.results[arg]:.6f}"
        except KeyError:
            raise ResultNotReadyError() from None

    def split(self, tokens: Sequence[str], timings: Timings | None = None) -> str:
        """Append subtasks for the tokens in evaluation order.

        Returns the id of the last subtask made at this level, or "" if none.
        """
        timings = timings or Timings()
        tokens = list(tokens)
        last_id = ""
        while "(" in tokens:
            start = tokens.index("(")
            end = find_pair_bracket(tokens, start)
            if end is None:
                raise InvalidExpressionError()
            inner_id = self.split(tokens[start + 1 : end], timings)
            tokens[start : end + 1] = [inner_id]
        for operators in (_MULTIPLICATIVE, _ADDITIVE):
            while True:
                position = next(
                    (i for i, token in enumerate(tokens) if token in operators), None
                )
                if position is None:
                    break
                if position == 0 or position + 1 >= len(tokens):
                    raise InvalidExpressionError()
                operation = tokens[position]
                task_id = next_task_id()
                self.subtasks.append(
                    SubTask(
                        id=task_id,
                        arg1=tokens[position - 1],
                        arg2=tokens[position + 1],
                        operation=operation,
                        operation_time=timings._time_for(operation),
                        parent_id=self.id,
                    )
                )
                tokens[position - 1 : position + 2] = [task_id]
                last_id = task_id
        self.timeout = timings.longest * len(self.subtasks) * 2
        return last_id

    def wait_result(self) -> threading.Thread:
        """Watch the expression in the background and mark it timed out
        if it is still pending after ``timeout`` milliseconds."""

        def watch() -> None:
            deadline = time.monotonic() + self.timeout / 1000
            while True:
                with self._lock:
                    if self.status != Status.PENDING:
                        return
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                time.sleep(min(remaining, _POLL_INTERVAL))
            with self._lock:
                if self.status == Status.PENDING:
                    self.status = Status.TIMEOUT

        thread = threading.Thread(target=watch, daemon=True, name=f"timeout-{self.id}")
        thread.start()
        return thread