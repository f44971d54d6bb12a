"""In-memory view of stored expressions and the queue of tasks for agents."""

from __future__ import annotations

import queue
import sqlite3
import threading

from .database import Database
from .expression import (
    Expression,
    ExpressionError,
    InvalidExpressionError,
    KeyNotFoundError,
    NoExpressionError,
    Status,
    SubTask,
    Timings,
    check_expression,
)


class Repository:
    """Keeps expressions by id and hands their subtasks out one at a time."""

    def __init__(self, database: Database, timings: Timings | None = None) -> None:
        self.database = database
        self.timings = timings or Timings()
        self.expressions: dict[str, Expression] = {}
        self.current: Expression | None = None
        self._tasks: queue.Queue[SubTask] = queue.Queue()
        self._lock = threading.RLock()
        self.load()

    def _save(self, expression: Expression) -> None:
        try:
            self.database.update_expression(expression)
        except sqlite3.Error:
            pass

    def load(self) -> None:
        """Refresh expressions from the database, keeping the one in progress."""
        with self._lock:
            try:
                stored = self.database.select_expressions()
            except sqlite3.Error:
                return
            for expression in stored:
                if self.current is not None and expression.id == self.current.id:
                    continue
                self.expressions[expression.id] = expression

    def add_expression(self, exp: str, user_id: int) -> str:
        """Validate and store a new expression; return its id."""
        if not check_expression(exp):
            raise InvalidExpressionError()
        expression = Expression(exp=exp, status=Status.TODO, user_id=user_id)
        with self._lock:
            self.database.insert_expression(expression)
            self.expressions[expression.id] = expression
        return expression.id

    def delete_user_expressions(self, user_id: int) -> int:
        """Delete every expression of a user; return how many were deleted."""
        count = 0
        with self._lock:
            for expression in list(self.expressions.values()):
                if expression.user_id != user_id:
                    continue
                del self.expressions[expression.id]
                try:
                    numeric_id = int(expression.id)
                except ValueError:
                    continue
                self.database.delete_expression(numeric_id)
                count += 1
        return count

    def delete_expression(self, expression_id: str, user_id: int) -> None:
        with self._lock:
            expression = self.expressions.get(expression_id)
            if expression is None or expression.user_id != user_id:
                raise KeyNotFoundError()
            self.database.delete_expression(int(expression_id))
            del self.expressions[expression_id]

    def get_expression(self, expression_id: str, user_id: int) -> Expression:
        with self._lock:
            expression = self.expressions.get(expression_id)
        if expression is None or expression.user_id != user_id:
            raise KeyNotFoundError()
        return expression

    def list_expressions(self, user_id: int) -> list[Expression]:
        with self._lock:
            return [e for e in self.expressions.values() if e.user_id == user_id]

    def fill_task_queue(self) -> None:
        """Queue every subtask of the current expression whose arguments are known."""
        with self._lock:
            if self.current is None or self.current.status != Status.PENDING:
                try:
                    self.set_current_expression()
                except NoExpressionError:
                    return
            current = self.current
            for subtask in current.subtasks:
                if subtask.processed:
                    continue
                try:
                    ready = current.resolve_subtask(subtask.id)
                except ExpressionError:
                    continue
                subtask.processed = True
                self._tasks.put(ready)

    def next_task(self, timeout: float = 0.1) -> SubTask:
        """Return a ready subtask, waiting up to ``timeout`` seconds for one."""
        with self._lock:
            self.load()
            self.fill_task_queue()
        try:
            return self._tasks.get(timeout=timeout)
        except queue.Empty:
            raise NoExpressionError() from None

    def set_current_expression(self) -> None:
        """Start the next waiting expression.

        Expressions that fail to parse, or hold a single number, are settled
        on the way. Raises NoExpressionError when none is left to start.
        """
        with self._lock:
            for expression in list(self.expressions.values()):
                if expression.status != Status.TODO:
                    continue
                expression.status = Status.PENDING
                self.current = expression
                self._save(expression)
                try:
                    tokens = expression.tokenize()
                except InvalidExpressionError:
                    expression.status = Status.FAILED
                    self._save(expression)
                    continue
                if len(tokens) == 1:
                    expression.status = Status.COMPLETED
                    try:
                        expression.result = float(tokens[0])
                    except ValueError:
                        expression.status = Status.FAILED
                    self._save(expression)
                    continue
                try:
                    expression.split(tokens, self.timings)
                except InvalidExpressionError:
                    expression.status = Status.FAILED
                    self._save(expression)
                    continue
                expression.wait_result()
                return
        raise NoExpressionError()

    def _advance(self) -> None:
        try:
            self.set_current_expression()
        except NoExpressionError:
            pass

    def set_result(self, task_id: str, result: float, error: str | None = None) -> None:
        """Record an agent's answer for a subtask of the current expression."""
        with self._lock:
            current = self.current
            if current is None:
                raise NoExpressionError()
            if error:
                current.status = Status.FAILED
                self._save(current)
                self._advance()
                return
            current.set_subtask_result(task_id, result)
            if len(current.subtasks) == len(current.results):
                current.status = Status.COMPLETED
                current.result = current.results[current.subtasks[-1].id]
                self._save(current)
                self._advance()