"""SQLite storage for users and their expressions."""

from __future__ import annotations

import os
import sqlite3
import threading
from dataclasses import dataclass
from typing import Any, Iterable

from . import logs
from .expression import Expression, Status

_MIN_NAME_BYTES = 4
_MIN_PASSWORD_BYTES = 8

_USERS_TABLE = """
CREATE TABLE IF NOT EXISTS users(
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT UNIQUE,
    password TEXT
);"""

_EXPRESSIONS_TABLE = """
CREATE TABLE IF NOT EXISTS expressions(
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    expression TEXT NOT NULL,
    result INTEGER,
    user_id TEXT NOT NULL,
    status TEXT,
    FOREIGN KEY (user_id) REFERENCES expressions (id)
);"""


class BadPasswordError(ValueError):
    """The password is shorter than 8 bytes or lacks a letter or a digit."""

    def __init__(self, message: str = "Bad password") -> None:
        super().__init__(message)


class BadNameError(ValueError):
    """The user name is shorter than 4 bytes."""

    def __init__(self, message: str = "Bad name") -> None:
        super().__init__(message)


@dataclass
class User:
    id: int = 0
    name: str = ""
    password: str = ""


def _byte_len(text: str) -> int:
    return len(text.encode("utf-8"))


def check_password(password: str) -> bool:
    """A strong password has at least 8 bytes, a letter and a digit."""
    has_digit = any(char.isdecimal() for char in password)
    has_letter = any(char.isalpha() for char in password)
    return _byte_len(password) >= _MIN_PASSWORD_BYTES and has_letter and has_digit


def _good_name(name: str) -> bool:
    return _byte_len(name) >= _MIN_NAME_BYTES


def _row_to_expression(row: tuple[Any, ...]) -> Expression:
    expression_id, exp, status, result, user_id = row
    return Expression(
        id=str(expression_id),
        exp=exp,
        status=Status(status) if status else Status.TODO,
        result=float(result or 0),
        user_id=int(user_id),
    )


class Database:
    """A thread-safe connection to the calculator's database."""

    def __init__(self, path: str | os.PathLike[str] = "data.db") -> None:
        self._conn = sqlite3.connect(os.fspath(path), check_same_thread=False)
        self._lock = threading.RLock()
        try:
            with self._lock, self._conn:
                self._conn.execute(_USERS_TABLE)
                self._conn.execute(_EXPRESSIONS_TABLE)
        except sqlite3.Error as exc:
            logs.error(str(exc))
            self._conn.close()
            raise

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _execute(self, query: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        with self._lock, self._conn:
            return self._conn.execute(query, tuple(params))

    def _fetch_all(self, query: str, params: Iterable[Any] = ()) -> list[tuple[Any, ...]]:
        with self._lock:
            return self._conn.execute(query, tuple(params)).fetchall()

    def _fetch_one(self, query: str, params: Iterable[Any] = ()) -> tuple[Any, ...] | None:
        with self._lock:
            return self._conn.execute(query, tuple(params)).fetchone()

    def insert_user(self, user: User) -> int:
        """Store a new user, set its id and return it."""
        if not check_password(user.password):
            raise BadPasswordError()
        if not _good_name(user.name):
            raise BadNameError()
        cursor = self._execute(
            "INSERT INTO users (name, password) VALUES (?, ?)",
            (user.name, user.password),
        )
        user.id = int(cursor.lastrowid)
        return user.id

    def select_users(self) -> list[User]:
        rows = self._fetch_all("SELECT name, password FROM users")
        return [User(name=name, password=stored) for name, stored in rows]

    def select_user_by_name(self, name: str) -> User:
        row = self._fetch_one("SELECT id, name, password FROM users WHERE name = ?", (name,))
        if row is None:
            raise LookupError(f"no user named {name!r}")
        user_id, user_name, stored = row
        return User(id=user_id, name=user_name, password=stored)

    def update_user(self, user: User, user_id: int) -> None:
        """Change the name and/or password of a user.

        A valid field is written even when the other one is rejected.
        """
        name_ok = _good_name(user.name)
        password_ok = check_password(user.password)
        if name_ok and password_ok:
            self._execute(
                "UPDATE users SET password = ?, name = ? WHERE id = ?",
                (user.password, user.name, user_id),
            )
        elif name_ok:
            self._execute("UPDATE users SET name = ? WHERE id = ?", (user.name, user_id))
            if user.password:
                raise BadPasswordError()
        elif password_ok:
            self._execute(
                "UPDATE users SET password = ? WHERE id = ?", (user.password, user_id)
            )
            if user.name:
                raise BadNameError()
        else:
            raise BadNameError()

    def delete_user(self, user_id: int) -> None:
        self._execute("DELETE FROM users WHERE id = ?", (user_id,))

    def insert_expression(self, expression: Expression) -> int:
        """Store a new expression, set its id and return it."""
        cursor = self._execute(
            "INSERT INTO expressions (expression, status, result, user_id) VALUES (?, ?, ?, ?)",
            (
                expression.exp,
                Status(expression.status).value,
                expression.result,
                expression.user_id,
            ),
        )
        new_id = int(cursor.lastrowid)
        expression.id = str(new_id)
        return new_id

    def select_expressions(self) -> list[Expression]:
        rows = self._fetch_all(
            "SELECT id, expression, status, result, user_id FROM expressions"
        )
        return [_row_to_expression(row) for row in rows]

    def select_expression_by_id(self, expression_id: int) -> Expression:
        row = self._fetch_one(
            "SELECT id, expression, status, result, user_id FROM expressions WHERE id = ?",
            (expression_id,),
        )
        if row is None:
            raise LookupError(f"no expression with id {expression_id}")
        return _row_to_expression(row)

    def update_expression(self, expression: Expression) -> None:
        try:
            self._execute(
                "UPDATE expressions SET expression = ?, status = ?, result = ? WHERE id = ?",
                (
                    expression.exp,
                    Status(expression.status).value,
                    expression.result,
                    expression.id,
                ),
            )
        except sqlite3.Error as exc:
            logs.error(str(exc))
            raise

    def delete_expression(self, expression_id: int) -> None:
        self._execute("DELETE FROM expressions WHERE id = ?", (expression_id,))