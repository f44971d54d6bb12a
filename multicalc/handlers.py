"""HTTP API of the orchestrator: users, tokens and expressions."""

from __future__ import annotations

import json
import math
import re
import sqlite3
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Mapping, Sequence
from urllib.parse import parse_qsl, unquote, urlsplit

import bcrypt
import jwt

from . import logs
from .database import BadNameError, BadPasswordError, Database, User
from .expression import Expression, ExpressionError, InvalidExpressionError, KeyNotFoundError, Status
from .repository import Repository

DEFAULT_SECRET = "secret"
TOKEN_LIFETIME_SECONDS = 72 * 3600

_JSON = "application/json"
_HMAC_ALGORITHMS = ["HS256", "HS384", "HS512"]
_BCRYPT_COST = 10
_BCRYPT_MAX_BYTES = 72
_INT_RE = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


class BadCredentialsError(Exception):
    """The request carries no valid bearer token, or the login failed."""

    def __init__(self, message: str = "Bad credentials") -> None:
        super().__init__(message)


@dataclass
class Response:
    """An HTTP response ready to be written out."""

    status: int = 200
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def text(self) -> str:
        return self.body.decode("utf-8")

    def json(self) -> Any:
        return json.loads(self.body)


def hash_password(password: str) -> str:
    """Return a bcrypt hash of the password."""
    raw = password.encode("utf-8")
    if len(raw) > _BCRYPT_MAX_BYTES:
        raise ValueError("bcrypt: password length exceeds 72 bytes")
    return bcrypt.hashpw(raw, bcrypt.gensalt(rounds=_BCRYPT_COST)).decode("ascii")


def verify_password(hashed: str, password: str) -> bool:
    """Tell whether the password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# JSON output in the compact form clients of this API expect.

def _encode_str(text: str) -> str:
    encoded = json.dumps(text, ensure_ascii=False)
    for char, escape in (
        ("<", "\\u003c"),
        (">", "\\u003e"),
        ("&", "\\u0026"),
        ("\u2028", "\\u2028"),
        ("\u2029", "\\u2029"),
    ):
        encoded = encoded.replace(char, escape)
    return encoded


def _encode_float(value: float) -> str:
    if math.isnan(value):
        raise ValueError("json: unsupported value: NaN")
    if math.isinf(value):
        raise ValueError(f"json: unsupported value: {'+' if value > 0 else '-'}Inf")
    if value == 0:
        return "-0" if math.copysign(1.0, value) < 0 else "0"
    magnitude = abs(value)
    if magnitude < 1e-6 or magnitude >= 1e21:
        return re.sub(r"e-0(\d)$", r"e-\1", repr(value))
    return format(Decimal(repr(value)), "f")


def _encode(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _encode_float(value)
    if isinstance(value, str):
        return _encode_str(value)
    if isinstance(value, Mapping):
        items = (f"{_encode_str(str(k))}:{_encode(v)}" for k, v in value.items())
        return "{" + ",".join(items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_encode(item) for item in value) + "]"
    raise ValueError(f"json: unsupported type: {type(value).__name__}")


def _expression_json(expression: Expression) -> dict[str, Any]:
    return {
        "id": expression.id,
        "exp": expression.exp,
        "status": Status(expression.status).value,
        "result": float(expression.result),
        "userID": expression.user_id,
    }


class _BodyError(ValueError):
    """The request body is not the JSON object that was expected."""


def _json_kind(value: Any) -> str:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    return "object"


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid character in literal {name}")


def _decode_fields(body: bytes, names: Sequence[str]) -> dict[str, str]:
    """Read string fields from a JSON object, matching keys case-insensitively."""
    text = body.decode("utf-8", errors="replace").lstrip(" \t\r\n")
    if not text:
        raise _BodyError("EOF")
    decoder = json.JSONDecoder(parse_constant=_reject_constant)
    try:
        value, _ = decoder.raw_decode(text)
    except ValueError as exc:
        raise _BodyError(f"invalid JSON: {exc}") from None
    fields = {name: "" for name in names}
    if value is None:
        return fields
    if not isinstance(value, dict):
        raise _BodyError(f"json: cannot unmarshal {_json_kind(value)} into request object")
    for key, item in value.items():
        name = next((n for n in names if n.casefold() == key.casefold()), None)
        if name is None or item is None:
            continue
        if not isinstance(item, str):
            raise _BodyError(
                f"json: cannot unmarshal {_json_kind(item)} into field {name} of type string"
            )
        fields[name] = item
    return fields


def _claim_to_id(value: Any) -> int:
    """Turn the id claim into a user id; anything unreadable gives 0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, float):
        if not (value.is_integer() and abs(value) < 1e21):
            return 0
        value = int(value)
    if isinstance(value, str):
        if not _INT_RE.fullmatch(value):
            return 0
        value = int(value)
    if isinstance(value, int):
        return min(max(value, _INT64_MIN), _INT64_MAX)
    return 0


@dataclass
class _Request:
    method: str
    headers: dict[str, str]
    query: dict[str, str]
    path_id: str
    body: bytes

    def header(self, name: str) -> str:
        return self.headers.get(name.lower(), "")

    def target_id(self) -> str:
        if not self.path_id and "id" in self.query:
            return self.query["id"]
        return self.path_id


def _fail(headers: Mapping[str, str], message: str, status: int) -> Response:
    merged = dict(headers)
    merged["Content-Type"] = "text/plain; charset=utf-8"
    merged["X-Content-Type-Options"] = "nosniff"
    return Response(status, merged, (message + "\n").encode("utf-8"))


def _reply(headers: Mapping[str, str], payload: Any) -> Response:
    try:
        body = _encode(payload)
    except ValueError as exc:
        return _fail(headers, str(exc), 500)
    return Response(200, dict(headers), body.encode("utf-8"))


def _base_headers(allow_headers: bool = True) -> dict[str, str]:
    headers = {"Content-Type": _JSON, "Access-Control-Allow-Origin": "*"}
    if allow_headers:
        headers["Access-Control-Allow-Headers"] = "*"
    return headers


_Handler = Callable[[_Request], Response]


class Api:
    """Routes HTTP requests to the calculator's operations."""

    def __init__(
        self, repository: Repository, database: Database, secret: str = DEFAULT_SECRET
    ) -> None:
        self.repository = repository
        self.database = database
        self.secret = secret
        self._routes: list[tuple[tuple[str, ...], _Handler]] = [
            (("api", "v1", "calculate"), self._add_expression),
            (("api", "v1", "expressions"), self._list_expressions),
            (("api", "v1", "delete", "expressions", "{id}"), self._delete_expression),
            (("api", "v1", "expressions", "{id}"), self._get_expression),
            (("api", "v1", "register"), self._register),
            (("api", "v1", "login"), self._login),
            (("api", "v1", "delete", "user"), self._delete_user),
            (("api", "v1", "delete", "expressions"), self._delete_expressions),
            (("api", "v1", "update", "user"), self._update_user),
        ]

    def check_token(self, header: str) -> int:
        """Return the user id of a "Bearer <jwt>" header."""
        parts = header.split(" ")
        if header == " " or len(parts) != 2 or parts[0] != "Bearer":
            logs.error(str(BadCredentialsError()))
            raise BadCredentialsError()
        try:
            claims = jwt.decode(parts[1], self.secret, algorithms=_HMAC_ALGORITHMS)
        except jwt.InvalidTokenError:
            logs.error(str(BadCredentialsError()))
            raise BadCredentialsError() from None
        logs.info(f"Token correct, name: {claims.get('id')}")
        return _claim_to_id(claims.get("id"))

    def handle(
        self,
        method: str,
        path: str,
        headers: Mapping[str, str] | None = None,
        body: bytes | str | None = b"",
    ) -> Response:
        """Answer one request."""
        lowered = {k.lower(): v for k, v in (headers or {}).items()}
        cors: dict[str, str] = {}
        if lowered.get("origin"):
            cors = {
                "Access-Control-Allow-Origin": "*",
                "Access-Control-Allow-Credentials": "true",
                "Access-Control-Allow-Headers": "Content-Type, Authorization",
                "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
            }
        if method == "OPTIONS":
            return Response(200, cors, b"")
        parts = urlsplit(path)
        query: dict[str, str] = {}
        for key, value in parse_qsl(parts.query, keep_blank_values=True):
            query.setdefault(key, value)
        handler, path_id = self._match(parts.path)
        if handler is None:
            return _fail(cors, "404 page not found", 404)
        if isinstance(body, str):
            body = body.encode("utf-8")
        request = _Request(method, lowered, query, path_id, body or b"")
        response = handler(request)
        response.headers = {**cors, **response.headers}
        return response

    def _match(self, path: str) -> tuple[_Handler | None, str]:
        if not path.startswith("/"):
            return None, ""
        segments = [unquote(segment) for segment in path.split("/")[1:]]
        for pattern, handler in self._routes:
            if len(pattern) != len(segments):
                continue
            captured = ""
            for want, got in zip(pattern, segments):
                if want == "{id}":
                    if not got:
                        break
                    captured = got
                elif want != got:
                    break
            else:
                return handler, captured
        return None, ""

    def _authorize(self, request: _Request) -> int:
        return self.check_token(request.header("Authorization"))

    def _sign(self, payload: dict[str, Any]) -> str:
        return jwt.encode(payload, self.secret, algorithm="HS256")

    def _add_expression(self, request: _Request) -> Response:
        headers = _base_headers()
        try:
            user_id = self._authorize(request)
            fields = _decode_fields(request.body, ["expression"])
        except BadCredentialsError as exc:
            return _fail(headers, str(exc), 200)
        except _BodyError as exc:
            logs.error(str(exc))
            return _fail(headers, str(exc), 500)
        try:
            expression_id = self.repository.add_expression(fields["expression"], user_id)
        except InvalidExpressionError as exc:
            return _fail(headers, str(exc), 422)
        except (ExpressionError, sqlite3.Error) as exc:
            return _fail(headers, str(exc), 500)
        logs.info(f"Expression with id {expression_id} added")
        return _reply(headers, {"id": expression_id})

    def _list_expressions(self, request: _Request) -> Response:
        if "id" in request.query:
            return self._get_expression(request)
        headers = _base_headers()
        try:
            user_id = self._authorize(request)
        except BadCredentialsError as exc:
            return _fail(headers, str(exc), 200)
        self.repository.load()
        expressions = self.repository.list_expressions(user_id)
        logs.info("List of expressions returned successfully")
        return _reply(headers, {"expressions": [_expression_json(e) for e in expressions]})

    def _get_expression(self, request: _Request) -> Response:
        headers = _base_headers()
        try:
            user_id = self._authorize(request)
        except BadCredentialsError as exc:
            return _fail(headers, str(exc), 200)
        self.repository.load()
        try:
            expression = self.repository.get_expression(request.target_id(), user_id)
        except KeyNotFoundError as exc:
            return _fail(headers, str(exc), 404)
        logs.info("Expression by id returned successfully")
        return _reply(headers, {"expression": _expression_json(expression)})

    def _delete_expressions(self, request: _Request) -> Response:
        if "id" in request.query:
            return self._delete_expression(request)
        headers = _base_headers()
        try:
            user_id = self._authorize(request)
        except BadCredentialsError as exc:
            return _fail(headers, str(exc), 200)
        count = self.repository.delete_user_expressions(user_id)
        logs.info(f"Expressions by user with id {user_id} deleted successfully")
        return _reply(headers, {"count": count, "error": ""})

    def _delete_expression(self, request: _Request) -> Response:
        headers = _base_headers()
        try:
            user_id = self._authorize(request)
        except BadCredentialsError as exc:
            return _fail(headers, str(exc), 200)
        expression_id = request.target_id()
        try:
            self.repository.delete_expression(expression_id, user_id)
        except (KeyNotFoundError, ValueError, sqlite3.Error) as exc:
            return _reply(headers, {"count": 0, "error": str(exc)})
        logs.info(f"Expression {expression_id} of user {user_id} deleted successfully")
        return _reply(headers, {"count": 1, "error": ""})

    def _update_user(self, request: _Request) -> Response:
        headers = _base_headers()
        try:
            user_id = self._authorize(request)
            fields = _decode_fields(request.body, ["login", "password"])
            password = hash_password(fields["password"]) if fields["password"] else ""
        except BadCredentialsError as exc:
            return _fail(headers, str(exc), 200)
        except ValueError as exc:
            logs.error(str(exc))
            return _fail(headers, str(exc), 500)
        user = User(name=fields["login"], password=password)
        try:
            self.database.update_user(user, user_id)
        except (BadNameError, BadPasswordError, sqlite3.Error) as exc:
            logs.error(str(exc))
            return _fail(headers, str(exc), 400)
        signed = self._sign(
            {"name": user.name, "exp": int(time.time()) + TOKEN_LIFETIME_SECONDS}
        )
        logs.info(f"User with id {user_id} updated, new name - {user.name}")
        return _reply(headers, {"access_token": signed, "time": "0"})

    def _delete_user(self, request: _Request) -> Response:
        headers = _base_headers()
        try:
            user_id = self._authorize(request)
        except BadCredentialsError as exc:
            return _fail(headers, str(exc), 200)
        self.repository.delete_user_expressions(user_id)
        try:
            self.database.delete_user(user_id)
        except sqlite3.Error as exc:
            logs.error(str(exc))
            return _fail(headers, str(exc), 400)
        logs.info(f"User with id {user_id} deleted")
        return _reply(headers, {"id": user_id})

    def _login(self, request: _Request) -> Response:
        headers = _base_headers(allow_headers=False)
        try:
            fields = _decode_fields(request.body, ["login", "password"])
        except _BodyError as exc:
            logs.error(str(exc))
            return _fail(headers, str(exc), 500)
        try:
            user = self.database.select_user_by_name(fields["login"])
        except (LookupError, sqlite3.Error) as exc:
            logs.error(str(exc))
            return _fail(headers, str(exc), 400)
        if not verify_password(user.password, fields["password"]):
            logs.error(str(BadCredentialsError()))
            return _fail(headers, str(BadCredentialsError()), 400)
        expires = int(time.time()) + TOKEN_LIFETIME_SECONDS
        signed = self._sign({"id": user.id, "exp": expires})
        logs.info(f"User with name {user.name} signing")
        return _reply(headers, {"access_token": signed, "time": str(expires)})

    def _register(self, request: _Request) -> Response:
        headers = _base_headers()
        try:
            fields = _decode_fields(request.body, ["login", "password"])
            password = hash_password(fields["password"])
        except ValueError as exc:
            logs.error(str(exc))
            return _fail(headers, str(exc), 500)
        user = User(name=fields["login"], password=password)
        try:
            user_id = self.database.insert_user(user)
        except (BadNameError, BadPasswordError, sqlite3.Error) as exc:
            logs.error(f"{exc} |{fields['login']}|")
            return _fail(headers, str(exc), 400)
        logs.info(f"User with name {user.name} registred")
        return _reply(headers, {"login": user.name, "id": user_id})