# multicalc

A multi-user calculator service. Users register, log in and submit arithmetic
expressions over HTTP. The orchestrator checks each expression, tokenizes it and
splits it into single-operation subtasks (`+`, `-`, `*`, `/`), honouring
brackets and operator precedence. An agent with a pool of worker threads
computes the subtasks and sends the results back, and the orchestrator stores
the final answer.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Running the orchestrator

```
multicalc-orchestrator [--database PATH]
```

This starts the HTTP API and, in the same process, an agent that computes the
tasks. Settings come from the environment:

| Variable | Meaning | Default |
|---|---|---|
| `PORT` | HTTP port | `8080` |
| `COMPUTING_POWER` | number of agent worker threads | `5` |
| `TIME_ADDITION_MS`, `TIME_SUBTRACTION_MS`, `TIME_MULTIPLICATIONS_MS`, `TIME_DIVISIONS_MS` | milliseconds each operation takes | `100` |

Users and expressions are kept in the SQLite file given by `--database`
(default `data.db`). Log lines are written to standard output as JSON objects
with `time`, `level` and `msg` keys.

## HTTP API

Routes do not check the HTTP method; any method reaches the handler, and
`OPTIONS` is always answered with an empty 200. When the request has an
`Origin` header, CORS headers are added. Every endpoint except registration
and login needs an `Authorization: Bearer <token>` header with the token that
login returned; a missing or invalid token is answered with status 200 and the
plain-text body `Bad credentials`.

| Path | Purpose |
|---|---|
| `/api/v1/register` | body `{"login": ..., "password": ...}`: create a user; returns `login` and `id` |
| `/api/v1/login` | same body; returns `access_token` and its expiry `time` (Unix seconds, as a string) |
| `/api/v1/calculate` | body `{"expression": "2*(3+4)"}`: returns the new expression's `id`; 422 if the expression is invalid |
| `/api/v1/expressions` | list the caller's expressions; with `?id=...` returns one |
| `/api/v1/expressions/{id}` | one expression; 404 if it does not exist or belongs to someone else |
| `/api/v1/delete/expressions/{id}` | delete one expression; returns `count` and `error` |
| `/api/v1/delete/expressions` | delete all the caller's expressions; with `?id=...` deletes one |
| `/api/v1/update/user` | body with `login` and/or `password`: change them |
| `/api/v1/delete/user` | delete the account and its expressions; returns `id` |

An expression is returned as `{"id", "exp", "status", "result", "userID"}`.
Its status is one of `Todo`, `Pending`, `Completed`, `Failed` or `Timeout`; an
expression still pending after twice the longest operation time per subtask is
marked `Timeout`.

A login needs at least 4 bytes (UTF-8). A password needs at least 8 bytes,
with at least one letter and one digit. Passwords are stored as bcrypt hashes.
The token that `update/user` returns carries only the new name, not the user
id, so log in again to get a token for further requests.

## Using the library

```python
from multicalc.expression import Expression, check_expression, load_timings
from multicalc.calculator import Task

check_expression("-1-(3*9)")           # True
expr = Expression(exp="2*(3+4)")
tokens = expr.tokenize()               # ['2', '*', '(', '3', '+', '4', ')']
last_id = expr.split(tokens, load_timings({}))
expr.subtasks                          # the subtasks, in evaluation order

task = Task(id="se1", arg1="1.5", arg2="2", operation="+")
task.calc()                            # 3.5
```

Other pieces:

- `multicalc.database.Database`: SQLite storage of users and expressions.
- `multicalc.repository.Repository`: expressions in memory, and the queue of
  ready subtasks (`next_task`, `set_result`).
- `multicalc.handlers.Api`: the HTTP routes as a plain
  `handle(method, path, headers, body)` call returning a `Response`; the
  token secret is its `secret` argument.
- `multicalc.agent.Agent`: a worker pool that takes tasks from any object with
  `get_task()` and `push_result(task_id, result, error)`.
- `multicalc.orchestrator.Orchestrator`: ties these together and builds the
  HTTP server with `make_server()`.

## What it does not do

There is no network protocol between agents and the orchestrator: the agent
runs as a thread inside the orchestrator process and calls it directly.
Separate agent processes on other hosts are not supported.