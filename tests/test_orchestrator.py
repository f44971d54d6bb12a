import http.client
import json
import threading
import time

import pytest

from multicalc.agent import Agent, AgentConfig
from multicalc.expression import NoExpressionError, Status
from multicalc.orchestrator import Config, Orchestrator, config_from_env


@pytest.fixture
def orchestrator(tmp_path, monkeypatch):
    monkeypatch.setenv("TIME_ADDITION_MS", "0")
    monkeypatch.setenv("TIME_MULTIPLICATIONS_MS", "0")
    monkeypatch.setenv("TIME_DIVISIONS_MS", "0")
    monkeypatch.setenv("TIME_SUBTRACTION_MS", "1000")
    with Orchestrator(Config(), str(tmp_path / "data.db")) as orch:
        yield orch


@pytest.fixture
def server(orchestrator):
    srv = orchestrator.make_server("127.0.0.1", 0)
    thread = threading.Thread(target=srv.serve_forever, daemon=True)
    thread.start()
    yield srv
    srv.shutdown()
    srv.server_close()


def _request(srv, method, path, body=None, headers=None):
    conn = http.client.HTTPConnection("127.0.0.1", srv.server_address[1], timeout=5)
    try:
        payload = json.dumps(body).encode() if body is not None else None
        conn.request(method, path, body=payload, headers=headers or {})
        response = conn.getresponse()
        return response.status, dict(response.getheaders()), response.read()
    finally:
        conn.close()


def test_config_default_port():
    assert config_from_env({}).addr == "8080"


def test_config_reads_port():
    assert config_from_env({"PORT": "9000"}).addr == "9000"


def test_get_task_without_expressions(orchestrator):
    with pytest.raises(NoExpressionError):
        orchestrator.get_task()


def test_push_result_without_current(orchestrator):
    with pytest.raises(NoExpressionError):
        orchestrator.push_result("se1", 1.0, "")


def test_task_round_trip(orchestrator):
    expression_id = orchestrator.repository.add_expression("2+3", 1)
    task = orchestrator.get_task()
    assert (task.arg1, task.arg2, task.operation) == ("2", "3", "+")
    orchestrator.push_result(task.id, 5.0, "")
    expression = orchestrator.repository.get_expression(expression_id, 1)
    assert expression.status == Status.COMPLETED
    assert expression.result == 5.0
    stored = orchestrator.database.select_expression_by_id(int(expression_id))
    assert stored.status == Status.COMPLETED


def test_push_error_fails_expression(orchestrator):
    expression_id = orchestrator.repository.add_expression("4/2", 3)
    task = orchestrator.get_task()
    orchestrator.push_result(task.id, 0.0, "Division by zero")
    assert orchestrator.repository.get_expression(expression_id, 3).status == Status.FAILED


def test_agent_computes_expression(orchestrator):
    expression_id = orchestrator.repository.add_expression("2*3+4", 1)
    stop = threading.Event()
    agent = Agent(AgentConfig(computing_power=2), orchestrator)
    thread = threading.Thread(target=agent.run, args=(stop,), daemon=True)
    thread.start()
    deadline = time.monotonic() + 5
    expression = orchestrator.repository.get_expression(expression_id, 1)
    while expression.status != Status.COMPLETED and time.monotonic() < deadline:
        time.sleep(0.02)
        expression = orchestrator.repository.get_expression(expression_id, 1)
    stop.set()
    thread.join(timeout=5)
    assert expression.status == Status.COMPLETED
    assert expression.result == 10.0


def test_http_unknown_path(server):
    status, _, body = _request(server, "GET", "/nowhere")
    assert status == 404
    assert body == b"404 page not found\n"


def test_http_options_with_origin(server):
    status, headers, _ = _request(
        server, "OPTIONS", "/api/v1/calculate", headers={"Origin": "http://localhost"}
    )
    assert status == 200
    assert headers["Access-Control-Allow-Methods"] == "GET, POST, PUT, DELETE, OPTIONS"


def test_http_register_weak_password(server):
    password = "password"
    status, _, body = _request(
        server, "POST", "/api/v1/register", body={"login": "someone", "password": password}
    )
    assert status == 400
    assert body == b"Bad password\n"


def test_http_list_requires_token(server):
    status, _, body = _request(server, "GET", "/api/v1/expressions")
    assert status == 200
    assert body == b"Bad credentials\n"