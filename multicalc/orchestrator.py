"""The orchestrator service: hands tasks to agents and serves the HTTP API."""

from __future__ import annotations

import argparse
import os
import threading
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Mapping, Sequence

from . import logs
from .agent import Agent, agent_config_from_env
from .database import Database
from .expression import SubTask, load_timings
from .handlers import Api
from .repository import Repository

WAITING_TIME = 0.1
_DEFAULT_ADDR = "8080"


@dataclass
class Config:
    addr: str = _DEFAULT_ADDR


def config_from_env(env: Mapping[str, str] | None = None) -> Config:
    """Read the HTTP port from PORT, 8080 where unset."""
    env = os.environ if env is None else env
    return Config(addr=env.get("PORT") or _DEFAULT_ADDR)


class Orchestrator:
    """Owns the database, the expression repository and the HTTP API."""

    def __init__(self, config: Config | None = None, database_path: str = "data.db") -> None:
        logs.init_logging()
        self.config = config or config_from_env()
        self.database = Database(database_path)
        self.repository = Repository(self.database, load_timings())
        self.api = Api(self.repository, self.database)

    def __enter__(self) -> Orchestrator:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self.database.close()

    def get_task(self) -> SubTask:
        """Return the next ready subtask; raise NoExpressionError if none comes in time."""
        task = self.repository.next_task(WAITING_TIME)
        logs.info(f"Task {task} sent successfully")
        return task

    def push_result(self, task_id: str, result: float, error: str = "") -> None:
        """Record an agent's result, or its error, for a subtask."""
        if error:
            self.repository.set_result(task_id, 0.0, error)
            logs.info("Got an error in the task")
        else:
            self.repository.set_result(task_id, float(result))
            logs.info("The task result was successfully written")

    def make_server(self, host: str = "", port: int | None = None) -> ThreadingHTTPServer:
        """Build an HTTP server that answers through the API."""
        api = self.api
        port = int(self.config.addr) if port is None else port

        class _Handler(BaseHTTPRequestHandler):
            def _dispatch(self) -> None:
                length = int(self.headers.get("Content-Length") or 0)
                body = self.rfile.read(length) if length > 0 else b""
                response = api.handle(self.command, self.path, dict(self.headers.items()), body)
                self.send_response(response.status)
                for name, value in response.headers.items():
                    self.send_header(name, value)
                self.send_header("Content-Length", str(len(response.body)))
                self.end_headers()
                if self.command != "HEAD":
                    self.wfile.write(response.body)

            do_GET = do_POST = do_PUT = do_DELETE = do_PATCH = do_OPTIONS = do_HEAD = _dispatch

            def log_message(self, format: str, *args: object) -> None:
                logs.debug(f"{self.address_string()} {format % args}")

        return ThreadingHTTPServer((host, port), _Handler)


def main(argv: Sequence[str] | None = None) -> int:
    """Serve the HTTP API, with an agent computing tasks in the same process."""
    parser = argparse.ArgumentParser(description="Multi-user calculator orchestrator")
    parser.add_argument("--database", default="data.db", help="path of the SQLite database")
    args = parser.parse_args(argv)

    orchestrator = Orchestrator(config_from_env(), args.database)
    stop = threading.Event()
    agent = Agent(agent_config_from_env(), orchestrator)
    threading.Thread(target=agent.run, args=(stop,), daemon=True, name="agent").start()

    server = orchestrator.make_server()
    logs.info(f"Server started at :{orchestrator.config.addr}")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        stop.set()
        server.server_close()
        orchestrator.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())