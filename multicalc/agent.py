"""Agent that fetches tasks from the orchestrator and computes them with a worker pool."""

from __future__ import annotations

import math
import os
import queue
import re
import struct
import threading
import time
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

from . import logs
from .calculator import CalculatorError, NoTaskError, ServerUnavailableError, Task
from .expression import NoExpressionError

_DEFAULT_ADDR = "8080"
_DEFAULT_COMPUTING_POWER = 5
_JOBS_CAPACITY = 100
_IDLE_PAUSE = 0.005
_INT_RE = re.compile(r"[+-]?[0-9]+")


class TaskService(Protocol):
    """What the agent needs from the orchestrator."""

    def get_task(self) -> Any: ...

    def push_result(self, task_id: str, result: float, error: str) -> None: ...


@dataclass
class AgentConfig:
    addr: str = _DEFAULT_ADDR
    computing_power: int = _DEFAULT_COMPUTING_POWER


def agent_config_from_env(env: Mapping[str, str] | None = None) -> AgentConfig:
    """Read PORT and COMPUTING_POWER; unset or invalid values fall back to defaults."""
    env = os.environ if env is None else env
    addr = env.get("PORT") or _DEFAULT_ADDR
    raw_power = env.get("COMPUTING_POWER", "")
    power = int(raw_power) if _INT_RE.fullmatch(raw_power) else 0
    return AgentConfig(addr=addr, computing_power=power or _DEFAULT_COMPUTING_POWER)


def _to_float32(value: float) -> float:
    try:
        return struct.unpack("f", struct.pack("f", value))[0]
    except OverflowError:
        return math.copysign(math.inf, value)


def worker(worker_id: int, jobs: queue.Queue, results: queue.Queue) -> None:
    """Compute tasks from ``jobs`` until a None arrives, putting each into ``results``."""
    for task in iter(jobs.get, None):
        logs.info(f"Worker {worker_id} start task {task.id}")
        if task.operation_time > 0:
            time.sleep(task.operation_time / 1000)
        try:
            task.calc()
        except CalculatorError:
            pass
        results.put(task)
        logs.info(f"Worker {worker_id} finished task {task.id} with result {task.result:f}")


class Agent:
    """Pulls tasks from a service, computes them in parallel and pushes the results back."""

    def __init__(self, config: AgentConfig | None, service: TaskService) -> None:
        logs.init_logging()
        self.config = config or agent_config_from_env()
        self.service = service

    def run(self, stop: threading.Event | None = None) -> None:
        """Work until ``stop`` is set; raise ServerUnavailableError if the service is down."""
        stop = stop or threading.Event()
        jobs: queue.Queue = queue.Queue(maxsize=_JOBS_CAPACITY)
        results: queue.Queue = queue.Queue()
        workers = [
            threading.Thread(
                target=worker, args=(number, jobs, results), daemon=True, name=f"worker-{number}"
            )
            for number in range(1, self.config.computing_power + 1)
        ]
        for thread in workers:
            thread.start()
        logs.info(f"Agent start with COMPUTING_POWER:{self.config.computing_power} ")
        try:
            while not stop.is_set():
                try:
                    finished = results.get_nowait()
                except queue.Empty:
                    self._fetch(jobs)
                    continue
                self._push(finished)
        finally:
            for _ in workers:
                jobs.put(None)
            for thread in workers:
                thread.join()
        while True:
            try:
                finished = results.get_nowait()
            except queue.Empty:
                break
            self._push(finished)

    def _fetch(self, jobs: queue.Queue) -> None:
        try:
            incoming = self.service.get_task()
        except (NoExpressionError, NoTaskError):
            time.sleep(_IDLE_PAUSE)
            return
        except (ServerUnavailableError, ConnectionError) as exc:
            failure = ServerUnavailableError()
            logs.error(str(failure))
            raise failure from exc
        jobs.put(
            Task(
                id=incoming.id,
                arg1=incoming.arg1,
                arg2=incoming.arg2,
                operation=incoming.operation,
                operation_time=int(incoming.operation_time),
            )
        )

    def _push(self, task: Task) -> None:
        try:
            self.service.push_result(task.id, _to_float32(task.result), task.error)
        except Exception as exc:
            logs.error(f"could not push result of task {task.id}: {exc}")