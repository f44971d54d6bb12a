import io
import json
from datetime import datetime, timedelta, timezone

import pytest

from multicalc import logs


def _last_record(buffer):
    return json.loads(buffer.getvalue().splitlines()[-1])


@pytest.mark.parametrize(
    "func, level",
    [(logs.info, "INFO"), (logs.warn, "WARN"), (logs.error, "ERROR")],
)
def test_levels_are_written_as_json(func, level):
    buffer = io.StringIO()
    logs.init_logging(buffer)
    func("agent started")
    record = _last_record(buffer)
    assert record["level"] == level
    assert record["msg"] == "agent started"


def test_debug_is_below_default_level():
    buffer = io.StringIO()
    logs.init_logging(buffer)
    logs.debug("hidden detail")
    assert not buffer.getvalue()


def test_one_line_per_message():
    buffer = io.StringIO()
    logs.init_logging(buffer)
    logs.info("first")
    logs.info("second")
    lines = buffer.getvalue().splitlines()
    assert [json.loads(line)["msg"] for line in lines] == ["first", "second"]


def test_init_without_stream_keeps_current_target():
    buffer = io.StringIO()
    first = logs.init_logging(buffer)
    second = logs.init_logging()
    logs.info("kept")
    assert first is second
    assert _last_record(buffer)["msg"] == "kept"


def test_time_field_is_iso_with_zone_and_current():
    buffer = io.StringIO()
    logs.init_logging(buffer)
    before = datetime.now(timezone.utc)
    logs.info("clock")
    after = datetime.now(timezone.utc)
    moment = datetime.fromisoformat(_last_record(buffer)["time"])
    # Comparing with aware datetimes fails if the logged time carries no zone.
    slack = timedelta(seconds=1)
    assert before - slack <= moment <= after + slack


@pytest.mark.parametrize("message", ["Задача выполнена", "100% done", 'quote " inside'])
def test_message_round_trips(message):
    buffer = io.StringIO()
    logs.init_logging(buffer)
    logs.warn(message)
    assert _last_record(buffer)["msg"] == message