import json
import logging
from uuid import uuid4

from dbtrace.profiling import LoggingSink
from dbtrace.utils.logging import JsonFormatter


def test_json_formatter_includes_profiling_context() -> None:
    session_id = uuid4()
    record = logging.LogRecord("dbtrace.test", logging.WARNING, __file__, 1, "open timings", None, None)
    record.session_id = session_id
    payload = json.loads(JsonFormatter().format(record))
    assert payload["level"] == "WARNING"
    assert payload["message"] == "open timings"
    assert payload["session_id"] == str(session_id)


def test_logging_sink_writes_one_json_line_per_record(caplog) -> None:
    sink = LoggingSink("dbtrace.records.test")
    with caplog.at_level(logging.INFO, logger="dbtrace.records.test"):
        sink({"type": "session", "sessionId": "abc", "name": "GET /"})
    [message] = [entry.getMessage() for entry in caplog.records if entry.name == "dbtrace.records.test"]
    assert json.loads(message)["sessionId"] == "abc"
